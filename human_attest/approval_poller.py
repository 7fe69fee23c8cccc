"""
Approval Poller - Human Approval Wait Loop

Turns an asynchronous human action into a bounded wait with deterministic
terminal states:

    PENDING --(status "approved" + attestation)--> APPROVED
    PENDING --(elapsed >= timeout)--------------> TIMED_OUT

IMPORTANT:
- Confirmation is obtained purely by polling; there is no push path
- Status-check errors are logged and treated as still pending
- Cancellation is timeout-driven only
- The polled attestation is an untrusted network fetch: the workflow
  re-validates it (including the hash) before trusting it
"""

import asyncio
import logging
import math
import re
import time
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Dict, Any, Callable, Awaitable
from urllib.parse import urlencode, urljoin

import httpx

from .attestation_codec import assert_valid_attestation
from .attestation_model import Attestation
from .errors import ApprovalTimeoutError, AttestationError, AttestationValidationError
from .ledger_encoding import LedgerAdapter, record_on_ledger
from .vcs_status import StatusPublisher

logger = logging.getLogger("approval_poller")

ATTESTATION_HASH_PATTERN = re.compile(r"0x[0-9a-f]{64}")
DEFAULT_TIMEOUT_SECONDS = 30 * 60
DEFAULT_POLL_INTERVAL_SECONDS = 10
DEFAULT_STATUS_PATH = "/api/status"


class ApprovalState(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    TIMED_OUT = "timed_out"


# -----------------------------------------------------------------------------
# URLs
# -----------------------------------------------------------------------------
def _with_query(url: str, params: Dict[str, str]) -> str:
    separator = "&" if "?" in url else "?"
    return f"{url}{separator}{urlencode(params)}"


def build_approval_url(
    base_url: str,
    repository: str,
    commit_sha: str,
    provider: str,
    params: Optional[Dict[str, str]] = None,
) -> str:
    """Page the human opens to approve; provider parameters ride along."""
    query = {"repo": repository, "commit": commit_sha, "provider": provider}
    for key, value in (params or {}).items():
        query[key] = str(value)
    return _with_query(base_url, query)


def build_status_url(
    base_url: str,
    repository: str,
    commit_sha: str,
    status_path: str = DEFAULT_STATUS_PATH,
) -> str:
    return _with_query(urljoin(base_url, status_path), {"repo": repository, "commit": commit_sha})


# -----------------------------------------------------------------------------
# Poller
# -----------------------------------------------------------------------------
@dataclass
class PollOutcome:
    state: ApprovalState
    attestation: Optional[Dict[str, Any]]
    checks: int
    elapsed_seconds: float
    approved_at: Optional[str] = None

    @property
    def approved(self) -> bool:
        return self.state == ApprovalState.APPROVED


class ApprovalPoller:
    """Sequential status loop for one (repository, commit)."""

    def __init__(
        self,
        status_url: str,
        poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if poll_interval_seconds <= 0:
            raise ValueError("poll_interval_seconds must be positive")
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")
        self.status_url = status_url
        self.poll_interval_seconds = poll_interval_seconds
        self.timeout_seconds = timeout_seconds
        self._client = client
        self._clock = clock
        self._sleep = sleep

    @property
    def max_checks(self) -> int:
        return math.ceil(self.timeout_seconds / self.poll_interval_seconds) + 1

    async def _fetch(self) -> httpx.Response:
        if self._client is not None:
            return await self._client.get(self.status_url)
        async with httpx.AsyncClient(timeout=30.0) as client:
            return await client.get(self.status_url)

    async def check_status(self) -> Dict[str, Any]:
        """One status check. Errors come back as a pending status."""
        try:
            response = await self._fetch()
            if response.status_code != 200:
                logger.warning(f"Status check failed: {response.status_code}")
                return {"status": ApprovalState.PENDING.value}
            data = response.json()
            if not isinstance(data, dict):
                logger.warning("Status check returned a non-object body")
                return {"status": ApprovalState.PENDING.value}
            return data
        except Exception as e:
            logger.warning(f"Status check error: {e}")
            return {"status": ApprovalState.PENDING.value}

    async def wait_for_approval(self) -> PollOutcome:
        start = self._clock()
        checks = 0

        while self._clock() - start < self.timeout_seconds:
            elapsed = self._clock() - start
            remaining = self.timeout_seconds - elapsed
            logger.info(f"Checking status... ({elapsed:.0f}s elapsed, {remaining:.0f}s remaining)")

            status = await self.check_status()
            checks += 1

            attestation = status.get("attestation")
            if status.get("status") == ApprovalState.APPROVED.value and isinstance(attestation, dict):
                logger.info("Approval received")
                return PollOutcome(
                    state=ApprovalState.APPROVED,
                    attestation=attestation,
                    checks=checks,
                    elapsed_seconds=self._clock() - start,
                    approved_at=status.get("approved_at") or attestation.get("timestamp"),
                )

            await self._sleep(self.poll_interval_seconds)

        elapsed = self._clock() - start
        logger.error(f"Timed out waiting for approval after {elapsed:.0f}s ({checks} checks)")
        return PollOutcome(
            state=ApprovalState.TIMED_OUT,
            attestation=None,
            checks=checks,
            elapsed_seconds=elapsed,
        )


# -----------------------------------------------------------------------------
# Workflow
# -----------------------------------------------------------------------------
@dataclass
class ApprovalResult:
    attestation: Attestation
    approval_url: str
    approved_at: Optional[str]
    checks: int

    def outputs(self) -> Dict[str, str]:
        return {
            "attestation-hash": self.attestation.attestation_hash or "",
            "nullifier-hash": self.attestation.human_proof.nullifier_hash,
            "approved-at": self.approved_at or self.attestation.timestamp,
        }


def _require_hash(data: Dict[str, Any]) -> None:
    """A polled attestation must carry its hash so the hash check always runs."""
    value = data.get("attestation_hash")
    if not value:
        raise AttestationValidationError(["Missing attestation_hash"])
    if not isinstance(value, str) or not ATTESTATION_HASH_PATTERN.fullmatch(value):
        raise AttestationValidationError(["Invalid attestation_hash"])


class ApprovalWorkflow:
    """
    Full approval gate for one commit: publish pending, poll, re-validate,
    optionally forward to a ledger, publish the terminal marker.
    """

    def __init__(
        self,
        repository: str,
        commit_sha: str,
        approval_url: str,
        poller: ApprovalPoller,
        publisher: StatusPublisher,
        ledger: Optional[LedgerAdapter] = None,
    ):
        self.repository = repository
        self.commit_sha = commit_sha
        self.approval_url = approval_url
        self.poller = poller
        self.publisher = publisher
        self.ledger = ledger
        self.state = ApprovalState.PENDING

    async def _publish(self, marker: str, *args) -> None:
        try:
            await getattr(self.publisher, marker)(*args)
        except Exception as e:
            logger.error(f"Failed to publish {marker} marker: {e}")

    def _check_binding(self, attestation: Attestation) -> None:
        subject = attestation.subject
        errors = []
        if subject.repository != self.repository:
            errors.append(f"Attestation is for repository {subject.repository}, expected {self.repository}")
        if subject.commit_sha != self.commit_sha:
            errors.append(f"Attestation is for commit {subject.commit_sha}, expected {self.commit_sha}")
        if errors:
            raise AttestationValidationError(errors)

    async def run(self) -> ApprovalResult:
        """
        Raises:
            ApprovalTimeoutError: no approval within the timeout
            AttestationIntegrityError: polled attestation failed the hash check
            AttestationValidationError: polled attestation is malformed or bound
                to a different repository/commit
        """
        logger.info(f"Starting human approval for {self.repository}@{self.commit_sha[:7]}")
        await self._publish("publish_pending", self.approval_url)

        outcome = await self.poller.wait_for_approval()

        if not outcome.approved:
            self.state = ApprovalState.TIMED_OUT
            minutes = self.poller.timeout_seconds / 60
            await self._publish("publish_failure", f"Timed out after {minutes:g} minutes")
            raise ApprovalTimeoutError(self.repository, self.commit_sha, self.poller.timeout_seconds)

        try:
            _require_hash(outcome.attestation)
            assert_valid_attestation(outcome.attestation)
            attestation = Attestation.from_dict(outcome.attestation)
            self._check_binding(attestation)
        except (KeyError, TypeError) as e:
            await self._publish("publish_failure", "Received attestation is malformed")
            raise AttestationValidationError([f"Malformed attestation field: {e}"])
        except AttestationError as e:
            logger.error(f"Rejected polled attestation: {e.message}")
            await self._publish("publish_failure", f"Attestation rejected: {e.message}")
            raise

        self.state = ApprovalState.APPROVED

        if self.ledger is not None:
            # The approval stands without a chain record
            try:
                attestation = await record_on_ledger(self.ledger, attestation)
            except Exception as e:
                logger.error(f"Ledger write failed for {attestation.attestation_hash}: {e}")

        await self._publish("publish_success", attestation)
        logger.info(f"Human approval verified: {attestation.attestation_hash}")

        return ApprovalResult(
            attestation=attestation,
            approval_url=self.approval_url,
            approved_at=outcome.approved_at,
            checks=outcome.checks,
        )
