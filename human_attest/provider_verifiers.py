"""
Provider Verifiers

One verifier per proof-of-personhood method, all behind the same contract:

    result = await verifier.verify(proof_data, config)
    proof = verifier.to_human_proof(result, signal)

CRITICAL CONSTRAINTS (NON-NEGOTIABLE):
- verify() NEVER raises: missing input, thresholds, expiry, network and
  malformed upstream responses all come back as success=False with a reason
- NO internal retries: a failed call is surfaced immediately
- STATELESS per call: a verifier may be shared across requests
- PRIVACY: non-ZK providers hash "<provider>:<unique_id>" into the
  nullifier; the raw address / context id / user id is never the nullifier
- The ZK provider's nullifier comes from the proof system and is used as is

Network-backed verifiers accept an optional shared httpx.AsyncClient (tests
inject one with a MockTransport); without one they open a client per call.
"""

import itertools
import logging
import math
import secrets
import time
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List

import httpx

from .attestation_codec import parse_timestamp, utc_now_iso
from .attestation_model import HumanProof, PopProvider
from .errors import ProviderError
from .ledger_encoding import hash_to_field
from .provider_catalog import (
    PASSPORT_THRESHOLD_BASIC,
    PASSPORT_THRESHOLD_HIGH_TRUST,
    PASSPORT_THRESHOLD_TRUSTED,
)
from .verification_model import VerificationResult, derive_nullifier, hashed_human_proof

logger = logging.getLogger("provider_verifiers")

# -----------------------------------------------------------------------------
# Constants
# -----------------------------------------------------------------------------
DEFAULT_HTTP_TIMEOUT = 30.0

PASSPORT_API_BASE = "https://api.passport.xyz"
BRIGHTID_NODE_URL = "https://app.brightid.org/node/v5"
POH_SUBGRAPH_URL = "https://api.thegraph.com/subgraphs/name/kleros/proof-of-humanity-mainnet"
WORLD_ID_API_BASE = "https://developer.worldcoin.org"

# Gateway pass tags, weakest first
CIVIC_TAG_RANKS = {
    "captcha": 1,
    "uniqueness": 2,
    "liveness": 3,
    "id_verification": 4,
}

POH_SUBMISSION_QUERY = """
  query GetSubmission($address: ID!) {
    submission(id: $address) {
      id
      status
      registered
      submissionTime
      name
    }
  }
"""


async def _send(
    client: Optional[httpx.AsyncClient],
    method: str,
    url: str,
    **kwargs: Any,
) -> httpx.Response:
    if client is not None:
        return await client.request(method, url, **kwargs)
    async with httpx.AsyncClient(timeout=DEFAULT_HTTP_TIMEOUT) as owned:
        return await owned.request(method, url, **kwargs)


def _unexpected_failure(provider: str, label: str, error: Exception) -> VerificationResult:
    logger.warning(f"{label} verification error: {error}")
    return VerificationResult.failure(provider, f"{label} verification failed: {error}")


# -----------------------------------------------------------------------------
# Score Threshold Provider (Gitcoin Passport)
# -----------------------------------------------------------------------------
def passport_verification_level(score: float) -> str:
    if score >= PASSPORT_THRESHOLD_HIGH_TRUST:
        return "high_trust"
    if score >= PASSPORT_THRESHOLD_TRUSTED:
        return "trusted"
    if score >= PASSPORT_THRESHOLD_BASIC:
        return "basic"
    return "insufficient"


def _parse_score(value: Any) -> Optional[float]:
    if isinstance(value, bool) or value is None:
        return None
    try:
        score = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(score) or math.isinf(score):
        return None
    return score


def _stamp_names(stamps: Any) -> List[str]:
    if isinstance(stamps, dict):
        return list(stamps.keys())
    if isinstance(stamps, list):
        return [s.get("provider") for s in stamps if isinstance(s, dict) and s.get("provider")]
    return []


class GitcoinPassportVerifier:
    """
    Verifies a passport holder by fetching their trust score.

    Levels by score: <15 insufficient, 15-24 basic, 25-34 trusted, >=35 high_trust.
    """

    provider = PopProvider.GITCOIN_PASSPORT.value

    def __init__(self, client: Optional[httpx.AsyncClient] = None):
        self._client = client

    async def verify(
        self,
        proof_data: Dict[str, Any],
        config: Optional[Dict[str, Any]] = None,
    ) -> VerificationResult:
        proof_data = proof_data or {}
        config = config or {}

        address = proof_data.get("address")
        if not address:
            return VerificationResult.failure(self.provider, "Address is required")

        api_key = config.get("api_key")
        if not api_key:
            return VerificationResult.failure(self.provider, "Gitcoin Passport API key is required")

        scorer_id = config.get("scorer_id")
        if not scorer_id:
            return VerificationResult.failure(
                self.provider,
                "Gitcoin Passport scorer_id is required (get from developer.passport.xyz)",
            )

        min_score = _parse_score(config.get("min_score", PASSPORT_THRESHOLD_BASIC))
        if min_score is None:
            min_score = float(PASSPORT_THRESHOLD_BASIC)
        api_base = str(config.get("api_base") or PASSPORT_API_BASE).rstrip("/")
        normalized = str(address).lower()

        try:
            response = await _send(
                self._client,
                "GET",
                f"{api_base}/v2/stamps/{scorer_id}/score/{address}",
                headers={"X-API-KEY": api_key, "Content-Type": "application/json"},
            )
            if not response.is_success:
                raise ProviderError(
                    self.provider,
                    f"Gitcoin Passport API error: {response.status_code} {response.text}",
                )

            data = response.json()
            score = _parse_score(data.get("score"))
            if score is None:
                raise ProviderError(self.provider, "Invalid score from Gitcoin Passport")

            level = passport_verification_level(score)
            raw_data = {
                "score": score,
                "address": normalized,
                "timestamp": data.get("last_score_timestamp"),
            }

            if score < min_score:
                logger.info(f"Passport score {score} below {min_score} for {normalized}")
                return VerificationResult.failure(
                    self.provider,
                    f"Score {score} is below minimum threshold {min_score}",
                    unique_id=normalized,
                    verification_level=level,
                    raw_data=raw_data,
                )

            present = _stamp_names(data.get("stamps"))
            for required in config.get("required_stamps") or []:
                if required not in present:
                    return VerificationResult.failure(
                        self.provider,
                        f"Missing required stamp: {required}",
                        unique_id=normalized,
                        verification_level=level,
                        raw_data=raw_data,
                    )

            return VerificationResult(
                success=True,
                provider=self.provider,
                unique_id=normalized,
                verification_level=level,
                raw_data={**raw_data, "status": data.get("status")},
            )

        except ProviderError as e:
            logger.info(f"Gitcoin Passport verification failed: {e.reason}")
            return VerificationResult.failure(self.provider, e.reason, unique_id=e.unique_id)
        except Exception as e:
            return _unexpected_failure(self.provider, "Gitcoin Passport", e)

    def to_human_proof(self, result: VerificationResult, signal: str) -> HumanProof:
        return hashed_human_proof(result, signal)


# -----------------------------------------------------------------------------
# Social Graph Provider (BrightID)
# -----------------------------------------------------------------------------
class BrightIDVerifier:
    """Asks a BrightID node whether a context id belongs to a unique human."""

    provider = PopProvider.BRIGHTID.value

    def __init__(self, client: Optional[httpx.AsyncClient] = None):
        self._client = client

    async def verify(
        self,
        proof_data: Dict[str, Any],
        config: Optional[Dict[str, Any]] = None,
    ) -> VerificationResult:
        proof_data = proof_data or {}
        config = config or {}

        context_id = proof_data.get("context_id")
        if not context_id:
            return VerificationResult.failure(self.provider, "Context ID is required")

        context = config.get("context")
        if not context:
            return VerificationResult.failure(self.provider, "BrightID context is required")

        node_url = str(config.get("node_url") or BRIGHTID_NODE_URL).rstrip("/")

        try:
            response = await _send(
                self._client,
                "GET",
                f"{node_url}/verifications/{context}/{context_id}",
                headers={"Content-Type": "application/json"},
            )
            # The node reports failures in the JSON body, whatever the status
            body = response.json()
            payload = body.get("data") if isinstance(body, dict) else None

            if not isinstance(body, dict) or body.get("error") or not payload:
                message = body.get("errorMessage") if isinstance(body, dict) else None
                raise ProviderError(
                    self.provider,
                    message or "BrightID verification failed",
                    unique_id=context_id,
                )

            if not payload.get("unique"):
                return VerificationResult.failure(
                    self.provider,
                    "User is not verified as unique in BrightID",
                    unique_id=context_id,
                    verification_level="not_unique",
                    raw_data={
                        "context_id": context_id,
                        "context": context,
                        "unique": False,
                        "timestamp": payload.get("timestamp"),
                    },
                )

            return VerificationResult(
                success=True,
                provider=self.provider,
                unique_id=context_id,
                verification_level=payload.get("verification") or "meets",
                raw_data={
                    "context_id": context_id,
                    "context": context,
                    "unique": True,
                    "timestamp": payload.get("timestamp"),
                    "sig": payload.get("sig"),
                },
            )

        except ProviderError as e:
            logger.info(f"BrightID verification failed: {e.reason}")
            return VerificationResult.failure(self.provider, e.reason, unique_id=e.unique_id)
        except Exception as e:
            return _unexpected_failure(self.provider, "BrightID", e)

    def to_human_proof(self, result: VerificationResult, signal: str) -> HumanProof:
        return hashed_human_proof(result, signal)


# -----------------------------------------------------------------------------
# Gateway Pass Provider (Civic)
# -----------------------------------------------------------------------------
def highest_civic_tag(tags: List[str]) -> str:
    highest = "captcha"
    highest_rank = 0
    for tag in tags:
        rank = CIVIC_TAG_RANKS.get(tag, 0)
        if rank > highest_rank:
            highest = tag
            highest_rank = rank
    return highest


def _pass_expired(expiration: Any, now: Optional[datetime] = None) -> bool:
    """
    True when the pass has an expiration in the past.

    Numbers are unix seconds. A string that does not parse is treated as
    never expiring (logged).
    """
    now = now or datetime.now(timezone.utc)
    try:
        if isinstance(expiration, (int, float)) and not isinstance(expiration, bool):
            return datetime.fromtimestamp(expiration, tz=timezone.utc) < now
        return parse_timestamp(expiration) < now
    except (ValueError, OverflowError, OSError):
        logger.warning(f"Unparsable gateway pass expiration {expiration!r}; treating as non-expiring")
        return False


class CivicVerifier:
    """
    Checks a gateway pass presented by the client. No network I/O.

    Level is the highest-ranked tag: captcha < uniqueness < liveness < id_verification.
    """

    provider = PopProvider.CIVIC.value

    async def verify(
        self,
        proof_data: Dict[str, Any],
        config: Optional[Dict[str, Any]] = None,
    ) -> VerificationResult:
        proof_data = proof_data or {}
        config = config or {}

        user_id = proof_data.get("user_id")
        if not user_id:
            return VerificationResult.failure(self.provider, "User ID is required")

        gatekeeper_network = config.get("gatekeeper_network")
        if not gatekeeper_network:
            return VerificationResult.failure(self.provider, "Civic gatekeeper network is required")

        verifications = proof_data.get("verifications")
        if not isinstance(verifications, list) or not verifications:
            return VerificationResult.failure(
                self.provider, "No verifications provided", unique_id=user_id
            )
        if not all(isinstance(tag, str) for tag in verifications):
            return VerificationResult.failure(
                self.provider, "Verifications must be a list of tag names", unique_id=user_id
            )

        expiration = proof_data.get("expiration")
        if expiration and _pass_expired(expiration):
            return VerificationResult.failure(
                self.provider,
                "Gateway pass has expired",
                unique_id=user_id,
                raw_data={
                    "user_id": user_id,
                    "verifications": verifications,
                    "expiration": expiration,
                    "expired": True,
                },
            )

        required_verifications = config.get("required_verifications") or []
        for required in required_verifications:
            if required not in verifications:
                return VerificationResult.failure(
                    self.provider,
                    f"Missing required verification: {required}",
                    unique_id=user_id,
                    raw_data={
                        "user_id": user_id,
                        "verifications": verifications,
                        "required_verifications": list(required_verifications),
                    },
                )

        return VerificationResult(
            success=True,
            provider=self.provider,
            unique_id=user_id,
            verification_level=highest_civic_tag(verifications),
            raw_data={
                "user_id": user_id,
                "gateway_token": proof_data.get("gateway_token"),
                "verifications": verifications,
                "expiration": expiration,
                "gatekeeper_network": gatekeeper_network,
            },
        )

    def to_human_proof(self, result: VerificationResult, signal: str) -> HumanProof:
        return hashed_human_proof(result, signal)


# -----------------------------------------------------------------------------
# Registry Membership Provider (Proof of Humanity)
# -----------------------------------------------------------------------------
def map_poh_status(status: Optional[str], registered: bool) -> str:
    """Map raw subgraph states onto registered/vouching/pending/challenged/removed."""
    if registered and status == "None":
        return "registered"
    if status == "Vouching":
        return "vouching"
    if status in ("PendingRegistration", "PendingRemoval"):
        return "pending"
    if status == "Challenged":
        return "challenged"
    return "registered" if registered else "removed"


class ProofOfHumanityVerifier:
    """Looks up an address in the registry indexer. Only "registered" passes."""

    provider = PopProvider.PROOF_OF_HUMANITY.value

    def __init__(self, client: Optional[httpx.AsyncClient] = None):
        self._client = client

    async def verify(
        self,
        proof_data: Dict[str, Any],
        config: Optional[Dict[str, Any]] = None,
    ) -> VerificationResult:
        proof_data = proof_data or {}
        config = config or {}

        address = proof_data.get("address")
        if not address:
            return VerificationResult.failure(self.provider, "Address is required")

        normalized = str(address).lower()
        subgraph_url = config.get("subgraph_url") or POH_SUBGRAPH_URL

        try:
            response = await _send(
                self._client,
                "POST",
                subgraph_url,
                json={"query": POH_SUBMISSION_QUERY, "variables": {"address": normalized}},
            )
            if not response.is_success:
                raise ProviderError(
                    self.provider,
                    f"Subgraph request failed: {response.status_code}",
                    unique_id=normalized,
                )

            body = response.json()
            errors = body.get("errors")
            if errors:
                raise ProviderError(
                    self.provider,
                    f"Subgraph error: {errors[0].get('message')}",
                    unique_id=normalized,
                )

            submission = (body.get("data") or {}).get("submission")
            if not submission:
                return VerificationResult.failure(
                    self.provider,
                    "Address not found in Proof of Humanity registry",
                    unique_id=normalized,
                    raw_data={"address": normalized, "status": "not_found"},
                )

            status = map_poh_status(submission.get("status"), bool(submission.get("registered")))
            if status != "registered":
                return VerificationResult.failure(
                    self.provider,
                    f"Registration status is '{status}', not 'registered'",
                    unique_id=normalized,
                    verification_level=status,
                    raw_data={
                        "address": normalized,
                        "status": status,
                        "submissionTime": submission.get("submissionTime"),
                    },
                )

            return VerificationResult(
                success=True,
                provider=self.provider,
                unique_id=submission.get("id") or normalized,
                verification_level="registered",
                raw_data={
                    "address": normalized,
                    "status": status,
                    "submissionTime": submission.get("submissionTime"),
                    "name": submission.get("name"),
                },
            )

        except ProviderError as e:
            logger.info(f"Proof of Humanity verification failed: {e.reason}")
            return VerificationResult.failure(self.provider, e.reason, unique_id=e.unique_id)
        except Exception as e:
            return _unexpected_failure(self.provider, "Proof of Humanity", e)

    def to_human_proof(self, result: VerificationResult, signal: str) -> HumanProof:
        return hashed_human_proof(result, signal)


# -----------------------------------------------------------------------------
# Zero-Knowledge Provider (World ID)
# -----------------------------------------------------------------------------
class WorldIDVerifier:
    """
    Checks a zero-knowledge proof with the remote verification service,
    bound to (app_id, action, signal).

    The proof's nullifier is already unlinkable and is used without rehashing.
    """

    provider = PopProvider.WORLD_ID.value

    def __init__(self, client: Optional[httpx.AsyncClient] = None):
        self._client = client

    async def verify(
        self,
        proof_data: Dict[str, Any],
        config: Optional[Dict[str, Any]] = None,
    ) -> VerificationResult:
        proof_data = proof_data or {}
        config = config or {}

        missing = [k for k in ("nullifier_hash", "merkle_root", "proof") if not proof_data.get(k)]
        if missing:
            return VerificationResult.failure(
                self.provider, f"Invalid proof data: missing {', '.join(missing)}"
            )

        app_id = config.get("app_id")
        if not app_id:
            return VerificationResult.failure(self.provider, "World ID app_id is required")
        action = config.get("action")
        if not action:
            return VerificationResult.failure(self.provider, "World ID action is required")

        nullifier_hash = proof_data["nullifier_hash"]
        signal = config.get("signal")
        if signal is None:
            signal = proof_data.get("signal") or ""
        verification_level = proof_data.get("verification_level") or "orb"
        api_base = str(config.get("api_base") or WORLD_ID_API_BASE).rstrip("/")

        try:
            response = await _send(
                self._client,
                "POST",
                f"{api_base}/api/v2/verify/{app_id}",
                json={
                    "nullifier_hash": nullifier_hash,
                    "merkle_root": proof_data["merkle_root"],
                    "proof": proof_data["proof"],
                    "verification_level": verification_level,
                    "action": action,
                    "signal_hash": hash_to_field(signal),
                },
            )
            try:
                body = response.json()
            except ValueError:
                body = {}

            if not response.is_success or body.get("success") is False:
                reason = body.get("detail") or body.get("code") or f"HTTP {response.status_code}"
                raise ProviderError(
                    self.provider,
                    f"World ID verification failed: {reason}",
                    unique_id=nullifier_hash,
                )

            return VerificationResult(
                success=True,
                provider=self.provider,
                unique_id=nullifier_hash,
                verification_level=verification_level,
                raw_data={
                    "merkle_root": proof_data["merkle_root"],
                    "proof": proof_data["proof"],
                    "verification_level": verification_level,
                    "action": action,
                },
            )

        except ProviderError as e:
            logger.info(e.reason)
            return VerificationResult.failure(self.provider, e.reason, unique_id=e.unique_id)
        except Exception as e:
            return _unexpected_failure(self.provider, "World ID", e)

    def to_human_proof(self, result: VerificationResult, signal: str) -> HumanProof:
        if not result.success:
            raise ValueError("Cannot build a human proof from a failed world_id verification")
        return HumanProof(
            method=self.provider,
            verification_level=result.verification_level,
            nullifier_hash=result.unique_id,
            signal=signal,
            provider_proof=result.raw_data,
        )


# -----------------------------------------------------------------------------
# Mock Verifier (non-production only)
# -----------------------------------------------------------------------------
_mock_sequence = itertools.count()


class MockVerifier:
    """
    Always succeeds, for any provider id.

    Every call fabricates a fresh unique_id (time, sequence and random parts)
    so mock approvals never collide.
    """

    def __init__(self, provider: str):
        self.provider = provider

    async def verify(
        self,
        proof_data: Optional[Dict[str, Any]] = None,
        config: Optional[Dict[str, Any]] = None,
    ) -> VerificationResult:
        unique_id = (
            f"mock_{self.provider}_{time.time_ns()}_"
            f"{next(_mock_sequence)}_{secrets.token_hex(6)}"
        )
        logger.warning(f"Mock verification for {self.provider} - not for production use")
        return VerificationResult(
            success=True,
            provider=self.provider,
            unique_id=unique_id,
            verification_level="mock",
            raw_data={"mock": True, "timestamp": utc_now_iso()},
        )

    def to_human_proof(self, result: VerificationResult, signal: str) -> HumanProof:
        return HumanProof(
            method=self.provider,
            verification_level="mock",
            nullifier_hash=derive_nullifier(self.provider, result.unique_id),
            signal=signal,
            provider_proof=result.raw_data,
        )
