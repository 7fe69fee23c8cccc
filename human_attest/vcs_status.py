"""
VCS Status Publishing

Markers the approval workflow leaves on the commit under review:
- a commit status (pending -> success | failure)
- a commit comment carrying the approval link, edited in place on completion

Publishing is best effort. Callers log publisher failures; they never change
the outcome of an approval.
"""

import logging
from datetime import datetime, timezone
from typing import Optional, Dict, Any, Protocol

import httpx

from .attestation_model import Attestation

logger = logging.getLogger("vcs_status")

GITHUB_API_BASE = "https://api.github.com"
STATUS_CONTEXT = "human-attest/approval"


class StatusPublisher(Protocol):
    async def publish_pending(self, approval_url: str) -> None:
        ...

    async def publish_success(self, attestation: Attestation) -> None:
        ...

    async def publish_failure(self, reason: str) -> None:
        ...


# -----------------------------------------------------------------------------
# Comment Bodies
# -----------------------------------------------------------------------------
def pending_comment_body(approval_url: str) -> str:
    return (
        "## Human Approval Required\n\n"
        "This commit requires verification by a unique human before the pipeline continues.\n\n"
        f"**[Approve this commit]({approval_url})**\n\n"
        "### Status\n"
        "Waiting for approval..."
    )


def success_comment_body(attestation: Attestation) -> str:
    proof = attestation.human_proof
    return (
        "## Human Approval Verified\n\n"
        f"This commit was approved by a verified human via `{proof.method}`.\n\n"
        "### Attestation Details\n"
        f"- **Hash:** `{attestation.attestation_hash}`\n"
        f"- **Nullifier:** `{proof.nullifier_hash[:20]}...`\n"
        f"- **Verified at:** {attestation.timestamp}"
    )


def failure_comment_body(reason: str) -> str:
    return (
        "## Human Approval Not Completed\n\n"
        f"{reason}\n\n"
        "### Next Steps\n"
        "- Re-run the pipeline to request approval again"
    )


# -----------------------------------------------------------------------------
# GitHub
# -----------------------------------------------------------------------------
class GitHubStatusPublisher:
    """Commit status and comment via the GitHub REST API."""

    def __init__(
        self,
        token: str,
        repository: str,
        commit_sha: str,
        api_url: str = GITHUB_API_BASE,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.repository = repository
        self.commit_sha = commit_sha
        self.api_url = api_url.rstrip("/")
        self._client = client
        self._headers = {
            "Authorization": f"token {token}",
            "Accept": "application/vnd.github.v3+json",
        }
        self.comment_id: Optional[int] = None

    async def _request(self, method: str, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{self.api_url}{path}"
        if self._client is not None:
            response = await self._client.request(method, url, json=payload, headers=self._headers)
        else:
            async with httpx.AsyncClient(timeout=30.0) as client:
                response = await client.request(method, url, json=payload, headers=self._headers)
        response.raise_for_status()
        return response.json() if response.content else {}

    async def _set_status(self, state: str, description: str, target_url: Optional[str] = None) -> None:
        payload = {
            "state": state,
            "context": STATUS_CONTEXT,
            # GitHub rejects descriptions over 140 characters
            "description": description[:140],
        }
        if target_url:
            payload["target_url"] = target_url
        await self._request(
            "POST", f"/repos/{self.repository}/statuses/{self.commit_sha}", payload
        )
        logger.info(f"Set {STATUS_CONTEXT} to {state} on {self.repository}@{self.commit_sha[:7]}")

    async def _update_comment(self, body: str) -> None:
        if self.comment_id is None:
            return
        await self._request(
            "PATCH", f"/repos/{self.repository}/comments/{self.comment_id}", {"body": body}
        )

    async def publish_pending(self, approval_url: str) -> None:
        await self._set_status("pending", "Waiting for human approval", approval_url)
        data = await self._request(
            "POST",
            f"/repos/{self.repository}/commits/{self.commit_sha}/comments",
            {"body": pending_comment_body(approval_url)},
        )
        self.comment_id = data.get("id")
        logger.info(f"Created approval comment: {data.get('html_url')}")

    async def publish_success(self, attestation: Attestation) -> None:
        await self._set_status(
            "success",
            f"Approved by verified human ({attestation.attestation_hash[:10]}...)",
        )
        await self._update_comment(success_comment_body(attestation))

    async def publish_failure(self, reason: str) -> None:
        await self._set_status("failure", reason)
        await self._update_comment(failure_comment_body(reason))


# -----------------------------------------------------------------------------
# Log Only
# -----------------------------------------------------------------------------
class LoggingStatusPublisher:
    """Used when no VCS token is configured."""

    def __init__(self):
        self.events = []

    async def publish_pending(self, approval_url: str) -> None:
        self.events.append(("pending", approval_url))
        logger.info("=" * 60)
        logger.info("HUMAN APPROVAL REQUIRED")
        logger.info(f"Approval URL: {approval_url}")
        logger.info("=" * 60)

    async def publish_success(self, attestation: Attestation) -> None:
        self.events.append(("success", attestation.attestation_hash))
        logger.info("=" * 60)
        logger.info("HUMAN APPROVAL VERIFIED")
        logger.info(f"Attestation Hash: {attestation.attestation_hash}")
        logger.info(f"Nullifier Hash: {attestation.human_proof.nullifier_hash}")
        logger.info(f"Verified At: {attestation.timestamp}")
        logger.info(f"Logged At: {datetime.now(timezone.utc).isoformat()}")
        logger.info("=" * 60)

    async def publish_failure(self, reason: str) -> None:
        self.events.append(("failure", reason))
        logger.error(f"Human approval failed: {reason}")
