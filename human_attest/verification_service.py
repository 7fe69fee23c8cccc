"""
Verification Service

Server-side flow for one approval attempt:
provider lookup -> verify -> human proof -> attestation -> store.

A failed verification never reaches the store and never produces an
attestation.
"""

import logging
from dataclasses import dataclass, replace
from typing import Optional, Dict, Any, Callable

from .approval_store import ApprovalStore
from .attestation_codec import compute_signal, create_attestation
from .attestation_model import ApprovalAction, ApprovalSubject, Attestation
from .errors import VerifierRegistryError
from .verifier_registry import VerifierRegistry

logger = logging.getLogger("verification_service")


@dataclass
class VerificationOutcome:
    success: bool
    provider: str
    attestation: Optional[Attestation] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        if self.success:
            return {
                "success": True,
                "provider": self.provider,
                "attestation": self.attestation.to_dict(),
            }
        return {"success": False, "provider": self.provider, "error": self.error}


def _subject_errors(subject: Dict[str, Any]) -> Optional[str]:
    for name in ("repository", "commit_sha"):
        value = subject.get(name)
        if not isinstance(value, str) or not value:
            return f"Missing subject.{name}"
    return None


class VerificationService:
    def __init__(
        self,
        registry: VerifierRegistry,
        store: ApprovalStore,
        provider_config: Optional[Callable[[str], Dict[str, Any]]] = None,
    ):
        """
        Args:
            registry: Verifier lookup
            store: Where successful attestations are recorded
            provider_config: provider id -> config dict (credentials, thresholds)
        """
        self.registry = registry
        self.store = store
        self._provider_config = provider_config or (lambda provider: {})

    async def submit(
        self,
        provider: str,
        proof: Dict[str, Any],
        subject: Dict[str, Any],
        signal: Optional[str] = None,
    ) -> VerificationOutcome:
        subject_error = _subject_errors(subject or {})
        if subject_error:
            return VerificationOutcome(success=False, provider=provider, error=subject_error)

        try:
            verifier = self.registry.get_verifier(provider)
        except VerifierRegistryError as e:
            return VerificationOutcome(success=False, provider=provider, error=e.message)

        approval_subject = ApprovalSubject.from_dict(subject)
        if not approval_subject.action:
            approval_subject = replace(approval_subject, action=ApprovalAction.GENERIC.value)

        # The proof is checked against the same signal the attestation records
        if signal is None:
            signal = compute_signal(approval_subject.repository, approval_subject.commit_sha)
        config = dict(self._provider_config(provider))
        config["signal"] = signal

        result = await verifier.verify(proof or {}, config)
        if not result.success:
            logger.info(f"Verification failed for {provider}: {result.error}")
            return VerificationOutcome(success=False, provider=provider, error=result.error)

        human_proof = verifier.to_human_proof(result, signal)
        attestation = create_attestation(approval_subject, human_proof)

        record = self.store.record(attestation)
        return VerificationOutcome(success=True, provider=provider, attestation=record.attestation)
