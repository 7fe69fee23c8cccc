"""
Verification Data Models

The provider contract and the transient VerificationResult.

CRITICAL CONSTRAINTS:
- VerificationResult lives only inside a single verify() call and its
  conversion to a HumanProof; it is never persisted
- verify() NEVER raises - every failure is a result with success=False
- Failed verifications are not retried here; retry policy is the caller's
- The raw identity handle (unique_id) never reaches the HumanProof, only a
  one-way hash of it (the ZK provider's nullifier is already unlinkable)
"""

from dataclasses import dataclass
from typing import Optional, Dict, Any, Protocol, runtime_checkable

from .attestation_codec import sha256_hex
from .attestation_model import HumanProof


# -----------------------------------------------------------------------------
# Verification Result (Frozen - Transient)
# -----------------------------------------------------------------------------
@dataclass(frozen=True)
class VerificationResult:
    success: bool
    provider: str
    unique_id: str = ""
    verification_level: Optional[str] = None
    raw_data: Optional[Dict[str, Any]] = None
    error: Optional[str] = None

    @classmethod
    def failure(
        cls,
        provider: str,
        error: str,
        unique_id: str = "",
        verification_level: Optional[str] = None,
        raw_data: Optional[Dict[str, Any]] = None,
    ) -> "VerificationResult":
        return cls(
            success=False,
            provider=provider,
            unique_id=unique_id,
            verification_level=verification_level,
            raw_data=raw_data,
            error=error,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "provider": self.provider,
            "unique_id": self.unique_id,
            "verification_level": self.verification_level,
            "raw_data": self.raw_data,
            "error": self.error,
        }


# -----------------------------------------------------------------------------
# Provider Contract
# -----------------------------------------------------------------------------
@runtime_checkable
class ProviderVerifier(Protocol):
    """Contract shared by every provider. Providers hold no per-call state."""

    provider: str

    async def verify(
        self,
        proof_data: Dict[str, Any],
        config: Optional[Dict[str, Any]] = None,
    ) -> VerificationResult:
        ...

    def to_human_proof(self, result: VerificationResult, signal: str) -> HumanProof:
        ...


def derive_nullifier(provider: str, unique_id: str) -> str:
    """Privacy-preserving nullifier for providers without a native one."""
    return sha256_hex(f"{provider}:{unique_id}")


def hashed_human_proof(result: VerificationResult, signal: str) -> HumanProof:
    """HumanProof whose nullifier is derived from provider and unique_id."""
    if not result.success:
        raise ValueError(
            f"Cannot build a human proof from a failed {result.provider} verification"
        )
    return HumanProof(
        method=result.provider,
        verification_level=result.verification_level,
        nullifier_hash=derive_nullifier(result.provider, result.unique_id),
        signal=signal,
        provider_proof=result.raw_data,
    )
