"""
Error taxonomy for attestations, providers, the registry and the approval gate.

Every error carries a stable `code`, a readable `message` and structured
`details` so callers can branch without parsing messages.
"""

from typing import Any, Dict, List, Optional


class AttestationError(Exception):
    """Base error with structured details."""
    def __init__(self, code: str, message: str, details: Dict[str, Any] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": True,
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class AttestationValidationError(AttestationError):
    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__(
            code="VALIDATION_FAILED",
            message="Attestation validation failed: " + "; ".join(self.errors),
            details={"errors": self.errors}
        )


class AttestationIntegrityError(AttestationError):
    """The recomputed hash does not match attestation_hash. Never repairable."""
    def __init__(self, expected: Optional[str], actual: Optional[str]):
        super().__init__(
            code="HASH_MISMATCH",
            message="Hash mismatch - attestation data may have been tampered",
            details={"expected": expected, "actual": actual}
        )


class ChainRecordError(AttestationError):
    def __init__(self, attestation_hash: Optional[str]):
        super().__init__(
            code="CHAIN_RECORD_EXISTS",
            message="Attestation already carries a chain record",
            details={"attestation_hash": attestation_hash}
        )


class ProviderError(AttestationError):
    """
    Raised inside a provider and converted to a failed VerificationResult
    at the verify() boundary.
    """
    def __init__(self, provider: str, reason: str, unique_id: str = ""):
        self.provider = provider
        self.reason = reason
        self.unique_id = unique_id
        super().__init__(
            code="PROVIDER_FAILED",
            message=reason,
            details={"provider": provider}
        )


class VerifierRegistryError(AttestationError):
    def __init__(self, provider: str):
        super().__init__(
            code="PROVIDER_NOT_REGISTERED",
            message=f"No verifier registered for provider: {provider}",
            details={"provider": provider}
        )


class ApprovalTimeoutError(AttestationError):
    def __init__(self, repository: str, commit_sha: str, timeout_seconds: float):
        super().__init__(
            code="APPROVAL_TIMED_OUT",
            message=(
                f"Timed out waiting for approval of {repository}@{commit_sha[:7]} "
                f"after {timeout_seconds:g}s"
            ),
            details={
                "repository": repository,
                "commit_sha": commit_sha,
                "timeout_seconds": timeout_seconds,
            }
        )
