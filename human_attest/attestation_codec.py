"""
Attestation Codec

Canonicalization, hashing, validation and (de)serialization of
human approval attestations.

INVARIANTS (the attestation hash depends on these):
- Canonical form contains ONLY {version, type, subject, human_proof, timestamp}
- Top-level, subject and human_proof fields are emitted in a FIXED order
- Nested object keys (metadata, provider_proof, ...) are recursively sorted
- attestation_hash, chain_record and signature are NEVER part of the canonical form
- Canonical JSON is compact and not ASCII-escaped
- attestation_hash = "0x" + lowercase hex SHA-256 of the canonical form

Validation aggregates every structural problem (never fail-fast). The hash is
recomputed only when the document is structurally valid, and a mismatch is
reported as its own distinct error.

Unknown actions and provider methods are NOT errors.
"""

import hashlib
import json
import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List, Tuple, Union

from . import ATTESTATION_VERSION, ATTESTATION_TYPE
from .attestation_model import (
    ApprovalSubject,
    Attestation,
    ChainRecord,
    HumanProof,
)
from .errors import (
    AttestationIntegrityError,
    AttestationValidationError,
    ChainRecordError,
)

logger = logging.getLogger("attestation_codec")

# -----------------------------------------------------------------------------
# Constants
# -----------------------------------------------------------------------------
SUBJECT_FIELD_ORDER = (
    "repository",
    "commit_sha",
    "ref_number",
    "action",
    "description",
    "metadata",
)

HUMAN_PROOF_FIELD_ORDER = (
    "method",
    "verification_level",
    "nullifier_hash",
    "signal",
    "provider_proof",
)

HASH_MISMATCH_ERROR = "Hash mismatch - attestation data may have been tampered"

# Ordinal trust scale used for on-chain storage
VERIFICATION_LEVEL_ORDINALS = {
    "device": 0,
    "orb": 1,
    "secure_document": 2,
    "document": 2,
}
ORDINAL_VERIFICATION_LEVELS = ("device", "orb", "secure_document")

AttestationLike = Union[Attestation, Dict[str, Any]]


# -----------------------------------------------------------------------------
# Hash Primitives
# -----------------------------------------------------------------------------
def sha256_hex(data: Union[str, bytes]) -> str:
    """SHA-256 as a 0x-prefixed lowercase hex string."""
    if isinstance(data, str):
        data = data.encode("utf-8")
    return "0x" + hashlib.sha256(data).hexdigest()


def compute_signal(repository: str, commit_sha: str) -> str:
    """Signal binding a proof to one repository and commit."""
    return sha256_hex(f"{repository}:{commit_sha}")


def get_attestation_key(repository: str, commit_sha: str) -> str:
    """Storage key for an attestation."""
    return f"{repository}:{commit_sha}"


# -----------------------------------------------------------------------------
# Canonicalization
# -----------------------------------------------------------------------------
def _as_dict(attestation: AttestationLike) -> Dict[str, Any]:
    if isinstance(attestation, Attestation):
        return attestation.to_dict()
    if isinstance(attestation, dict):
        return attestation
    raise TypeError(f"Expected Attestation or dict, got {type(attestation).__name__}")


def _sort_keys(value: Any) -> Any:
    if isinstance(value, dict):
        return {key: _sort_keys(value[key]) for key in sorted(value)}
    if isinstance(value, (list, tuple)):
        return [_sort_keys(item) for item in value]
    return value


def _ordered_fields(source: Any, field_order: Tuple[str, ...]) -> Any:
    if not isinstance(source, dict):
        return source
    ordered: Dict[str, Any] = {}
    for name in field_order:
        value = source.get(name)
        if value is not None:
            ordered[name] = _sort_keys(value)
    return ordered


def canonicalize_attestation(attestation: AttestationLike) -> str:
    """
    Deterministic JSON encoding used for hashing.

    The output is independent of the input's field order and never contains
    attestation_hash, chain_record or signature.
    """
    data = _as_dict(attestation)

    canonical: Dict[str, Any] = {}
    for name, value in (
        ("version", data.get("version")),
        ("type", data.get("type")),
        ("subject", _ordered_fields(data.get("subject"), SUBJECT_FIELD_ORDER)),
        ("human_proof", _ordered_fields(data.get("human_proof"), HUMAN_PROOF_FIELD_ORDER)),
        ("timestamp", data.get("timestamp")),
    ):
        if value is not None:
            canonical[name] = value

    return json.dumps(canonical, separators=(",", ":"), ensure_ascii=False, allow_nan=False)


def compute_attestation_hash(attestation: AttestationLike) -> str:
    """Protocol-standard hash: 0x + hex(sha256(canonical form))."""
    return sha256_hex(canonicalize_attestation(attestation))


# -----------------------------------------------------------------------------
# Creation
# -----------------------------------------------------------------------------
def utc_now_iso() -> str:
    """Current time as ISO-8601 with millisecond precision and a Z suffix."""
    now = datetime.now(timezone.utc)
    return now.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_timestamp(value: Any) -> datetime:
    """Parse an ISO-8601 timestamp. Raises ValueError on anything else."""
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"Not an ISO-8601 timestamp: {value!r}")
    text = value.strip()
    if text[-1] in ("Z", "z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def create_attestation(
    subject: Union[ApprovalSubject, Dict[str, Any]],
    proof: Union[HumanProof, Dict[str, Any]],
    timestamp: Optional[str] = None,
) -> Attestation:
    """
    Create an attestation stamped with the current time and its hash.

    Called exactly once per successful provider verification.
    """
    if isinstance(subject, dict):
        subject = ApprovalSubject.from_dict(subject)
    if isinstance(proof, dict):
        proof = HumanProof.from_dict(proof)

    unsigned = Attestation(
        subject=subject,
        human_proof=proof,
        timestamp=timestamp or utc_now_iso(),
    )
    attestation = replace(unsigned, attestation_hash=compute_attestation_hash(unsigned))
    logger.info(
        f"Created attestation {attestation.attestation_hash} for "
        f"{subject.repository}@{subject.commit_sha} via {proof.method}"
    )
    return attestation


def append_chain_record(attestation: Attestation, record: ChainRecord) -> Attestation:
    """Return a copy carrying `record`. A chain record is appended at most once."""
    if attestation.chain_record is not None:
        raise ChainRecordError(attestation.attestation_hash)
    return replace(attestation, chain_record=record)


# -----------------------------------------------------------------------------
# Validation
# -----------------------------------------------------------------------------
@dataclass(frozen=True)
class ValidationReport:
    """Outcome of validate_attestation()."""
    valid: bool
    errors: Tuple[str, ...]

    @property
    def hash_mismatch(self) -> bool:
        return HASH_MISMATCH_ERROR in self.errors

    def to_dict(self) -> Dict[str, Any]:
        return {"valid": self.valid, "errors": list(self.errors)}


def _check_required_str(section: Dict[str, Any], prefix: str, name: str, errors: List[str]) -> None:
    value = section.get(name)
    if value is None or value == "":
        errors.append(f"Missing {prefix}.{name}")
    elif not isinstance(value, str):
        errors.append(f"Invalid {prefix}.{name}")


def validate_attestation(attestation: AttestationLike) -> ValidationReport:
    """
    Validate structure, then hash integrity.

    Structural problems are aggregated. The hash is only recomputed when
    the structure is valid and attestation_hash is present.
    """
    try:
        data = _as_dict(attestation)
    except TypeError:
        return ValidationReport(valid=False, errors=("Attestation must be an object",))

    errors: List[str] = []

    if data.get("version") != ATTESTATION_VERSION:
        errors.append(f"Unknown version: {data.get('version')}")

    if data.get("type") != ATTESTATION_TYPE:
        errors.append(f"Invalid type: {data.get('type')}")

    subject = data.get("subject")
    if not isinstance(subject, dict):
        errors.append("Missing subject")
        subject = {}
    for name in ("repository", "commit_sha", "action"):
        _check_required_str(subject, "subject", name, errors)

    proof = data.get("human_proof")
    if not isinstance(proof, dict):
        errors.append("Missing human_proof")
        proof = {}
    for name in ("method", "nullifier_hash"):
        _check_required_str(proof, "human_proof", name, errors)
    # signal may be empty but must be present
    if proof.get("signal") is None:
        errors.append("Missing human_proof.signal")
    elif not isinstance(proof.get("signal"), str):
        errors.append("Invalid human_proof.signal")

    timestamp = data.get("timestamp")
    if not timestamp:
        errors.append("Missing timestamp")
    else:
        try:
            parse_timestamp(timestamp)
        except ValueError:
            errors.append("Invalid timestamp format")

    claimed_hash = data.get("attestation_hash")
    if claimed_hash and not errors:
        try:
            computed_hash = compute_attestation_hash(data)
        except (TypeError, ValueError):
            # provider_proof or metadata holds something JSON cannot encode
            computed_hash = None
        if computed_hash != claimed_hash:
            errors.append(HASH_MISMATCH_ERROR)

    return ValidationReport(valid=not errors, errors=tuple(errors))


def is_valid_attestation(attestation: AttestationLike) -> bool:
    return validate_attestation(attestation).valid


def assert_valid_attestation(attestation: AttestationLike) -> None:
    """
    Raise unless the attestation is valid.

    Raises:
        AttestationIntegrityError: hash mismatch (reject outright)
        AttestationValidationError: structural problems
    """
    report = validate_attestation(attestation)
    if report.valid:
        return
    if report.hash_mismatch:
        data = _as_dict(attestation)
        raise AttestationIntegrityError(
            expected=data.get("attestation_hash"),
            actual=_safe_hash(data),
        )
    raise AttestationValidationError(list(report.errors))


def _safe_hash(data: Dict[str, Any]) -> Optional[str]:
    try:
        return compute_attestation_hash(data)
    except (TypeError, ValueError):
        return None


# -----------------------------------------------------------------------------
# Verification Level Ordinals
# -----------------------------------------------------------------------------
def verification_level_to_number(level: Optional[str]) -> int:
    """Map a level to its ordinal. Unrecognized levels fail low (0)."""
    if not isinstance(level, str):
        return 0
    return VERIFICATION_LEVEL_ORDINALS.get(level, 0)


def number_to_verification_level(number: int) -> str:
    """Map an ordinal back to a level. Out-of-range maps to "device"."""
    if isinstance(number, bool) or not isinstance(number, int):
        return ORDINAL_VERIFICATION_LEVELS[0]
    if 0 <= number < len(ORDINAL_VERIFICATION_LEVELS):
        return ORDINAL_VERIFICATION_LEVELS[number]
    return ORDINAL_VERIFICATION_LEVELS[0]


# -----------------------------------------------------------------------------
# Serialization
# -----------------------------------------------------------------------------
def serialize_attestation(attestation: Attestation) -> str:
    """Compact JSON wire form (all fields, including hash and chain record)."""
    return json.dumps(attestation.to_dict(), separators=(",", ":"), ensure_ascii=False)


def serialize_attestation_pretty(attestation: Attestation) -> str:
    return json.dumps(attestation.to_dict(), indent=2, ensure_ascii=False)


def parse_attestation(text: str) -> Attestation:
    """
    Parse the JSON wire form.

    Parsing does not validate; call validate_attestation() on the result.
    """
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise AttestationValidationError([f"Invalid JSON: {e.msg}"])

    if not isinstance(data, dict):
        raise AttestationValidationError(["Attestation must be a JSON object"])

    try:
        return Attestation.from_dict(data)
    except (KeyError, TypeError) as e:
        raise AttestationValidationError([f"Malformed attestation field: {e}"])
