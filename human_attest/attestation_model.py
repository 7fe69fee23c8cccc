"""
Attestation Data Model

Frozen dataclasses for the attestation document and its parts.

INVARIANTS:
- Attestations are created once and never mutated; derived copies are built
  with dataclasses.replace or append_chain_record
- Optional fields that are absent are omitted from the wire form, never
  serialized as null
- Unknown action and provider strings are accepted (forward compatible)
- from_dict is lenient: malformed wire documents still load so that
  validation can report every problem at once
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Dict, Any

from . import ATTESTATION_VERSION, ATTESTATION_TYPE


# -----------------------------------------------------------------------------
# Known Values (open sets - any string is accepted)
# -----------------------------------------------------------------------------
class ApprovalAction(str, Enum):
    """Known approval actions."""
    PR_MERGE = "PR_MERGE"
    RELEASE = "RELEASE"
    DEPLOY = "DEPLOY"
    GENERIC = "GENERIC"


class PopProvider(str, Enum):
    """Known proof-of-personhood providers."""
    WORLD_ID = "world_id"
    GITCOIN_PASSPORT = "gitcoin_passport"
    PROOF_OF_HUMANITY = "proof_of_humanity"
    CIVIC = "civic"
    BRIGHTID = "brightid"


def _drop_none(data: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in data.items() if v is not None}


def _enum_value(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


# -----------------------------------------------------------------------------
# Approval Subject
# -----------------------------------------------------------------------------
@dataclass(frozen=True)
class ApprovalSubject:
    """What is being approved. VCS-agnostic."""
    repository: str
    commit_sha: str
    action: str = ApprovalAction.GENERIC.value
    ref_number: Optional[int] = None
    description: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return _drop_none({
            "repository": self.repository,
            "commit_sha": self.commit_sha,
            "ref_number": self.ref_number,
            "action": _enum_value(self.action),
            "description": self.description,
            "metadata": self.metadata,
        })

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ApprovalSubject":
        return cls(
            repository=data.get("repository"),
            commit_sha=data.get("commit_sha"),
            action=data.get("action"),
            ref_number=data.get("ref_number"),
            description=data.get("description"),
            metadata=data.get("metadata"),
        )


# -----------------------------------------------------------------------------
# Human Proof
# -----------------------------------------------------------------------------
@dataclass(frozen=True)
class HumanProof:
    """
    Provider-agnostic evidence of human verification.

    nullifier_hash is a one-way identity commitment scoped to the action.
    signal is the value the proof is bound to (normally the commit SHA) and
    may be the empty string, but never absent.
    """
    method: str
    nullifier_hash: str
    signal: str
    verification_level: Optional[str] = None
    provider_proof: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return _drop_none({
            "method": _enum_value(self.method),
            "verification_level": self.verification_level,
            "nullifier_hash": self.nullifier_hash,
            "signal": self.signal,
            "provider_proof": self.provider_proof,
        })

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HumanProof":
        return cls(
            method=data.get("method"),
            nullifier_hash=data.get("nullifier_hash"),
            signal=data.get("signal"),
            verification_level=data.get("verification_level"),
            provider_proof=data.get("provider_proof"),
        )


# -----------------------------------------------------------------------------
# Chain Record / Signature
# -----------------------------------------------------------------------------
@dataclass(frozen=True)
class ChainRecord:
    """Reference to an on-chain write, appended after the ledger confirms it."""
    chain_id: int
    tx_hash: str
    block_number: int
    contract_address: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return _drop_none({
            "chain_id": self.chain_id,
            "tx_hash": self.tx_hash,
            "block_number": self.block_number,
            "contract_address": self.contract_address,
        })

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChainRecord":
        return cls(
            chain_id=data["chain_id"],
            tx_hash=data["tx_hash"],
            block_number=data["block_number"],
            contract_address=data.get("contract_address"),
        )


@dataclass(frozen=True)
class AttestationSignature:
    algorithm: str
    value: str
    signer: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return _drop_none({
            "algorithm": self.algorithm,
            "value": self.value,
            "signer": self.signer,
        })

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AttestationSignature":
        return cls(
            algorithm=data["algorithm"],
            value=data["value"],
            signer=data.get("signer"),
        )


# -----------------------------------------------------------------------------
# Attestation
# -----------------------------------------------------------------------------
@dataclass(frozen=True)
class Attestation:
    """
    Immutable record that a specific human approved a specific commit.

    attestation_hash covers {version, type, subject, human_proof, timestamp}
    only. chain_record and signature may be present without affecting it.
    """
    subject: ApprovalSubject
    human_proof: HumanProof
    timestamp: str  # ISO-8601
    version: str = ATTESTATION_VERSION
    type: str = ATTESTATION_TYPE
    attestation_hash: Optional[str] = None
    chain_record: Optional[ChainRecord] = None
    signature: Optional[AttestationSignature] = None

    def to_dict(self) -> Dict[str, Any]:
        return _drop_none({
            "version": self.version,
            "type": self.type,
            "subject": self.subject.to_dict() if self.subject is not None else None,
            "human_proof": self.human_proof.to_dict() if self.human_proof is not None else None,
            "timestamp": self.timestamp,
            "attestation_hash": self.attestation_hash,
            "chain_record": self.chain_record.to_dict() if self.chain_record else None,
            "signature": self.signature.to_dict() if self.signature else None,
        })

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Attestation":
        subject = data.get("subject")
        human_proof = data.get("human_proof")
        chain_record = data.get("chain_record")
        signature = data.get("signature")
        return cls(
            version=data.get("version"),
            type=data.get("type"),
            subject=ApprovalSubject.from_dict(subject) if isinstance(subject, dict) else None,
            human_proof=HumanProof.from_dict(human_proof) if isinstance(human_proof, dict) else None,
            timestamp=data.get("timestamp"),
            attestation_hash=data.get("attestation_hash"),
            chain_record=ChainRecord.from_dict(chain_record) if isinstance(chain_record, dict) else None,
            signature=AttestationSignature.from_dict(signature) if isinstance(signature, dict) else None,
        )
