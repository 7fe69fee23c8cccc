"""
Ledger Encoding

Encodes attestations into the argument shapes an on-chain registry expects,
and defines the boundary of the ledger adapter.

The ledger hash is keccak-256 over tightly packed fields. It is a DIFFERENT
digest from the protocol-standard SHA-256 attestation_hash: the two are never
interchangeable and each must stay independently reproducible.

Transaction signing and RPC transport live in the adapter implementation,
not here.
"""

import logging
import re
from dataclasses import dataclass
from typing import Optional, Dict, Any, List, Protocol, Sequence, Union

from Crypto.Hash import keccak

from .attestation_codec import (
    append_chain_record,
    parse_timestamp,
    verification_level_to_number,
)
from .attestation_model import Attestation, ChainRecord

logger = logging.getLogger("ledger_encoding")

_HEX_RE = re.compile(r"^0x[0-9a-fA-F]*$")
_BYTES32_RE = re.compile(r"^0x[0-9a-fA-F]{64}$")


# -----------------------------------------------------------------------------
# Primitives
# -----------------------------------------------------------------------------
def keccak256(data: bytes) -> bytes:
    digest = keccak.new(digest_bits=256)
    digest.update(data)
    return digest.digest()


def keccak256_hex(data: bytes) -> str:
    return "0x" + keccak256(data).hex()


def is_hex_string(value: str) -> bool:
    return isinstance(value, str) and bool(_HEX_RE.match(value))


def is_bytes32(value: str) -> bool:
    return isinstance(value, str) and bool(_BYTES32_RE.match(value))


def encode_packed(types: Sequence[str], values: Sequence[Any]) -> bytes:
    """Solidity abi.encodePacked for string, uint256 and bytes32."""
    if len(types) != len(values):
        raise ValueError("types and values must have the same length")

    packed = bytearray()
    for abi_type, value in zip(types, values):
        if abi_type == "string":
            packed += value.encode("utf-8")
        elif abi_type == "uint256":
            if value < 0:
                raise ValueError(f"uint256 cannot be negative: {value}")
            packed += int(value).to_bytes(32, "big")
        elif abi_type == "bytes32":
            if not is_bytes32(value):
                raise ValueError(f"Not a bytes32 value: {value!r}")
            packed += bytes.fromhex(value[2:])
        else:
            raise ValueError(f"Unsupported packed type: {abi_type}")
    return bytes(packed)


def hash_to_field(value: Union[str, bytes]) -> str:
    """
    Map a signal into the proof system's field: keccak-256 shifted right by
    8 bits. Hex strings are hashed as the bytes they encode.
    """
    if isinstance(value, str):
        if is_hex_string(value) and len(value) % 2 == 0:
            data = bytes.fromhex(value[2:])
        else:
            data = value.encode("utf-8")
    else:
        data = value
    field_value = int.from_bytes(keccak256(data), "big") >> 8
    return "0x" + format(field_value, "064x")


# -----------------------------------------------------------------------------
# Conversions
# -----------------------------------------------------------------------------
def commit_sha_to_bytes32(commit_sha: str) -> str:
    """Right-pad a commit SHA with zeros to 32 bytes."""
    clean = commit_sha[2:] if commit_sha.startswith("0x") else commit_sha
    if len(clean) > 64 or not re.fullmatch(r"[0-9a-fA-F]*", clean):
        raise ValueError(f"Commit SHA cannot be encoded as bytes32: {commit_sha!r}")
    return "0x" + clean.ljust(64, "0")


def nullifier_to_bytes32(nullifier: str) -> str:
    if nullifier.startswith("0x"):
        return nullifier
    return "0x" + nullifier


def _unix_seconds(timestamp: str) -> int:
    return int(parse_timestamp(timestamp).timestamp())


def compute_ledger_attestation_hash(attestation: Attestation) -> str:
    """keccak256(encodePacked(repository, commit_sha, nullifier, signal, unix_ts))."""
    return keccak256_hex(encode_packed(
        ["string", "string", "string", "string", "uint256"],
        [
            attestation.subject.repository,
            attestation.subject.commit_sha,
            attestation.human_proof.nullifier_hash,
            attestation.human_proof.signal,
            _unix_seconds(attestation.timestamp),
        ],
    ))


def compute_ledger_signal(repository: str, commit_sha: str) -> str:
    return keccak256_hex(encode_packed(["string", "string"], [repository, commit_sha]))


@dataclass(frozen=True)
class LedgerAttestationArgs:
    """Arguments for the registry's record call."""
    attestation_hash: str
    repository: str
    commit_sha: str  # bytes32
    nullifier_hash: str  # bytes32
    verification_level: int
    timestamp: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "attestation_hash": self.attestation_hash,
            "repository": self.repository,
            "commit_sha": self.commit_sha,
            "nullifier_hash": self.nullifier_hash,
            "verification_level": self.verification_level,
            "timestamp": self.timestamp,
        }


def to_ledger_args(attestation: Attestation) -> LedgerAttestationArgs:
    return LedgerAttestationArgs(
        attestation_hash=compute_ledger_attestation_hash(attestation),
        repository=attestation.subject.repository,
        commit_sha=commit_sha_to_bytes32(attestation.subject.commit_sha),
        nullifier_hash=nullifier_to_bytes32(attestation.human_proof.nullifier_hash),
        verification_level=verification_level_to_number(attestation.human_proof.verification_level),
        timestamp=_unix_seconds(attestation.timestamp),
    )


# -----------------------------------------------------------------------------
# Adapter Boundary
# -----------------------------------------------------------------------------
@dataclass(frozen=True)
class LedgerReceipt:
    chain_id: int
    tx_hash: str
    block_number: int
    contract_address: Optional[str] = None


class LedgerAdapter(Protocol):
    """Read/write surface of an on-chain attestation registry."""

    async def record_attestation(
        self,
        attestation_hash: str,
        repository: str,
        commit_sha: str,
        nullifier_hash: str,
        verification_level: int,
    ) -> LedgerReceipt:
        ...

    async def get_attestation(self, attestation_hash: str) -> Optional[Dict[str, Any]]:
        ...

    async def is_valid_attestation(self, attestation_hash: str) -> bool:
        ...

    async def has_valid_attestation(self, repository: str, commit_sha: str) -> bool:
        ...

    async def get_valid_attestation_count(self, repository: str, commit_sha: str) -> int:
        ...

    async def get_attestations_for_commit(self, repository: str, commit_sha: str) -> List[str]:
        ...

    async def get_attestations_for_nullifier(self, nullifier_hash: str) -> List[str]:
        ...


async def record_on_ledger(adapter: LedgerAdapter, attestation: Attestation) -> Attestation:
    """Write the attestation to the ledger and return it with a chain record."""
    args = to_ledger_args(attestation)
    receipt = await adapter.record_attestation(
        args.attestation_hash,
        args.repository,
        args.commit_sha,
        args.nullifier_hash,
        args.verification_level,
    )
    logger.info(
        f"Recorded {args.attestation_hash} on chain {receipt.chain_id} "
        f"(tx {receipt.tx_hash}, block {receipt.block_number})"
    )
    return append_chain_record(attestation, ChainRecord(
        chain_id=receipt.chain_id,
        tx_hash=receipt.tx_hash,
        block_number=receipt.block_number,
        contract_address=receipt.contract_address,
    ))
