"""
Approval Store

Durable keyed lookup from (repository, commit) to the most recent attestation.

CRITICAL CONSTRAINTS (NON-NEGOTIABLE):
- ONE current entry per (repository, commit) key
- NEVER DELETES: every accepted write stays in the journal as an audit artifact
- APPEND-ONLY JOURNAL: JSONL, fsync'd on every write, replayed on start
- READ-AFTER-WRITE: a write is visible to the next read of the same key
- WRITE POLICY is explicit and applied under the store lock:
  * last_write_wins (default): a later verification replaces the current entry
  * first_write_wins: the first completed verification is kept

Keys are independent, so concurrent pollers for different commits never
interfere. A distributed deployment needs an externally consistent backend;
this store covers a single process.
"""

import json
import logging
import os
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Optional, Dict, Any, List

from .attestation_codec import get_attestation_key
from .attestation_model import Attestation

logger = logging.getLogger("approval_store")

STORE_VERSION = "1.0.0"


class StorePolicy(str, Enum):
    """Tie-break rule for a second verification of the same key."""
    LAST_WRITE_WINS = "last_write_wins"
    FIRST_WRITE_WINS = "first_write_wins"


# -----------------------------------------------------------------------------
# Approval Record (Frozen - Immutable)
# -----------------------------------------------------------------------------
@dataclass(frozen=True)
class ApprovalRecord:
    record_id: str
    repository: str
    commit_sha: str
    attestation: Attestation
    recorded_at: str  # ISO format

    @property
    def key(self) -> str:
        return get_attestation_key(self.repository, self.commit_sha)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "record_id": self.record_id,
            "repository": self.repository,
            "commit_sha": self.commit_sha,
            "attestation": self.attestation.to_dict(),
            "recorded_at": self.recorded_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ApprovalRecord":
        return cls(
            record_id=data["record_id"],
            repository=data["repository"],
            commit_sha=data["commit_sha"],
            attestation=Attestation.from_dict(data["attestation"]),
            recorded_at=data["recorded_at"],
        )


# -----------------------------------------------------------------------------
# Approval Store
# -----------------------------------------------------------------------------
class ApprovalStore:
    """In-memory index over an optional append-only journal."""

    def __init__(
        self,
        journal_file: Optional[Path] = None,
        policy: StorePolicy = StorePolicy.LAST_WRITE_WINS,
    ):
        """
        Initialize store.

        Args:
            journal_file: JSONL journal path; None keeps records in memory only
            policy: Tie-break rule for repeated writes to one key
        """
        self._journal_file = Path(journal_file) if journal_file else None
        self._policy = StorePolicy(policy)
        self._lock = threading.Lock()
        self._current: Dict[str, ApprovalRecord] = {}
        self._history: List[ApprovalRecord] = []
        self._version = STORE_VERSION
        self._replay()

    @property
    def policy(self) -> StorePolicy:
        return self._policy

    @property
    def version(self) -> str:
        return self._version

    # -------------------------------------------------------------------------
    # Write Operations
    # -------------------------------------------------------------------------

    def record(self, attestation: Attestation) -> ApprovalRecord:
        """
        Record a completed verification for its (repository, commit).

        Returns:
            The record that is current for the key after this write. Under
            first_write_wins this is the earlier record when one exists.
        """
        subject = attestation.subject
        key = get_attestation_key(subject.repository, subject.commit_sha)

        with self._lock:
            existing = self._current.get(key)
            if existing is not None and self._policy == StorePolicy.FIRST_WRITE_WINS:
                logger.info(
                    f"Keeping first attestation for {key}; "
                    f"ignored {attestation.attestation_hash}"
                )
                return existing

            record = ApprovalRecord(
                record_id=f"apr-{uuid.uuid4().hex[:12]}",
                repository=subject.repository,
                commit_sha=subject.commit_sha,
                attestation=attestation,
                recorded_at=datetime.now(timezone.utc).isoformat(),
            )
            if self._journal_file is not None:
                self._append_record(record.to_dict())
            self._current[key] = record
            self._history.append(record)

        if existing is not None:
            logger.info(f"Replaced attestation for {key} (last write wins)")
        else:
            logger.info(f"Recorded attestation {attestation.attestation_hash} for {key}")
        return record

    # -------------------------------------------------------------------------
    # Read Operations (Read-Only)
    # -------------------------------------------------------------------------

    def get(self, repository: str, commit_sha: str) -> Optional[ApprovalRecord]:
        with self._lock:
            return self._current.get(get_attestation_key(repository, commit_sha))

    def has(self, repository: str, commit_sha: str) -> bool:
        return self.get(repository, commit_sha) is not None

    def get_history(self, repository: str, commit_sha: str) -> List[ApprovalRecord]:
        """Every accepted write for a key, oldest first."""
        key = get_attestation_key(repository, commit_sha)
        with self._lock:
            return [r for r in self._history if r.key == key]

    def __len__(self) -> int:
        with self._lock:
            return len(self._current)

    # -------------------------------------------------------------------------
    # Internal Helpers
    # -------------------------------------------------------------------------

    def _replay(self) -> None:
        if self._journal_file is None or not self._journal_file.exists():
            return

        with open(self._journal_file, 'r') as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    record = ApprovalRecord.from_dict(json.loads(line))
                except (json.JSONDecodeError, KeyError, TypeError):
                    # Skip malformed lines
                    logger.warning(f"Skipping malformed journal line in {self._journal_file}")
                    continue
                self._history.append(record)
                if record.key in self._current and self._policy == StorePolicy.FIRST_WRITE_WINS:
                    continue
                self._current[record.key] = record

        logger.info(f"Replayed {len(self._history)} approval records from {self._journal_file}")

    def _append_record(self, record: Dict[str, Any]) -> None:
        """Append a record to the JSONL journal with fsync."""
        self._journal_file.parent.mkdir(parents=True, exist_ok=True)

        with open(self._journal_file, 'a') as f:
            f.write(json.dumps(record) + '\n')
            f.flush()
            os.fsync(f.fileno())
