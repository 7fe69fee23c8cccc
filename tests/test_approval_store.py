"""
Approval Store Tests

Keyed lookup, write policy, journal persistence and replay.
"""

import json
import threading
from dataclasses import replace

import pytest

from human_attest.approval_store import ApprovalStore, StorePolicy
from human_attest.attestation_codec import create_attestation


@pytest.fixture
def journal(tmp_path):
    return tmp_path / "approvals.jsonl"


def second_attestation(attestation):
    proof = replace(attestation.human_proof, nullifier_hash="0x" + "f" * 64)
    return create_attestation(attestation.subject, proof, timestamp="2025-01-15T11:00:00.000Z")


class TestKeyedLookup:
    def test_missing_key(self):
        store = ApprovalStore()
        assert store.get("o/r", "abc") is None
        assert not store.has("o/r", "abc")

    def test_read_after_write(self, attestation):
        store = ApprovalStore()
        record = store.record(attestation)

        assert store.get("octo/widgets", attestation.subject.commit_sha) == record
        assert record.attestation == attestation
        assert record.record_id.startswith("apr-")
        assert len(store) == 1

    def test_keys_are_independent(self, attestation):
        store = ApprovalStore()
        other = create_attestation(
            replace(attestation.subject, commit_sha="ffff"), attestation.human_proof
        )
        store.record(attestation)
        store.record(other)
        assert len(store) == 2
        assert store.get("octo/widgets", "ffff").attestation == other


class TestWritePolicy:
    def test_last_write_wins_by_default(self, attestation):
        store = ApprovalStore()
        later = second_attestation(attestation)
        store.record(attestation)
        current = store.record(later)

        assert store.policy == StorePolicy.LAST_WRITE_WINS
        assert current.attestation == later
        assert store.get("octo/widgets", attestation.subject.commit_sha).attestation == later
        assert len(store.get_history("octo/widgets", attestation.subject.commit_sha)) == 2

    def test_first_write_wins(self, attestation):
        store = ApprovalStore(policy=StorePolicy.FIRST_WRITE_WINS)
        first = store.record(attestation)
        current = store.record(second_attestation(attestation))

        assert current == first
        assert store.get("octo/widgets", attestation.subject.commit_sha).attestation == attestation
        assert len(store.get_history("octo/widgets", attestation.subject.commit_sha)) == 1

    def test_concurrent_writes_leave_one_current_entry(self, attestation):
        store = ApprovalStore()
        candidates = [
            create_attestation(
                attestation.subject,
                replace(attestation.human_proof, nullifier_hash=f"0x{i:064x}"),
            )
            for i in range(20)
        ]
        threads = [threading.Thread(target=store.record, args=(a,)) for a in candidates]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        history = store.get_history("octo/widgets", attestation.subject.commit_sha)
        assert len(store) == 1
        assert len(history) == 20
        assert store.get("octo/widgets", attestation.subject.commit_sha) == history[-1]


class TestJournal:
    def test_writes_jsonl(self, attestation, journal):
        ApprovalStore(journal_file=journal).record(attestation)

        lines = journal.read_text().strip().splitlines()
        assert len(lines) == 1
        entry = json.loads(lines[0])
        assert entry["repository"] == "octo/widgets"
        assert entry["attestation"]["attestation_hash"] == attestation.attestation_hash

    def test_replay_restores_current_entries(self, attestation, journal):
        later = second_attestation(attestation)
        writer = ApprovalStore(journal_file=journal)
        writer.record(attestation)
        writer.record(later)

        reader = ApprovalStore(journal_file=journal)
        assert reader.get("octo/widgets", attestation.subject.commit_sha).attestation == later

        first_wins = ApprovalStore(journal_file=journal, policy=StorePolicy.FIRST_WRITE_WINS)
        assert first_wins.get("octo/widgets", attestation.subject.commit_sha).attestation == attestation

    def test_replay_skips_malformed_lines(self, attestation, journal):
        ApprovalStore(journal_file=journal).record(attestation)
        with open(journal, "a") as f:
            f.write("{broken\n")
            f.write("\n")

        store = ApprovalStore(journal_file=journal)
        assert len(store) == 1

    def test_record_round_trip(self, attestation):
        record = ApprovalStore().record(attestation)
        assert type(record).from_dict(record.to_dict()) == record
