"""
Verification Service Tests

Test Categories:
1. Signal binding between the provider check and the recorded proof
2. Subject defaults
"""

import json

import httpx

from human_attest.approval_store import ApprovalStore
from human_attest.attestation_codec import compute_signal, is_valid_attestation
from human_attest.ledger_encoding import hash_to_field
from human_attest.provider_verifiers import CivicVerifier, WorldIDVerifier
from human_attest.verification_service import VerificationService
from human_attest.verifier_registry import build_verifier_registry

from tests.conftest import async_test

SUBJECT = {"repository": "octo/widgets", "commit_sha": "abc123", "action": "DEPLOY"}

WORLD_ID_PROOF = {
    "nullifier_hash": "0x" + "1" * 64,
    "merkle_root": "0x" + "2" * 64,
    "proof": "0x" + "3" * 512,
}

PROVIDER_CONFIG = {
    "world_id": {"app_id": "app_staging_123", "action": "approve-commit"},
    "civic": {"gatekeeper_network": "net-1"},
}


def world_id_service(seen):
    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(json.loads(request.content))
        return httpx.Response(200, json={"success": True})

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    registry = build_verifier_registry(entries=[("world_id", lambda: WorldIDVerifier(client))])
    service = VerificationService(registry, ApprovalStore(), lambda provider: PROVIDER_CONFIG[provider])
    return service, client


def civic_service():
    registry = build_verifier_registry(entries=[("civic", CivicVerifier)])
    return VerificationService(registry, ApprovalStore(), lambda provider: PROVIDER_CONFIG[provider])


CIVIC_PROOF = {"user_id": "user-1", "verifications": ["uniqueness"]}


# =============================================================================
# 1. Signal binding
# =============================================================================

class TestSignalBinding:
    @async_test
    async def test_explicit_signal_sent_to_world_id(self):
        seen = []
        service, client = world_id_service(seen)
        async with client:
            outcome = await service.submit("world_id", WORLD_ID_PROOF, SUBJECT, "0xfeed")

        assert outcome.success
        assert outcome.attestation.human_proof.signal == "0xfeed"
        assert seen[0]["signal_hash"] == hash_to_field("0xfeed")

    @async_test
    async def test_default_signal_sent_to_world_id(self):
        seen = []
        service, client = world_id_service(seen)
        async with client:
            outcome = await service.submit("world_id", WORLD_ID_PROOF, SUBJECT)

        expected = compute_signal("octo/widgets", "abc123")
        assert outcome.attestation.human_proof.signal == expected
        assert seen[0]["signal_hash"] == hash_to_field(expected)

    @async_test
    async def test_proof_signal_cannot_override_request_signal(self):
        seen = []
        service, client = world_id_service(seen)
        async with client:
            outcome = await service.submit(
                "world_id", dict(WORLD_ID_PROOF, signal="other"), SUBJECT, "0xfeed"
            )

        assert seen[0]["signal_hash"] == hash_to_field(outcome.attestation.human_proof.signal)

    @async_test
    async def test_empty_signal_kept(self):
        seen = []
        service, client = world_id_service(seen)
        async with client:
            outcome = await service.submit("world_id", WORLD_ID_PROOF, SUBJECT, "")

        assert outcome.attestation.human_proof.signal == ""
        assert seen[0]["signal_hash"] == hash_to_field("")


# =============================================================================
# 2. Subject defaults
# =============================================================================

class TestSubjectDefaults:
    @async_test
    async def test_empty_action_becomes_generic(self):
        outcome = await civic_service().submit("civic", CIVIC_PROOF, dict(SUBJECT, action=""))

        assert outcome.success
        assert outcome.attestation.subject.action == "GENERIC"
        assert is_valid_attestation(outcome.attestation)

    @async_test
    async def test_missing_repository(self):
        outcome = await civic_service().submit("civic", CIVIC_PROOF, {"commit_sha": "abc123"})
        assert not outcome.success
        assert outcome.error == "Missing subject.repository"

    @async_test
    async def test_failed_verification_not_stored(self):
        service = civic_service()
        outcome = await service.submit("civic", {"user_id": "user-1"}, SUBJECT)

        assert not outcome.success
        assert not service.store.has("octo/widgets", "abc123")
