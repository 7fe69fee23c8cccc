"""
Approval Poller Tests

Test Categories:
1. URL building
2. Polling loop (pending -> approved, timeout, transient errors)
3. Workflow (re-validation, subject binding, markers, ledger hand-off)

Time is simulated: the fake clock advances only when the loop sleeps.
"""

import json
import math
from dataclasses import replace
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from human_attest.approval_poller import (
    ApprovalPoller,
    ApprovalState,
    ApprovalWorkflow,
    build_approval_url,
    build_status_url,
)
from human_attest.errors import (
    ApprovalTimeoutError,
    AttestationIntegrityError,
    AttestationValidationError,
)
from human_attest.ledger_encoding import LedgerReceipt
from human_attest.vcs_status import LoggingStatusPublisher

from tests.conftest import FakeClock, async_test

STATUS_URL = "https://approve.example.com/api/status?repo=octo%2Fwidgets&commit=abc"


def status_sequence(responses):
    """Handler that serves `responses` in order, repeating the last one."""
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        index = min(len(calls), len(responses) - 1)
        calls.append(request)
        response = responses[index]
        if isinstance(response, Exception):
            raise response
        if isinstance(response, httpx.Response):
            return response
        return httpx.Response(200, json=response)

    handler.calls = calls
    return handler


def pending():
    return {"status": "pending", "repository": "octo/widgets", "commit_sha": "abc"}


def approved(attestation_dict):
    return {
        "status": "approved",
        "repository": attestation_dict["subject"]["repository"],
        "commit_sha": attestation_dict["subject"]["commit_sha"],
        "attestation": attestation_dict,
        "approved_at": "2025-01-15T10:30:01.000000+00:00",
    }


def make_poller(handler, clock, timeout=60.0, interval=10.0):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ApprovalPoller(
        STATUS_URL,
        poll_interval_seconds=interval,
        timeout_seconds=timeout,
        client=client,
        clock=clock,
        sleep=clock.sleep,
    )


class FailingPublisher:
    async def publish_pending(self, approval_url):
        raise RuntimeError("GitHub is down")

    async def publish_success(self, attestation):
        raise RuntimeError("GitHub is down")

    async def publish_failure(self, reason):
        raise RuntimeError("GitHub is down")


class RecordingLedger:
    def __init__(self):
        self.calls = 0

    async def record_attestation(self, *args):
        self.calls += 1
        return LedgerReceipt(chain_id=480, tx_hash="0xbeef", block_number=9)


# =============================================================================
# 1. URL Building
# =============================================================================

class TestUrls:
    def test_approval_url_carries_subject_and_provider_params(self):
        url = build_approval_url(
            "https://approve.example.com/approve", "octo/widgets", "abc123",
            "world_id", {"app_id": "app_1", "action": "approve"},
        )
        parsed = urlparse(url)
        query = parse_qs(parsed.query)
        assert parsed.path == "/approve"
        assert query == {
            "repo": ["octo/widgets"], "commit": ["abc123"], "provider": ["world_id"],
            "app_id": ["app_1"], "action": ["approve"],
        }

    def test_status_url(self):
        url = build_status_url("https://approve.example.com/some/page", "octo/widgets", "abc123")
        parsed = urlparse(url)
        assert parsed.path == "/api/status"
        assert parse_qs(parsed.query) == {"repo": ["octo/widgets"], "commit": ["abc123"]}

    def test_custom_status_path(self):
        url = build_status_url("https://approve.example.com", "o/r", "c", status_path="/v2/status")
        assert url.startswith("https://approve.example.com/v2/status?")


# =============================================================================
# 2. Polling Loop
# =============================================================================

class TestPollingLoop:
    @async_test
    async def test_approved_within_tick_n_plus_one(self, attestation):
        for n in (0, 1, 4):
            clock = FakeClock()
            handler = status_sequence([pending()] * n + [approved(attestation.to_dict())])
            outcome = await make_poller(handler, clock, timeout=600).wait_for_approval()

            assert outcome.state == ApprovalState.APPROVED
            assert outcome.checks == n + 1
            assert outcome.attestation == attestation.to_dict()
            assert outcome.approved_at == "2025-01-15T10:30:01.000000+00:00"
            assert len(clock.sleeps) == n

    @pytest.mark.parametrize("timeout,interval", [(60, 10), (65, 10), (5, 10), (30, 7)])
    @async_test
    async def test_timeout_bounds_number_of_checks(self, timeout, interval):
        clock = FakeClock()
        handler = status_sequence([pending()])
        poller = make_poller(handler, clock, timeout=timeout, interval=interval)
        outcome = await poller.wait_for_approval()

        assert outcome.state == ApprovalState.TIMED_OUT
        assert outcome.elapsed_seconds >= timeout
        assert 1 <= outcome.checks <= math.ceil(timeout / interval) + 1
        assert outcome.checks == len(handler.calls)
        assert poller.max_checks == math.ceil(timeout / interval) + 1

    @async_test
    async def test_transient_errors_treated_as_pending(self, attestation):
        clock = FakeClock()
        handler = status_sequence([
            httpx.ConnectError("connection refused"),
            httpx.Response(503, text="unavailable"),
            httpx.Response(200, text="not json"),
            approved(attestation.to_dict()),
        ])
        outcome = await make_poller(handler, clock).wait_for_approval()

        assert outcome.state == ApprovalState.APPROVED
        assert outcome.checks == 4

    @async_test
    async def test_approved_without_attestation_keeps_polling(self):
        clock = FakeClock()
        handler = status_sequence([{"status": "approved"}])
        outcome = await make_poller(handler, clock, timeout=30).wait_for_approval()
        assert outcome.state == ApprovalState.TIMED_OUT

    @async_test
    async def test_check_status_hits_status_url(self):
        clock = FakeClock()
        handler = status_sequence([pending()])
        status = await make_poller(handler, clock).check_status()
        assert status["status"] == "pending"
        assert handler.calls[0].url.path == "/api/status"
        assert handler.calls[0].url.params["repo"] == "octo/widgets"

    def test_rejects_non_positive_settings(self):
        with pytest.raises(ValueError):
            ApprovalPoller(STATUS_URL, poll_interval_seconds=0)
        with pytest.raises(ValueError):
            ApprovalPoller(STATUS_URL, timeout_seconds=0)


# =============================================================================
# 3. Workflow
# =============================================================================

def make_workflow(handler, attestation, publisher=None, ledger=None, timeout=60.0):
    clock = FakeClock()
    return ApprovalWorkflow(
        repository=attestation.subject.repository,
        commit_sha=attestation.subject.commit_sha,
        approval_url="https://approve.example.com/?repo=octo%2Fwidgets",
        poller=make_poller(handler, clock, timeout=timeout),
        publisher=publisher if publisher is not None else LoggingStatusPublisher(),
        ledger=ledger,
    )


class TestWorkflow:
    @async_test
    async def test_approved_flow_publishes_markers(self, attestation):
        publisher = LoggingStatusPublisher()
        handler = status_sequence([pending(), approved(attestation.to_dict())])
        workflow = make_workflow(handler, attestation, publisher)

        result = await workflow.run()

        assert workflow.state == ApprovalState.APPROVED
        assert result.attestation == attestation
        assert result.checks == 2
        assert [e[0] for e in publisher.events] == ["pending", "success"]
        assert result.outputs()["attestation-hash"] == attestation.attestation_hash
        assert result.outputs()["nullifier-hash"] == attestation.human_proof.nullifier_hash

    @async_test
    async def test_timeout_publishes_failure_then_raises(self, attestation):
        publisher = LoggingStatusPublisher()
        workflow = make_workflow(status_sequence([pending()]), attestation, publisher, timeout=30)

        with pytest.raises(ApprovalTimeoutError) as exc:
            await workflow.run()

        assert exc.value.code == "APPROVAL_TIMED_OUT"
        assert workflow.state == ApprovalState.TIMED_OUT
        assert publisher.events[-1][0] == "failure"
        assert "Timed out" in publisher.events[-1][1]

    @async_test
    async def test_tampered_attestation_rejected(self, attestation):
        tampered = attestation.to_dict()
        tampered["human_proof"]["nullifier_hash"] = "0x" + "e" * 64
        publisher = LoggingStatusPublisher()
        workflow = make_workflow(status_sequence([approved(tampered)]), attestation, publisher)

        with pytest.raises(AttestationIntegrityError):
            await workflow.run()

        assert workflow.state == ApprovalState.PENDING
        assert publisher.events[-1][0] == "failure"

    @async_test
    async def test_attestation_without_hash_rejected(self, attestation):
        unhashed = attestation.to_dict()
        del unhashed["attestation_hash"]
        publisher = LoggingStatusPublisher()
        workflow = make_workflow(status_sequence([approved(unhashed)]), attestation, publisher)

        with pytest.raises(AttestationValidationError) as exc:
            await workflow.run()

        assert exc.value.errors == ["Missing attestation_hash"]
        assert workflow.state == ApprovalState.PENDING
        assert publisher.events[-1][0] == "failure"

    @async_test
    async def test_malformed_hash_rejected(self, attestation):
        bad = dict(attestation.to_dict(), attestation_hash="0xABC")
        workflow = make_workflow(status_sequence([approved(bad)]), attestation)

        with pytest.raises(AttestationValidationError) as exc:
            await workflow.run()
        assert exc.value.errors == ["Invalid attestation_hash"]

    @async_test
    async def test_structurally_invalid_attestation_rejected(self, attestation):
        broken = attestation.to_dict()
        del broken["timestamp"]
        workflow = make_workflow(status_sequence([approved(broken)]), attestation)

        with pytest.raises(AttestationValidationError) as exc:
            await workflow.run()
        assert "Missing timestamp" in exc.value.errors

    @async_test
    async def test_attestation_for_other_commit_rejected(self, attestation):
        from human_attest.attestation_codec import create_attestation

        other = create_attestation(
            replace(attestation.subject, commit_sha="0000000"), attestation.human_proof
        )
        workflow = make_workflow(status_sequence([approved(other.to_dict())]), attestation)

        with pytest.raises(AttestationValidationError) as exc:
            await workflow.run()
        assert any("expected" in e for e in exc.value.errors)

    @async_test
    async def test_publisher_failures_do_not_change_outcome(self, attestation):
        handler = status_sequence([approved(attestation.to_dict())])
        result = await make_workflow(handler, attestation, FailingPublisher()).run()
        assert result.attestation == attestation

    @async_test
    async def test_ledger_forwarding_appends_chain_record(self, attestation):
        ledger = RecordingLedger()
        handler = status_sequence([approved(attestation.to_dict())])
        result = await make_workflow(handler, attestation, ledger=ledger).run()

        assert ledger.calls == 1
        assert result.attestation.chain_record.tx_hash == "0xbeef"
        assert result.attestation.attestation_hash == attestation.attestation_hash

    @async_test
    async def test_polled_payload_is_json_serializable(self, attestation):
        handler = status_sequence([approved(attestation.to_dict())])
        result = await make_workflow(handler, attestation).run()
        assert json.loads(json.dumps(result.outputs()))["approved-at"]
