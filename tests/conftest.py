"""
Pytest configuration for human-attest tests.

This module provides:
1. Async test support without pytest-asyncio
2. Common attestation fixtures
3. A fake clock for the polling loop
"""

import asyncio
import functools

import pytest

from human_attest.attestation_codec import compute_signal, create_attestation
from human_attest.attestation_model import ApprovalSubject, HumanProof


# -----------------------------------------------------------------------------
# Async Test Support
# -----------------------------------------------------------------------------
def async_test(func):
    """
    Decorator to run async tests without pytest-asyncio.

    Usage:
        @async_test
        async def test_something(self):
            result = await some_async_function()
            assert result is not None
    """
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        return asyncio.run(func(*args, **kwargs))
    return wrapper


class FakeClock:
    """Monotonic clock that only advances when the loop sleeps."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


# -----------------------------------------------------------------------------
# Common Fixtures
# -----------------------------------------------------------------------------
@pytest.fixture
def subject():
    return ApprovalSubject(
        repository="octo/widgets",
        commit_sha="abc123def4567890abc123def4567890abc123de",
        action="PR_MERGE",
        ref_number=42,
    )


@pytest.fixture
def human_proof(subject):
    return HumanProof(
        method="world_id",
        verification_level="orb",
        nullifier_hash="0x2bf8406809dcefb1a7a9c1a4b1e8a3b5e9f6c4d2a1b0c9d8e7f6a5b4c3d2e1f0",
        signal=compute_signal(subject.repository, subject.commit_sha),
    )


@pytest.fixture
def attestation(subject, human_proof):
    return create_attestation(subject, human_proof, timestamp="2025-01-15T10:30:00.000Z")


@pytest.fixture
def fake_clock():
    return FakeClock()


# -----------------------------------------------------------------------------
# Test Constants
# -----------------------------------------------------------------------------
TEST_REPOSITORY = "octo/widgets"
TEST_COMMIT = "abc123def4567890abc123def4567890abc123de"
