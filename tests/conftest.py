"""
Pytest fixtures for blobverify tests.
"""

import pytest

from blobverify.allocation import StorageAllocationManager
from blobverify.clients.memory import InMemoryBalanceOracle, InMemoryStorageClient
from blobverify.flow import VerificationFlowController
from blobverify.verification import BlobVerificationManager, VerificationConfig


class FakeClock:
    """Monotonic clock advanced only by its own sleep()."""

    def __init__(self, start: float = 0.0):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sample_data():
    """Payload used across verification tests."""
    return b"test data for verification flow"


@pytest.fixture
def sample_metadata():
    return {
        "contentType": "text/plain",
        "description": "Test data for verification",
        "owner": "Test User",
    }


@pytest.fixture
def storage():
    """In-memory storage that certifies blobs on write."""
    return InMemoryStorageClient(providers=["provider1", "provider2"])


@pytest.fixture
def oracle():
    """Balance 2000, usage 500/2000."""
    return InMemoryBalanceOracle(token_balance=2000, storage_fund_balance=500, used=500, total=2000)


@pytest.fixture
def allocation_manager(oracle):
    return StorageAllocationManager(oracle)


@pytest.fixture
def verification_manager(storage, clock):
    return BlobVerificationManager(
        storage,
        config=VerificationConfig(poll_interval=1.0),
        sleep=clock.sleep,
        clock=clock,
    )


@pytest.fixture
def flow(allocation_manager, verification_manager):
    return VerificationFlowController(allocation_manager, verification_manager)
