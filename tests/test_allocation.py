"""
Tests for the storage allocation manager.
"""

from unittest.mock import AsyncMock

import httpx
import pytest
from structlog.testing import capture_logs

from blobverify.allocation import AllocationConfig, StorageAllocationManager
from blobverify.clients.memory import InMemoryBalanceOracle
from blobverify.errors import (
    BackendUnavailable,
    InsufficientBalance,
    InsufficientStorage,
    InvalidArgument,
    ValidationError,
)
from blobverify.models import StorageAllocationStatus, StorageObject, StorageUsage


class TestCalculateRequiredStorage:
    """Tests for the required-capacity formula."""

    def test_two_mib_for_thirty_days(self, allocation_manager):
        """Test 2 MiB stored for 30 days needs 61 units."""
        assert allocation_manager.calculate_required_storage(2 * 1024 * 1024, 30) == 61

    def test_partial_mib_rounds_up(self, allocation_manager):
        """Test a partial MiB is rounded up."""
        assert allocation_manager.calculate_required_storage(1, 1) == 2
        assert allocation_manager.calculate_required_storage(1024 * 1024 + 1, 1) == 3

    @pytest.mark.parametrize("size,days", [(0, 30), (-1, 30), (1024, 0), (1024, -5)])
    def test_invalid_arguments(self, allocation_manager, size, days):
        """Test non-positive size or duration is rejected."""
        with pytest.raises(InvalidArgument):
            allocation_manager.calculate_required_storage(size, days)

    def test_invalid_argument_is_validation_error(self, allocation_manager):
        """Test InvalidArgument is a non-retryable ValidationError."""
        with pytest.raises(ValidationError) as exc_info:
            allocation_manager.calculate_required_storage(0, 1)
        assert exc_info.value.retryable is False


class TestEnsureStorageAllocated:
    """Tests for admission control."""

    @pytest.mark.asyncio
    async def test_sufficient_storage(self, allocation_manager):
        """Test admission when capacity covers the requirement."""
        status = await allocation_manager.ensure_storage_allocated(1000)

        assert status.available_tokens == 1500
        assert status.allocated_tokens == 2000
        assert status.used_tokens == 500
        assert status.min_required_tokens == 1000

    @pytest.mark.asyncio
    async def test_insufficient_storage(self):
        """Test a shortfall raises InsufficientStorage with both amounts."""
        manager = StorageAllocationManager(
            InMemoryBalanceOracle(token_balance=1500, used=1000, total=1500)
        )

        with pytest.raises(InsufficientStorage) as exc_info:
            await manager.ensure_storage_allocated(1000)

        assert exc_info.value.required == 1000
        assert exc_info.value.available == 500
        assert exc_info.value.retryable is True

    @pytest.mark.asyncio
    async def test_insufficient_balance(self):
        """Test a token balance below the minimum allocation is rejected."""
        manager = StorageAllocationManager(InMemoryBalanceOracle(token_balance=999))

        with pytest.raises(InsufficientBalance) as exc_info:
            await manager.ensure_storage_allocated(10)

        assert exc_info.value.minimum == 1000
        assert exc_info.value.balance == 999

    @pytest.mark.asyncio
    async def test_missing_balance_is_validation_error(self):
        """Test an unreadable token balance raises ValidationError."""
        manager = StorageAllocationManager(InMemoryBalanceOracle(token_balance=None))

        with pytest.raises(ValidationError, match="token balance"):
            await manager.ensure_storage_allocated(10)

    @pytest.mark.asyncio
    async def test_missing_usage_is_validation_error(self):
        """Test unreadable storage usage raises ValidationError."""
        oracle = InMemoryBalanceOracle()
        oracle.usage = None
        manager = StorageAllocationManager(oracle)

        with pytest.raises(ValidationError, match="storage usage"):
            await manager.ensure_storage_allocated(10)

    @pytest.mark.asyncio
    async def test_network_failure_is_backend_unavailable(self):
        """Test transport errors from the oracle become BackendUnavailable."""
        oracle = InMemoryBalanceOracle()
        oracle.get_token_balance = AsyncMock(side_effect=httpx.ConnectError("connection refused"))
        manager = StorageAllocationManager(oracle)

        with pytest.raises(BackendUnavailable) as exc_info:
            await manager.ensure_storage_allocated(10)

        assert exc_info.value.retryable is True
        assert isinstance(exc_info.value.cause, httpx.ConnectError)
        assert oracle.get_token_balance.await_count == 1

    @pytest.mark.asyncio
    async def test_negative_requirement_rejected(self, allocation_manager):
        """Test a negative requirement is rejected."""
        with pytest.raises(InvalidArgument):
            await allocation_manager.ensure_storage_allocated(-1)

    @pytest.mark.asyncio
    async def test_low_capacity_warning_still_succeeds(self):
        """Test high utilization logs a warning without failing."""
        manager = StorageAllocationManager(
            InMemoryBalanceOracle(token_balance=2000, used=1700, total=2000)
        )

        with capture_logs() as logs:
            status = await manager.ensure_storage_allocated(100)

        assert status.available_tokens == 300
        warnings = [log for log in logs if log["event"] == "storage_allocation_low"]
        assert len(warnings) == 1
        assert warnings[0]["log_level"] == "warning"
        assert warnings[0]["usage_percentage"] == 85.0

    @pytest.mark.asyncio
    async def test_no_warning_below_threshold(self, allocation_manager):
        """Test no warning is logged below the threshold."""
        with capture_logs() as logs:
            await allocation_manager.ensure_storage_allocated(100)

        assert not [log for log in logs if log["event"] == "storage_allocation_low"]

    @pytest.mark.asyncio
    async def test_custom_threshold(self):
        """Test the warning threshold is configurable."""
        manager = StorageAllocationManager(
            InMemoryBalanceOracle(used=500, total=2000),
            AllocationConfig(warning_threshold_percent=20.0),
        )

        with capture_logs() as logs:
            await manager.ensure_storage_allocated(100)

        assert any(log["event"] == "storage_allocation_low" for log in logs)


class TestCheckBalances:
    """Tests for the two independent balance checks."""

    @pytest.mark.asyncio
    async def test_balances_reported(self, allocation_manager):
        """Test both balances are reported."""
        balances = await allocation_manager.check_balances()

        assert balances.token_balance == 2000
        assert balances.storage_fund_balance == 500
        assert balances.is_storage_fund_sufficient is True

    @pytest.mark.asyncio
    async def test_low_storage_fund_is_not_fatal(self):
        """Test a low storage fund is flagged but not raised."""
        manager = StorageAllocationManager(
            InMemoryBalanceOracle(token_balance=2000, storage_fund_balance=50)
        )

        balances = await manager.check_balances()

        assert balances.is_storage_fund_sufficient is False

    @pytest.mark.asyncio
    async def test_low_token_balance_is_fatal(self):
        """Test a low token balance raises InsufficientBalance."""
        manager = StorageAllocationManager(InMemoryBalanceOracle(token_balance=10))

        with pytest.raises(InsufficientBalance):
            await manager.check_balances()

    @pytest.mark.asyncio
    async def test_missing_fund_balance(self):
        """Test an unreadable storage fund raises ValidationError."""
        manager = StorageAllocationManager(InMemoryBalanceOracle(storage_fund_balance=None))

        with pytest.raises(ValidationError):
            await manager.check_balances()


class TestAllocationStatus:
    """Tests for the allocation snapshot and its invariant."""

    def test_available_is_derived(self):
        """Test available tokens are derived from allocated and used."""
        status = StorageAllocationStatus(allocated_tokens=2000, used_tokens=500, available_tokens=9)

        assert status.available_tokens == 1500

    def test_available_saturates_at_zero(self):
        """Test available tokens never go negative."""
        status = StorageAllocationStatus(allocated_tokens=100, used_tokens=250)

        assert status.available_tokens == 0
        assert status.utilization == 250.0

    def test_zero_allocation_utilization(self):
        """Test utilization of an empty allocation is zero."""
        assert StorageAllocationStatus(allocated_tokens=0, used_tokens=0).utilization == 0.0

    @pytest.mark.asyncio
    async def test_get_storage_allocation(self, allocation_manager):
        """Test the allocation snapshot from the oracle."""
        status = await allocation_manager.get_storage_allocation()

        assert status == StorageAllocationStatus(
            allocated_tokens=2000, used_tokens=500, min_required_tokens=1000
        )


class TestCostEstimate:
    """Tests for storage cost estimation."""

    def test_estimate(self, allocation_manager):
        """Test the cost estimate for a small blob."""
        estimate = allocation_manager.estimate_storage_cost(1024, epochs=2)

        # 1024 + 10240 buffer = 11 KiB
        assert estimate.write_cost == 11
        assert estimate.storage_cost == 22
        assert estimate.total_cost == 33
        assert estimate.required_balance == 36
        assert estimate.epochs == 2

    def test_default_epochs(self, allocation_manager):
        """Test the estimate falls back to the default epochs."""
        assert allocation_manager.estimate_storage_cost(1).epochs == 52

    def test_invalid_size(self, allocation_manager):
        """Test an empty blob cannot be estimated."""
        with pytest.raises(InvalidArgument):
            allocation_manager.estimate_storage_cost(0)


class TestVerifyExistingStorage:
    """Tests for finding a reusable storage reservation."""

    @pytest.mark.asyncio
    async def test_picks_largest_suitable_object(self):
        """Test the largest reservation with enough space and epochs is chosen."""
        oracle = InMemoryBalanceOracle(
            storage_objects=[
                StorageObject(object_id="small", storage_size=20_000, used_size=0, end_epoch=100),
                StorageObject(object_id="large", storage_size=50_000, used_size=10_000, end_epoch=100),
                StorageObject(object_id="expiring", storage_size=90_000, used_size=0, end_epoch=15),
            ],
            current_epoch=10,
        )
        manager = StorageAllocationManager(oracle)

        existing = await manager.verify_existing_storage(1024)

        assert existing.is_valid is True
        assert existing.storage_object.object_id == "large"
        assert existing.remaining_size == 40_000
        assert existing.remaining_epochs == 90
        assert oracle.calls["get_current_epoch"] == 1

    @pytest.mark.asyncio
    async def test_buffer_counts_against_free_space(self):
        """Test the storage buffer must also fit in the reservation."""
        oracle = InMemoryBalanceOracle(
            storage_objects=[
                StorageObject(object_id="tight", storage_size=11_000, used_size=0, end_epoch=100),
            ],
        )
        manager = StorageAllocationManager(oracle)

        # 1024 bytes + 10240 buffer does not fit in 11000
        assert (await manager.verify_existing_storage(1024)).is_valid is False
        assert (await manager.verify_existing_storage(700)).is_valid is True

    @pytest.mark.asyncio
    async def test_explicit_epoch_skips_oracle_lookup(self):
        """Test a given epoch is used instead of querying the oracle."""
        oracle = InMemoryBalanceOracle(
            storage_objects=[
                StorageObject(object_id="s", storage_size=50_000, end_epoch=20),
            ],
        )
        manager = StorageAllocationManager(oracle)

        existing = await manager.verify_existing_storage(1024, current_epoch=15)

        assert existing.is_valid is False
        assert oracle.calls["get_current_epoch"] == 0

    @pytest.mark.asyncio
    async def test_no_objects(self, allocation_manager):
        """Test no reservations means nothing to reuse."""
        existing = await allocation_manager.verify_existing_storage(1024)

        assert existing.is_valid is False
        assert existing.storage_object is None

    @pytest.mark.asyncio
    async def test_missing_epoch_is_validation_error(self):
        """Test an unreadable epoch raises ValidationError."""
        manager = StorageAllocationManager(InMemoryBalanceOracle(current_epoch=None))

        with pytest.raises(ValidationError, match="current epoch"):
            await manager.verify_existing_storage(1024)


class TestValidateStorageRequirements:
    """Tests for the combined pre-flight report."""

    @pytest.mark.asyncio
    async def test_can_proceed_with_new_storage(self, allocation_manager):
        """Test the report for a blob that needs new storage."""
        report = await allocation_manager.validate_storage_requirements(1024, 30, epochs=2)

        assert report.can_proceed is True
        assert report.required_tokens == 2
        assert report.cost.required_balance == 36
        assert report.existing_storage.is_valid is False
        assert report.balances.token_balance == 2000
        assert report.allocation.available_tokens == 1500
        assert report.reasons == []

    @pytest.mark.asyncio
    async def test_cost_exceeds_balance(self):
        """Test a balance below the storage cost blocks the upload."""
        manager = StorageAllocationManager(
            InMemoryBalanceOracle(token_balance=1000, used=0, total=100_000)
        )

        report = await manager.validate_storage_requirements(50 * 1024 * 1024, 1)

        assert report.cost.required_balance > 1000
        assert report.can_proceed is False
        assert len(report.reasons) == 1
        assert "Insufficient balance for new storage" in report.reasons[0]

    @pytest.mark.asyncio
    async def test_reusable_storage_skips_cost_check(self):
        """Test a reusable reservation waives the cost check."""
        oracle = InMemoryBalanceOracle(
            token_balance=2000,
            used=500,
            total=2000,
            storage_objects=[
                StorageObject(object_id="reserved", storage_size=8 * 1024 * 1024, end_epoch=200),
            ],
        )
        manager = StorageAllocationManager(oracle)

        report = await manager.validate_storage_requirements(2 * 1024 * 1024, 30)

        assert report.cost.required_balance > 2000
        assert report.existing_storage.is_valid is True
        assert report.existing_storage.storage_object.object_id == "reserved"
        assert report.required_tokens == 61
        assert report.can_proceed is True

    @pytest.mark.asyncio
    async def test_reports_every_rejection(self):
        """Test all failing checks are listed in the report."""
        oracle = InMemoryBalanceOracle(token_balance=10)
        oracle.usage = StorageUsage(used=1999, total=2000)
        manager = StorageAllocationManager(oracle)

        report = await manager.validate_storage_requirements(10 * 1024 * 1024, 30)

        assert report.can_proceed is False
        assert report.balances is None
        assert len(report.reasons) == 3
        assert "Insufficient token balance" in report.reasons[0]
        assert "Insufficient storage" in report.reasons[1]
        assert "Available: 10" in report.reasons[2]
