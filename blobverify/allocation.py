"""
Storage Allocation Manager

Admission control for uploads: balances, required capacity and cost are
checked before any bytes are written. Checks are advisory (check-then-act);
the ledger remains the authority, so a write can still be rejected later.
"""

import math
from typing import Optional
from pydantic import BaseModel, Field
import structlog

from blobverify.clients.base import BalanceOracle
from blobverify.errors import (
    BackendUnavailable,
    BlobVerifyError,
    InsufficientBalance,
    InsufficientStorage,
    InvalidArgument,
    ValidationError,
)
from blobverify.models import (
    BalanceStatus,
    ExistingStorage,
    StorageAllocationStatus,
    StorageCostEstimate,
    StorageRequirementReport,
    StorageUsage,
)

logger = structlog.get_logger()

BYTES_PER_MIB = 1024 * 1024
BYTES_PER_KIB = 1024


class AllocationConfig(BaseModel):
    """Configuration for storage admission control."""

    # Minimum token balance required before any upload
    min_allocation: int = Field(default=1000, ge=0)

    # Minimum storage fund balance (reported, not enforced)
    min_storage_fund: int = Field(default=100, ge=0)

    # Utilization percentage above which a low-capacity warning is emitted
    warning_threshold_percent: float = Field(default=80.0, ge=0.0, le=100.0)

    # Cost estimation
    storage_buffer_bytes: int = Field(default=10240, ge=0)
    default_epochs: int = Field(default=52, gt=0)
    write_price_per_kib: int = Field(default=1, ge=0)
    cost_margin_percent: int = Field(default=10, ge=0)

    # Remaining epochs an owned reservation needs to be reused
    min_epoch_buffer: int = Field(default=10, ge=0)


class StorageAllocationManager:
    """
    Enforces balance and capacity requirements for uploads.

    Usage:
        manager = StorageAllocationManager(oracle)
        required = manager.calculate_required_storage(len(data), 30)
        status = await manager.ensure_storage_allocated(required)
    """

    def __init__(self, oracle: BalanceOracle, config: Optional[AllocationConfig] = None):
        self.oracle = oracle
        self.config = config or AllocationConfig()

    async def _query(self, label: str, call):
        """Run an oracle call, mapping unexpected failures to BackendUnavailable."""
        try:
            return await call()
        except BlobVerifyError:
            raise
        except Exception as e:
            logger.error("Balance oracle query failed", query=label, error=str(e))
            raise BackendUnavailable(f"Failed to query {label}: {e}", cause=e) from e

    async def _token_balance(self) -> int:
        balance = await self._query("token balance", self.oracle.get_token_balance)
        if balance is None:
            raise ValidationError("Unable to fetch token balance")
        return int(balance)

    async def _storage_usage(self) -> StorageUsage:
        usage = await self._query("storage usage", self.oracle.get_storage_usage)
        if usage is None:
            raise ValidationError("Unable to fetch storage usage")
        return usage

    def _require_min_allocation(self, balance: int) -> None:
        if balance < self.config.min_allocation:
            raise InsufficientBalance(balance, self.config.min_allocation)

    async def check_balances(self) -> BalanceStatus:
        """
        Check token balance and storage fund balance.

        The two balances are independent admission checks: a low token
        balance is fatal, a low storage fund is only reported.

        Raises:
            InsufficientBalance: token balance below min_allocation
            ValidationError: a balance could not be read
            BackendUnavailable: the oracle could not be reached
        """
        token_balance = await self._token_balance()
        fund = await self._query("storage fund balance", self.oracle.get_storage_fund_balance)
        if fund is None:
            raise ValidationError("Unable to fetch storage fund balance")
        storage_fund_balance = int(fund)

        self._require_min_allocation(token_balance)

        status = BalanceStatus(
            token_balance=token_balance,
            storage_fund_balance=storage_fund_balance,
            is_storage_fund_sufficient=storage_fund_balance >= self.config.min_storage_fund,
        )

        if not status.is_storage_fund_sufficient:
            logger.warning(
                "Storage fund below minimum",
                storage_fund_balance=storage_fund_balance,
                minimum=self.config.min_storage_fund,
            )

        return status

    def calculate_required_storage(self, size_bytes: int, duration_days: int) -> int:
        """
        Calculate storage tokens needed for a blob.

        One token per MiB per day, rounded up, plus one token of margin.
        """
        if size_bytes <= 0:
            raise InvalidArgument("File size must be greater than zero")
        if duration_days <= 0:
            raise InvalidArgument("Storage duration must be greater than zero")

        # ceil(size_mib * days) in integer arithmetic
        required = -(-(size_bytes * duration_days) // BYTES_PER_MIB)
        return required + 1

    async def ensure_storage_allocated(self, required_tokens: int) -> StorageAllocationStatus:
        """
        Ensure enough storage is allocated for an upload.

        Args:
            required_tokens: Capacity the upload needs

        Returns:
            StorageAllocationStatus at the time of the check

        Raises:
            InsufficientBalance: token balance below min_allocation
            InsufficientStorage: available capacity below required_tokens
            ValidationError: balance or usage missing from the oracle
            BackendUnavailable: the oracle could not be reached
        """
        if required_tokens < 0:
            raise InvalidArgument("Required storage cannot be negative")

        self._require_min_allocation(await self._token_balance())

        usage = await self._storage_usage()
        status = self._to_status(usage)

        if status.available_tokens < required_tokens:
            logger.info(
                "Storage allocation insufficient",
                required=required_tokens,
                available=status.available_tokens,
            )
            raise InsufficientStorage(
                f"Insufficient storage. Required: {required_tokens}, "
                f"Available: {status.available_tokens}",
                required=required_tokens,
                available=status.available_tokens,
            )

        if status.utilization > self.config.warning_threshold_percent:
            logger.warning(
                "storage_allocation_low",
                used=status.used_tokens,
                total=status.allocated_tokens,
                usage_percentage=round(status.utilization, 2),
                threshold=self.config.warning_threshold_percent,
            )

        logger.debug(
            "Storage allocation sufficient",
            required=required_tokens,
            available=status.available_tokens,
        )
        return status

    async def get_storage_allocation(self) -> StorageAllocationStatus:
        """Current allocation without enforcing any requirement."""
        return self._to_status(await self._storage_usage())

    def _to_status(self, usage: StorageUsage) -> StorageAllocationStatus:
        return StorageAllocationStatus(
            allocated_tokens=usage.total,
            used_tokens=usage.used,
            min_required_tokens=self.config.min_allocation,
        )

    def estimate_storage_cost(self, size_bytes: int, epochs: Optional[int] = None) -> StorageCostEstimate:
        """
        Estimate the cost of storing size_bytes for a number of epochs.

        A fixed byte buffer is added to the size, and the required balance
        carries a percentage margin for fees and price movement.
        """
        if size_bytes <= 0:
            raise InvalidArgument("File size must be greater than zero")
        epochs = epochs or self.config.default_epochs
        if epochs <= 0:
            raise InvalidArgument("Epochs must be greater than zero")

        size_with_buffer = size_bytes + self.config.storage_buffer_bytes
        write_cost = math.ceil(size_with_buffer / BYTES_PER_KIB) * self.config.write_price_per_kib
        storage_cost = epochs * write_cost
        total_cost = write_cost + storage_cost
        required_balance = total_cost * (100 + self.config.cost_margin_percent) // 100

        return StorageCostEstimate(
            storage_cost=storage_cost,
            write_cost=write_cost,
            total_cost=total_cost,
            required_balance=required_balance,
            epochs=epochs,
        )

    async def verify_existing_storage(
        self,
        required_size: int,
        current_epoch: Optional[int] = None,
    ) -> ExistingStorage:
        """
        Look for an owned storage reservation that can hold required_size.

        A reservation qualifies when its free space covers the size plus
        the storage buffer and it stays valid for at least min_epoch_buffer
        more epochs. The largest qualifying reservation is returned.

        Args:
            required_size: Blob size in bytes
            current_epoch: Ledger epoch; read from the oracle when None

        Returns:
            ExistingStorage with is_valid=False when nothing qualifies
        """
        if required_size <= 0:
            raise InvalidArgument("File size must be greater than zero")

        if current_epoch is None:
            current_epoch = await self._query("current epoch", self.oracle.get_current_epoch)
            if current_epoch is None:
                raise ValidationError("Unable to fetch current epoch")

        objects = await self._query("storage objects", self.oracle.get_storage_objects)
        if objects is None:
            raise ValidationError("Unable to fetch storage objects")

        needed = required_size + self.config.storage_buffer_bytes
        candidates = [
            obj
            for obj in objects
            if obj.remaining_size >= needed
            and obj.end_epoch - current_epoch >= self.config.min_epoch_buffer
        ]
        if not candidates:
            logger.debug("No reusable storage", required_size=required_size, owned=len(objects))
            return ExistingStorage(is_valid=False)

        best = max(candidates, key=lambda obj: obj.storage_size)
        logger.info(
            "Found reusable storage",
            object_id=best.object_id,
            remaining_size=best.remaining_size,
            end_epoch=best.end_epoch,
        )
        return ExistingStorage(
            is_valid=True,
            remaining_size=best.remaining_size,
            remaining_epochs=best.end_epoch - current_epoch,
            storage_object=best,
        )

    async def validate_storage_requirements(
        self,
        size_bytes: int,
        duration_days: int,
        epochs: Optional[int] = None,
    ) -> StorageRequirementReport:
        """
        Pre-flight report combining balances, capacity, reuse and cost.

        When an owned reservation can be reused the token balance is not
        compared with the cost of new storage. Business-rule rejections are
        reported through can_proceed and reasons; transport and validation
        errors are raised.
        """
        required = self.calculate_required_storage(size_bytes, duration_days)
        cost = self.estimate_storage_cost(size_bytes, epochs)
        reasons: list[str] = []

        balances = None
        try:
            balances = await self.check_balances()
            token_balance = balances.token_balance
        except InsufficientBalance as e:
            reasons.append(e.message)
            token_balance = e.balance

        allocation = await self.get_storage_allocation()
        if allocation.available_tokens < required:
            reasons.append(
                f"Insufficient storage. Required: {required}, Available: {allocation.available_tokens}"
            )

        existing = await self.verify_existing_storage(size_bytes)
        if not existing.is_valid and token_balance < cost.required_balance:
            reasons.append(
                f"Insufficient balance for new storage. Required: {cost.required_balance}, "
                f"Available: {token_balance}"
            )

        report = StorageRequirementReport(
            can_proceed=not reasons,
            required_tokens=required,
            balances=balances,
            allocation=allocation,
            cost=cost,
            existing_storage=existing,
            reasons=reasons,
        )

        logger.info(
            "Validated storage requirements",
            size_bytes=size_bytes,
            required=required,
            reuses_storage=existing.is_valid,
            can_proceed=report.can_proceed,
        )
        return report
