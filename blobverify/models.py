"""
Data models for blob verification.

These models define the value types passed between the checksum engine,
the allocation manager, the verification manager and the flow controller.
"""

from enum import Enum
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field, model_validator


class MatchStatus(str, Enum):
    """Outcome of a content or metadata comparison."""
    NOT_CHECKED = "not_checked"
    MATCHED = "matched"
    MISMATCHED = "mismatched"

    @classmethod
    def from_bool(cls, matched: bool) -> "MatchStatus":
        return cls.MATCHED if matched else cls.MISMATCHED

    @property
    def acceptable(self) -> bool:
        """True unless a comparison ran and failed."""
        return self is not MatchStatus.MISMATCHED


class VerificationStage(str, Enum):
    """States of a single blob's verification."""
    UPLOADING = "uploading"
    AWAITING_CERTIFICATION = "awaiting_certification"
    VERIFYING = "verifying"
    MONITORING = "monitoring"
    DONE = "done"
    FAILED = "failed"


class FlowStage(str, Enum):
    """Stages of the end-to-end verification flow."""
    ALLOCATION = "allocation"
    UPLOAD = "upload"
    ATTRIBUTES = "attributes"
    VERIFICATION = "verification"
    MONITORING = "monitoring"


class ChecksumSet(BaseModel):
    """Content digests of a blob."""

    model_config = ConfigDict(frozen=True)

    sha256: bytes = Field(..., min_length=32, max_length=32)
    sha512: bytes = Field(..., min_length=64, max_length=64)
    wide_hash: bytes = Field(..., min_length=32, max_length=32, description="BLAKE2b-256")

    def to_hex(self) -> dict[str, str]:
        return {
            "sha256": self.sha256.hex(),
            "sha512": self.sha512.hex(),
            "wide_hash": self.wide_hash.hex(),
        }


class BlobRecord(BaseModel):
    """On-network state of a stored blob, as reported by the storage client."""

    model_config = ConfigDict(frozen=True)

    blob_id: str
    size: int = Field(..., ge=0)
    registered_epoch: Optional[int] = Field(None, ge=0)
    certified_epoch: Optional[int] = Field(None, ge=0)
    provider_count: int = Field(default=0, ge=0)

    @property
    def certified(self) -> bool:
        return self.certified_epoch is not None


class WriteResult(BaseModel):
    """Result of a storage client write."""

    model_config = ConfigDict(frozen=True)

    blob_id: str
    size: int = Field(default=0, ge=0)
    registered_epoch: Optional[int] = Field(None)
    certified_epoch: Optional[int] = Field(None)
    newly_created: bool = Field(default=True)


class StorageUsage(BaseModel):
    """Storage usage reported by the balance oracle."""

    model_config = ConfigDict(frozen=True)

    used: int = Field(..., ge=0)
    total: int = Field(..., ge=0)


class StorageObject(BaseModel):
    """An owned storage reservation on the ledger."""

    model_config = ConfigDict(frozen=True)

    object_id: str
    storage_size: int = Field(..., ge=0, description="Reserved bytes")
    used_size: int = Field(default=0, ge=0)
    end_epoch: int = Field(..., ge=0, description="Last epoch the reservation is valid for")

    @property
    def remaining_size(self) -> int:
        return max(self.storage_size - self.used_size, 0)


class ExistingStorage(BaseModel):
    """Result of looking for a reusable storage reservation."""

    model_config = ConfigDict(frozen=True)

    is_valid: bool
    remaining_size: int = Field(default=0)
    remaining_epochs: int = Field(default=0)
    storage_object: Optional[StorageObject] = Field(None)


class BalanceStatus(BaseModel):
    """Token and storage fund balances."""

    model_config = ConfigDict(frozen=True)

    token_balance: int
    storage_fund_balance: int
    is_storage_fund_sufficient: bool


class StorageAllocationStatus(BaseModel):
    """Snapshot of allocated storage capacity."""

    model_config = ConfigDict(frozen=True)

    allocated_tokens: int = Field(..., ge=0)
    used_tokens: int = Field(..., ge=0)
    available_tokens: int = Field(default=0, ge=0)
    min_required_tokens: int = Field(default=0, ge=0)

    @model_validator(mode="before")
    @classmethod
    def _derive_available(cls, data):
        if isinstance(data, dict):
            allocated = int(data.get("allocated_tokens", 0))
            used = int(data.get("used_tokens", 0))
            data = {**data, "available_tokens": max(allocated - used, 0)}
        return data

    @property
    def utilization(self) -> float:
        """Used capacity as a percentage of allocated capacity."""
        if self.allocated_tokens == 0:
            return 0.0
        return self.used_tokens * 100 / self.allocated_tokens


class StorageCostEstimate(BaseModel):
    """Estimated cost of storing a blob for a number of epochs."""

    model_config = ConfigDict(frozen=True)

    storage_cost: int
    write_cost: int
    total_cost: int
    required_balance: int
    epochs: int


class StorageRequirementReport(BaseModel):
    """Combined pre-flight view of balances, capacity and cost."""

    can_proceed: bool
    required_tokens: int
    balances: Optional[BalanceStatus] = Field(None)
    allocation: Optional[StorageAllocationStatus] = Field(None)
    cost: Optional[StorageCostEstimate] = Field(None)
    existing_storage: Optional[ExistingStorage] = Field(None)
    reasons: list[str] = Field(default_factory=list)


class MetadataMismatch(BaseModel):
    """A single expected metadata key that did not match."""

    model_config = ConfigDict(frozen=True)

    key: str
    expected: str
    actual: Optional[str] = Field(None)


class UploadVerification(BaseModel):
    """Result of uploading a blob and checking its network state."""

    model_config = ConfigDict(frozen=True)

    blob_id: str
    checksums: ChecksumSet
    certified: bool
    certified_epoch: Optional[int] = Field(None)
    poa_complete: bool
    has_min_providers: bool
    provider_count: int = Field(default=0)
    certification_polls: int = Field(default=0)
    cancelled: bool = Field(default=False)


class VerificationResult(BaseModel):
    """Result of re-reading and comparing a stored blob."""

    model_config = ConfigDict(frozen=True)

    success: bool
    blob_id: str
    checksums: ChecksumSet = Field(..., description="Digests of the bytes read back")
    content_match: MatchStatus = Field(default=MatchStatus.NOT_CHECKED)
    metadata_match: MatchStatus = Field(default=MatchStatus.NOT_CHECKED)
    certified: bool
    provider_count: int = Field(default=0)
    attempts: int = Field(default=1)
    size: int = Field(default=0)
    certified_epoch: Optional[int] = Field(None)
    mismatches: list[MetadataMismatch] = Field(default_factory=list)


class MonitoringOutcome(BaseModel):
    """Result of the availability polling loop."""

    model_config = ConfigDict(frozen=True)

    successful: bool
    attempts_made: int
    cancelled: bool = Field(default=False)


class BlobUploadResult(BaseModel):
    """Composite result of the end-to-end verification flow."""

    blob_id: str
    allocation: StorageAllocationStatus
    upload: UploadVerification
    attributes_written: bool = Field(default=False)
    verification: Optional[VerificationResult] = Field(None)
    monitoring: Optional[MonitoringOutcome] = Field(None)
    cancelled: bool = Field(default=False)

    @property
    def verified(self) -> bool:
        return self.verification is not None and self.verification.success


# ============================================================================
# Options
# ============================================================================

class UploadOptions(BaseModel):
    """Options for verify_upload."""

    wait_for_certification: bool = Field(default=False)
    wait_timeout: float = Field(default=30.0, gt=0, description="Seconds")
    min_providers: int = Field(default=1, ge=0)
    epochs: Optional[int] = Field(None, gt=0, description="Storage epochs for the write")


class VerifyOptions(BaseModel):
    """Options for verify_blob."""

    max_retries: int = Field(default=3, ge=1)
    base_delay: float = Field(default=1.0, ge=0, description="Seconds, doubled per retry")
    require_certification: bool = Field(default=True)


class MonitorOptions(BaseModel):
    """Options for monitor_blob_availability."""

    interval: float = Field(default=5.0, ge=0, description="Seconds between reads")
    max_attempts: int = Field(default=12, ge=1)
    timeout: float = Field(default=60.0, gt=0, description="Overall deadline in seconds")
    require_certification: bool = Field(
        default=True,
        description="An attempt only succeeds if the blob is also certified",
    )


class FlowOptions(BaseModel):
    """Options for the end-to-end verification flow."""

    duration_days: int = Field(default=30, gt=0)
    wait_for_certification: bool = Field(default=False)
    wait_timeout: float = Field(default=10.0, gt=0)
    min_providers: int = Field(default=1, ge=0)
    epochs: Optional[int] = Field(None, gt=0)
    verify_after_upload: bool = Field(default=True)
    require_certification: bool = Field(default=False)
    monitor_availability: bool = Field(default=False)
    monitor: MonitorOptions = Field(
        default_factory=lambda: MonitorOptions(interval=1.0, max_attempts=3, timeout=5.0)
    )
    fail_on_monitoring: bool = Field(default=False)
