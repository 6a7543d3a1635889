"""
blobverify - Blob Upload Verification and Storage Allocation

Guarantees that a blob committed to decentralized storage is byte-identical
to what was sent, is certified and available on the network, and that
enough storage budget exists before any data is written.

Components:
- ChecksumEngine: SHA-256 / SHA-512 / BLAKE2b-256 digest sets
- StorageAllocationManager: balance and capacity admission control
- BlobVerificationManager: upload, certification wait, re-verification, monitoring
- VerificationFlowController: end-to-end flow facade
- clients: Walrus HTTP, Sui JSON-RPC and in-memory backends
"""

from blobverify.allocation import AllocationConfig, StorageAllocationManager
from blobverify.checksums import ChecksumEngine, compute_checksums
from blobverify.clients import (
    BalanceOracle,
    InMemoryBalanceOracle,
    InMemoryStorageClient,
    StorageClient,
    SuiBalanceOracle,
    WalrusHttpClient,
)
from blobverify.config import Settings, create_flow_controller, load_settings
from blobverify.errors import (
    BackendUnavailable,
    BlobNotFound,
    BlobVerifyError,
    InsufficientBalance,
    InsufficientStorage,
    InvalidArgument,
    MonitoringFailed,
    ValidationError,
    VerificationFlowError,
)
from blobverify.flow import VerificationFlowController
from blobverify.models import (
    BlobRecord,
    BlobUploadResult,
    ChecksumSet,
    FlowOptions,
    MatchStatus,
    MonitoringOutcome,
    MonitorOptions,
    StorageAllocationStatus,
    UploadOptions,
    UploadVerification,
    VerificationResult,
    VerifyOptions,
)
from blobverify.verification import BlobVerificationManager, VerificationConfig

__version__ = "0.1.0"
__all__ = [
    # Core
    "ChecksumEngine",
    "compute_checksums",
    "StorageAllocationManager",
    "AllocationConfig",
    "BlobVerificationManager",
    "VerificationConfig",
    "VerificationFlowController",
    # Config
    "Settings",
    "load_settings",
    "create_flow_controller",
    # Clients
    "StorageClient",
    "BalanceOracle",
    "WalrusHttpClient",
    "SuiBalanceOracle",
    "InMemoryStorageClient",
    "InMemoryBalanceOracle",
    # Models
    "ChecksumSet",
    "BlobRecord",
    "MatchStatus",
    "VerificationResult",
    "UploadVerification",
    "StorageAllocationStatus",
    "MonitoringOutcome",
    "BlobUploadResult",
    "UploadOptions",
    "VerifyOptions",
    "MonitorOptions",
    "FlowOptions",
    # Errors
    "BlobVerifyError",
    "ValidationError",
    "InvalidArgument",
    "InsufficientBalance",
    "InsufficientStorage",
    "BackendUnavailable",
    "BlobNotFound",
    "MonitoringFailed",
    "VerificationFlowError",
]
