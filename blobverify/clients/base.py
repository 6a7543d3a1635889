"""
Collaborator contracts - abstract storage client and balance oracle.

The verification engine only talks to storage and ledger backends through
these interfaces. Implementations translate their transport errors into
blobverify.errors types.
"""

from abc import ABC, abstractmethod
from typing import Optional

from blobverify.models import BlobRecord, StorageObject, StorageUsage, WriteResult


class StorageClient(ABC):
    """
    Abstract storage backend.

    Implementations must:
    1. Raise BackendUnavailable (or BlobNotFound) for transport failures
    2. Raise InsufficientStorage when a write is rejected for quota
    3. Never mutate blob contents after a successful write
    """

    @abstractmethod
    async def write_blob(self, data: bytes, *, epochs: Optional[int] = None) -> WriteResult:
        """Store data and return the new blob ID."""
        pass

    @abstractmethod
    async def read_blob(self, blob_id: str) -> bytes:
        """Read back the full contents of a blob."""
        pass

    @abstractmethod
    async def get_blob_info(self, blob_id: str) -> BlobRecord:
        """Return the current on-network record for a blob."""
        pass

    @abstractmethod
    async def get_blob_metadata(self, blob_id: str) -> dict[str, str]:
        """Return the attributes attached to a blob."""
        pass

    @abstractmethod
    async def get_storage_providers(self, blob_id: str) -> list[str]:
        """Return the providers currently serving a blob."""
        pass

    @abstractmethod
    async def verify_poa(self, blob_id: str) -> bool:
        """Check proof of availability for a blob."""
        pass

    @abstractmethod
    async def execute_write_attributes_transaction(
        self,
        blob_id: str,
        attributes: dict[str, str],
    ) -> Optional[str]:
        """Attach attributes to a blob. Returns a transaction digest if any."""
        pass

    async def close(self):
        """Release client resources."""
        return None


class BalanceOracle(ABC):
    """Abstract balance and storage usage source."""

    @abstractmethod
    async def get_token_balance(self) -> Optional[int]:
        pass

    @abstractmethod
    async def get_storage_fund_balance(self) -> Optional[int]:
        pass

    @abstractmethod
    async def get_storage_usage(self) -> Optional[StorageUsage]:
        pass

    @abstractmethod
    async def get_storage_objects(self) -> Optional[list[StorageObject]]:
        """Owned storage reservations, for reuse checks."""
        pass

    @abstractmethod
    async def get_current_epoch(self) -> Optional[int]:
        pass

    async def close(self):
        return None
