"""
In-memory storage backend and balance oracle.

Used for local development and tests. Blob IDs are content-addressed
(base64url BLAKE2b-256, the same shape as Walrus blob IDs), certification
arrives after a configurable number of status polls, and faults can be
injected (tampered content, transient read failures, quota rejections).
"""

import base64
import hashlib
from collections import Counter
from typing import Optional

import structlog

from blobverify.clients.base import BalanceOracle, StorageClient
from blobverify.errors import BackendUnavailable, BlobNotFound, InsufficientStorage
from blobverify.models import BlobRecord, StorageObject, StorageUsage, WriteResult

logger = structlog.get_logger()


def content_blob_id(data: bytes) -> str:
    """Derive a content-addressed blob ID from raw bytes."""
    digest = hashlib.blake2b(data, digest_size=32).digest()
    return base64.urlsafe_b64encode(digest).decode().rstrip("=")


class InMemoryStorageClient(StorageClient):
    """
    In-process storage backend.

    Args:
        providers: Provider names reported for every blob
        certification_delay: Number of get_blob_info calls before a blob
            reports a certified epoch (0 = certified on write)
        quota_bytes: Optional total capacity; writes beyond it are rejected
        current_epoch: Epoch recorded on registration and certification
    """

    def __init__(
        self,
        providers: Optional[list[str]] = None,
        certification_delay: int = 0,
        quota_bytes: Optional[int] = None,
        current_epoch: int = 1,
        poa_available: bool = True,
    ):
        self.providers = list(providers) if providers is not None else ["provider-1", "provider-2"]
        self.certification_delay = certification_delay
        self.quota_bytes = quota_bytes
        self.current_epoch = current_epoch
        self.poa_available = poa_available

        self.calls: Counter = Counter()
        self._blobs: dict[str, bytes] = {}
        self._stored: dict[str, bytes] = {}
        self._metadata: dict[str, dict[str, str]] = {}
        self._registered: dict[str, int] = {}
        self._certified: dict[str, int] = {}
        self._polls: Counter = Counter()
        self._read_failures = 0

    @property
    def used_bytes(self) -> int:
        return sum(len(data) for data in self._stored.values())

    async def write_blob(self, data: bytes, *, epochs: Optional[int] = None) -> WriteResult:
        self.calls["write_blob"] += 1
        data = bytes(data)
        blob_id = content_blob_id(data)

        if blob_id in self._stored:
            return WriteResult(
                blob_id=blob_id,
                size=len(data),
                registered_epoch=self._registered.get(blob_id),
                certified_epoch=self._certified.get(blob_id),
                newly_created=False,
            )

        if self.quota_bytes is not None and self.used_bytes + len(data) > self.quota_bytes:
            raise InsufficientStorage(
                "Write rejected: storage quota exceeded",
                required=len(data),
                available=max(self.quota_bytes - self.used_bytes, 0),
            )

        self._stored[blob_id] = data
        self._blobs[blob_id] = data
        self._registered[blob_id] = self.current_epoch
        if self.certification_delay == 0:
            self._certified[blob_id] = self.current_epoch

        logger.debug("Stored blob in memory", blob_id=blob_id, size=len(data), epochs=epochs)

        return WriteResult(
            blob_id=blob_id,
            size=len(data),
            registered_epoch=self.current_epoch,
            certified_epoch=self._certified.get(blob_id),
        )

    async def read_blob(self, blob_id: str) -> bytes:
        self.calls["read_blob"] += 1
        if self._read_failures > 0:
            self._read_failures -= 1
            raise BackendUnavailable(f"Simulated read failure for {blob_id}")
        if blob_id not in self._blobs:
            raise BlobNotFound(blob_id)
        return self._blobs[blob_id]

    async def get_blob_info(self, blob_id: str) -> BlobRecord:
        self.calls["get_blob_info"] += 1
        if blob_id not in self._stored:
            raise BlobNotFound(blob_id)

        self._polls[blob_id] += 1
        if blob_id not in self._certified and self._polls[blob_id] > self.certification_delay:
            self._certified[blob_id] = self.current_epoch

        return BlobRecord(
            blob_id=blob_id,
            size=len(self._stored[blob_id]),
            registered_epoch=self._registered.get(blob_id),
            certified_epoch=self._certified.get(blob_id),
            provider_count=len(self.providers),
        )

    async def get_blob_metadata(self, blob_id: str) -> dict[str, str]:
        self.calls["get_blob_metadata"] += 1
        if blob_id not in self._stored:
            raise BlobNotFound(blob_id)
        return dict(self._metadata.get(blob_id, {}))

    async def get_storage_providers(self, blob_id: str) -> list[str]:
        self.calls["get_storage_providers"] += 1
        return list(self.providers)

    async def verify_poa(self, blob_id: str) -> bool:
        self.calls["verify_poa"] += 1
        return self.poa_available and blob_id in self._certified

    async def execute_write_attributes_transaction(
        self,
        blob_id: str,
        attributes: dict[str, str],
    ) -> Optional[str]:
        self.calls["execute_write_attributes_transaction"] += 1
        if blob_id not in self._stored:
            raise BlobNotFound(blob_id)
        self._metadata.setdefault(blob_id, {}).update(
            {key: str(value) for key, value in attributes.items()}
        )
        return f"tx-{blob_id[:16]}"

    # ------------------------------------------------------------------
    # Fault injection
    # ------------------------------------------------------------------

    def tamper(self, blob_id: str, data: bytes) -> None:
        """Serve different bytes for a blob on subsequent reads."""
        self._blobs[blob_id] = bytes(data)

    def make_unavailable(self, blob_id: str) -> None:
        """Stop serving a blob while keeping its on-network record."""
        self._blobs.pop(blob_id, None)

    def fail_next_reads(self, count: int) -> None:
        self._read_failures = count

    def set_metadata(self, blob_id: str, metadata: dict[str, str]) -> None:
        self._metadata[blob_id] = dict(metadata)


class InMemoryBalanceOracle(BalanceOracle):
    """Static balances, usage and storage reservations, adjustable between calls."""

    def __init__(
        self,
        token_balance: Optional[int] = 2000,
        storage_fund_balance: Optional[int] = 1000,
        used: int = 0,
        total: int = 2000,
        storage_objects: Optional[list[StorageObject]] = None,
        current_epoch: Optional[int] = 1,
    ):
        self.token_balance = token_balance
        self.storage_fund_balance = storage_fund_balance
        self.usage: Optional[StorageUsage] = StorageUsage(used=used, total=total)
        self.storage_objects: Optional[list[StorageObject]] = list(storage_objects or [])
        self.current_epoch = current_epoch
        self.calls: Counter = Counter()

    async def get_token_balance(self) -> Optional[int]:
        self.calls["get_token_balance"] += 1
        return self.token_balance

    async def get_storage_fund_balance(self) -> Optional[int]:
        self.calls["get_storage_fund_balance"] += 1
        return self.storage_fund_balance

    async def get_storage_usage(self) -> Optional[StorageUsage]:
        self.calls["get_storage_usage"] += 1
        return self.usage

    async def get_storage_objects(self) -> Optional[list[StorageObject]]:
        self.calls["get_storage_objects"] += 1
        if self.storage_objects is None:
            return None
        return list(self.storage_objects)

    async def get_current_epoch(self) -> Optional[int]:
        self.calls["get_current_epoch"] += 1
        return self.current_epoch
