"""
Walrus HTTP Storage Client

Stores and reads blobs through Walrus publisher and aggregator HTTP APIs.
"""

import asyncio
import os
from typing import Awaitable, Callable, Optional
import httpx
from pydantic import BaseModel, Field
import structlog

from blobverify.clients.base import StorageClient
from blobverify.errors import (
    BackendUnavailable,
    BlobNotFound,
    InsufficientStorage,
    ValidationError,
)
from blobverify.models import BlobRecord, WriteResult

logger = structlog.get_logger()

AttributeWriter = Callable[[str, dict[str, str]], Awaitable[Optional[str]]]

# Status codes the publisher uses for quota / allocation rejections
_QUOTA_STATUSES = {413, 449, 507}
_RETRYABLE_STATUSES = {408, 429, 460}


class WalrusConfig(BaseModel):
    """Configuration for the Walrus HTTP client."""

    publisher_url: str = Field(
        default="https://publisher.walrus-testnet.walrus.space",
        description="Publisher base URL (writes)",
    )

    # The first aggregator is used for reads, all of them count as providers
    aggregator_urls: list[str] = Field(
        default_factory=lambda: ["https://aggregator.walrus-testnet.walrus.space"],
        description="Aggregator base URLs (reads)",
    )

    default_epochs: int = Field(default=52, gt=0)

    # Aggregator response headers exposed as blob metadata
    attribute_headers: list[str] = Field(
        default_factory=lambda: ["content-type", "content-disposition", "content-encoding"],
    )

    # Sui full node used to re-read blob objects whose certification is pending
    sui_rpc_url: Optional[str] = Field(default="https://fullnode.testnet.sui.io:443")

    timeout_seconds: float = Field(default=60.0)


class WalrusHttpClient(StorageClient):
    """
    Storage client for Walrus publisher/aggregator endpoints.

    Blob records returned by the publisher at write time are cached so that
    registration and certification epochs can be reported later. Attribute
    writes are on-chain transactions and are delegated to an injected signer.
    """

    def __init__(
        self,
        config: Optional[WalrusConfig] = None,
        attribute_writer: Optional[AttributeWriter] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        if config is None:
            aggregators = os.getenv("WALRUS_AGGREGATOR_URLS")
            config = WalrusConfig(
                publisher_url=os.getenv("WALRUS_PUBLISHER_URL", WalrusConfig().publisher_url),
                aggregator_urls=(
                    [url.strip() for url in aggregators.split(",") if url.strip()]
                    if aggregators
                    else WalrusConfig().aggregator_urls
                ),
            )
        self.config = config
        self.attribute_writer = attribute_writer
        self.client = http_client or httpx.AsyncClient(timeout=self.config.timeout_seconds)
        self._records: dict[str, BlobRecord] = {}
        self._object_ids: dict[str, str] = {}

        logger.info(
            "Initialized Walrus storage client",
            publisher=self.config.publisher_url,
            aggregators=len(self.config.aggregator_urls),
            has_attribute_writer=attribute_writer is not None,
        )

    @property
    def primary_aggregator(self) -> str:
        if not self.config.aggregator_urls:
            raise ValidationError("No Walrus aggregator configured")
        return self.config.aggregator_urls[0]

    def _blob_url(self, aggregator: str, blob_id: str) -> str:
        return f"{aggregator.rstrip('/')}/v1/blobs/{blob_id}"

    async def _request(self, method: str, url: str, blob_id: Optional[str] = None, **kwargs) -> httpx.Response:
        try:
            response = await self.client.request(method, url, **kwargs)
        except httpx.TransportError as e:
            raise BackendUnavailable(f"Walrus request failed: {e}", cause=e) from e

        if response.is_success:
            return response

        status = response.status_code
        if status == 404 and blob_id:
            raise BlobNotFound(blob_id)
        if status in _QUOTA_STATUSES:
            raise InsufficientStorage(f"Walrus rejected write: HTTP {status}")
        if status in _RETRYABLE_STATUSES or status >= 500:
            raise BackendUnavailable(f"Walrus returned HTTP {status} for {method} {url}")
        raise ValidationError(f"Walrus returned HTTP {status} for {method} {url}: {response.text[:200]}")

    async def write_blob(self, data: bytes, *, epochs: Optional[int] = None) -> WriteResult:
        if not data:
            raise ValidationError("Cannot upload empty data")

        url = f"{self.config.publisher_url.rstrip('/')}/v1/blobs"
        response = await self._request(
            "PUT",
            url,
            params={"epochs": epochs or self.config.default_epochs},
            content=bytes(data),
            headers={"Content-Type": "application/octet-stream"},
        )

        try:
            payload = response.json()
        except ValueError as e:
            raise ValidationError("Invalid JSON response from Walrus publisher", cause=e) from e

        result = self._parse_write_response(payload, len(data))
        object_id = ((payload.get("newlyCreated") or {}).get("blobObject") or {}).get("id")
        if object_id:
            self._object_ids[result.blob_id] = object_id
        self._records[result.blob_id] = BlobRecord(
            blob_id=result.blob_id,
            size=result.size,
            registered_epoch=result.registered_epoch,
            certified_epoch=result.certified_epoch,
        )

        logger.info(
            "Stored blob on Walrus",
            blob_id=result.blob_id,
            size_bytes=result.size,
            newly_created=result.newly_created,
        )
        return result

    @staticmethod
    def _parse_write_response(payload: dict, size: int) -> WriteResult:
        if "newlyCreated" in payload:
            blob = payload["newlyCreated"].get("blobObject") or {}
            blob_id = blob.get("blobId")
            if not blob_id:
                raise ValidationError("Walrus response is missing blobObject.blobId")
            return WriteResult(
                blob_id=blob_id,
                size=int(blob.get("size") or size),
                registered_epoch=blob.get("registeredEpoch"),
                certified_epoch=blob.get("certifiedEpoch"),
                newly_created=True,
            )

        if "alreadyCertified" in payload:
            info = payload["alreadyCertified"]
            blob_id = info.get("blobId")
            if not blob_id:
                raise ValidationError("Walrus response is missing alreadyCertified.blobId")
            event = info.get("event") or {}
            return WriteResult(
                blob_id=blob_id,
                size=size,
                certified_epoch=info.get("certifiedEpoch", event.get("epoch", 0)),
                newly_created=False,
            )

        raise ValidationError("Invalid response format from Walrus publisher")

    async def read_blob(self, blob_id: str) -> bytes:
        response = await self._request("GET", self._blob_url(self.primary_aggregator, blob_id), blob_id)
        return response.content

    async def get_blob_info(self, blob_id: str) -> BlobRecord:
        """
        Get the record for a blob.

        Epochs are only known for blobs written through this client; other
        blobs report the size served by the aggregator. A cached record that
        is not yet certified is refreshed from its on-chain blob object.
        """
        cached = self._records.get(blob_id)
        if cached is not None:
            if cached.certified:
                return cached
            return await self._refresh_certification(cached)

        response = await self._request("HEAD", self._blob_url(self.primary_aggregator, blob_id), blob_id)
        size = int(response.headers.get("content-length", 0))
        return BlobRecord(blob_id=blob_id, size=size)

    async def _refresh_certification(self, record: BlobRecord) -> BlobRecord:
        object_id = self._object_ids.get(record.blob_id)
        if not object_id or not self.config.sui_rpc_url:
            return record

        payload = {
            "jsonrpc": "2.0",
            "id": 1,
            "method": "sui_getObject",
            "params": [object_id, {"showContent": True}],
        }
        response = await self._request("POST", self.config.sui_rpc_url, json=payload)
        try:
            body = response.json()
        except ValueError as e:
            raise BackendUnavailable("Invalid JSON from Sui RPC sui_getObject", cause=e) from e

        if body.get("error"):
            logger.warning("Blob object lookup failed", blob_id=record.blob_id, error=body["error"])
            return record

        content = ((body.get("result") or {}).get("data") or {}).get("content") or {}
        certified_epoch = (content.get("fields") or {}).get("certified_epoch")
        if certified_epoch is None:
            return record

        updated = record.model_copy(update={"certified_epoch": int(certified_epoch)})
        self._records[record.blob_id] = updated
        logger.info("Blob certified", blob_id=record.blob_id, certified_epoch=updated.certified_epoch)
        return updated

    async def get_blob_metadata(self, blob_id: str) -> dict[str, str]:
        response = await self._request("HEAD", self._blob_url(self.primary_aggregator, blob_id), blob_id)
        wanted = {h.lower() for h in self.config.attribute_headers}
        return {
            key.lower(): value
            for key, value in response.headers.items()
            if key.lower() in wanted
        }

    async def get_storage_providers(self, blob_id: str) -> list[str]:
        """Return the aggregators that currently serve the blob."""

        async def serves(aggregator: str) -> bool:
            try:
                await self._request("HEAD", self._blob_url(aggregator, blob_id), blob_id)
                return True
            except BackendUnavailable as e:
                logger.debug("Aggregator does not serve blob", aggregator=aggregator, error=str(e))
                return False

        results = await asyncio.gather(*(serves(a) for a in self.config.aggregator_urls))
        return [a for a, ok in zip(self.config.aggregator_urls, results) if ok]

    async def verify_poa(self, blob_id: str) -> bool:
        record = self._records.get(blob_id)
        if record is not None and record.certified:
            return True
        # Aggregators only reconstruct certified blobs
        return len(await self.get_storage_providers(blob_id)) > 0

    async def execute_write_attributes_transaction(
        self,
        blob_id: str,
        attributes: dict[str, str],
    ) -> Optional[str]:
        if self.attribute_writer is None:
            raise ValidationError("No attribute writer configured for Walrus client")
        digest = await self.attribute_writer(blob_id, dict(attributes))
        logger.info("Wrote blob attributes", blob_id=blob_id, keys=sorted(attributes), digest=digest)
        return digest

    def get_read_url(self, blob_id: str) -> str:
        return self._blob_url(self.primary_aggregator, blob_id)

    async def close(self):
        """Close the HTTP client."""
        await self.client.aclose()
