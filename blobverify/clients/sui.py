"""
Sui balance oracle.

Reads token balances and storage-object usage for an owner address over
Sui JSON-RPC.
"""

import itertools
import os
from typing import Any, Optional
import httpx
from pydantic import BaseModel, Field
import structlog

from blobverify.clients.base import BalanceOracle
from blobverify.errors import BackendUnavailable, ValidationError
from blobverify.models import StorageObject, StorageUsage

logger = structlog.get_logger()


class SuiConfig(BaseModel):
    """Configuration for the Sui JSON-RPC balance oracle."""

    rpc_url: str = Field(default="https://fullnode.testnet.sui.io:443")
    owner: str = Field(default="", description="Owner address")
    token_coin_type: str = Field(default="WAL")
    storage_fund_coin_type: str = Field(default="0x2::storage::Storage")
    storage_struct_type: str = Field(default="0x2::storage::Storage")
    page_size: int = Field(default=50, ge=1, le=50)
    timeout_seconds: float = Field(default=30.0)


class SuiBalanceOracle(BalanceOracle):
    """Balance oracle backed by Sui JSON-RPC."""

    def __init__(
        self,
        config: Optional[SuiConfig] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.config = config or SuiConfig(
            rpc_url=os.getenv("SUI_RPC_URL", SuiConfig().rpc_url),
            owner=os.getenv("SUI_OWNER_ADDRESS", ""),
        )
        self.client = http_client or httpx.AsyncClient(timeout=self.config.timeout_seconds)
        self._ids = itertools.count(1)

        logger.info(
            "Initialized Sui balance oracle",
            rpc_url=self.config.rpc_url,
            has_owner=bool(self.config.owner),
        )

    async def _call(self, method: str, params: list) -> Any:
        if not self.config.owner:
            raise ValidationError("No owner address configured for Sui balance oracle")

        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params,
        }
        try:
            response = await self.client.post(self.config.rpc_url, json=payload)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise BackendUnavailable(
                f"Sui RPC {method} returned HTTP {e.response.status_code}", cause=e
            ) from e
        except httpx.TransportError as e:
            raise BackendUnavailable(f"Sui RPC {method} failed: {e}", cause=e) from e

        try:
            body = response.json()
        except ValueError as e:
            raise ValidationError(f"Invalid JSON from Sui RPC {method}", cause=e) from e

        if body.get("error"):
            raise ValidationError(f"Sui RPC {method} error: {body['error'].get('message', body['error'])}")
        return body.get("result")

    async def _get_balance(self, coin_type: str) -> Optional[int]:
        result = await self._call("suix_getBalance", [self.config.owner, coin_type])
        if not result or result.get("totalBalance") is None:
            return None
        return int(result["totalBalance"])

    async def get_token_balance(self) -> Optional[int]:
        return await self._get_balance(self.config.token_coin_type)

    async def get_storage_fund_balance(self) -> Optional[int]:
        return await self._get_balance(self.config.storage_fund_coin_type)

    async def get_storage_objects(self) -> Optional[list[StorageObject]]:
        """List owned storage reservations, following pagination."""
        objects: list[StorageObject] = []
        cursor = None
        query = {
            "filter": {"StructType": self.config.storage_struct_type},
            "options": {"showContent": True},
        }

        while True:
            result = await self._call(
                "suix_getOwnedObjects",
                [self.config.owner, query, cursor, self.config.page_size],
            )
            if result is None:
                return None

            for item in result.get("data", []):
                data = item.get("data") or {}
                content = data.get("content") or {}
                if content.get("dataType") != "moveObject":
                    continue
                fields = content.get("fields") or {}
                objects.append(
                    StorageObject(
                        object_id=data.get("objectId", ""),
                        storage_size=int(fields.get("storage_size", 0)),
                        used_size=int(fields.get("used_size") or 0),
                        end_epoch=int(fields.get("end_epoch", 0)),
                    )
                )

            if not result.get("hasNextPage"):
                break
            cursor = result.get("nextCursor")

        return objects

    async def get_storage_usage(self) -> Optional[StorageUsage]:
        """Sum size and usage over all owned storage objects."""
        objects = await self.get_storage_objects()
        if objects is None:
            return None

        total = sum(obj.storage_size for obj in objects)
        used = sum(obj.used_size for obj in objects)
        logger.debug("Fetched storage usage", used=used, total=total, objects=len(objects))
        return StorageUsage(used=used, total=total)

    async def get_current_epoch(self) -> Optional[int]:
        result = await self._call("suix_getLatestSuiSystemState", [])
        if not result or result.get("epoch") is None:
            return None
        return int(result["epoch"])

    async def close(self):
        await self.client.aclose()
