"""
Storage and ledger clients for blobverify.

Components:
- StorageClient / BalanceOracle: abstract collaborator contracts
- WalrusHttpClient: Walrus publisher/aggregator client
- SuiBalanceOracle: Sui JSON-RPC balance and usage oracle
- InMemoryStorageClient / InMemoryBalanceOracle: in-process backends
"""

from blobverify.clients.base import BalanceOracle, StorageClient
from blobverify.clients.memory import (
    InMemoryBalanceOracle,
    InMemoryStorageClient,
    content_blob_id,
)
from blobverify.clients.sui import SuiBalanceOracle, SuiConfig
from blobverify.clients.walrus import WalrusConfig, WalrusHttpClient

__all__ = [
    # Contracts
    "StorageClient",
    "BalanceOracle",
    # Walrus / Sui
    "WalrusHttpClient",
    "WalrusConfig",
    "SuiBalanceOracle",
    "SuiConfig",
    # In-memory
    "InMemoryStorageClient",
    "InMemoryBalanceOracle",
    "content_blob_id",
]
