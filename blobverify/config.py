"""
Settings and component wiring.

Configuration is read from environment variables (a .env file is loaded
first if present) and assembled into the per-component config models.
"""

import os
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field
import structlog

from blobverify.allocation import AllocationConfig, StorageAllocationManager
from blobverify.clients.sui import SuiBalanceOracle, SuiConfig
from blobverify.clients.walrus import AttributeWriter, WalrusConfig, WalrusHttpClient
from blobverify.flow import VerificationFlowController
from blobverify.verification import BlobVerificationManager, VerificationConfig

logger = structlog.get_logger()


class Settings(BaseModel):
    """All blobverify configuration."""

    walrus: WalrusConfig = Field(default_factory=WalrusConfig)
    sui: SuiConfig = Field(default_factory=SuiConfig)
    allocation: AllocationConfig = Field(default_factory=AllocationConfig)
    verification: VerificationConfig = Field(default_factory=VerificationConfig)


def _env_list(name: str) -> Optional[list[str]]:
    value = os.getenv(name)
    if not value:
        return None
    return [item.strip() for item in value.split(",") if item.strip()]


def load_settings(env_file: Optional[str] = None) -> Settings:
    """
    Build Settings from the environment.

    Recognised variables:
        WALRUS_PUBLISHER_URL, WALRUS_AGGREGATOR_URLS, WALRUS_EPOCHS,
        SUI_RPC_URL, SUI_OWNER_ADDRESS, SUI_TOKEN_COIN_TYPE,
        MIN_ALLOCATION, MIN_STORAGE_FUND, STORAGE_WARNING_THRESHOLD,
        CERTIFICATION_POLL_INTERVAL
    """
    load_dotenv(env_file)

    walrus = {}
    if os.getenv("WALRUS_PUBLISHER_URL"):
        walrus["publisher_url"] = os.getenv("WALRUS_PUBLISHER_URL")
    if _env_list("WALRUS_AGGREGATOR_URLS"):
        walrus["aggregator_urls"] = _env_list("WALRUS_AGGREGATOR_URLS")
    if os.getenv("WALRUS_EPOCHS"):
        walrus["default_epochs"] = int(os.getenv("WALRUS_EPOCHS"))

    sui = {"owner": os.getenv("SUI_OWNER_ADDRESS", "")}
    if os.getenv("SUI_RPC_URL"):
        sui["rpc_url"] = os.getenv("SUI_RPC_URL")
        walrus["sui_rpc_url"] = os.getenv("SUI_RPC_URL")
    if os.getenv("SUI_TOKEN_COIN_TYPE"):
        sui["token_coin_type"] = os.getenv("SUI_TOKEN_COIN_TYPE")

    allocation = {}
    if os.getenv("MIN_ALLOCATION"):
        allocation["min_allocation"] = int(os.getenv("MIN_ALLOCATION"))
    if os.getenv("MIN_STORAGE_FUND"):
        allocation["min_storage_fund"] = int(os.getenv("MIN_STORAGE_FUND"))
    if os.getenv("STORAGE_WARNING_THRESHOLD"):
        allocation["warning_threshold_percent"] = float(os.getenv("STORAGE_WARNING_THRESHOLD"))

    verification = {}
    if os.getenv("CERTIFICATION_POLL_INTERVAL"):
        verification["poll_interval"] = float(os.getenv("CERTIFICATION_POLL_INTERVAL"))

    settings = Settings(
        walrus=WalrusConfig(**walrus),
        sui=SuiConfig(**sui),
        allocation=AllocationConfig(**allocation),
        verification=VerificationConfig(**verification),
    )

    logger.debug(
        "Loaded settings",
        publisher=settings.walrus.publisher_url,
        rpc_url=settings.sui.rpc_url,
        min_allocation=settings.allocation.min_allocation,
    )
    return settings


def create_flow_controller(
    settings: Optional[Settings] = None,
    attribute_writer: Optional[AttributeWriter] = None,
) -> VerificationFlowController:
    """Wire the Walrus and Sui adapters into a flow controller."""
    settings = settings or load_settings()

    storage = WalrusHttpClient(settings.walrus, attribute_writer=attribute_writer)
    oracle = SuiBalanceOracle(settings.sui)

    return VerificationFlowController(
        StorageAllocationManager(oracle, settings.allocation),
        BlobVerificationManager(storage, config=settings.verification),
    )
