"""
Tests for settings loading and component wiring.
"""

import pytest

from blobverify.clients.sui import SuiBalanceOracle
from blobverify.clients.walrus import WalrusHttpClient
from blobverify.config import Settings, create_flow_controller, load_settings
from blobverify.flow import VerificationFlowController

ENV_VARS = [
    "WALRUS_PUBLISHER_URL",
    "WALRUS_AGGREGATOR_URLS",
    "WALRUS_EPOCHS",
    "SUI_RPC_URL",
    "SUI_OWNER_ADDRESS",
    "SUI_TOKEN_COIN_TYPE",
    "MIN_ALLOCATION",
    "MIN_STORAGE_FUND",
    "STORAGE_WARNING_THRESHOLD",
    "CERTIFICATION_POLL_INTERVAL",
]


@pytest.fixture
def clean_env(monkeypatch):
    """Unset config variables; anything set during the test is undone afterwards."""
    for name in ENV_VARS:
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)
    return monkeypatch


class TestLoadSettings:
    """Tests for load_settings."""

    def test_defaults(self, clean_env, tmp_path):
        """Test defaults without environment variables."""
        settings = load_settings(str(tmp_path / "missing.env"))

        assert settings.allocation.min_allocation == 1000
        assert settings.allocation.min_storage_fund == 100
        assert settings.allocation.warning_threshold_percent == 80.0
        assert settings.walrus.default_epochs == 52
        assert settings.sui.owner == ""
        assert settings.verification.poll_interval == 1.0

    def test_from_environment(self, clean_env, tmp_path):
        """Test settings read from environment variables."""
        clean_env.setenv("WALRUS_PUBLISHER_URL", "https://pub.example")
        clean_env.setenv("WALRUS_AGGREGATOR_URLS", "https://a.example,https://b.example")
        clean_env.setenv("WALRUS_EPOCHS", "10")
        clean_env.setenv("SUI_OWNER_ADDRESS", "0xabc")
        clean_env.setenv("MIN_ALLOCATION", "5000")
        clean_env.setenv("STORAGE_WARNING_THRESHOLD", "90")
        clean_env.setenv("CERTIFICATION_POLL_INTERVAL", "0.5")

        settings = load_settings(str(tmp_path / "missing.env"))

        assert settings.walrus.publisher_url == "https://pub.example"
        assert settings.walrus.aggregator_urls == ["https://a.example", "https://b.example"]
        assert settings.walrus.default_epochs == 10
        assert settings.sui.owner == "0xabc"
        assert settings.allocation.min_allocation == 5000
        assert settings.allocation.warning_threshold_percent == 90.0
        assert settings.verification.poll_interval == 0.5

    def test_from_env_file(self, clean_env, tmp_path):
        """Test settings read from a .env file."""
        env_file = tmp_path / ".env"
        env_file.write_text("MIN_STORAGE_FUND=250\nSUI_TOKEN_COIN_TYPE=0x1::wal::WAL\n")

        settings = load_settings(str(env_file))

        assert settings.allocation.min_storage_fund == 250
        assert settings.sui.token_coin_type == "0x1::wal::WAL"

    def test_environment_wins_over_env_file(self, clean_env, tmp_path):
        """Test the environment overrides the .env file."""
        env_file = tmp_path / ".env"
        env_file.write_text("MIN_ALLOCATION=250\n")
        clean_env.setenv("MIN_ALLOCATION", "750")

        assert load_settings(str(env_file)).allocation.min_allocation == 750

    def test_sui_rpc_url_shared_with_walrus(self, clean_env, tmp_path):
        """Test SUI_RPC_URL configures both the oracle and blob object lookups."""
        clean_env.setenv("SUI_RPC_URL", "https://fullnode.example")

        settings = load_settings(str(tmp_path / "missing.env"))

        assert settings.sui.rpc_url == "https://fullnode.example"
        assert settings.walrus.sui_rpc_url == "https://fullnode.example"


class TestCreateFlowController:
    """Tests for create_flow_controller."""

    @pytest.mark.asyncio
    async def test_wires_adapters(self):
        """Test the controller is built with Walrus and Sui adapters."""
        settings = Settings()
        settings.sui.owner = "0xabc"

        flow = create_flow_controller(settings)

        assert isinstance(flow, VerificationFlowController)
        assert isinstance(flow.storage, WalrusHttpClient)
        assert isinstance(flow.allocation.oracle, SuiBalanceOracle)
        assert flow.allocation.config is settings.allocation
        assert flow.verification.config is settings.verification
        await flow.close()
