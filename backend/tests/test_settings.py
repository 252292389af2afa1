"""Tests for environment configuration loading."""

import pytest

from conftest import PROGRAM_ID
from settings import NETWORK_RPC_URLS, ConfigError, load_settings


class TestLoadSettings:
    def test_defaults(self) -> None:
        settings = load_settings({})
        assert settings.network == "devnet"
        assert settings.rpc_url == NETWORK_RPC_URLS["devnet"]
        assert settings.program_id == PROGRAM_ID
        assert settings.marketplace_name == "NFT-Nexus"
        assert settings.commitment == "confirmed"
        assert settings.skip_preflight is False
        assert settings.transaction_timeout_sec == 60.0

    def test_network_selects_rpc_url(self) -> None:
        assert load_settings({"SOLANA_NETWORK": "mainnet-beta"}).rpc_url == NETWORK_RPC_URLS["mainnet-beta"]

    def test_explicit_rpc_url_wins(self) -> None:
        settings = load_settings({"SOLANA_RPC_URL": "http://localhost:8899"})
        assert settings.rpc_url == "http://localhost:8899"

    @pytest.mark.parametrize("value", ["yes", "true", "1", "ON"])
    def test_bool_flags(self, value) -> None:
        assert load_settings({"SKIP_PREFLIGHT": value}).skip_preflight is True

    @pytest.mark.parametrize(
        "env",
        [
            {"SOLANA_NETWORK": "moonnet"},
            {"MARKETPLACE_PROGRAM_ID": "not-a-key"},
            {"MAX_RETRIES": "three"},
            {"TRANSACTION_TIMEOUT_SEC": "0"},
            {"SOLANA_COMMITMENT": "eventually"},
            {"MARKETPLACE_NAME": "x" * 33},
            {"SOLANA_RPC_URL": "ftp://nope"},
        ],
    )
    def test_invalid_values_rejected(self, env) -> None:
        with pytest.raises(ConfigError):
            load_settings(env)
