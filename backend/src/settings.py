"""
Environment configuration for the marketplace client.

Everything is read from environment variables once at startup and validated
before any on-chain call is made.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Mapping, Optional

from solders.pubkey import Pubkey

DEFAULT_PROGRAM_ID = "6MAZYi6WaiB8ztJuJjoAVkbQDxZxfuQuJR3KfrfZncih"
DEFAULT_MARKETPLACE_NAME = "NFT-Nexus"

NETWORK_RPC_URLS = {
    "devnet": "https://api.devnet.solana.com",
    "testnet": "https://api.testnet.solana.com",
    "mainnet-beta": "https://api.mainnet-beta.solana.com",
}
COMMITMENTS = {"processed", "confirmed", "finalized"}


class ConfigError(ValueError):
    pass


def _env_bool(env: Mapping[str, str], name: str, default: bool = False) -> bool:
    return env.get(name, str(default)).strip().lower() in {"1", "true", "yes", "on"}


def _env_int(env: Mapping[str, str], name: str, default: str) -> int:
    raw = env.get(name, default)
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from None


def _env_float(env: Mapping[str, str], name: str, default: str) -> float:
    raw = env.get(name, default)
    try:
        return float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from None


@dataclass
class MarketplaceSettings:
    network: str = "devnet"
    rpc_url: str = NETWORK_RPC_URLS["devnet"]
    program_id: Pubkey = field(default_factory=lambda: Pubkey.from_string(DEFAULT_PROGRAM_ID))
    marketplace_name: str = DEFAULT_MARKETPLACE_NAME
    commitment: str = "confirmed"
    skip_preflight: bool = False
    transaction_timeout_sec: float = 60.0
    max_retries: int = 3
    compute_unit_limit: int = 200_000
    compute_unit_price: int = 1_000  # micro-lamports per CU
    ipfs_gateway: str = "https://ipfs.io/ipfs/"
    metadata_batch_size: int = 10
    metadata_batch_delay_ms: int = 100
    metadata_timeout_sec: float = 10.0
    metadata_cache_ttl_ms: int = 300_000
    refresh_interval_sec: float = 30.0
    rate_limit_db: str = os.path.join("backend", "marketplace_client.db")
    debug: bool = False

    def validate(self) -> "MarketplaceSettings":
        if self.network not in NETWORK_RPC_URLS:
            raise ConfigError(f"SOLANA_NETWORK must be one of {sorted(NETWORK_RPC_URLS)}, got {self.network!r}")
        if not self.rpc_url.startswith(("http://", "https://")):
            raise ConfigError(f"SOLANA_RPC_URL must be an http(s) URL, got {self.rpc_url!r}")
        if self.commitment not in COMMITMENTS:
            raise ConfigError(f"SOLANA_COMMITMENT must be one of {sorted(COMMITMENTS)}")
        if not self.marketplace_name or len(self.marketplace_name.encode("utf-8")) > 32:
            raise ConfigError("MARKETPLACE_NAME must be 1-32 bytes")
        if self.transaction_timeout_sec <= 0 or self.metadata_timeout_sec <= 0:
            raise ConfigError("Timeouts must be positive")
        if self.metadata_batch_size < 1:
            raise ConfigError("METADATA_BATCH_SIZE must be at least 1")
        if self.metadata_batch_delay_ms < 0 or self.metadata_cache_ttl_ms < 0:
            raise ConfigError("Metadata delays and TTLs cannot be negative")
        if self.max_retries < 0 or self.compute_unit_limit < 0 or self.compute_unit_price < 0:
            raise ConfigError("Retry and compute budget settings cannot be negative")
        if self.refresh_interval_sec <= 0:
            raise ConfigError("REFRESH_INTERVAL_SEC must be positive")
        return self


def load_settings(env: Optional[Mapping[str, str]] = None) -> MarketplaceSettings:
    env = os.environ if env is None else env

    network = env.get("SOLANA_NETWORK", "devnet").strip()
    program_raw = env.get("MARKETPLACE_PROGRAM_ID", DEFAULT_PROGRAM_ID).strip()
    try:
        program_id = Pubkey.from_string(program_raw)
    except Exception:
        raise ConfigError(f"MARKETPLACE_PROGRAM_ID is not a valid public key: {program_raw!r}") from None

    settings = MarketplaceSettings(
        network=network,
        rpc_url=env.get("SOLANA_RPC_URL", NETWORK_RPC_URLS.get(network, NETWORK_RPC_URLS["devnet"])),
        program_id=program_id,
        marketplace_name=env.get("MARKETPLACE_NAME", DEFAULT_MARKETPLACE_NAME),
        commitment=env.get("SOLANA_COMMITMENT", "confirmed").strip().lower(),
        skip_preflight=_env_bool(env, "SKIP_PREFLIGHT", False),
        transaction_timeout_sec=_env_float(env, "TRANSACTION_TIMEOUT_SEC", "60"),
        max_retries=_env_int(env, "MAX_RETRIES", "3"),
        compute_unit_limit=_env_int(env, "COMPUTE_UNIT_LIMIT", "200000"),
        compute_unit_price=_env_int(env, "COMPUTE_UNIT_PRICE", "1000"),
        ipfs_gateway=env.get("IPFS_GATEWAY", "https://ipfs.io/ipfs/"),
        metadata_batch_size=_env_int(env, "METADATA_BATCH_SIZE", "10"),
        metadata_batch_delay_ms=_env_int(env, "METADATA_BATCH_DELAY_MS", "100"),
        metadata_timeout_sec=_env_float(env, "METADATA_TIMEOUT_SEC", "10"),
        metadata_cache_ttl_ms=_env_int(env, "METADATA_CACHE_TTL_MS", "300000"),
        refresh_interval_sec=_env_float(env, "REFRESH_INTERVAL_SEC", "30"),
        rate_limit_db=env.get("RATE_LIMIT_DB", os.path.join("backend", "marketplace_client.db")),
        debug=_env_bool(env, "MARKETPLACE_DEBUG", False),
    )
    return settings.validate()
