"""
TOML-based configuration for SwineStake servers.

Loads settings from a TOML file and/or environment variables.
Environment variables take precedence over file values.

Usage:
    from swinestake_core.config import load_config
    cfg = load_config("swinestake.toml")
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from swinestake_core.params import (
    DEFAULT_FIXED_LOCK_SECONDS,
    DEFAULT_FIXED_RATE_BPS,
    DEFAULT_FLEXIBLE_INTERVAL_SECONDS,
    DEFAULT_FLEXIBLE_RATE_BPS,
    StakingParameters,
)

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib


@dataclass
class StakingConfig:
    """Engine parameters and identities."""
    fixed_rate_bps: int = DEFAULT_FIXED_RATE_BPS
    flexible_rate_bps: int = DEFAULT_FLEXIBLE_RATE_BPS
    fixed_lock_seconds: int = DEFAULT_FIXED_LOCK_SECONDS
    flexible_interval_seconds: int = DEFAULT_FLEXIBLE_INTERVAL_SECONDS
    # Owner identity: an explicit address wins over a seed.  With neither,
    # the server generates an ephemeral owner wallet at startup.
    owner_address: str = ""
    owner_seed: str = ""
    vault_address: str = "sSwineStakeVault"
    check_invariants: bool = True

    def to_parameters(self) -> StakingParameters:
        return StakingParameters(
            fixed_rate_bps=self.fixed_rate_bps,
            flexible_rate_bps=self.flexible_rate_bps,
            fixed_lock_seconds=self.fixed_lock_seconds,
            flexible_interval_seconds=self.flexible_interval_seconds,
        )


@dataclass
class AssetsConfig:
    """In-memory collaborator assets used by the bundled server."""
    staking_symbol: str = "SWINE"
    reward_symbol: str = "OINK"
    promise_symbol: str = "pSWINE"
    # When True the reward asset is the staking asset itself
    shared: bool = False


@dataclass
class GenesisConfig:
    """
    Initial balances of the in-memory assets.

    ``balances`` maps address → staking-asset units.  ``reward_pool`` is
    credited to the vault in the reward asset.
    """
    balances: dict[str, int] = field(default_factory=dict)
    reward_pool: int = 0


@dataclass
class APIConfig:
    """REST API settings."""
    enabled: bool = True
    host: str = "127.0.0.1"
    port: int = 8080
    api_key: str = ""                 # require this key on POST endpoints (empty = no auth)
    rate_limit_rpm: int = 120          # max requests per minute per IP (0 = unlimited)
    cors_origins: list[str] = field(default_factory=list)
    max_body_bytes: int = 65_536


@dataclass
class StorageConfig:
    """Event persistence settings."""
    enabled: bool = False
    path: str = "data/swinestake.db"


@dataclass
class LoggingConfig:
    level: str = "INFO"
    format: str = "human"   # "human" or "json"
    file: str | None = None
    event_file: str | None = None
    levels: dict[str, str] = field(default_factory=dict)


@dataclass
class SwineStakeConfig:
    """Top-level configuration container."""
    staking: StakingConfig = field(default_factory=StakingConfig)
    assets: AssetsConfig = field(default_factory=AssetsConfig)
    genesis: GenesisConfig = field(default_factory=GenesisConfig)
    api: APIConfig = field(default_factory=APIConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _merge(dc: Any, raw: dict[str, Any]) -> None:
    """Merge a raw dict into a dataclass instance (in-place)."""
    for key, value in raw.items():
        key_under = key.replace("-", "_")
        if hasattr(dc, key_under):
            setattr(dc, key_under, value)


def load_config(path: str | None = None) -> SwineStakeConfig:
    """
    Load configuration from a TOML file, then overlay environment variables.

    Env-var mapping:
        SWINESTAKE_FIXED_RATE_BPS       -> staking.fixed_rate_bps
        SWINESTAKE_FLEXIBLE_RATE_BPS    -> staking.flexible_rate_bps
        SWINESTAKE_FIXED_LOCK_SECONDS   -> staking.fixed_lock_seconds
        SWINESTAKE_FLEXIBLE_INTERVAL    -> staking.flexible_interval_seconds
        SWINESTAKE_OWNER                -> staking.owner_address
        SWINESTAKE_OWNER_SEED           -> staking.owner_seed
        SWINESTAKE_HOST / _PORT         -> api.host / api.port
        SWINESTAKE_API_KEY              -> api.api_key
        SWINESTAKE_CORS_ORIGINS         -> api.cors_origins (comma-separated)
        SWINESTAKE_LOG_LEVEL / _LOG_FMT -> logging.level / logging.format
        SWINESTAKE_EVENT_LOG            -> logging.event_file
        SWINESTAKE_DB_PATH              -> storage.path (enables storage)
    """
    cfg = SwineStakeConfig()

    # ── TOML file ────────────────────────────────────────────────
    if path is not None:
        p = Path(path)
        if p.exists():
            with open(p, "rb") as f:
                data = tomllib.load(f)
            for section_name, section_dc in [
                ("staking", cfg.staking),
                ("assets", cfg.assets),
                ("genesis", cfg.genesis),
                ("api", cfg.api),
                ("storage", cfg.storage),
                ("logging", cfg.logging),
            ]:
                if section_name in data:
                    _merge(section_dc, data[section_name])

    # ── Environment variable overrides ───────────────────────────
    if v := os.environ.get("SWINESTAKE_FIXED_RATE_BPS"):
        cfg.staking.fixed_rate_bps = int(v)
    if v := os.environ.get("SWINESTAKE_FLEXIBLE_RATE_BPS"):
        cfg.staking.flexible_rate_bps = int(v)
    if v := os.environ.get("SWINESTAKE_FIXED_LOCK_SECONDS"):
        cfg.staking.fixed_lock_seconds = int(v)
    if v := os.environ.get("SWINESTAKE_FLEXIBLE_INTERVAL"):
        cfg.staking.flexible_interval_seconds = int(v)
    if v := os.environ.get("SWINESTAKE_OWNER"):
        cfg.staking.owner_address = v
    if v := os.environ.get("SWINESTAKE_OWNER_SEED"):
        cfg.staking.owner_seed = v
    if v := os.environ.get("SWINESTAKE_HOST"):
        cfg.api.host = v
    if v := os.environ.get("SWINESTAKE_PORT"):
        cfg.api.port = int(v)
    if v := os.environ.get("SWINESTAKE_API_KEY"):
        cfg.api.api_key = v
    if v := os.environ.get("SWINESTAKE_CORS_ORIGINS"):
        cfg.api.cors_origins = [o.strip() for o in v.split(",") if o.strip()]
    if v := os.environ.get("SWINESTAKE_LOG_LEVEL"):
        cfg.logging.level = v.upper()
    if v := os.environ.get("SWINESTAKE_LOG_FMT"):
        cfg.logging.format = v
    if v := os.environ.get("SWINESTAKE_EVENT_LOG"):
        cfg.logging.event_file = v
    if v := os.environ.get("SWINESTAKE_DB_PATH"):
        cfg.storage.path = v
        cfg.storage.enabled = True

    return cfg
