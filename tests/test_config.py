"""
Tests for TOML + environment configuration loading.
"""

import pytest

from swinestake_core.config import SwineStakeConfig, load_config
from swinestake_core.errors import InvalidParameter

_ENV_VARS = [
    "SWINESTAKE_FIXED_RATE_BPS", "SWINESTAKE_FLEXIBLE_RATE_BPS",
    "SWINESTAKE_FIXED_LOCK_SECONDS", "SWINESTAKE_FLEXIBLE_INTERVAL",
    "SWINESTAKE_OWNER", "SWINESTAKE_OWNER_SEED", "SWINESTAKE_HOST",
    "SWINESTAKE_PORT", "SWINESTAKE_API_KEY", "SWINESTAKE_CORS_ORIGINS",
    "SWINESTAKE_LOG_LEVEL", "SWINESTAKE_LOG_FMT", "SWINESTAKE_DB_PATH",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for var in _ENV_VARS:
        monkeypatch.delenv(var, raising=False)


SAMPLE_TOML = """
[staking]
fixed_rate_bps = 1500
flexible-rate-bps = 250
fixed_lock_seconds = 604800
owner_address = "sOwnerFromFile"

[assets]
shared = true

[genesis]
reward_pool = 5000

[genesis.balances]
sAlice = 1000
sBob = 2000

[api]
port = 9090
cors_origins = ["https://app.example"]

[logging]
level = "DEBUG"
format = "json"
levels = { swinestake_api = "WARNING" }
"""


class TestLoadConfig:
    def test_defaults_without_file(self):
        cfg = load_config(None)
        assert isinstance(cfg, SwineStakeConfig)
        assert cfg.staking.fixed_rate_bps == 3000
        assert cfg.api.port == 8080
        assert cfg.storage.enabled is False

    def test_missing_file_uses_defaults(self, tmp_path):
        cfg = load_config(str(tmp_path / "nope.toml"))
        assert cfg.assets.staking_symbol == "SWINE"

    def test_toml_sections(self, tmp_path):
        path = tmp_path / "swinestake.toml"
        path.write_text(SAMPLE_TOML)
        cfg = load_config(str(path))
        assert cfg.staking.fixed_rate_bps == 1500
        assert cfg.staking.flexible_rate_bps == 250
        assert cfg.staking.owner_address == "sOwnerFromFile"
        assert cfg.assets.shared is True
        assert cfg.genesis.balances == {"sAlice": 1000, "sBob": 2000}
        assert cfg.genesis.reward_pool == 5000
        assert cfg.api.cors_origins == ["https://app.example"]
        assert cfg.logging.format == "json"
        assert cfg.logging.levels == {"swinestake_api": "WARNING"}

        params = cfg.staking.to_parameters()
        assert params.fixed_lock_seconds == 604800

    def test_env_overrides_file(self, tmp_path, monkeypatch):
        path = tmp_path / "swinestake.toml"
        path.write_text(SAMPLE_TOML)
        monkeypatch.setenv("SWINESTAKE_FIXED_RATE_BPS", "42")
        monkeypatch.setenv("SWINESTAKE_PORT", "7000")
        monkeypatch.setenv("SWINESTAKE_CORS_ORIGINS", "https://a.test, https://b.test")
        monkeypatch.setenv("SWINESTAKE_LOG_LEVEL", "warning")
        cfg = load_config(str(path))
        assert cfg.staking.fixed_rate_bps == 42
        assert cfg.api.port == 7000
        assert cfg.api.cors_origins == ["https://a.test", "https://b.test"]
        assert cfg.logging.level == "WARNING"

    def test_db_path_enables_storage(self, monkeypatch):
        monkeypatch.setenv("SWINESTAKE_DB_PATH", "/tmp/x.db")
        cfg = load_config(None)
        assert cfg.storage.enabled is True
        assert cfg.storage.path == "/tmp/x.db"

    def test_event_log_env(self, monkeypatch):
        monkeypatch.setenv("SWINESTAKE_EVENT_LOG", "data/events.ndjson")
        assert load_config(None).logging.event_file == "data/events.ndjson"

    def test_invalid_duration_surfaces_on_parameters(self, monkeypatch):
        monkeypatch.setenv("SWINESTAKE_FLEXIBLE_INTERVAL", "0")
        cfg = load_config(None)
        with pytest.raises(InvalidParameter):
            cfg.staking.to_parameters()
