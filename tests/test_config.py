"""Tests for environment-driven settings."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from dex_buy_tracker.config import Settings


@pytest.fixture(autouse=True)
def isolated_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Run every test away from any local .env file."""
    monkeypatch.chdir(tmp_path)
    for name in (
        "BSC_RPC_URL",
        "ETH_RPC_URL",
        "DATABASE_URL",
        "REDIS_URL",
        "TELEGRAM_BOT_TOKEN",
        "DRY_RUN",
        "HEALTH_PORT",
        "TRACKER_LAUNCHPAD_ROUTER",
    ):
        monkeypatch.delenv(name, raising=False)


class TestSettings:
    """Tests for Settings loading and validation."""

    def test_defaults(self) -> None:
        settings = Settings()

        assert settings.chains.configured() == {}
        assert settings.database.url == "sqlite+aiosqlite:///data/group_settings.db"
        assert settings.redis.url is None
        assert settings.dispatch.capacity == 5000
        assert settings.tracker.discovery_max_pools == 15
        assert settings.tracker.aggregator_heavy_chains == frozenset({"monad"})
        assert not settings.telegram.enabled

    def test_configured_chains_from_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("BSC_RPC_URL", " wss://bsc.example/ws ")
        monkeypatch.setenv("ETH_RPC_URL", "https://eth.example")

        settings = Settings()

        assert settings.chains.configured() == {
            "bsc": "wss://bsc.example/ws",
            "ethereum": "https://eth.example",
        }
        assert settings.chains.explorer_for("bsc") == "https://bscscan.com"

    def test_invalid_endpoint_scheme(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("BSC_RPC_URL", "ftp://bsc.example")
        with pytest.raises(ValidationError):
            Settings()

    def test_invalid_redis_url(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("REDIS_URL", "http://localhost:6379")
        with pytest.raises(ValidationError):
            Settings()

    def test_aggregator_chains_csv(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("TRACKER_AGGREGATOR_HEAVY_CHAINS", "Monad, bsc ,,")
        assert Settings().tracker.aggregator_heavy_chains == frozenset({"monad", "bsc"})

    def test_validate_requirements(self, monkeypatch: pytest.MonkeyPatch) -> None:
        with pytest.raises(ValueError, match="chain RPC endpoint"):
            Settings().validate_requirements()

        monkeypatch.setenv("BSC_RPC_URL", "wss://bsc.example/ws")
        with pytest.raises(ValueError, match="TELEGRAM_BOT_TOKEN"):
            Settings().validate_requirements()

        monkeypatch.setenv("DRY_RUN", "true")
        Settings().validate_requirements()

    def test_redacted_summary_hides_secrets(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("DATABASE_URL", "postgresql://tracker:hunter2@db:5432/tracker")
        monkeypatch.setenv("TELEGRAM_BOT_TOKEN", "123:secret")

        summary = Settings().redacted_summary()

        assert summary["database_url"] == "postgresql://tracker:***@db:5432/tracker"
        assert summary["telegram_bot_token"] == "(set)"
        assert "hunter2" not in str(summary)
        assert "secret" not in str(summary)

    def test_launchpad_defaults(self) -> None:
        tracker = Settings().tracker

        assert tracker.launchpads() == {"monad": "0x6f6b8f1a20703309951a5127c45b49b1cd981a22"}
        assert tracker.launchpad_base_token == "0x" + "0" * 40

    def test_empty_launchpad_router_disables_it(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("TRACKER_LAUNCHPAD_ROUTER", "")
        assert Settings().tracker.launchpads() == {}

    def test_invalid_launchpad_router(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("TRACKER_LAUNCHPAD_ROUTER", "0x1234")
        with pytest.raises(ValidationError):
            Settings()

    def test_health_port(self, monkeypatch: pytest.MonkeyPatch) -> None:
        assert Settings().health_port == 3000

        monkeypatch.setenv("HEALTH_PORT", "0")
        assert Settings().health_port == 0

        monkeypatch.setenv("HEALTH_PORT", "70000")
        with pytest.raises(ValidationError):
            Settings()
