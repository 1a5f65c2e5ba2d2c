from __future__ import annotations

import logging
from pathlib import Path

import pytest

from engine_config import load_engine_environment
from logging_config import setup_logging

_KEYS = (
    "ALPHA_VANTAGE_API_KEY",
    "TAVILY_API_KEY",
    "INTEL_REQUESTS_PER_MINUTE",
    "MONITOR_STORE_PATH",
    "ENGINE_POLICY_PATH",
    "IPS_PROFILES_PATH",
    "MONITOR_INTERVAL_SECONDS",
    "DEFAULT_IPS_ID",
)


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> str:
    # register every key so values load_dotenv writes are undone on teardown
    for key in _KEYS:
        monkeypatch.setenv(key, "")
        monkeypatch.delenv(key)
    return str(tmp_path / "missing.env")


class TestLoadEngineEnvironment:
    def test_defaults(self, clean_env: str) -> None:
        env = load_engine_environment(clean_env)

        assert env.alpha_vantage_api_key == ""
        assert not env.has_paid_intelligence
        assert env.requests_per_minute == 30
        assert env.monitor_store_path == "data/monitor_results.db"
        assert env.policy_path is None
        assert env.monitor_interval_seconds == 3600
        assert env.default_ips_id == "conservative_pcs"

    def test_overrides(self, clean_env: str, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("TAVILY_API_KEY", "tvly-123")
        monkeypatch.setenv("INTEL_REQUESTS_PER_MINUTE", "10")
        monkeypatch.setenv("ENGINE_POLICY_PATH", "/etc/engine/policy.yaml")
        monkeypatch.setenv("DEFAULT_IPS_ID", "income_pcs")

        env = load_engine_environment(clean_env)

        assert env.has_paid_intelligence
        assert env.requests_per_minute == 10
        assert env.policy_path == Path("/etc/engine/policy.yaml")
        assert env.default_ips_id == "income_pcs"

    def test_env_file(self, clean_env: str, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        env_file = tmp_path / ".env"
        env_file.write_text("ALPHA_VANTAGE_API_KEY=from-file\nMONITOR_INTERVAL_SECONDS=900\n", encoding="utf-8")
        monkeypatch.setenv("MONITOR_INTERVAL_SECONDS", "1800")

        env = load_engine_environment(str(env_file))

        assert env.alpha_vantage_api_key == "from-file"
        assert env.monitor_interval_seconds == 1800


def test_setup_logging_is_idempotent(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LOG_LEVEL", "debug")
    name = "spread_engine_test_logger"

    logger = setup_logging(name, log_file=str(tmp_path / "logs" / "engine.log"))
    again = setup_logging(name, log_file=str(tmp_path / "logs" / "engine.log"))

    try:
        assert logger is again
        assert logger.level == logging.DEBUG
        assert len(logger.handlers) == 2
        assert not logger.propagate
        assert (tmp_path / "logs").is_dir()
    finally:
        for handler in list(logger.handlers):
            handler.close()
            logger.removeHandler(handler)
