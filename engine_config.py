from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv


@dataclass(slots=True)
class EngineEnvironmentConfig:
    alpha_vantage_api_key: str
    tavily_api_key: str
    requests_per_minute: int
    monitor_store_path: str
    policy_path: Path | None
    ips_path: Path | None
    monitor_interval_seconds: int
    default_ips_id: str

    @property
    def has_paid_intelligence(self) -> bool:
        return bool(self.tavily_api_key)


def _optional_path(value: str | None) -> Path | None:
    return Path(value) if value else None


def load_engine_environment(env_file: str = ".env") -> EngineEnvironmentConfig:
    load_dotenv(env_file, override=False)

    return EngineEnvironmentConfig(
        alpha_vantage_api_key=os.getenv("ALPHA_VANTAGE_API_KEY", ""),
        tavily_api_key=os.getenv("TAVILY_API_KEY", ""),
        requests_per_minute=int(os.getenv("INTEL_REQUESTS_PER_MINUTE", "30")),
        monitor_store_path=os.getenv("MONITOR_STORE_PATH", "data/monitor_results.db"),
        policy_path=_optional_path(os.getenv("ENGINE_POLICY_PATH")),
        ips_path=_optional_path(os.getenv("IPS_PROFILES_PATH")),
        monitor_interval_seconds=int(os.getenv("MONITOR_INTERVAL_SECONDS", "3600")),
        default_ips_id=os.getenv("DEFAULT_IPS_ID", "conservative_pcs"),
    )
