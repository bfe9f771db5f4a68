from __future__ import annotations

from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings

PROJECT_ROOT = Path(__file__).parent.parent

DEFAULT_CHECK_INTERVAL_SECONDS = 300


class Settings(BaseSettings):
    """Central configuration loaded from environment / .env file."""

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    # Real-Debrid API token (https://real-debrid.com/apitoken)
    # Empty = all token-requiring checks are skipped
    real_debrid_api_key: str = ""
    real_debrid_base_url: str = "https://api.real-debrid.com/rest/1.0"
    request_timeout_seconds: float = 30.0

    # Re-read before every scheduling decision, see load_settings()
    check_interval_seconds: int = DEFAULT_CHECK_INTERVAL_SECONDS

    # Storage
    storage_path: str = "./data/history.json"
    streams_config_path: str = str(PROJECT_ROOT / "streams.json")
    frontend_dist_path: str = str(PROJECT_ROOT / "frontend" / "dist")

    # API
    api_host: str = "0.0.0.0"
    api_port: int = 3000

    # Logging
    log_level: str = "INFO"

    @field_validator("check_interval_seconds", mode="before")
    @classmethod
    def _interval_fallback(cls, v: object) -> int:
        try:
            n = int(v)  # type: ignore[arg-type]
        except (TypeError, ValueError):
            return DEFAULT_CHECK_INTERVAL_SECONDS
        return n if n >= 1 else DEFAULT_CHECK_INTERVAL_SECONDS

    @property
    def resolved_storage_path(self) -> Path:
        """Storage file path; relative paths resolve against the process cwd."""
        return Path(self.storage_path).expanduser().resolve()


def load_settings() -> Settings:
    """Fresh read of env + .env, for values that may change at runtime."""
    return Settings()


settings = Settings()
