"""Application configuration loaded from environment variables."""

from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings

from tidesync.uploader.client import base_url_for


class Settings(BaseSettings):
    """All configuration is loaded from environment variables (or .env file)."""

    # --- App ---
    app_name: str = "tidesync"
    app_version: str = "0.1.0"
    debug: bool = False
    log_level: str = "INFO"
    environment: str = "development"  # development | staging | production

    # --- Tidepool account ---
    tidepool_username: str | None = None
    tidepool_password: str | None = None
    tidepool_dev_servers: bool = False  # int-api.tidepool.org instead of api.tidepool.org

    # --- Client identity (used to find our own open dataset) ---
    tidepool_client_id: str = "info.nightscout.androidaps"
    tidepool_client_version: str = "0.1.0"

    # --- Local state ---
    state_path: Path = Path("~/.tidesync/state.json")

    # --- Upload behaviour ---
    login_wake_ms: int = 30_000
    upload_wake_ms: int = 60_000
    max_chunk_days: int = 7
    max_chunk_records: int = 1000
    http_timeout_seconds: float = 30.0
    status_history_size: int = 50

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    @property
    def tidepool_base_url(self) -> str:
        return base_url_for(self.tidepool_dev_servers)

    @property
    def resolved_state_path(self) -> Path:
        return self.state_path.expanduser()


@lru_cache
def get_settings() -> Settings:
    return Settings()
