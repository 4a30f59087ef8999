from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

# ---------- Defaults ----------

DB_PATH = Path(__file__).parent / "grants.db"


class Settings(BaseSettings):
    """
    Runtime configuration, read from GRANT_ENGINE_* environment variables
    (or a local .env file).
    """

    model_config = SettingsConfigDict(env_prefix="GRANT_ENGINE_", env_file=".env", extra="ignore")

    database_url: str = f"sqlite:///{DB_PATH}"

    # Grant lifecycle
    default_duration_hours: int = 24

    # Sweeper
    warning_window_hours: float = 2.0
    expiry_interval_seconds: int = 15 * 60
    warning_interval_seconds: int = 60 * 60
    warn_once: bool = True
    start_sweeper: bool = True

    log_level: str = "INFO"

    # Notifications; without smtp_host everything goes to the log.
    smtp_host: Optional[str] = None
    smtp_port: int = 587
    smtp_user: Optional[str] = None
    smtp_password: Optional[str] = None
    smtp_use_tls: bool = True
    mail_from: str = "no-reply@medvault.local"


@lru_cache
def get_settings() -> Settings:
    return Settings()
