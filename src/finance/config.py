from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = "sqlite:///./finance.db"
    log_level: str = "INFO"

    # Batch mode for /sync/transactions when neither the request nor the
    # user's settings choose one. False = each record commits on its own.
    sync_strict_batch: bool = False
    initial_transaction_window_months: int = 3

    # Housekeeping
    sync_retention_days: int = 30
    stale_session_minutes: int = 30
    sync_cleanup_hour: int = 3

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
