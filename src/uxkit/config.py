from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    stripe_secret_key: str = ""
    stripe_api_version: Optional[str] = None  # None: account default
    stripe_timeout_seconds: float = 30.0
    database_url: str = "sqlite:///./uxkit.db"
    currency: str = "usd"
    sync_delay_seconds: float = 0.5  # pause between Stripe calls in a batch
    queue_max_attempts: int = 3
    queue_batch_size: int = 10
    queue_interval_minutes: int = 5
    stale_claim_minutes: int = 15
    nightly_sync_hour: int = 3

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
