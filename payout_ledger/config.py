"""Configuration management using Pydantic Settings"""

from typing import Dict
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment variables"""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Database
    database_url: str = "sqlite:///./payout_ledger.db"

    # Service
    service_name: str = "payout-ledger"
    log_level: str = "INFO"

    # Payout policy
    minimum_payout_cents: int = 100_000  # 1,000.00 in minor units
    platform_commission_rate: float = 0.15

    # Optimistic concurrency
    ledger_max_attempts: int = 5
    ledger_retry_backoff_seconds: float = 0.01  # Base delay, doubled per attempt with jitter
    workflow_max_attempts: int = 3

    # Admin id -> role, e.g. ADMIN_ROLES='{"admin1": "finance"}'
    admin_roles: Dict[str, str] = {}


settings = Settings()
