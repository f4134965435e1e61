"""
Configuration settings for the API.
Loads environment variables and provides application settings.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    """

    # Database
    DATABASE_URL: str
    SQL_ECHO: bool = False
    LOCK_TIMEOUT_MS: int = 3000  # Bounded wait for account row locks

    # Security
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30
    BCRYPT_ROUNDS: int = 12

    # API
    API_V1_PREFIX: str = "/api/v1"
    PROJECT_NAME: str = "Bank Swift Ledger API"
    VERSION: str = "1.0.0"
    DESCRIPTION: str = "Accounts, transfers and live balance updates for Bank Swift"

    # Transfers
    CLAIM_TOKEN_TTL_DAYS: int = 7
    IDEMPOTENCY_RETENTION_HOURS: Optional[int] = None  # None keeps keys forever

    # Outbox dispatcher
    OUTBOX_POLL_SECONDS: float = 5.0
    OUTBOX_BATCH_SIZE: int = 50
    OUTBOX_MAX_ATTEMPTS: int = 6
    OUTBOX_BACKOFF_BASE_SECONDS: float = 2.0
    OUTBOX_BACKOFF_MAX_SECONDS: float = 600.0
    OUTBOX_RATE_PER_SECOND: float = 5.0

    # Email
    SMTP_HOST: Optional[str] = None
    SMTP_PORT: int = 587
    SMTP_USER: Optional[str] = None
    SMTP_PASSWORD: Optional[str] = None
    MAIL_FROM: Optional[str] = None
    SMTP_TIMEOUT_SECONDS: float = 10.0
    BRAND_NAME: str = "Bank Swift"
    BRAND_PRIMARY: str = "#0b74de"

    # Webhooks
    TRANSFER_WEBHOOK_URL: Optional[str] = None
    WEBHOOK_TIMEOUT_SECONDS: float = 5.0

    # Live updates
    SSE_QUEUE_SIZE: int = 100

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_DIR: str = "logs"

    class Config:
        env_file = ".env"
        case_sensitive = True


# Create global settings instance
settings = Settings()
