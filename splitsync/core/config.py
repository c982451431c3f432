from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List

class Settings(BaseSettings):
    # Environment
    ENVIRONMENT: str = "development"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"

    # API Settings
    PROJECT_NAME: str = "SplitSync API"
    API_V1_STR: str = "/api/v1"
    PROJECT_VERSION: str = "0.1.0"
    DESCRIPTION: str = "Shared expenses and live group balances"

    # MongoDB (change streams need a replica set)
    MONGODB_URL: str = "mongodb://localhost:27017/?replicaSet=rs0"
    DATABASE_NAME: str = "splitsync"

    # Ledger
    SNAPSHOT_LIMIT: int = 500  # most recent N documents per subscription
    SETTLEMENT_DESCRIPTION: str = "Settlement"
    PLACEHOLDER_DISPLAY_NAME: str = "Unknown user"

    # Subscriptions: change stream reopen backoff
    STREAM_RETRY_SECONDS: float = 1.0
    STREAM_RETRY_MAX_SECONDS: float = 60.0

    # Per-identity sessions are closed after this long without a request or socket
    SESSION_IDLE_SECONDS: float = 300.0
    SESSION_SWEEP_SECONDS: float = 60.0

    # CORS
    CORS_ORIGINS: List[str] = ["http://localhost:3000", "http://localhost:8000"]

    # JWT issued by the identity provider
    SECRET_KEY: str = "change-this-in-production"
    ALGORITHM: str = "HS256"

    model_config = SettingsConfigDict(
        case_sensitive=True,
        env_file=".env"
    )

settings = Settings()
