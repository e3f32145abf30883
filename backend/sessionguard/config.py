"""Application configuration management"""

import json
from functools import lru_cache
from pathlib import Path
from typing import Annotated, Any, List
from urllib.parse import quote_plus

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode

# Base directory: backend/
_BASE_DIR = Path(__file__).resolve().parent.parent


class Settings(BaseSettings):
    """Application settings with environment variable support"""

    # Application
    APP_NAME: str = "Session Guard"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    WORKERS: int = 4

    # Database (PostgreSQL)
    DATABASE_URL: str = ""
    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "sessionguard_db"
    POSTGRES_USER: str = "sessionguard"
    POSTGRES_PASSWORD: str = "sessionguard"
    DATABASE_POOL_SIZE: int = 30
    DATABASE_MAX_OVERFLOW: int = 20

    # Token signing
    SECRET_KEY: str = "dev-secret-key-change-in-production-use-openssl-rand-hex-32"
    ACCESS_SECRET_KEY: str = ""
    REFRESH_SECRET_KEY: str = ""
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 5
    REFRESH_TOKEN_EXPIRE_DAYS: int = 15

    # Duplicate presentations of a just-rotated refresh token inside this
    # window resolve to the existing successor instead of a theft alarm.
    ROTATION_GRACE_SECONDS: float = 10.0

    # Access token deny-list
    DENY_LIST_BACKEND: str = "memory"  # memory | redis
    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_KEY_PREFIX: str = "sessionguard:denied:"
    REDIS_SOCKET_TIMEOUT: float = 5.0

    # Security event worker
    RUN_EVENT_WORKER: bool = True
    EVENT_QUEUE_MAX_SIZE: int = 1000

    # Retention / listing
    LOGIN_HISTORY_RETENTION_DAYS: int = 90
    DISMISSED_ALERT_RETENTION_DAYS: int = 30
    ALERT_LIST_LIMIT: int = 50
    LOGIN_HISTORY_PAGE_SIZE: int = 50

    # Rate Limiting (explicit refresh endpoint)
    REFRESH_RATE_LIMIT_PER_MINUTE: int = 30
    REFRESH_RATE_LIMIT_PER_HOUR: int = 300

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = ""

    # CORS
    CORS_ORIGINS: Annotated[List[str], NoDecode] = ["http://localhost:3000"]

    # Peers whose X-Forwarded-For is believed; "*" trusts every peer
    FORWARDED_ALLOW_IPS: Annotated[List[str], NoDecode] = ["127.0.0.1"]

    # Database initialization discipline
    DB_INIT_MODE: str = "migrate"  # migrate | create_all | off
    DB_REQUIRE_HEAD: bool = True

    class Config:
        env_file = ".env"
        case_sensitive = True

    @field_validator("CORS_ORIGINS", "FORWARDED_ALLOW_IPS", mode="before")
    @classmethod
    def _parse_csv_list(cls, value: Any) -> Any:
        """
        Accept a JSON array or comma-separated values from env.

        Examples:
            CORS_ORIGINS=["http://localhost:3000","http://example.com"]
            CORS_ORIGINS=http://localhost:3000,http://example.com
        """
        if not isinstance(value, str):
            return value

        raw = value.strip()
        if not raw:
            return []

        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            parsed = None

        if isinstance(parsed, str):
            return [parsed]
        if isinstance(parsed, list):
            return [str(origin).strip() for origin in parsed if str(origin).strip()]

        return [origin.strip() for origin in raw.split(",") if origin.strip()]

    @model_validator(mode="after")
    def _check_lifetime_ordering(self) -> "Settings":
        """Grace window must be far shorter than access lifetime, which must be shorter than refresh lifetime."""
        access_seconds = self.ACCESS_TOKEN_EXPIRE_MINUTES * 60
        refresh_seconds = self.REFRESH_TOKEN_EXPIRE_DAYS * 86400
        if self.ROTATION_GRACE_SECONDS < 0:
            raise ValueError("ROTATION_GRACE_SECONDS must not be negative")
        if access_seconds <= 0 or refresh_seconds <= 0:
            raise ValueError("Token lifetimes must be positive")
        if self.ROTATION_GRACE_SECONDS >= access_seconds:
            raise ValueError("ROTATION_GRACE_SECONDS must be shorter than the access token lifetime")
        if access_seconds >= refresh_seconds:
            raise ValueError("Access token lifetime must be shorter than the refresh token lifetime")
        return self

    @property
    def access_secret(self) -> str:
        return self.ACCESS_SECRET_KEY or self.SECRET_KEY

    @property
    def refresh_secret(self) -> str:
        return self.REFRESH_SECRET_KEY or self.SECRET_KEY

    def get_log_file(self) -> str:
        p = self.LOG_FILE
        if not p or p.startswith(".."):
            return str(_BASE_DIR.parent / "logs" / "app.log")
        return p

    def get_database_url(self) -> str:
        """
        Resolve database URL.

        Priority:
          1) Explicit DATABASE_URL
          2) Construct from POSTGRES_* parts with safe URL encoding
        """
        if self.DATABASE_URL:
            return self.DATABASE_URL

        user = quote_plus(self.POSTGRES_USER)
        password = quote_plus(self.POSTGRES_PASSWORD)
        return (
            f"postgresql://{user}:{password}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

    def validate_security_settings(self) -> None:
        """
        Validate runtime security defaults in production.

        Raises:
            ValueError: If insecure defaults are detected.
        """
        if self.ENVIRONMENT.lower() != "production":
            return

        insecure_secret_markers = {
            "",
            "dev-secret-key-change-in-production-use-openssl-rand-hex-32",
            "your-super-secret-key-change-this-in-production",
            "change-me",
        }

        for name, value in (("access", self.access_secret), ("refresh", self.refresh_secret)):
            if value in insecure_secret_markers or len(value) < 32:
                raise ValueError(
                    f"Insecure {name} signing key for production. "
                    "Use a strong key (e.g. `openssl rand -hex 32`)."
                )

        if self.DENY_LIST_BACKEND.lower() == "memory" and self.WORKERS > 1:
            raise ValueError(
                "DENY_LIST_BACKEND=memory cannot be shared across workers. Use redis in production."
            )


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()


settings = get_settings()
