"""Application configuration."""
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator
from typing import Optional, Union
import os

from rollcall.core import constants


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore"
    )

    # Store backend: "memory" keeps documents in-process, "sql" persists them
    STORE_BACKEND: str = "memory"
    DATABASE_URL: Optional[str] = None

    # Security
    SECRET_KEY: str = "your-secret-key-change-in-production"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = constants.ACCESS_TOKEN_EXPIRE_MINUTES

    # CORS - Can be a list or comma-separated string
    CORS_ORIGINS: Union[list, str] = ["*"]  # In production, specify your domain

    @field_validator('CORS_ORIGINS', mode='before')
    @classmethod
    def parse_cors_origins(cls, v):
        """Parse CORS_ORIGINS from comma-separated string or list."""
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(',') if origin.strip()]
        return v

    @field_validator('STORE_BACKEND')
    @classmethod
    def check_store_backend(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in ("memory", "sql"):
            raise ValueError("STORE_BACKEND must be 'memory' or 'sql'")
        return v

    # Application
    APP_TITLE: str = "Rollcall Attendance"
    APP_DESCRIPTION: str = "Time-boxed, location-aware attendance sessions with in-person code verification"
    APP_VERSION: str = "1.0.0"

    # Environment
    ENVIRONMENT: str = "development"  # development, staging, production

    # Logging
    LOG_LEVEL: str = "INFO"  # DEBUG, INFO, WARNING, ERROR, CRITICAL

    # Sessions
    SESSION_CODE_LENGTH: int = constants.SESSION_CODE_LENGTH

    # Verification challenge
    CHALLENGE_OPEN_DELAY_SECONDS: float = constants.CHALLENGE_OPEN_DELAY_SECONDS
    CHALLENGE_WINDOW_SECONDS: float = constants.CHALLENGE_WINDOW_SECONDS
    CHALLENGE_MAX_ATTEMPTS: int = constants.CHALLENGE_MAX_ATTEMPTS

    # Countdowns tick at 1 Hz
    COUNTDOWN_INTERVAL_SECONDS: float = constants.COUNTDOWN_INTERVAL_SECONDS

    # Attendance history
    RECENT_ATTENDANCE_LIMIT: int = constants.RECENT_ATTENDANCE_LIMIT

    # Server-Sent Events (SSE) Configuration
    SSE_KEEPALIVE_SECONDS: float = 15.0  # Comment line sent when nothing changed

    def get_database_url(self) -> str:
        """
        Get database URL for the SQL document store.
        Priority: DATABASE_URL > local SQLite file (development only)
        """
        if self.DATABASE_URL:
            return self.DATABASE_URL

        if self.ENVIRONMENT == "development":
            return "sqlite:///./rollcall.db"

        raise ValueError(
            "Database configuration missing. Provide DATABASE_URL "
            "when STORE_BACKEND is 'sql'"
        )

    def validate_production_config(self) -> None:
        """Validate that production-critical settings are properly configured."""
        if self.ENVIRONMENT == "production":
            issues = []

            if self.SECRET_KEY == "your-secret-key-change-in-production":
                issues.append("SECRET_KEY must be changed from default value")

            if self.CORS_ORIGINS == ["*"]:
                issues.append("CORS_ORIGINS should be restricted to specific domains")

            if self.STORE_BACKEND == "sql" and not self.DATABASE_URL:
                issues.append("DATABASE_URL must be set when STORE_BACKEND is 'sql'")

            if issues:
                raise ValueError(
                    "Production configuration errors:\n" +
                    "\n".join(f"  - {issue}" for issue in issues)
                )


settings = Settings()

# Validate production configuration on startup
if os.getenv("ENVIRONMENT") == "production":
    settings.validate_production_config()
