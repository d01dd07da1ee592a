"""
Centralized configuration management for the audit platform authentication core.

This module provides a centralized configuration system using Pydantic BaseSettings
for managing all application settings including JWT, lockout policy, one-time
tokens, email delivery, database, and API settings.
"""
import secrets
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Settings class for all application configuration.

    This class uses Pydantic's BaseSettings to manage all application configuration
    settings with environment variable overrides and validation.
    """
    # Application settings
    APP_NAME: str = "Audit Platform Auth"
    APP_DESCRIPTION: str = "Authentication and session lifecycle service for the audit platform"
    APP_VERSION: str = "0.1.0"
    APP_ENV: str = "development"
    DEBUG: bool = False

    # API settings
    API_PREFIX: str = "/auth"
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    RELOAD: bool = False

    # CORS settings, comma separated
    CORS_ORIGINS: str = "*"

    # Rate limiting settings
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_REQUESTS: int = 10
    RATE_LIMIT_PERIOD_SECONDS: int = 60

    # JWT settings
    JWT_SECRET_KEY: str = Field(default_factory=lambda: secrets.token_urlsafe(32))
    JWT_REFRESH_SECRET_KEY: str = Field(default_factory=lambda: secrets.token_urlsafe(32))
    JWT_ALGORITHM: str = "HS256"
    JWT_ACCESS_TOKEN_EXPIRE_MINUTES: int = 15
    JWT_REFRESH_TOKEN_EXPIRE_DAYS: int = 7

    # Password policy settings
    PASSWORD_MIN_LENGTH: int = 8
    PASSWORD_REQUIRE_UPPERCASE: bool = True
    PASSWORD_REQUIRE_LOWERCASE: bool = True
    PASSWORD_REQUIRE_DIGIT: bool = True
    PASSWORD_REQUIRE_SPECIAL: bool = True
    BCRYPT_ROUNDS: int = 12

    # Account lockout settings
    MAX_LOGIN_ATTEMPTS: int = 3
    LOCKOUT_DURATION_MINUTES: int = 30

    # One-time token settings
    PASSWORD_RESET_TOKEN_EXPIRE_MINUTES: int = 30
    TWO_FACTOR_CODE_EXPIRE_MINUTES: int = 10
    TWO_FACTOR_MAX_ATTEMPTS: int = 3
    FRONTEND_URL: str = "http://localhost:3000"

    # Email settings. Without SMTP_HOST messages are only logged.
    SMTP_HOST: Optional[str] = None
    SMTP_PORT: int = 587
    SMTP_USER: Optional[str] = None
    SMTP_PASSWORD: Optional[str] = None
    SMTP_USE_TLS: bool = True
    EMAIL_FROM: Optional[str] = None
    EMAIL_FROM_NAME: str = "Audit Platform"

    # Database settings
    DATABASE_URL: str = "sqlite+aiosqlite:///./audit_auth.db"
    DATABASE_ECHO: bool = False

    # Logging settings
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    LOG_FILE: Optional[str] = None

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    @field_validator("LOG_LEVEL")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        """Accept log levels in any case."""
        return v.upper()

    @property
    def cors_origins(self) -> List[str]:
        """Parse CORS_ORIGINS from comma separated string to list."""
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]


# Create a global settings instance
settings = Settings()


# PUBLIC_INTERFACE
def get_settings() -> Settings:
    """
    Get the application settings.

    Returns:
        Settings: The application settings instance.
    """
    return settings
