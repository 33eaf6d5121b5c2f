"""Application settings and configuration."""

import logging

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from src.config.cors_config import CORSConfiguration, CORSConfigurationError, parse_comma_separated_list

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application (hardcoded constants)
    app_name: str = "Storefront API"
    app_version: str = "0.1.0"

    # Environment-specific settings
    environment: str  # development, test, staging, production

    # Database
    database_url: str
    database_pool_size: int = 10
    database_max_overflow: int = 20
    database_pool_timeout: int = 30
    database_pool_recycle: int = 3600
    database_echo: bool = False
    database_create_tables: bool = False

    # API
    api_prefix: str = "/api/v1"

    # CORS
    cors_allow_origins: str | None = None
    cors_allow_credentials: bool = True

    # Security
    secret_key: str
    jwt_algorithm: str = "HS256"
    access_token_expire_minutes: int = 30
    refresh_token_expire_days: int = 30
    reset_password_token_expire_minutes: int = 10
    verify_email_token_expire_minutes: int = 60

    # Email (SMTP)
    smtp_host: str | None = None
    smtp_port: int = 587
    smtp_username: str | None = None
    smtp_password: str | None = None
    smtp_use_tls: bool = False
    email_from: str = "no-reply@localhost"
    email_from_name: str = "Storefront"
    client_url: str = "http://localhost:3001"

    # Rate limiting
    rate_limit_enabled: bool = True
    rate_limit_default: str = "100/15minutes"
    rate_limit_auth: str = "20/15minutes"
    rate_limit_password_reset: str = "5/hour"
    rate_limit_email_verification: str = "5/hour"

    # Cron
    cron_enabled: bool = True
    cron_cleanup_schedule: str = "0 0 * * *"
    cron_session_cleanup_schedule: str = "0 1 * * 1"
    session_max_age_days: int = 30

    # Logging
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("environment", mode="before")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate environment value."""
        valid_envs = {"development", "test", "staging", "production"}
        env = str(v).lower()
        if env not in valid_envs:
            raise ValueError(f"Environment must be one of {valid_envs}, got {env}")
        return env

    @field_validator("secret_key")
    @classmethod
    def validate_secret_key(cls, v: str) -> str:
        """Refuse to start with an empty or trivially short signing secret."""
        if len(v) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters long")
        return v

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def cors_origins(self) -> list[str]:
        return parse_comma_separated_list(self.cors_allow_origins)

    def get_cors_configuration(self) -> CORSConfiguration:
        """Build the CORS configuration for the current environment.

        Raises:
            CORSConfigurationError: If CORS configuration is invalid or insecure.

        """
        try:
            return CORSConfiguration(
                allow_origins=self.cors_allow_origins,
                allow_credentials=self.cors_allow_credentials,
                environment=self.environment,
            )
        except CORSConfigurationError as exc:
            logger.error(f"Failed to create CORS configuration: {exc}")
            raise


settings = Settings()  # type: ignore[call-arg]
