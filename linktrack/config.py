"""
Application configuration using pydantic-settings.

All secrets and configuration are loaded from environment variables.
"""
from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Flask settings
    flask_env: str = Field(default="production", description="Flask environment")
    secret_key: str = Field(default="dev-secret-key-change-in-production", description="Flask secret key")
    debug: bool = Field(default=False, description="Debug mode")
    log_level: str = Field(default="INFO", description="Root logging level")

    # Database settings
    database_url: str = Field(default="sqlite:///linktrack.db", description="SQLAlchemy database URL")

    # API Keys
    master_api_key: str = Field(..., description="Master API key for link management operations")

    # Encryption
    fernet_key: str = Field(..., description="Fernet encryption key (32 url-safe base64 bytes)")

    # Link generation
    frontend_url: str = Field(default="https://shop.example.com", description="Default redirect target for links")
    backend_url: str = Field(default="https://api.shop.example.com", description="Public URL of this API")
    short_domain: str = Field(default="https://short.example.com", description="Domain used for short URLs")
    link_id_prefix: str = Field(default="LINK", description="Prefix of generated tracking ids")
    default_link_ttl_hours: int = Field(default=24, description="Lifetime of a link when none is given")
    max_bulk_links: int = Field(default=100, description="Upper bound for bulk link generation")

    # Geolocation
    geolocation_api_url: Optional[str] = Field(default=None, description="IP geolocation endpoint (disabled if unset)")
    geolocation_timeout: float = Field(default=2.0, description="Timeout for geolocation lookups in seconds")

    # Expiration sweep
    expiration_sweep_enabled: bool = Field(default=False, description="Run the expiration sweep in-process")
    expiration_sweep_interval_seconds: int = Field(default=300, description="Seconds between expiration sweeps")

    # Aggregate writes
    lock_retry_attempts: int = Field(default=3, description="Optimistic retries for a single link update")

    @field_validator("flask_env")
    @classmethod
    def validate_flask_env(cls, v: str) -> str:
        """Validate Flask environment."""
        if v not in ["development", "production", "testing"]:
            raise ValueError("flask_env must be development, production, or testing")
        return v

    @field_validator("fernet_key")
    @classmethod
    def validate_fernet_key(cls, v: str) -> str:
        """Validate Fernet key format."""
        try:
            from cryptography.fernet import Fernet
            Fernet(v.encode())
        except Exception as e:
            raise ValueError(f"Invalid Fernet key format: {e}")
        return v

    @field_validator("geolocation_timeout")
    @classmethod
    def validate_geolocation_timeout(cls, v: float) -> float:
        """Geolocation is best-effort, keep the timeout short."""
        if v <= 0 or v > 10:
            raise ValueError("geolocation_timeout must be between 0 and 10 seconds")
        return v

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.flask_env == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.flask_env == "production"

    def get_database_url(self) -> str:
        """
        Get the database URL for SQLAlchemy.

        Returns the configured connection URL.
        """
        return self.database_url


# Global settings instance
settings = Settings()
