"""
Vault session settings loaded from environment variables.

Uses Pydantic Settings for type-safe configuration with validation.
All settings can be overridden via VAULT_SESSION_* environment variables or
a .env file.
"""

from functools import lru_cache

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class VaultSessionSettings(BaseSettings):
    """
    Vault session configuration.

    Credential fields are optional here because callers may build a
    Credential themselves; credential_from_settings() enforces presence.
    """

    model_config = SettingsConfigDict(
        env_prefix="VAULT_SESSION_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # Ignore unrelated variables in shared .env files
    )

    # Vault CLI
    cli_path: str = Field(
        default="bw",
        description="Vault CLI executable name or absolute path",
    )
    command_timeout_seconds: float = Field(
        default=60.0,
        ge=1,
        le=600,
        description="Per-call timeout for vault CLI invocations",
    )

    # Credential
    server_url: str | None = Field(
        default=None,
        description="Vault server URL (e.g., https://vault.example.com)",
    )
    client_id: str | None = Field(
        default=None,
        description="API-key client id (e.g., user.1234)",
    )
    client_secret: SecretStr = Field(
        default=SecretStr(""),
        description="API-key client secret",
    )
    master_password: SecretStr = Field(
        default=SecretStr(""),
        description="Master password used for password unlock",
    )

    # Session lifecycle
    auto_unlock: bool = Field(
        default=True,
        description="Unlock immediately after login",
    )
    unlock_retries: int = Field(
        default=3,
        ge=0,
        le=10,
        description="Additional unlock/sync attempts after the first failure",
    )
    retry_delay_seconds: float = Field(
        default=2.0,
        ge=0,
        le=60,
        description="Fixed delay between retry attempts",
    )
    session_ttl_minutes: int = Field(
        default=30,
        ge=1,
        le=1440,  # Max 24 hours
        description="Validity window of a session token after unlock",
    )
    sync_cooldown_seconds: int = Field(
        default=300,
        ge=0,
        le=3600,
        description="Minimum interval between non-forced syncs",
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    service_name: str = Field(
        default="vault_session",
        description="Service name reported in structured logs",
    )

    @field_validator("log_level")
    @classmethod
    def _validate_log_level(cls, value: str) -> str:
        level = value.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Invalid log level: {value}")
        return level

    @field_validator("server_url", "client_id")
    @classmethod
    def _blank_to_none(cls, value: str | None) -> str | None:
        if value is None or not value.strip():
            return None
        return value.strip()


@lru_cache
def get_settings() -> VaultSessionSettings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are loaded only once.

    Returns:
        VaultSessionSettings instance with all configuration loaded.

    Example:
        >>> settings = get_settings()
        >>> print(settings.cli_path)
        'bw'
    """
    return VaultSessionSettings()
