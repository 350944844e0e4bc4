"""
Configuration — typed, validated settings loaded from environment/.env.

Uses pydantic-settings to:
  - Load from environment variables (prefix CA_MANAGER_)
  - Fall back to a .env file
  - Validate types and constraints at startup
  - Keep the CA passphrase out of source control and out of logs (SecretStr)

These are process-level settings for the command-line front end. The
per-CA and per-subject configuration lives inside each CA store as JSON
(see ca_manager.domain.models.CaConfig / SubjectConfig).
"""

from __future__ import annotations

from pathlib import Path

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Resolve the .env file relative to the project root (two levels above this file),
# so settings load correctly regardless of the working directory at runtime.
_ENV_FILE = Path(__file__).parent.parent.parent / ".env"

_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


class AppSettings(BaseSettings):
    """
    Root application settings.

    Load order (highest priority first):
      1. Environment variables (CA_MANAGER_CA_DIR, CA_MANAGER_LOG_LEVEL, ...)
      2. .env file
      3. Default values
    """

    model_config = SettingsConfigDict(
        env_prefix="CA_MANAGER_",
        env_file=_ENV_FILE,
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    ca_dir: Path = Field(default=Path("ca"), description="CA store used when --ca is not given")
    default_validity_days: int = Field(default=365, ge=1, description="Validity written for new subjects")
    default_key_bits: int = Field(default=2048, ge=1024, description="Key size written for new subjects")
    passphrase: SecretStr | None = Field(
        default=None,
        description="Non-interactive CA key passphrase; prompted for when unset",
    )
    log_level: str = Field(default="INFO")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        """Accept standard level names in any case."""
        level = value.strip().upper()
        if level not in _LOG_LEVELS:
            raise ValueError(f"log_level must be one of {sorted(_LOG_LEVELS)}, got {value!r}")
        return level
