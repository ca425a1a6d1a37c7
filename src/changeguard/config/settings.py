"""
Application settings using Pydantic.

Provides environment-based configuration loading with CHANGEGUARD_ prefix.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

from changeguard.guardrails.models import Environment


class Settings(BaseSettings):
    """Engine-wide settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="CHANGEGUARD_",
        extra="ignore",
    )

    # Environment detection
    default_region: str = "us-east-1"
    environment_tag_key: str = "Environment"
    default_environment: Environment = Environment.UNKNOWN

    # Approvals
    default_approval_timeout_minutes: int = 30

    # Audit
    audit_log_retention_days: int = 90
    audit_all_operations: bool = True
    audit_log_path: str | None = None

    # Policies: whether unrecognized condition types match (fail open)
    unknown_condition_matches: bool = True

    # Notifications
    notification_timeout_seconds: float = 10.0

    # Logging
    log_level: str = "INFO"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
