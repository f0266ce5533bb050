"""Webhook server configuration using pydantic-settings.

This module defines the WebhookSettings class that reads configuration from
environment variables. Variable names carry no prefix so that the names used
by existing deployments (WEBHOOK_SECRET, GITLAB_TOKEN, REDIS_URL, ...) keep
working unchanged.
"""

from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class WebhookSettings(BaseSettings):
    """Webhook server configuration from environment variables.

    Required fields (must be set via environment variables):
    - webhook_secret: Shared secret GitLab sends in the X-Gitlab-Token header
    - gitlab_token: GitLab API token used to create branches and pipelines
    """

    model_config = SettingsConfigDict(
        case_sensitive=False,
        extra="ignore",
    )

    # -------------------------------------------------------------------------
    # GitLab Configuration
    # -------------------------------------------------------------------------
    webhook_secret: str

    gitlab_token: str

    # Base URL of the GitLab instance (self-managed instances supported)
    gitlab_url: str = "https://gitlab.com"

    # -------------------------------------------------------------------------
    # Trigger Configuration
    # -------------------------------------------------------------------------
    trigger_phrase: str = "@claude"

    # Initial state of the global kill switch
    claude_disabled: bool = False

    # Cancel pending pipelines on the same ref after a new one starts
    cancel_old_pipelines: bool = False

    # First path segment of branches created for issues
    branch_prefix: str = "claude"

    # -------------------------------------------------------------------------
    # Rate Limiting
    # -------------------------------------------------------------------------
    rate_limit_max: int = 3

    rate_limit_window: int = 60 * 15

    # Counter store; unset means an in-process store (single replica only)
    redis_url: Optional[str] = None

    redis_timeout_seconds: float = 2.0

    # -------------------------------------------------------------------------
    # Notifications and Admin
    # -------------------------------------------------------------------------
    discord_webhook_url: Optional[str] = None

    admin_token: Optional[str] = None

    # -------------------------------------------------------------------------
    # Server Configuration
    # -------------------------------------------------------------------------
    http_timeout_seconds: float = 30.0

    host: str = "0.0.0.0"

    port: int = 3000

    log_level: str = "INFO"

    # -------------------------------------------------------------------------
    # Validators
    # -------------------------------------------------------------------------
    @field_validator("webhook_secret")
    @classmethod
    def validate_webhook_secret(cls, v: str) -> str:
        """Validate that webhook secret is not empty."""
        if not v or not v.strip():
            raise ValueError("webhook_secret cannot be empty")
        return v

    @field_validator("gitlab_token")
    @classmethod
    def validate_gitlab_token(cls, v: str) -> str:
        """Validate that GitLab token is not empty."""
        if not v or not v.strip():
            raise ValueError("gitlab_token cannot be empty")
        return v

    @field_validator("gitlab_url")
    @classmethod
    def validate_gitlab_url(cls, v: str) -> str:
        """Validate that GitLab URL is an http(s) URL and drop trailing slashes."""
        if not v or not v.strip():
            raise ValueError("gitlab_url cannot be empty")
        if not v.startswith(("http://", "https://")):
            raise ValueError("gitlab_url must start with http:// or https://")
        return v.rstrip("/")

    @field_validator("trigger_phrase")
    @classmethod
    def validate_trigger_phrase(cls, v: str) -> str:
        """Validate that the trigger phrase is not blank."""
        if not v or not v.strip():
            raise ValueError("trigger_phrase cannot be empty")
        return v.strip()

    @field_validator("branch_prefix")
    @classmethod
    def validate_branch_prefix(cls, v: str) -> str:
        v = v.strip().strip("/")
        if not v:
            raise ValueError("branch_prefix cannot be empty")
        return v

    @field_validator("rate_limit_max", "rate_limit_window")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Validate that rate limit values are positive."""
        if v < 1:
            raise ValueError("rate limit values must be at least 1")
        return v

    @field_validator("redis_url", "discord_webhook_url", "admin_token")
    @classmethod
    def blank_to_none(cls, v: Optional[str]) -> Optional[str]:
        if v is None or not v.strip():
            return None
        return v.strip()

    @field_validator("redis_timeout_seconds", "http_timeout_seconds")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        """Validate that timeouts are positive."""
        if v <= 0:
            raise ValueError("timeouts must be positive")
        return v

    @field_validator("port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        """Validate that port is in valid range."""
        if not 1 <= v <= 65535:
            raise ValueError("port must be between 1 and 65535")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.strip().upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"unknown log_level: {v}")
        return level


def get_settings() -> WebhookSettings:
    """Create and return a WebhookSettings instance.

    Returns:
        WebhookSettings: Configured settings instance.

    Raises:
        pydantic.ValidationError: If required fields are missing or invalid.
    """
    return WebhookSettings()
