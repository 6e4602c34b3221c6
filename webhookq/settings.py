"""
webhookq Configuration Management

Uses Pydantic v2 BaseSettings for type-safe configuration with support for
environment variables, .env files, and validation.
"""

import os
from enum import Enum
from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic import ValidationError as PydanticValidationError
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigurationError


class TransportKind(str, Enum):
    """Queue transports a worker can consume from."""

    POSTGRES = "postgres"
    REDIS = "redis"
    MEMORY = "memory"


class SenderKind(str, Enum):
    """Webhook sender implementations."""

    HTTP = "http"
    CONSOLE = "console"


class WebhookQSettings(BaseSettings):
    """
    webhookq configuration with environment variable support and validation.

    Configuration priority:
    1. Keyword arguments
    2. Environment variables (WEBHOOKQ_*)
    3. .env file
    4. Default values
    """

    model_config = SettingsConfigDict(
        env_prefix="WEBHOOKQ_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Transport selection
    transport: TransportKind = Field(
        default=TransportKind.POSTGRES,
        description="Queue transport: postgres, redis or memory",
    )
    sender: SenderKind = Field(
        default=SenderKind.HTTP,
        description="Webhook sender: http (real delivery) or console (log only)",
    )
    queue_name: str = Field(
        default="notifications.webhook",
        min_length=1,
        description="Name of the queue notifications are consumed from",
    )
    concurrency: int = Field(
        default=1,
        ge=1,
        le=64,
        description="Number of consumer instances per worker process (each handles one message at a time)",
    )

    # PostgreSQL transport
    database_url: str = Field(
        default="postgresql://postgres@localhost/postgres",
        description="PostgreSQL database URL for the postgres transport",
    )
    db_pool_min_size: int = Field(
        default=1, ge=1, le=100, description="Minimum database connection pool size"
    )
    db_pool_max_size: int = Field(
        default=10, ge=1, le=200, description="Maximum database connection pool size"
    )

    # Redis transport
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis URL for the redis transport",
    )
    consumer_name: Optional[str] = Field(
        default=None,
        description="Stable consumer name; used to recover in-flight messages after a restart",
    )

    # Consumer timings
    poll_interval: float = Field(
        default=5.0,
        ge=0.01,
        le=60.0,
        description="How long an idle consumer waits for new messages before polling again (seconds)",
    )
    visibility_timeout: float = Field(
        default=300.0,
        ge=1.0,
        le=86400.0,
        description="Time after which messages held by an unresponsive consumer are redelivered: postgres claim age, redis heartbeat lifetime (seconds)",
    )
    error_retry_delay: float = Field(
        default=5.0,
        ge=0.0,
        le=300.0,
        description="Delay before receiving again after a transport error (seconds)",
    )
    shutdown_timeout: float = Field(
        default=30.0,
        ge=0.0,
        le=3600.0,
        description="How long stop() waits for an in-flight message before cancelling it (seconds)",
    )

    # Delivery engine
    retry_delay_ms: int = Field(
        default=1000,
        ge=0,
        le=600000,
        description="Base delay before the first retry; doubled for every further retry",
    )
    retry_max_delay_ms: Optional[int] = Field(
        default=None,
        ge=1,
        description="Optional upper bound for a single backoff delay (0 disables)",
    )
    http_pool_limit: int = Field(
        default=100,
        ge=1,
        le=10000,
        description="Maximum simultaneous outbound HTTP connections",
    )
    user_agent: str = Field(
        default="webhookq/0.1.0", description="User-Agent sent with every webhook"
    )

    # Logging Configuration
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    log_format: str = Field(
        default="simple", description="Log format: 'simple' or 'structured'"
    )

    debug: bool = Field(default=False, description="Enable debug mode")

    @field_validator("transport", "sender", mode="before")
    @classmethod
    def normalize_kind(cls, v):
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @field_validator("retry_max_delay_ms", mode="before")
    @classmethod
    def parse_retry_max_delay(cls, v):
        """Treat 0 as "no cap"."""
        if v in ("", "0", 0):
            return None
        return v

    @field_validator("debug", mode="before")
    @classmethod
    def parse_debug(cls, v):
        if isinstance(v, str):
            if v.lower() in ("", "0", "false", "f", "no", "n"):
                return False
            elif v.lower() in ("1", "true", "t", "yes", "y"):
                return True
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v):
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"log_level must be one of {valid_levels}")
        return v.upper()

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v):
        valid_formats = ["simple", "structured"]
        if v.lower() not in valid_formats:
            raise ValueError(f"log_format must be one of {valid_formats}")
        return v.lower()

    @field_validator("database_url")
    @classmethod
    def validate_database_url(cls, v):
        if not v.startswith(("postgresql://", "postgres://")):
            raise ValueError("database_url must be a PostgreSQL connection string")
        return v

    @field_validator("redis_url")
    @classmethod
    def validate_redis_url(cls, v):
        if not v.startswith(("redis://", "rediss://", "unix://")):
            raise ValueError("redis_url must be a Redis connection URL")
        return v

    @property
    def retry_delay(self) -> float:
        """Base retry delay in seconds."""
        return self.retry_delay_ms / 1000.0

    @property
    def retry_max_delay(self) -> Optional[float]:
        if self.retry_max_delay_ms is None:
            return None
        return self.retry_max_delay_ms / 1000.0


# Global settings instance
_settings: Optional[WebhookQSettings] = None


def build_settings(config_file: Optional[Path] = None, **overrides) -> WebhookQSettings:
    """Build a fresh settings object, mapping validation failures to ConfigurationError."""
    try:
        if config_file and config_file.exists():
            return WebhookQSettings(_env_file=str(config_file), **overrides)
        return WebhookQSettings(**overrides)
    except PydanticValidationError as e:
        raise ConfigurationError(f"Invalid webhookq configuration: {e}") from e


def get_settings(
    config_file: Optional[Path] = None, reload: bool = False
) -> WebhookQSettings:
    """
    Get webhookq settings with caching.

    Args:
        config_file: Optional path to a .env style config file
        reload: Force reload settings from environment

    Returns:
        WebhookQSettings instance
    """
    global _settings

    if _settings is None or reload:
        _settings = build_settings(config_file)

    return _settings


def reload_settings(config_file: Optional[Path] = None) -> WebhookQSettings:
    """Force reload settings from environment/config file."""
    return get_settings(config_file=config_file, reload=True)


def configure(**kwargs) -> WebhookQSettings:
    """
    Configure webhookq settings programmatically.

    Validates the provided settings, exports them as WEBHOOKQ_* environment
    variables and reloads the settings cache.
    """
    if not kwargs:
        return get_settings()

    unknown = [key for key in kwargs if key not in WebhookQSettings.model_fields]
    if unknown:
        raise ConfigurationError(f"Unknown webhookq settings: {', '.join(unknown)}")

    # Validate settings upfront
    build_settings(**kwargs)

    for key, value in kwargs.items():
        env_key = f"WEBHOOKQ_{key.upper()}"
        if value is None:
            os.environ.pop(env_key, None)
        elif isinstance(value, Enum):
            os.environ[env_key] = str(value.value)
        else:
            os.environ[env_key] = str(value)

    return get_settings(reload=True)
