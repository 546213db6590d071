"""Application configuration using Pydantic BaseSettings."""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from src.constants import (
    CONTENT_BATCH_SIZE,
    DEFAULT_BROKER_HOST,
    DEFAULT_BROKER_PORT,
    DEFAULT_HTTP_TIMEOUT_SECONDS,
    PAGE_DATA_BATCH_SIZE,
    PUBLISH_POLL_INTERVAL_SECONDS,
    SESSION_POLL_INTERVAL_SECONDS,
    SESSION_POLL_MAX_ATTEMPTS,
)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        # Load .env first, then .env.local (for local/test overrides)
        # Later files override earlier ones, so .env.local takes precedence
        env_file=[".env", ".env.local"],
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Remote CMS Configuration
    cms_server_url: str = Field(..., description="Base URL of the remote CMS")
    cms_username: str | None = Field(
        default=None, description="User name for basic authentication"
    )
    cms_password: str | None = Field(
        default=None, description="Password for basic authentication"
    )
    cms_oauth_token: str | None = Field(
        default=None,
        description="OAuth token; when set it takes precedence over basic auth",
    )
    cms_token_type: str = Field(
        default="Bearer", description="Authorization scheme for the OAuth token"
    )

    # Environment
    env: Literal["local", "ci", "prod"] = Field(
        default="local", description="Current environment"
    )
    log_level: str = Field(default="INFO", description="Python logging level")

    # Logfire Configuration
    logfire_token: str | None = Field(
        default=None, description="Pydantic Logfire token for cloud logging"
    )

    # ==========================================================================
    # Session Broker
    # ==========================================================================

    broker_host: str = Field(
        default=DEFAULT_BROKER_HOST, description="Interface the local broker binds"
    )
    broker_port: int = Field(
        default=DEFAULT_BROKER_PORT,
        description="Port the local broker binds (0 = OS assigned)",
    )
    http_timeout_seconds: float = Field(
        default=DEFAULT_HTTP_TIMEOUT_SECONDS,
        description="Timeout for a single remote call (seconds)",
    )
    session_poll_interval_seconds: float = Field(
        default=SESSION_POLL_INTERVAL_SECONDS,
        description="Delay between session establishment polls (seconds)",
    )
    session_poll_max_attempts: int = Field(
        default=SESSION_POLL_MAX_ATTEMPTS,
        ge=1,
        description="Session establishment polls before giving up",
    )
    publish_poll_interval_seconds: float = Field(
        default=PUBLISH_POLL_INTERVAL_SECONDS,
        description="Delay between publish job status polls (seconds)",
    )

    # ==========================================================================
    # Batching (remote transport limits)
    # ==========================================================================

    page_data_batch_size: int = Field(
        default=PAGE_DATA_BATCH_SIZE,
        ge=1,
        le=PAGE_DATA_BATCH_SIZE,
        description="Page ids per page data request",
    )
    content_batch_size: int = Field(
        default=CONTENT_BATCH_SIZE,
        ge=1,
        le=CONTENT_BATCH_SIZE,
        description="Content ids per item query",
    )
    content_resolution_policy: Literal["abort", "skip"] = Field(
        default="abort",
        description="What to do when a content batch fails: abort the run or skip the batch",
    )


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
