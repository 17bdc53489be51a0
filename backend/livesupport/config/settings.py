"""
Application configuration.
Values are read from environment variables (or a .env file) by pydantic-settings.

Version: 1.0.0
"""
from functools import lru_cache
from typing import List, Literal, Union
import logging

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """
    Core settings for the live support coordinator.

    Groups:
    - Application and API
    - Session locking (local or Redis)
    - Event router and connection delivery
    - Session lifecycle and agent capacity
    - Transcript archive database
    - Telemetry
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # ===========================
    # Application
    # ===========================

    app_name: str = Field(default="Live Support Coordinator")
    app_version: str = Field(default="1.0.0")
    environment: Literal["development", "testing", "staging", "production"] = Field(
        default="development"
    )
    debug: bool = Field(default=False)
    log_level: str = Field(default="INFO")

    # ===========================
    # API
    # ===========================

    api_host: str = Field(default="0.0.0.0")
    api_port: int = Field(default=8000, ge=1, le=65535)
    api_prefix: str = Field(default="/api")
    cors_origins: Union[List[str], str] = Field(default_factory=lambda: ["http://localhost:3000"])
    cors_allow_credentials: bool = Field(default=True)

    # ===========================
    # Session Locking
    # ===========================

    lock_backend: Literal["local", "redis"] = Field(
        default="local",
        description="Per-session lock implementation"
    )
    redis_url: str = Field(default="redis://localhost:6379/0")
    lock_timeout_seconds: int = Field(
        default=10,
        ge=1,
        le=300,
        description="Expiry of a distributed session lock"
    )
    lock_retry_attempts: int = Field(default=5, ge=1, le=50)
    lock_retry_delay: float = Field(default=0.05, ge=0.0, le=5.0)

    # ===========================
    # Event Router
    # ===========================

    router_workers: int = Field(
        default=4,
        ge=1,
        le=64,
        description="Number of shard workers processing inbound intents"
    )
    router_queue_size: int = Field(default=1000, ge=1)
    outbox_max_size: int = Field(
        default=500,
        ge=1,
        description="Maximum undelivered events buffered per connection"
    )

    # ===========================
    # Session Lifecycle
    # ===========================

    max_sessions_per_agent: int = Field(default=5, ge=1, le=100)
    bot_greeting: str = Field(
        default="Hello! I'm the virtual assistant. How can I help you today?"
    )
    closed_session_retention_seconds: int = Field(
        default=3600,
        ge=0,
        description="How long closed sessions stay readable in memory"
    )
    maintenance_interval_seconds: int = Field(default=60, ge=1)

    # ===========================
    # Transcript Archive
    # ===========================

    transcript_archive_enabled: bool = Field(default=True)
    database_url: str = Field(default="sqlite:///./livesupport.db")
    database_echo: bool = Field(default=False)

    # ===========================
    # Telemetry
    # ===========================

    enable_telemetry: bool = Field(default=True)
    slow_request_seconds: float = Field(
        default=1.0,
        gt=0.0,
        description="HTTP requests slower than this are logged as warnings"
    )

    @field_validator('cors_origins', mode='before')
    @classmethod
    def parse_cors_origins(cls, v: Union[str, List[str]]) -> List[str]:
        """Accept a comma-separated string as well as a list."""
        if isinstance(v, str):
            if v.startswith('['):
                import json
                return json.loads(v)
            return [origin.strip() for origin in v.split(',') if origin.strip()]
        return v

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Invalid log level: {v}")
        return level

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


@lru_cache()
def get_settings() -> Settings:
    """Return the cached settings instance."""
    return Settings()


settings = get_settings()

__all__ = ['Settings', 'get_settings', 'settings']
