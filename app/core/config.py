"""
Application configuration from environment variables.
Covers both the prompt queue service and the client-side queue engine.
"""
from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Service configuration
    service_env: Literal["dev", "staging", "prod"] = Field(
        default="dev",
        description="Service environment"
    )
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8080, description="Server port")

    # Queue engine (client side)
    queue_api_base_url: str = Field(
        default="http://127.0.0.1:8080",
        description="Base URL of the prompt queue endpoints"
    )
    queue_request_timeout_ms: int = Field(
        default=10000,
        ge=500,
        le=120000,
        description="Timeout for enqueue/status/cancel requests in milliseconds"
    )
    queue_poll_interval_ms: int = Field(
        default=1500,
        ge=10,
        le=60000,
        description="Interval between queue status polls in milliseconds"
    )
    queue_max_poll_failures: int = Field(
        default=5,
        ge=1,
        le=100,
        description="Consecutive failed polls before queue updates are paused"
    )
    message_max_length: int = Field(
        default=10000,
        ge=1,
        le=1000000,
        description="Maximum prompt length in characters"
    )

    # Conversation defaults
    default_model: str = Field(
        default="gpt-4.1-nano",
        description="Model used when the client does not select one"
    )
    system_prompt_default: str = Field(
        default="You are a thoughtful and helpful assistant.",
        description="System prompt used when the user has none configured"
    )

    # Queue service (server side)
    rate_limit_requests_per_hour: int = Field(
        default=600,
        ge=1,
        le=100000,
        description="Enqueue requests allowed per user per hour"
    )
    queue_job_ttl_seconds: int = Field(
        default=1800,
        ge=60,
        le=86400,
        description="Seconds a finished queue job stays queryable"
    )

    # Completion backend configuration
    completion_backend: Literal["mock", "openai_compat"] = Field(
        default="mock",
        description="Completion backend: 'mock' for testing, 'openai_compat' for inference"
    )
    openai_compat_base_url: str = Field(
        default="http://127.0.0.1:1234/v1",
        description="Base URL for OpenAI-compatible API (e.g., LM Studio, Ollama)"
    )
    openai_compat_model: str = Field(
        default="",
        description="Model name override for OpenAI-compatible inference"
    )
    openai_compat_timeout_ms: int = Field(
        default=30000,
        ge=1000,
        le=120000,
        description="Timeout for OpenAI-compatible requests in milliseconds"
    )

    @field_validator("queue_api_base_url", "openai_compat_base_url", mode="after")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        """Normalize base URLs so paths can be appended directly."""
        return v.rstrip("/")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
