"""Configuration for the agent runtime."""

from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Service settings
    service_name: str = "agentflow"
    host: str = "0.0.0.0"
    port: int = 8090
    log_level: str = "info"
    log_format: Literal["json", "console"] = "json"

    # LLM settings
    default_llm_client: str = "openai"
    openai_api_key: str = Field(default="", description="OpenAI API key")
    openai_base_url: Optional[str] = None
    llm_timeout_seconds: float = 60.0

    # Run settings
    run_timeout_seconds: Optional[float] = Field(
        default=None,
        description="How long a run may wait for its session to become idle",
    )
    round_trip_delay_seconds: float = 0.0
    per_stage_delay_seconds: float = 0.0
    max_round_trips: Optional[int] = Field(
        default=None,
        description="Upper bound on model calls per stage, unbounded when unset",
    )
    tool_timeout_seconds: float = 30.0

    # Speech settings
    synthesis_url: str = "http://localhost:8080"
    synthesis_token: str = ""
    default_voice: str = "alloy"
    min_sentence_length: int = 5

    # Session store settings
    store_url: Optional[str] = None
    store_token: str = ""


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
