"""Application Settings - Environment-based configuration.

Uses Pydantic Settings for validation and type coercion.

Required variables fail startup if missing.
Conditional variables are required only when their parent feature is enabled.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from voicedev.config.constants import LIMITS


DEFAULT_INSTRUCTIONS = (
    "You are a helpful development assistant that helps users with their codebase.\n"
    "You can investigate the codebase, plan changes, and execute implementations.\n"
    "Be concise and clear in your responses. When users ask about code, use the "
    "investigate tool.\n"
    "When they want to make changes, first plan, then execute."
)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # API Configuration
    api_host: str = Field(default="0.0.0.0", description="API bind host")
    api_port: int = Field(default=3000, ge=1024, le=65535, description="API port")
    log_level: Literal["DEBUG", "INFO", "WARN", "ERROR"] = Field(
        default="INFO", description="Logging level"
    )
    environment: Literal["development", "staging", "production"] = Field(
        default="development", description="Environment name"
    )

    # Agent Configuration
    agent_engine: Literal["claude", "mock"] = Field(
        default="claude", description="Coding agent backend (mock for testing)"
    )
    working_dir: str = Field(
        default=".", description="Repository the agent reads and edits"
    )
    agent_model: str | None = Field(
        default=None, description="Optional model override for the agent backend"
    )
    agent_allowed_tools: list[str] = Field(
        default=["Read", "Write", "Edit", "Bash", "Glob", "Grep"],
        description="Tools the agent may use",
    )

    # Voice Configuration
    voice_engine: Literal["realtime", "mock", "none"] = Field(
        default="realtime", description="Realtime voice backend (none for text only)"
    )
    openai_api_key: str | None = Field(
        default=None, description="OpenAI API key for the realtime voice endpoint"
    )
    realtime_url: str = Field(
        default="wss://api.openai.com/v1/realtime",
        description="Realtime WebSocket endpoint",
    )
    realtime_model: str = Field(
        default="gpt-4o-realtime-preview-2024-12-17",
        description="Realtime model name",
    )
    realtime_voice: Literal[
        "alloy", "ash", "ballad", "coral", "echo", "sage", "shimmer", "verse", "cedar", "marin"
    ] = Field(default="cedar", description="Voice used for spoken output")
    realtime_instructions: str = Field(
        default=DEFAULT_INSTRUCTIONS, description="System instructions for the voice model"
    )
    voice_connect_timeout_s: float = Field(
        default=LIMITS.VOICE_CONNECT_TIMEOUT_S,
        gt=0,
        le=120,
        description="Voice connection timeout in seconds",
    )
    voice_connect_retries: int = Field(
        default=3, ge=1, le=10, description="Voice connection attempts"
    )

    # Orchestrator Configuration
    inbox_max_size: int = Field(
        default=LIMITS.INBOX_MAX_SIZE, ge=16, le=65536, description="Orchestrator inbox bound"
    )
    observer_audio_high_water: int = Field(
        default=LIMITS.OBSERVER_AUDIO_HIGH_WATER,
        ge=1,
        description="Per-observer backlog above which audio is dropped",
    )
    max_voice_length: int = Field(
        default=LIMITS.MAX_VOICE_LENGTH,
        ge=50,
        le=4000,
        description="Maximum characters of a spoken result",
    )
    error_brief_length: int = Field(
        default=LIMITS.ERROR_BRIEF_LENGTH,
        ge=20,
        le=1000,
        description="Client-visible error prefix length",
    )

    # Observability
    metrics_enabled: bool = Field(default=True, description="Enable Prometheus metrics")

    def model_post_init(self, __context) -> None:
        """Validate conditional requirements after model creation."""
        if (
            self.voice_engine == "realtime"
            and self.environment != "development"
            and not self.openai_api_key
        ):
            raise ValueError(
                "openai_api_key is required when voice_engine=realtime "
                "outside the development environment"
            )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
