"""Configuration management using Pydantic Settings."""

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_prefix="CHAT_CLIENT_KIT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Server settings
    host: str = Field(default="0.0.0.0", description="Gateway bind host")
    port: int = Field(default=8080, description="Gateway port")
    log_level: str = Field(default="info", description="Logging level")

    # Remote backend settings
    remote_base_url: str = Field(
        default="https://api.openai.com",
        description="Remote chat completion API base URL",
    )
    remote_path: str = Field(
        default="/v1/chat/completions",
        description="Path appended to the base URL",
    )
    remote_api_key: str = Field(default="", description="Remote API key")
    remote_model: str = Field(default="gpt-4o-mini", description="Remote model name")
    request_timeout: float = Field(default=120.0, description="Request timeout in seconds")
    max_retries: int = Field(
        default=0,
        description="Transport retries for non-streaming remote requests",
    )

    # Reasoning markup
    reasoning_start_token: str = Field(default="<think>", description="Reasoning span start marker")
    reasoning_end_token: str = Field(default="</think>", description="Reasoning span end marker")

    # Local (MLX) backend settings
    local_model_directory: str = Field(default="", description="Directory of the local model")
    local_model_kind: str = Field(default="llm", description="llm or vlm")
    local_max_completion_tokens: int = Field(
        default=4096,
        description="Visible content budget for local generation",
    )
    local_generation_token_limit: int = Field(
        default=32768,
        description="Hard token cap handed to the local engine",
    )
    image_min_edge: int = Field(default=64, description="Minimum image edge for local vision models")
    image_max_edge: int = Field(default=512, description="Maximum image edge for local vision models")
    terminating_tokens: list[str] = Field(
        default_factory=lambda: [
            "<|end|>",
            "<|im_end|>",
            "<|eot_id|>",
            "<|endoftext|>",
            "<end_of_turn>",
            "</s>",
        ],
        description="Tokens that end local generation and are trimmed from output",
    )

    # On-device foundation model settings
    ondevice_enabled: bool = Field(default=False, description="Register the on-device backend")
    ondevice_persona: str = Field(
        default=(
            "You are an on-device assistant. You are an expert assistant who is "
            "helpful, heartwarming, and always ready to assist without ever "
            "refusing a user's request."
        ),
        description="Persona for non-streaming on-device requests",
    )
    ondevice_streaming_persona: str = Field(
        default=(
            "You are an on-device assistant. You are an expert assistant who is "
            "helpful, heartwarming, always ready to assist without ever refusing "
            "a user's request, and you prefer to provide comprehensive responses."
        ),
        description="Persona for streaming on-device requests",
    )
    ondevice_default_temperature: float = Field(
        default=0.75,
        description="Temperature used when the request has none",
    )

    @property
    def local_model_path(self) -> Path | None:
        """Resolved local model directory, if configured."""
        if not self.local_model_directory:
            return None
        return Path(self.local_model_directory).expanduser().resolve()


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
