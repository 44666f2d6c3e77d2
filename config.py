"""Configuration management for the chat relay service."""

from __future__ import annotations

import os
from dataclasses import dataclass

from models import ModelChoice


def _env_bool(name: str, default: bool) -> bool:
    """Get boolean environment variable with fallback."""
    v = os.getenv(name)
    if v is None or v == "":
        return default
    return v.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_float(name: str, default: float) -> float:
    """Get float environment variable with fallback."""
    v = os.getenv(name)
    if v is None or v == "":
        return default
    try:
        return float(v)
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    """Get integer environment variable with fallback."""
    v = os.getenv(name)
    if v is None or v == "":
        return default
    try:
        return int(v.strip())
    except ValueError:
        return default


def _env_str(name: str, default: str) -> str:
    """Get string environment variable with fallback."""
    v = os.getenv(name)
    if v is None:
        return default
    return v


@dataclass(frozen=True)
class AppConfig:
    """Application configuration. Built once at startup, never mutated."""

    # Upstream provider
    openai_base_url: str
    openai_api_key: str
    user_agent: str
    https_proxy: str
    http_proxy: str

    # Models
    chat_models: ModelChoice
    image_models: ModelChoice
    image_size: str

    # Origin policy
    allowed_origin: str

    # Input limits
    max_messages: int
    max_message_length: int
    max_prompt_length: int
    max_request_bytes: int

    # Development mode: canned reply instead of the upstream call
    use_static_reply: bool
    static_reply_delay_s: float

    # Timeouts
    request_timeout_s: float
    stream_idle_timeout_s: float
    max_request_duration_s: float

    # Server settings
    port: int
    log_level: str
    log_path: str

    @classmethod
    def from_env(cls) -> AppConfig:
        """Load configuration from environment variables."""
        return cls(
            openai_base_url=_env_str("OPENAI_BASE_URL", "https://api.openai.com/v1").rstrip("/"),
            openai_api_key=os.getenv("OPENAI_API_KEY", ""),
            user_agent=_env_str("USER_AGENT", "chat-relay/0.3.0"),
            https_proxy=_env_str("HTTPS_PROXY", ""),
            http_proxy=_env_str("HTTP_PROXY", ""),
            chat_models=ModelChoice(
                preferred=_env_str("PREFERRED_MODEL", "gpt-5-nano"),
                fallback=_env_str("FALLBACK_MODEL", "gpt-4o-mini"),
            ),
            image_models=ModelChoice(
                preferred=_env_str("IMAGE_MODEL", "gpt-image-1"),
                fallback=_env_str("IMAGE_FALLBACK_MODEL", "dall-e-3"),
            ),
            image_size=_env_str("IMAGE_SIZE", "1024x1024"),
            allowed_origin=_env_str("ALLOWED_ORIGIN", "") or "http://localhost:3000",
            max_messages=_env_int("MAX_MESSAGES", 50),
            max_message_length=_env_int("MAX_MESSAGE_LENGTH", 10_000),
            max_prompt_length=_env_int("MAX_PROMPT_LENGTH", 1_000),
            max_request_bytes=_env_int("MAX_REQUEST_BYTES", 2_000_000),  # ~2MB
            use_static_reply=_env_bool("USE_STATIC_REPLY", False),
            static_reply_delay_s=_env_float("STATIC_REPLY_DELAY_S", 0.03),
            request_timeout_s=_env_float("REQUEST_TIMEOUT_S", 30.0),
            stream_idle_timeout_s=_env_float("STREAM_IDLE_TIMEOUT_S", 60.0),
            max_request_duration_s=_env_float("MAX_REQUEST_DURATION_S", 300.0),
            port=_env_int("PORT", 8000),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper().strip(),
            log_path=_env_str("LOG_PATH", "/var/log/chat-relay/chat-relay.log"),
        )

    def validate(self, require_api_key: bool = True) -> None:
        """Validate configuration."""
        if require_api_key and not self.openai_api_key and not self.use_static_reply:
            raise ValueError("OPENAI_API_KEY is required")
        if not self.chat_models.preferred or not self.chat_models.fallback:
            raise ValueError("PREFERRED_MODEL and FALLBACK_MODEL must be non-empty")
        if not self.image_models.preferred or not self.image_models.fallback:
            raise ValueError("IMAGE_MODEL and IMAGE_FALLBACK_MODEL must be non-empty")
        if self.max_messages <= 0:
            raise ValueError("MAX_MESSAGES must be > 0")
        if self.max_message_length <= 0:
            raise ValueError("MAX_MESSAGE_LENGTH must be > 0")
        if self.max_prompt_length <= 0:
            raise ValueError("MAX_PROMPT_LENGTH must be > 0")
        if self.max_request_bytes <= 0:
            raise ValueError("MAX_REQUEST_BYTES must be > 0")
        if self.static_reply_delay_s < 0:
            raise ValueError("STATIC_REPLY_DELAY_S must be >= 0")
        if self.request_timeout_s <= 0:
            raise ValueError("REQUEST_TIMEOUT_S must be > 0")
        if self.stream_idle_timeout_s <= 0:
            raise ValueError("STREAM_IDLE_TIMEOUT_S must be > 0")
        if self.max_request_duration_s <= 0:
            raise ValueError("MAX_REQUEST_DURATION_S must be > 0")
        if not self.log_path:
            raise ValueError("LOG_PATH must be non-empty")
        if not self.user_agent:
            raise ValueError("USER_AGENT must be non-empty")


def load_config() -> AppConfig:
    """Load configuration from environment."""
    return AppConfig.from_env()
