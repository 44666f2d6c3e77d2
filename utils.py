"""Startup helpers: .env loading and config dump."""

from __future__ import annotations

import logging
from pathlib import Path

from dotenv import load_dotenv

from config import AppConfig
from logger import mask_secret

log = logging.getLogger("chat_relay")


def load_env_files() -> None:
    """Load .env files from program and current directory."""
    this_dir = Path(__file__).resolve().parent
    p1 = this_dir / ".env"
    p2 = Path.cwd() / ".env"

    loaded_any = False
    if p1.exists():
        loaded_any = load_dotenv(dotenv_path=str(p1), override=True) or loaded_any
        log.info("Loaded .env from %s", str(p1))

    if p2.exists() and p2 != p1:
        loaded_any = load_dotenv(dotenv_path=str(p2), override=True) or loaded_any
        log.info("Loaded .env from %s", str(p2))

    if not loaded_any:
        log.info(".env not loaded (not found or no variables applied).")


def dump_config(config: AppConfig) -> None:
    """Log effective configuration at startup."""
    log.info("=== Chat relay startup config ===")
    log.info("OPENAI_BASE_URL=%s", config.openai_base_url)
    log.info(
        "OPENAI_API_KEY_set=%s value=%s len=%s",
        bool(config.openai_api_key),
        mask_secret(config.openai_api_key),
        len(config.openai_api_key or ""),
    )
    log.info("CHAT_MODELS=%s", config.chat_models.describe())
    log.info("IMAGE_MODELS=%s size=%s", config.image_models.describe(), config.image_size)
    log.info("ALLOWED_ORIGIN=%s", config.allowed_origin)
    log.info("MAX_MESSAGES=%s", config.max_messages)
    log.info("MAX_MESSAGE_LENGTH=%s", config.max_message_length)
    log.info("MAX_PROMPT_LENGTH=%s", config.max_prompt_length)
    log.info("MAX_REQUEST_BYTES=%s", config.max_request_bytes)
    log.info("USE_STATIC_REPLY=%s", config.use_static_reply)
    if config.use_static_reply:
        log.info("USE_STATIC_REPLY=true: chat replies are canned, provider is never called.")
    log.info("REQUEST_TIMEOUT_S=%s", config.request_timeout_s)
    log.info("STREAM_IDLE_TIMEOUT_S=%s", config.stream_idle_timeout_s)
    log.info("MAX_REQUEST_DURATION_S=%s", config.max_request_duration_s)
    log.info("LOG_LEVEL=%s", config.log_level)
    log.info("LOG_PATH=%s", config.log_path)
    log.info("WorkingDir=%s", str(Path.cwd()))
    log.info("=================================")
