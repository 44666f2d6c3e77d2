"""Logging configuration for the chat relay service."""

from __future__ import annotations

import logging
import os
from logging.handlers import RotatingFileHandler

import colorlog

LOGGER_NAME = "chat_relay"
DEFAULT_LOG_PATH = "/var/log/chat-relay/chat-relay.log"

# Per-request httpx clients log every upstream call at INFO
_NOISY_LOGGERS = ("httpx", "httpcore")

_FILE_FORMAT = "%(asctime)s %(levelname)s [%(module)s] %(message)s"
_CONSOLE_FORMAT = "%(log_color)s%(asctime)s %(levelname)-8s%(reset)s [%(module)s] %(message)s"


def setup_logging(log_path: str | None = None, level_name: str | None = None) -> logging.Logger:
    """
    Configure the `chat_relay` logger.

    Writes to log_path (rotated at 1 MB, 3 backups). If the file cannot be opened,
    logs go to stderr instead, colored unless LOG_COLOR is off.

    level_name defaults to $LOG_LEVEL; DISABLE turns logging off entirely.
    """
    level_name = (level_name or os.getenv("LOG_LEVEL", "INFO")).upper().strip()
    logger = logging.getLogger(LOGGER_NAME)
    logger.handlers.clear()
    logger.propagate = False

    if level_name == "DISABLE":
        logging.disable(logging.CRITICAL)
        logger.addHandler(logging.NullHandler())
        return logger

    logging.disable(logging.NOTSET)
    logger.setLevel(getattr(logging, level_name, logging.INFO))
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    log_path = log_path or DEFAULT_LOG_PATH
    try:
        handler: logging.Handler = RotatingFileHandler(
            log_path, maxBytes=1_048_576, backupCount=3, encoding="utf-8"
        )
        handler.setFormatter(logging.Formatter(_FILE_FORMAT))
        logger.addHandler(handler)
    except OSError as e:
        handler = logging.StreamHandler()
        handler.setFormatter(_console_formatter())
        logger.addHandler(handler)
        logger.warning("Cannot open log file %r (%s); logging to stderr", log_path, e)

    return logger


def _console_formatter() -> logging.Formatter:
    if os.getenv("LOG_COLOR", "true").lower() in ("true", "1", "yes"):
        return colorlog.ColoredFormatter(_CONSOLE_FORMAT)
    return logging.Formatter(_FILE_FORMAT)


def mask_secret(s: str, keep_start: int = 6, keep_end: int = 4) -> str:
    """Mask a secret string, keeping only start and end characters."""
    s = (s or "").strip()
    if not s:
        return ""
    if len(s) <= keep_start + keep_end:
        return "*" * len(s)
    return f"{s[:keep_start]}...{s[-keep_end:]}"
