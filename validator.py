"""Inbound request validation.

Pure functions: no I/O, no logging, never raise for rejected input. Each
returns a ValidationResult holding either the accepted value or the first
RelayError that applies.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Generic, Optional, TypeVar

from errors import ErrorKind, RelayError
from models import ALLOWED_ROLES, ChatMessage, ConversationRequest, ImagePrompt

T = TypeVar("T")


@dataclass(frozen=True)
class ValidationResult(Generic[T]):
    value: Optional[T] = None
    error: Optional[RelayError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _parse_json(raw: bytes | str) -> tuple[bool, Any]:
    try:
        return True, json.loads(raw)
    except (ValueError, TypeError, RecursionError):
        # JSONDecodeError and UnicodeDecodeError are ValueError; deep nesting is RecursionError
        return False, None


def _reject(kind: ErrorKind, message: Optional[str] = None) -> ValidationResult[Any]:
    return ValidationResult(error=RelayError(kind, message))


def _is_nonempty_str(v: Any) -> bool:
    return isinstance(v, str) and v != ""


def validate_chat_body(
    raw: bytes | str,
    *,
    max_messages: int = 50,
    max_message_length: int = 10_000,
) -> ValidationResult[ConversationRequest]:
    """
    Validate a raw chat request body.

    Rules, first failure wins:
      1. JSON syntax                                   -> MalformedBody
      2. `messages` present, a list, non-empty         -> MissingMessages
      3. len(messages) <= max_messages                 -> TooManyMessages
      4. per message, in conversation order:
         a. object, role set, non-empty str content    -> InvalidMessageFormat
         b. len(content) <= max_message_length         -> MessageTooLong
         c. role in {user, assistant, system}          -> InvalidRole
    """
    parsed, body = _parse_json(raw)
    if not parsed:
        return _reject(ErrorKind.MALFORMED_BODY)

    messages = body.get("messages") if isinstance(body, dict) else None
    if not isinstance(messages, list) or not messages:
        return _reject(ErrorKind.MISSING_MESSAGES)

    if len(messages) > max_messages:
        return _reject(ErrorKind.TOO_MANY_MESSAGES)

    accepted = []
    for msg in messages:
        if not isinstance(msg, dict):
            return _reject(ErrorKind.INVALID_MESSAGE_FORMAT)
        role = msg.get("role")
        content = msg.get("content")
        if not role or not _is_nonempty_str(content):
            return _reject(ErrorKind.INVALID_MESSAGE_FORMAT)
        if len(content) > max_message_length:
            return _reject(ErrorKind.MESSAGE_TOO_LONG)
        if not isinstance(role, str) or role not in ALLOWED_ROLES:
            return _reject(ErrorKind.INVALID_ROLE)
        accepted.append(ChatMessage(role=role, content=content))

    return ValidationResult(
        value=ConversationRequest(messages=tuple(accepted), max_message_length=max_message_length)
    )


def validate_image_body(
    raw: bytes | str,
    *,
    max_prompt_length: int = 1_000,
) -> ValidationResult[ImagePrompt]:
    """Validate `{"prompt": str}`; the prompt is trimmed before the length check."""
    parsed, body = _parse_json(raw)
    if not parsed:
        return _reject(ErrorKind.MALFORMED_BODY)

    prompt = body.get("prompt") if isinstance(body, dict) else None
    if not isinstance(prompt, str) or not prompt.strip():
        return _reject(ErrorKind.INVALID_PROMPT)

    text = prompt.strip()
    if len(text) > max_prompt_length:
        return _reject(ErrorKind.INVALID_PROMPT, "Prompt too long")

    return ValidationResult(value=ImagePrompt(text=text))
