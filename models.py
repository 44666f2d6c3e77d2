"""Data model for the chat relay: messages, conversations and model choices."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, List, Tuple

ROLE_USER = "user"
ROLE_ASSISTANT = "assistant"
ROLE_SYSTEM = "system"

ALLOWED_ROLES: FrozenSet[str] = frozenset({ROLE_USER, ROLE_ASSISTANT, ROLE_SYSTEM})


@dataclass(frozen=True)
class ChatMessage:
    """One conversation turn as accepted from the client."""

    role: str
    content: str

    def to_upstream_dict(self, max_length: int) -> Dict[str, str]:
        """Sanitized message for the provider: trimmed and capped at max_length."""
        return {"role": self.role, "content": self.content.strip()[:max_length]}


@dataclass(frozen=True)
class ConversationRequest:
    """Validated, ordered conversation. Owned by a single relay invocation."""

    messages: Tuple[ChatMessage, ...]
    max_message_length: int

    def __len__(self) -> int:
        return len(self.messages)

    @property
    def last_content(self) -> str:
        return self.messages[-1].content if self.messages else ""

    def to_payload(self) -> List[Dict[str, str]]:
        """Message list in provider wire format, conversation order preserved."""
        return [m.to_upstream_dict(self.max_message_length) for m in self.messages]


@dataclass(frozen=True)
class ImagePrompt:
    """Validated image generation prompt (already trimmed)."""

    text: str


@dataclass(frozen=True)
class ImageResult:
    """Outcome of an image generation call."""

    image_url: str
    prompt: str
    model: str

    def to_response_dict(self) -> Dict[str, Any]:
        return {"imageUrl": self.image_url, "prompt": self.prompt}


@dataclass(frozen=True)
class ModelChoice:
    """Preferred model plus the single fallback used when it is unavailable."""

    preferred: str
    fallback: str

    def describe(self) -> str:
        return f"{self.preferred} -> {self.fallback}"
