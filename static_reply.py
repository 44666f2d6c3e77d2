"""Development mode: canned replies streamed word by word, no upstream call."""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncGenerator

log = logging.getLogger("chat_relay")

_GREETINGS = ("hello", "hi")
_QUESTION_WORDS = ("what", "who", "when", "where")


def generate_static_reply(user_message: str) -> str:
    """Pick a canned reply by simple keyword matching on the last user message."""
    low = user_message.lower()

    if any(w in low for w in _GREETINGS):
        return "Hello! I'm currently in static reply mode for development. How can I help you today?"

    if "help" in low:
        return (
            "I'm here to help! In development mode, I'm using static replies instead of "
            "making API calls to save costs. You can ask me questions, and I'll provide "
            "sample responses."
        )

    if any(w in low for w in _QUESTION_WORDS):
        return (
            f'This is a static response to your question: "{user_message}". '
            "In production, this would be a real AI-generated response."
        )

    return (
        f'[Static Reply Mode] I received your message: "{user_message}". '
        "This is a development-only response to avoid calling the provider API. "
        "To enable real AI responses, set USE_STATIC_REPLY=false in your environment variables."
    )


async def static_reply_stream(text: str, delay_s: float = 0.03) -> AsyncGenerator[bytes, None]:
    """Yield `text` one word at a time (words after the first keep their leading space)."""
    for i, word in enumerate(text.split(" ")):
        yield (word if i == 0 else f" {word}").encode("utf-8")
        if delay_s > 0:
            await asyncio.sleep(delay_s)
