"""
Pytest configuration and shared fixtures.

This file is automatically loaded by pytest and provides:
- Environment defaults set before the service module loads its config
- A fake provider answering /chat/completions and /images/generations
- An app + client pair wired to that fake provider
"""

import dataclasses
import json
import os
import sys
from pathlib import Path
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx
import pytest

# Add parent directory to Python path so tests can import project modules
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

# Must be set during collection: the service builds its config at import time.
os.environ.setdefault("OPENAI_API_KEY", "test-key")
os.environ.setdefault("LOG_LEVEL", "DEBUG")
os.environ.setdefault("LOG_PATH", "/tmp/chat_relay_test.log")
os.environ.setdefault("LOG_COLOR", "false")
os.environ["USE_STATIC_REPLY"] = "false"

PREFERRED = "model-x"
FALLBACK = "model-y"
ALLOWED_ORIGIN = "https://chat.example.com"


def sse_body(deltas: List[str], *, done: bool = True) -> bytes:
    """Build an OpenAI-style completion stream carrying the given text deltas."""

    def event(obj: Dict[str, Any]) -> str:
        return "data: " + json.dumps(obj) + "\n\n"

    parts = [event({"choices": [{"index": 0, "delta": {"role": "assistant", "content": ""}}]})]
    parts.append(": keepalive\n\n")
    for d in deltas:
        parts.append(event({"choices": [{"index": 0, "delta": {"content": d}, "finish_reason": None}]}))
    parts.append(event({"choices": [{"index": 0, "delta": {}, "finish_reason": "stop"}]}))
    if done:
        parts.append("data: [DONE]\n\n")
    return "".join(parts).encode("utf-8")


def model_not_found(model: str) -> Dict[str, Any]:
    return {
        "error": {
            "message": f"The model `{model}` does not exist or you do not have access to it.",
            "type": "invalid_request_error",
            "code": "model_not_found",
        }
    }


async def _broken_body(deltas: List[str]) -> AsyncIterator[bytes]:
    yield sse_body(deltas, done=False)
    raise httpx.ReadError("upstream connection reset")


class FakeProvider:
    """Records upstream calls and answers them per model id."""

    def __init__(self) -> None:
        self.calls: List[Dict[str, Any]] = []
        self.paths: List[str] = []
        self._replies: Dict[str, Any] = {}

    def stream(self, model: str, deltas: List[str]) -> None:
        self._replies[model] = ("stream", deltas)

    def error(self, model: str, status: int, body: Dict[str, Any]) -> None:
        self._replies[model] = ("error", status, body)

    def broken_stream(self, model: str, deltas: List[str]) -> None:
        """Stream the deltas, then drop the connection before [DONE]."""
        self._replies[model] = ("broken", deltas)

    def image(self, model: str, payload: Dict[str, Any]) -> None:
        self._replies[model] = ("json", payload)

    def fail(self, model: str, exc: Exception) -> None:
        self._replies[model] = ("raise", exc)

    def reset(self) -> None:
        self.calls.clear()
        self.paths.clear()
        self._replies.clear()

    @property
    def models(self) -> List[str]:
        return [c.get("model") for c in self.calls]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        payload = json.loads(request.content)
        self.calls.append(payload)
        self.paths.append(request.url.path)
        reply = self._replies.get(payload.get("model"))
        if reply is None:
            return httpx.Response(404, json=model_not_found(payload.get("model", "")))
        kind = reply[0]
        if kind == "stream":
            return httpx.Response(200, headers={"content-type": "text/event-stream"}, content=sse_body(reply[1]))
        if kind == "broken":
            return httpx.Response(200, headers={"content-type": "text/event-stream"}, content=_broken_body(reply[1]))
        if kind == "error":
            return httpx.Response(reply[1], json=reply[2])
        if kind == "json":
            return httpx.Response(200, json=reply[1])
        raise reply[1]


@pytest.fixture
def fake_provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def make_config():
    """Build an AppConfig from the environment with test overrides applied."""
    from config import AppConfig
    from models import ModelChoice

    def _make(**overrides: Any) -> AppConfig:
        base = dict(
            openai_api_key="test-key",
            openai_base_url="https://upstream.test/v1",
            allowed_origin=ALLOWED_ORIGIN,
            chat_models=ModelChoice(preferred=PREFERRED, fallback=FALLBACK),
            image_models=ModelChoice(preferred="image-x", fallback="image-y"),
            use_static_reply=False,
            static_reply_delay_s=0.0,
        )
        base.update(overrides)
        return dataclasses.replace(AppConfig.from_env(), **base)

    return _make


@pytest.fixture
def make_client(fake_provider, make_config):
    """Factory for an httpx client talking to a fresh app over ASGI."""
    import chat_relay_service as service

    def _make(config: Optional[Any] = None, **overrides: Any) -> httpx.AsyncClient:
        cfg = config or make_config(**overrides)
        app = service.create_app(cfg, transport=httpx.MockTransport(fake_provider))
        c = httpx.AsyncClient(
            transport=httpx.ASGITransport(app=app, raise_app_exceptions=False),
            base_url="http://testserver",
        )
        return c

    return _make


@pytest.fixture
def client(make_client) -> httpx.AsyncClient:
    return make_client()
