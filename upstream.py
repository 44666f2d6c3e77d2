"""Upstream provider communication (OpenAI-compatible API) with model fallback."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, TypeVar

import httpx

from config import AppConfig
from errors import ErrorKind, RelayError
from models import ConversationRequest, ImagePrompt, ImageResult, ModelChoice

log = logging.getLogger("chat_relay")

T = TypeVar("T")


class UpstreamCallError(Exception):
    """A single upstream attempt failed. Detail is for logs and classification only."""

    def __init__(self, model_id: str, status_code: Optional[int], detail: str) -> None:
        self.model_id = model_id
        self.status_code = status_code
        self.detail = detail
        super().__init__(f"model={model_id} status={status_code} detail={detail[:300]}")

    @property
    def model_unavailable(self) -> bool:
        return is_model_unavailable(self.status_code, self.detail, self.model_id)


def is_model_unavailable(status_code: Optional[int], message: str, model_id: str = "") -> bool:
    """Not-found status, or an error message that mentions models or names `model_id`."""
    if status_code == 404:
        return True
    text = (message or "").lower()
    if "model" in text:
        return True
    return bool(model_id) and model_id.lower() in text


def error_message_from_snippet(snippet: str) -> str:
    """Pull `error.message` out of an OpenAI-style error body; raw snippet otherwise."""
    if not snippet:
        return ""
    try:
        obj = json.loads(snippet)
    except ValueError:
        return snippet
    if isinstance(obj, dict):
        err = obj.get("error")
        if isinstance(err, dict) and isinstance(err.get("message"), str):
            return err["message"]
        if isinstance(err, str):
            return err
    return snippet


@dataclass
class UpstreamStream:
    """An opened streaming completion."""

    resp: httpx.Response
    model_id: str
    used_fallback: bool


class UpstreamClient:
    """Handle communication with the provider API."""

    def __init__(
        self,
        config: AppConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._config = config
        self._transport = transport

    def get_headers(self) -> Dict[str, str]:
        """Get default headers for the provider API."""
        return {
            "Authorization": f"Bearer {self._config.openai_api_key}",
            "Content-Type": "application/json",
            "User-Agent": self._config.user_agent,
        }

    def get_proxy_url(self) -> str | None:
        """
        Get proxy URL for httpx AsyncClient.

        Returns HTTPS proxy if set (preferred for HTTPS API calls),
        otherwise HTTP proxy if set, or None if no proxy configured.
        """
        if self._config.https_proxy:
            log.debug("HTTPS proxy configured: %s", self._config.https_proxy)
            return self._config.https_proxy
        if self._config.http_proxy:
            log.debug("HTTP proxy configured: %s", self._config.http_proxy)
            return self._config.http_proxy
        return None

    def build_http_client(self, read_timeout_s: Optional[float] = None) -> httpx.AsyncClient:
        """
        Per-request client. Connect/write/pool are bounded by REQUEST_TIMEOUT_S;
        reads by STREAM_IDLE_TIMEOUT_S unless overridden.
        """
        t = float(self._config.request_timeout_s)
        read = float(self._config.stream_idle_timeout_s if read_timeout_s is None else read_timeout_s)
        timeout = httpx.Timeout(connect=t, write=t, pool=t, read=read)
        if self._transport is not None:
            return httpx.AsyncClient(timeout=timeout, transport=self._transport)
        return httpx.AsyncClient(timeout=timeout, proxy=self.get_proxy_url())

    async def chat_completion(
        self,
        client: httpx.AsyncClient,
        messages: List[Dict[str, str]],
        model_id: str,
    ) -> httpx.Response:
        """
        Send a streaming chat completion request.

        The response is returned unread (stream=True) so deltas are not buffered.
        """
        payload = {"model": model_id, "messages": messages, "stream": True}

        t0 = time.time()
        req = client.build_request(
            "POST",
            f"{self._config.openai_base_url}/chat/completions",
            headers=self.get_headers(),
            json=payload,
        )
        resp = await client.send(req, stream=True)

        dt = (time.time() - t0) * 1000
        log.info("Upstream chat model=%s status=%s ms=%.1f", model_id, resp.status_code, dt)

        if resp.status_code != 200:
            log.warning(
                "Upstream chat error model=%s status=%s content-type=%s",
                model_id,
                resp.status_code,
                resp.headers.get("content-type", ""),
            )

        return resp

    async def open_chat_stream(
        self,
        client: httpx.AsyncClient,
        request: ConversationRequest,
        choice: ModelChoice,
        req_id: str = "-",
    ) -> UpstreamStream:
        """
        Open a completion stream on the preferred model, falling back once when the
        provider reports that model as unavailable. Raises RelayError(UpstreamError).
        """
        messages = request.to_payload()

        async def attempt(model_id: str) -> httpx.Response:
            try:
                resp = await self.chat_completion(client, messages, model_id)
            except httpx.HTTPError as e:
                raise UpstreamCallError(model_id, None, f"{type(e).__name__}: {e}") from e
            if resp.status_code != 200:
                snippet = await self.read_error_snippet(resp)
                await resp.aclose()
                raise UpstreamCallError(model_id, resp.status_code, error_message_from_snippet(snippet))
            return resp

        resp, model_id, used_fallback = await self._call_with_fallback(
            attempt, choice, req_id=req_id, op="chat"
        )
        return UpstreamStream(resp=resp, model_id=model_id, used_fallback=used_fallback)

    async def generate_image(
        self,
        client: httpx.AsyncClient,
        prompt: ImagePrompt,
        choice: ModelChoice,
        req_id: str = "-",
    ) -> ImageResult:
        """Generate one image; same single-fallback rule as chat."""

        async def attempt(model_id: str) -> str:
            payload = {"model": model_id, "prompt": prompt.text, "n": 1, "size": self._config.image_size}
            t0 = time.time()
            try:
                r = await client.post(
                    f"{self._config.openai_base_url}/images/generations",
                    headers=self.get_headers(),
                    json=payload,
                )
            except httpx.HTTPError as e:
                raise UpstreamCallError(model_id, None, f"{type(e).__name__}: {e}") from e
            dt = (time.time() - t0) * 1000
            log.info("Upstream image model=%s status=%s ms=%.1f", model_id, r.status_code, dt)
            if r.status_code != 200:
                raise UpstreamCallError(model_id, r.status_code, error_message_from_snippet(r.text[:2000]))
            try:
                url = self.image_url_from_payload(r.json())
            except ValueError as e:
                raise UpstreamCallError(model_id, r.status_code, "response is not valid JSON") from e
            if not url:
                raise UpstreamCallError(model_id, r.status_code, "no image returned")
            return url

        url, model_id, _ = await self._call_with_fallback(
            attempt, choice, req_id=req_id, op="image", failure_message="Failed to generate image"
        )
        return ImageResult(image_url=url, prompt=prompt.text, model=model_id)

    async def _call_with_fallback(
        self,
        attempt: Callable[[str], Awaitable[T]],
        choice: ModelChoice,
        *,
        req_id: str,
        op: str,
        failure_message: Optional[str] = None,
    ) -> Tuple[T, str, bool]:
        """
        Run attempt(preferred); on a model-unavailable failure run attempt(fallback)
        exactly once. Returns (result, model_used, used_fallback).
        """
        try:
            return await attempt(choice.preferred), choice.preferred, False
        except UpstreamCallError as e:
            if not e.model_unavailable:
                log.error("Upstream %s failed req_id=%s %s", op, req_id, e)
                raise RelayError(ErrorKind.UPSTREAM_ERROR, failure_message) from e
            log.warning(
                "Model %s not available (status=%s), using %s req_id=%s",
                choice.preferred,
                e.status_code,
                choice.fallback,
                req_id,
            )

        try:
            return await attempt(choice.fallback), choice.fallback, True
        except UpstreamCallError as e:
            log.error("Upstream %s fallback failed req_id=%s %s", op, req_id, e)
            raise RelayError(ErrorKind.UPSTREAM_ERROR, failure_message) from e

    @staticmethod
    def image_url_from_payload(payload: Any) -> str:
        """First image as URL; base64 payloads become a data: URL."""
        if not isinstance(payload, dict):
            return ""
        data = payload.get("data")
        if not isinstance(data, list) or not data or not isinstance(data[0], dict):
            return ""
        first = data[0]
        if isinstance(first.get("url"), str) and first["url"]:
            return first["url"]
        if isinstance(first.get("b64_json"), str) and first["b64_json"]:
            return f"data:image/png;base64,{first['b64_json']}"
        return ""

    @staticmethod
    async def read_error_snippet(
        resp: httpx.Response, limit: int = 2000, timeout_s: float = 2.0
    ) -> str:
        """Best-effort: read small error body without risking a hang."""
        try:
            raw = await asyncio.wait_for(resp.aread(), timeout=timeout_s)
        except Exception:
            return ""
        return raw.decode("utf-8", errors="replace")[:limit]
