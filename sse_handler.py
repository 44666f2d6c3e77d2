"""Server-Sent Events (SSE) parsing and text-delta relaying."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import time
from typing import Any, AsyncGenerator, AsyncIterator, List, Optional

import httpx

from errors import StreamError

log = logging.getLogger("chat_relay")

SSEEventLines = List[str]


def sse_event_data_text(lines: SSEEventLines) -> str:
    """
    Join all `data:` lines in an SSE event into a single payload.

    SSE spec concatenates multiple data lines with '\n'.
    """
    parts: List[str] = []
    for ln in lines:
        if ln.startswith("data:"):
            parts.append(ln[len("data:"):].lstrip())
    return "\n".join(parts)


async def read_next_sse_event(
    aiter: AsyncIterator[str],
    *,
    timeout_s: float | None = None,
) -> SSEEventLines | None:
    """
    Read one SSE event (blank-line delimited) from an async line iterator.

    Returns:
    - list[str]: event lines excluding the terminating blank line (may be empty for keepalive)
    - None: EOF (no more data)

    timeout_s bounds the wait for each line; asyncio.TimeoutError propagates.
    """
    lines: SSEEventLines = []
    while True:
        try:
            if timeout_s is None:
                raw = await aiter.__anext__()  # type: ignore[attr-defined]
            else:
                raw = await asyncio.wait_for(
                    aiter.__anext__(), timeout=timeout_s  # type: ignore[attr-defined]
                )
        except StopAsyncIteration:
            if lines:
                return lines
            return None

        line = raw.rstrip("\r\n")
        if line == "":
            return lines
        lines.append(line)


def extract_content_fragments(obj: Any) -> List[str]:
    """Extract non-empty text deltas from a chat.completion.chunk object, in choice order."""
    out: List[str] = []
    if not isinstance(obj, dict):
        return out

    for ch in (obj.get("choices") or []):
        if not isinstance(ch, dict):
            continue
        d = ch.get("delta") or {}
        if isinstance(d, dict):
            c = d.get("content")
            if isinstance(c, str) and c:
                out.append(c)
    return out


def upstream_error_in_chunk(obj: Any) -> bool:
    """Providers may report a failure inside an already-started stream."""
    if not isinstance(obj, dict):
        return False
    if obj.get("error") is not None:
        return True
    for ch in (obj.get("choices") or []):
        if isinstance(ch, dict) and (ch.get("error") is not None or ch.get("finish_reason") == "error"):
            return True
    return False


async def relay_text_deltas(
    resp: httpx.Response,
    *,
    idle_timeout_s: float,
    deadline: Optional[float] = None,
    client: Optional[httpx.AsyncClient] = None,
    req_id: str = "-",
    model_id: str = "-",
) -> AsyncGenerator[bytes, None]:
    """
    Re-emit the upstream's text deltas as raw UTF-8 chunks, one chunk per delta.

    Control frames (keepalives, comments, role-only and finish frames, [DONE]) are
    dropped. The generator ends normally on [DONE] or EOF.

    Any read failure, idle stall longer than idle_timeout_s, or passing `deadline`
    (time.monotonic() value) raises StreamError so the transport aborts the response
    instead of closing it as if complete. The upstream response (and `client`, if
    given) is always closed, including when the consumer goes away.
    """
    aiter = resp.aiter_lines()
    t0 = time.monotonic()
    n_chunks = 0
    n_bytes = 0
    outcome = "aborted"

    try:
        while True:
            wait_s = idle_timeout_s
            deadline_bound = False
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise StreamError("request-deadline")
                if remaining < wait_s:
                    wait_s = remaining
                    deadline_bound = True

            try:
                event_lines = await read_next_sse_event(aiter, timeout_s=wait_s)
            except asyncio.TimeoutError as e:
                raise StreamError("request-deadline" if deadline_bound else "idle-timeout") from e
            except Exception as e:
                raise StreamError(f"read-error:{type(e).__name__}") from e

            if event_lines is None:
                outcome = "eof"
                break

            data = sse_event_data_text(event_lines)
            if not data:
                continue
            if data.strip() == "[DONE]":
                outcome = "done"
                break

            try:
                obj = json.loads(data)
            except json.JSONDecodeError:
                log.debug("Skipping non-JSON data frame req_id=%s data=%r", req_id, data[:200])
                continue

            if upstream_error_in_chunk(obj):
                log.error("Upstream error frame req_id=%s model=%s frame=%s", req_id, model_id, data[:500])
                raise StreamError("upstream-error-frame")

            for frag in extract_content_fragments(obj):
                b = frag.encode("utf-8")
                n_chunks += 1
                n_bytes += len(b)
                yield b
    except StreamError as e:
        log.warning(
            "Stream aborted req_id=%s model=%s reason=%s chunks=%d bytes=%d",
            req_id,
            model_id,
            e.reason,
            n_chunks,
            n_bytes,
        )
        raise
    except (asyncio.CancelledError, GeneratorExit):
        outcome = "client-gone"
        raise
    finally:
        with contextlib.suppress(Exception):
            await resp.aclose()
        if client is not None:
            with contextlib.suppress(Exception):
                await client.aclose()
        log.info(
            "Relay finished req_id=%s model=%s outcome=%s chunks=%d bytes=%d ms=%.1f",
            req_id,
            model_id,
            outcome,
            n_chunks,
            n_bytes,
            (time.monotonic() - t0) * 1000,
        )
