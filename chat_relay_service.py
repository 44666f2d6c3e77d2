"""
Chat relay service -> OpenAI-compatible provider as upstream.

Endpoints:
  /chat            POST {messages} -> streamed text deltas; OPTIONS preflight
  /generate-image  POST {prompt}   -> {imageUrl, prompt};  OPTIONS preflight
  /healthz         liveness + configured models

Every response on the relay endpoints carries the CORS headers computed once
per request from the configured ALLOWED_ORIGIN.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Optional

import httpx
from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse, StreamingResponse

from config import AppConfig, load_config
from cors import RequestContext
from errors import ErrorKind, RelayError, error_response, method_not_allowed, normalize_exception
from logger import setup_logging
from sse_handler import relay_text_deltas
from static_reply import generate_static_reply, static_reply_stream
from upstream import UpstreamClient
from utils import dump_config, load_env_files
from validator import validate_chat_body, validate_image_body

log = logging.getLogger("chat_relay")

# Registered so that anything but POST/OPTIONS gets our 405 body with CORS headers.
RELAY_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


def _request_id(request: Request) -> str:
    return (
        (request.headers.get("x-request-id") or "").strip()
        or (request.headers.get("x-correlation-id") or "").strip()
        or (request.headers.get("x-trace-id") or "").strip()
        or uuid.uuid4().hex
    )


def build_request_context(request: Request, config: AppConfig) -> RequestContext:
    return RequestContext.build(
        req_id=_request_id(request),
        declared_origin=request.headers.get("origin"),
        allowed_origin=config.allowed_origin,
        client_ip=request.client.host if request.client else "unknown",
    )


def preflight_response(ctx: RequestContext) -> Response:
    return Response(status_code=200, headers=ctx.headers(secure=False))


def stream_headers(ctx: RequestContext) -> Dict[str, str]:
    headers = ctx.headers()
    headers.update(
        {
            "Content-Type": "text/event-stream",
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        }
    )
    return headers


async def read_limited_body(request: Request, config: AppConfig) -> bytes:
    """Read the request body, refusing anything above MAX_REQUEST_BYTES."""
    cl = request.headers.get("content-length")
    if cl:
        try:
            n = int(cl)
        except ValueError:
            raise RelayError(ErrorKind.MALFORMED_BODY)
        if n > config.max_request_bytes:
            raise RelayError(ErrorKind.PAYLOAD_TOO_LARGE)

    raw = await request.body()
    if len(raw) > config.max_request_bytes:
        raise RelayError(ErrorKind.PAYLOAD_TOO_LARGE)
    return raw


async def handle_chat(
    request: Request,
    ctx: RequestContext,
    config: AppConfig,
    upstream: UpstreamClient,
) -> Response:
    """Validate, open the upstream stream (with model fallback) and relay it."""
    if request.method != "POST":
        raise method_not_allowed(request.method)

    raw = await read_limited_body(request, config)
    result = validate_chat_body(
        raw,
        max_messages=config.max_messages,
        max_message_length=config.max_message_length,
    )
    if not result.ok:
        log.info("Rejected chat req_id=%s from=%s kind=%s", ctx.req_id, ctx.client_ip, result.error.kind.value)
        return error_response(result.error, ctx.headers())

    conversation = result.value
    log.info(
        "Incoming chat req_id=%s from=%s origin=%s messages=%d",
        ctx.req_id,
        ctx.client_ip,
        ctx.origin,
        len(conversation),
    )

    if config.use_static_reply:
        log.info("Static reply mode req_id=%s: provider not called", ctx.req_id)
        reply = generate_static_reply(conversation.last_content)
        return StreamingResponse(
            static_reply_stream(reply, config.static_reply_delay_s),
            headers=stream_headers(ctx),
        )

    if not config.openai_api_key:
        log.error("OPENAI_API_KEY not set; rejecting req_id=%s", ctx.req_id)
        raise RelayError(ErrorKind.CONFIGURATION_ERROR)

    deadline = time.monotonic() + config.max_request_duration_s
    client = upstream.build_http_client()
    # Once the relay generator exists it owns the client; until then we close it,
    # including when the task is cancelled mid-open.
    handed_off = False
    try:
        try:
            opened = await asyncio.wait_for(
                upstream.open_chat_stream(client, conversation, config.chat_models, req_id=ctx.req_id),
                timeout=config.max_request_duration_s,
            )
        except asyncio.TimeoutError:
            log.error("Upstream open timed out req_id=%s after %.1fs", ctx.req_id, config.max_request_duration_s)
            raise RelayError(ErrorKind.UPSTREAM_ERROR)

        if opened.used_fallback:
            log.info("Serving req_id=%s from fallback model=%s", ctx.req_id, opened.model_id)

        response = StreamingResponse(
            relay_text_deltas(
                opened.resp,
                idle_timeout_s=config.stream_idle_timeout_s,
                deadline=deadline,
                client=client,
                req_id=ctx.req_id,
                model_id=opened.model_id,
            ),
            headers=stream_headers(ctx),
        )
        handed_off = True
        return response
    finally:
        if not handed_off:
            with contextlib.suppress(Exception):
                await client.aclose()


async def handle_generate_image(
    request: Request,
    ctx: RequestContext,
    config: AppConfig,
    upstream: UpstreamClient,
) -> Response:
    """Validate the prompt and generate one image (with model fallback)."""
    if request.method != "POST":
        raise method_not_allowed(request.method)

    raw = await read_limited_body(request, config)
    result = validate_image_body(raw, max_prompt_length=config.max_prompt_length)
    if not result.ok:
        log.info("Rejected image req_id=%s from=%s kind=%s", ctx.req_id, ctx.client_ip, result.error.kind.value)
        return error_response(result.error, ctx.headers())

    if not config.openai_api_key:
        log.error("OPENAI_API_KEY not set; rejecting req_id=%s", ctx.req_id)
        raise RelayError(ErrorKind.CONFIGURATION_ERROR)

    log.info("Incoming image req_id=%s from=%s prompt_len=%d", ctx.req_id, ctx.client_ip, len(result.value.text))

    async with upstream.build_http_client(read_timeout_s=config.max_request_duration_s) as client:
        try:
            image = await asyncio.wait_for(
                upstream.generate_image(client, result.value, config.image_models, req_id=ctx.req_id),
                timeout=config.max_request_duration_s,
            )
        except asyncio.TimeoutError:
            log.error("Image generation timed out req_id=%s", ctx.req_id)
            raise RelayError(ErrorKind.UPSTREAM_ERROR, "Failed to generate image")

    return JSONResponse(status_code=200, content=image.to_response_dict(), headers=ctx.headers())


def create_app(
    config: AppConfig,
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """
    Build the FastAPI app around an immutable config.

    `transport` replaces the network transport of upstream clients (tests).
    """
    upstream = UpstreamClient(config, transport=transport)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        log.info(
            "Chat relay ready chat_models=%s image_models=%s static_reply=%s",
            config.chat_models.describe(),
            config.image_models.describe(),
            config.use_static_reply,
        )
        yield
        log.info("Chat relay shutting down")

    app = FastAPI(title="chat-relay", version="0.3.0", lifespan=lifespan)
    app.state.config = config
    app.state.upstream = upstream

    @app.get("/healthz")
    async def healthz() -> Dict[str, str]:
        """Health check endpoint."""
        return {
            "status": "ok",
            "mode": "static" if config.use_static_reply else "upstream",
            "preferred_model": config.chat_models.preferred,
            "fallback_model": config.chat_models.fallback,
        }

    @app.api_route("/chat", methods=RELAY_METHODS)
    async def chat(request: Request) -> Response:
        ctx = build_request_context(request, config)
        if request.method == "OPTIONS":
            return preflight_response(ctx)
        try:
            return await handle_chat(request, ctx, config, upstream)
        except Exception as e:
            return error_response(normalize_exception(e, req_id=ctx.req_id), ctx.headers())

    @app.api_route("/generate-image", methods=RELAY_METHODS)
    async def generate_image(request: Request) -> Response:
        ctx = build_request_context(request, config)
        if request.method == "OPTIONS":
            return preflight_response(ctx)
        try:
            return await handle_generate_image(request, ctx, config, upstream)
        except Exception as e:
            return error_response(normalize_exception(e, req_id=ctx.req_id), ctx.headers())

    return app


# Load environment
load_env_files()

# Load configuration
config = load_config()
config.validate(require_api_key=False)

# Initialize logging
log = setup_logging(config.log_path, config.log_level)
dump_config(config)

app = create_app(config)


def main() -> None:
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=config.port, reload=False)


if __name__ == "__main__":
    main()
