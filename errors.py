"""Relay error taxonomy and client-safe error responses.

Every failure that can reach an external caller is expressed as a RelayError
with an ErrorKind. The kind fixes the HTTP status and the message sent to the
client; the original exception and any upstream payload are only ever logged.
"""

from __future__ import annotations

import enum
import logging
from typing import Dict, Mapping, Optional

from fastapi.responses import JSONResponse

log = logging.getLogger("chat_relay")


class ErrorKind(str, enum.Enum):
    """Machine-readable failure kinds."""

    MALFORMED_BODY = "MalformedBody"
    MISSING_MESSAGES = "MissingMessages"
    TOO_MANY_MESSAGES = "TooManyMessages"
    INVALID_MESSAGE_FORMAT = "InvalidMessageFormat"
    MESSAGE_TOO_LONG = "MessageTooLong"
    INVALID_ROLE = "InvalidRole"
    INVALID_PROMPT = "InvalidPrompt"
    METHOD_NOT_ALLOWED = "MethodNotAllowed"
    PAYLOAD_TOO_LARGE = "PayloadTooLarge"
    CONFIGURATION_ERROR = "ConfigurationError"
    UPSTREAM_ERROR = "UpstreamError"
    STREAM_ERROR = "StreamError"


# kind -> (status, default client message)
_ERROR_TABLE: Dict[ErrorKind, tuple[int, str]] = {
    ErrorKind.MALFORMED_BODY: (400, "Invalid JSON in request body"),
    ErrorKind.MISSING_MESSAGES: (400, "Messages array is required"),
    ErrorKind.TOO_MANY_MESSAGES: (400, "Too many messages in conversation"),
    ErrorKind.INVALID_MESSAGE_FORMAT: (400, "Invalid message format"),
    ErrorKind.MESSAGE_TOO_LONG: (400, "Message content too long"),
    ErrorKind.INVALID_ROLE: (400, "Invalid message role"),
    ErrorKind.INVALID_PROMPT: (400, "Prompt is required and must be a non-empty string"),
    ErrorKind.METHOD_NOT_ALLOWED: (405, "Method not allowed"),
    ErrorKind.PAYLOAD_TOO_LARGE: (413, "Request too large"),
    ErrorKind.CONFIGURATION_ERROR: (500, "Service not configured"),
    ErrorKind.UPSTREAM_ERROR: (500, "Failed to process chat request"),
    ErrorKind.STREAM_ERROR: (500, "Stream interrupted"),
}


class RelayError(Exception):
    """Failure with a client-safe message.

    Attributes:
        kind: ErrorKind of the failure.
        message: message that may be shown to the client.
        status_code: HTTP status mapped from the kind.
    """

    def __init__(self, kind: ErrorKind, message: Optional[str] = None) -> None:
        status, default_message = _ERROR_TABLE[kind]
        self.kind = kind
        self.status_code = status
        self.message = message or default_message
        super().__init__(self.message)

    def __repr__(self) -> str:
        return f"RelayError(kind={self.kind.value!r}, message={self.message!r})"

    def to_body(self) -> Dict[str, str]:
        return {"error": self.message}


class StreamError(RelayError):
    """Failure after the response status was already sent; aborts the stream."""

    def __init__(self, reason: str) -> None:
        super().__init__(ErrorKind.STREAM_ERROR)
        self.reason = reason


def method_not_allowed(method: str) -> RelayError:
    return RelayError(ErrorKind.METHOD_NOT_ALLOWED, f"Method {method} not allowed")


def normalize_exception(exc: BaseException, *, req_id: str = "-") -> RelayError:
    """Map any failure to a RelayError. Unknown exceptions become UpstreamError."""
    if isinstance(exc, RelayError):
        return exc
    log.error("Unhandled failure req_id=%s err=%r", req_id, exc, exc_info=exc)
    return RelayError(ErrorKind.UPSTREAM_ERROR)


def error_response(err: RelayError, headers: Mapping[str, str]) -> JSONResponse:
    """Render a RelayError as `{"error": message}` with the given response headers."""
    return JSONResponse(status_code=err.status_code, content=err.to_body(), headers=dict(headers))
