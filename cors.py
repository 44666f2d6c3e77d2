"""Origin policy and per-request response headers."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Optional

LOCAL_DEV_MARKER = "localhost"

_ALLOW_HEADERS = "authorization, x-client-info, apikey, content-type"
_ALLOW_METHODS = "POST, OPTIONS"
_MAX_AGE_S = "86400"


def resolve_allowed_origin(declared: Optional[str], allowed: str) -> str:
    """
    Pick the origin to echo in Access-Control-Allow-Origin.

    The declared origin is echoed when it matches the configured one exactly or
    looks like a local development origin; anything else gets the configured one.
    """
    if not declared:
        return allowed
    if declared == allowed or LOCAL_DEV_MARKER in declared:
        return declared
    return allowed


def cors_headers(origin: str) -> Dict[str, str]:
    return {
        "Access-Control-Allow-Origin": origin,
        "Access-Control-Allow-Headers": _ALLOW_HEADERS,
        "Access-Control-Allow-Methods": _ALLOW_METHODS,
        "Access-Control-Max-Age": _MAX_AGE_S,
        "Vary": "Origin",
    }


def security_headers() -> Dict[str, str]:
    return {
        "X-Content-Type-Options": "nosniff",
        "X-Frame-Options": "DENY",
    }


@dataclass(frozen=True)
class RequestContext:
    """Values computed once per request and shared by every response branch."""

    req_id: str
    origin: str
    client_ip: str = "unknown"
    _cors: Dict[str, str] = field(default_factory=dict, repr=False, compare=False)

    @classmethod
    def build(cls, req_id: str, declared_origin: Optional[str], allowed_origin: str, client_ip: str) -> RequestContext:
        origin = resolve_allowed_origin(declared_origin, allowed_origin)
        return cls(req_id=req_id, origin=origin, client_ip=client_ip, _cors=cors_headers(origin))

    def headers(self, *, secure: bool = True) -> Dict[str, str]:
        """CORS headers for this request, plus security headers unless secure=False."""
        out = dict(self._cors)
        if secure:
            out.update(security_headers())
        return out
