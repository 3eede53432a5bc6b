"""Build a RequestContext from a Starlette request."""

from starlette.requests import Request

from gatekeeper.application.dtos.auth import RequestContext
from gatekeeper.shared.utils import sha256_hex

UNKNOWN_IP = "unknown"


def client_ip(request: Request) -> str:
    """Caller IP: first X-Forwarded-For hop, then X-Real-IP, then Client-IP, then the peer."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    for name in ("x-real-ip", "client-ip"):
        value = (request.headers.get(name) or "").strip()
        if value:
            return value
    if request.client and request.client.host:
        return request.client.host
    return UNKNOWN_IP


def user_agent_hash(user_agent: str) -> str:
    return sha256_hex(user_agent or "")[:16]


def build_request_context(request: Request) -> RequestContext:
    user_agent = request.headers.get("user-agent", "")
    return RequestContext(
        ip_address=client_ip(request),
        user_agent=user_agent,
        ua_hash=user_agent_hash(user_agent),
        origin=request.headers.get("origin"),
        method=request.method,
        path=request.url.path,
        request_id=getattr(request.state, "request_id", None),
        headers={k.lower(): v for k, v in request.headers.items()},
    )
