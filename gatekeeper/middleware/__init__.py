"""Raw ASGI middlewares (no BaseHTTPMiddleware)."""

from gatekeeper.middleware.request_id import RequestIdMiddleware
from gatekeeper.middleware.security_headers import SecurityHeadersMiddleware

__all__ = ["RequestIdMiddleware", "SecurityHeadersMiddleware"]
