"""Security headers middleware.

Adds the cookie envelope's static security headers (CSP, HSTS, frame and
cross-origin policies, no-store caching) to every HTTP response that does
not already carry them, so non-gated responses (health, 404, validation
errors) get them too. Gate responses set their own and are left untouched.
"""

from typing import Callable


def SecurityHeadersMiddleware(app: Callable, headers: dict[str, str]) -> Callable:
    """Set missing security headers on all responses. Raw ASGI."""
    header_list = [(k.lower().encode(), v.encode()) for k, v in headers.items()]

    async def asgi_app(scope: dict, receive: Callable, send: Callable) -> None:
        if scope["type"] != "http":
            await app(scope, receive, send)
            return

        async def send_wrapper(message: dict) -> None:
            if message["type"] == "http.response.start":
                current = list(message.get("headers", []))
                seen = {name.lower() for name, _ in current}
                current.extend(h for h in header_list if h[0] not in seen)
                message["headers"] = current
            await send(message)

        await app(scope, receive, send_wrapper)

    return asgi_app
