"""Request id middleware.

Forwards a well-formed client X-Request-ID or mints a cuid2, stores it on
request.state (audit context) and echoes it on the response. Malformed
client values are replaced so they never reach logs or audit entries.
"""

import logging
import re
from typing import Callable

from gatekeeper.shared.utils import generate_cuid

logger = logging.getLogger(__name__)

REQUEST_ID_MAX_LENGTH = 64
_REQUEST_ID_RE = re.compile(r"^[a-zA-Z0-9_-]{1," + str(REQUEST_ID_MAX_LENGTH) + r"}$")


def _header(scope: dict, name: bytes) -> str | None:
    for key, value in scope.get("headers", []):
        if key.lower() == name:
            return value.decode("latin-1")
    return None


def resolve_request_id(raw: str | None) -> str:
    if raw and _REQUEST_ID_RE.match(raw.strip()):
        return raw.strip()
    return generate_cuid()


def RequestIdMiddleware(app: Callable, header_name: str = "X-Request-ID") -> Callable:
    """Attach a request id to scope state and the response headers."""
    header_b = header_name.lower().encode()

    async def asgi_app(scope: dict, receive: Callable, send: Callable) -> None:
        if scope["type"] != "http":
            await app(scope, receive, send)
            return
        request_id = resolve_request_id(_header(scope, header_b))
        scope.setdefault("state", {})["request_id"] = request_id

        async def send_with_id(message: dict) -> None:
            if message["type"] == "http.response.start":
                headers = [h for h in message.get("headers", []) if h[0].lower() != header_b]
                headers.append((header_name.encode(), request_id.encode()))
                message["headers"] = headers
            await send(message)

        await app(scope, receive, send_with_id)

    return asgi_app
