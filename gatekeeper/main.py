"""FastAPI application entry point.

Wiring only: logging, lifespan, exception handlers, middleware, routers.
No business logic here. See gatekeeper.core.lifespan and
gatekeeper.core.exception_handlers.

Settings are loaded inside create_app() so that tests can set env (and
clear the get_settings cache) before calling create_app().
"""

from fastapi import FastAPI

from gatekeeper.api.v1 import api_router
from gatekeeper.core.config import get_settings
from gatekeeper.core.cookie_envelope import CookieEnvelope
from gatekeeper.core.exception_handlers import register_exception_handlers
from gatekeeper.core.lifespan import create_lifespan
from gatekeeper.middleware import RequestIdMiddleware, SecurityHeadersMiddleware
from gatekeeper.shared.telemetry import setup_logging


def create_app() -> FastAPI:
    """Build and return the FastAPI application. Settings are resolved here (deferred from import)."""
    settings = get_settings()
    setup_logging()
    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        debug=settings.debug,
        lifespan=create_lifespan,
    )

    register_exception_handlers(app)

    # First added = innermost. Request ID is outermost so every response echoes it.
    # CORS headers are set per response by the policy gate, not by a middleware.
    app.add_middleware(
        SecurityHeadersMiddleware,
        headers=CookieEnvelope(settings).security_headers(),
    )
    app.add_middleware(RequestIdMiddleware, header_name=settings.request_id_header)

    app.include_router(api_router, prefix="/api/v1")
    return app


app = create_app()
