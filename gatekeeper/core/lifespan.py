"""Application lifespan: startup and shutdown.

Single place for all startup/shutdown logic. Used by main.py; no business
logic here, only wiring of infrastructure (document store, identity
provider, telemetry).
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from gatekeeper.core.config import get_settings
from gatekeeper.infrastructure.firebase._rest_client import _get_credentials
from gatekeeper.infrastructure.firebase.client import (
    close_document_store,
    init_document_store,
    load_service_account,
)
from gatekeeper.infrastructure.identity import FirebaseIdentityProvider
from gatekeeper.infrastructure.identity.firebase_identity import IDENTITY_SCOPE
from gatekeeper.shared.telemetry import configure_tracing, shutdown_tracing

logger = logging.getLogger(__name__)


def build_identity_provider() -> FirebaseIdentityProvider:
    """Firebase ID token verifier; revocation checks need the service account."""
    settings = get_settings()
    key_dict = load_service_account(settings)
    credentials = _get_credentials(key_dict, scopes=[IDENTITY_SCOPE]) if key_dict else None
    check_revoked = settings.identity_check_revoked and credentials is not None
    if settings.identity_check_revoked and credentials is None:
        logger.warning("No service account configured; token revocation checks are disabled")
    project_id = (key_dict or {}).get("project_id") or settings.firebase_project_id
    return FirebaseIdentityProvider(
        project_id,
        credentials=credentials,
        check_revoked=check_revoked,
        clock_skew_seconds=settings.identity_clock_skew_seconds,
    )


@asynccontextmanager
async def create_lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Run startup then yield; on exit run shutdown.

    Startup order: document store, identity provider, telemetry (if
    enabled). Tests that inject their own store or identity provider set
    them on app.state before startup; those are kept.
    """
    settings = get_settings()

    # ---- Startup ----
    injected_store = getattr(app.state, "document_store", None)
    app.state.document_store = init_document_store(injected_store)
    if getattr(app.state, "identity_provider", None) is None:
        app.state.identity_provider = build_identity_provider()

    app.state.tracer_provider = configure_tracing(app, settings)

    yield

    # ---- Shutdown ----
    identity_provider = getattr(app.state, "identity_provider", None)
    if identity_provider is not None:
        await identity_provider.aclose()
        app.state.identity_provider = None

    await close_document_store()
    app.state.document_store = None

    shutdown_tracing(getattr(app.state, "tracer_provider", None))
    app.state.tracer_provider = None
