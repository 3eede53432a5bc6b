"""Infrastructure handles created at startup (composition root).

The lifespan puts the document store and identity provider on app.state;
routes reach them only through these dependencies, so tests can override
each one with app.dependency_overrides.
"""

from __future__ import annotations

from fastapi import Request

from gatekeeper.application.interfaces.identity import IIdentityProvider
from gatekeeper.application.interfaces.store import IDocumentStore
from gatekeeper.shared.utils import Clock, utc_now


def get_store(request: Request) -> IDocumentStore:
    """Document store initialized by the lifespan."""
    store = getattr(request.app.state, "document_store", None)
    if store is None:
        raise RuntimeError("Document store not initialized; is the lifespan running?")
    return store


def get_identity_provider(request: Request) -> IIdentityProvider:
    """Identity provider adapter initialized by the lifespan."""
    provider = getattr(request.app.state, "identity_provider", None)
    if provider is None:
        raise RuntimeError("Identity provider not initialized; is the lifespan running?")
    return provider


def get_clock() -> Clock:
    return utc_now
