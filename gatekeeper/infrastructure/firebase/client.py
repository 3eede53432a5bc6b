"""Document store initialization (Firestore REST or in-memory).

Initialized at app startup. The Firestore backend uses either
FIREBASE_SERVICE_ACCOUNT_KEY (JSON string, e.g. on serverless hosts) or
FIREBASE_SERVICE_ACCOUNT_PATH (file path), with the Firestore REST API and
google-auth to keep the bundle small.
"""

import json
import logging
from pathlib import Path

from gatekeeper.core.config import Settings, get_settings
from gatekeeper.infrastructure.firebase._rest_client import (
    FirestoreRESTClient,
    _get_credentials,
)
from gatekeeper.infrastructure.firebase.firestore_store import FirestoreDocumentStore
from gatekeeper.infrastructure.firebase.gateway import DocumentStoreGateway
from gatekeeper.infrastructure.firebase.memory_store import MemoryDocumentStore

logger = logging.getLogger(__name__)

_document_store: DocumentStoreGateway | None = None


def load_service_account(settings: Settings | None = None) -> dict | None:
    """Return service account dict from env key or file path."""
    settings = settings or get_settings()
    key_json = (
        settings.firebase_service_account_key.get_secret_value()
        if settings.firebase_service_account_key
        else None
    )
    if key_json:
        try:
            return json.loads(key_json)
        except json.JSONDecodeError as e:
            raise ValueError("FIREBASE_SERVICE_ACCOUNT_KEY is not valid JSON") from e
    path = settings.firebase_service_account_path
    if path:
        resolved = Path(path).expanduser().resolve()
        if not resolved.is_file():
            logger.warning(
                "FIREBASE_SERVICE_ACCOUNT_PATH set but file not found: %s (resolved: %s)",
                path,
                resolved,
            )
            return None
        with open(resolved, encoding="utf-8") as f:
            return json.load(f)
    return None


def build_document_store(settings: Settings | None = None) -> DocumentStoreGateway:
    """Create the configured document store gateway.

    Raises:
        ValueError: Firestore selected but the service account is missing or malformed.
    """
    settings = settings or get_settings()
    if settings.store_backend == "memory":
        logger.warning("Using in-memory document store; state is not shared across instances")
        return MemoryDocumentStore(max_attempts=settings.store_transaction_max_attempts)

    key_dict = load_service_account(settings)
    if not key_dict:
        raise ValueError("Firebase service account credentials not found")
    project_id = key_dict.get("project_id") or settings.firebase_project_id
    if not project_id:
        raise ValueError("Firebase service account JSON missing 'project_id'")
    client = FirestoreRESTClient(
        project_id,
        _get_credentials(key_dict),
        timeout=settings.store_request_timeout_seconds,
    )
    return FirestoreDocumentStore(client, max_attempts=settings.store_transaction_max_attempts)


def init_document_store(store: DocumentStoreGateway | None = None) -> DocumentStoreGateway:
    """Initialize the process-wide gateway. Idempotent; pass store to inject one."""
    global _document_store
    if store is not None:
        _document_store = store
    elif _document_store is None:
        _document_store = build_document_store()
    return _document_store


def get_document_store() -> DocumentStoreGateway:
    """Return the initialized gateway.

    Raises:
        RuntimeError: init_document_store() has not run.
    """
    if _document_store is None:
        raise RuntimeError("Document store not initialized; call init_document_store() at startup")
    return _document_store


async def close_document_store() -> None:
    """Close the gateway's HTTP connection pool. Call from app shutdown."""
    global _document_store
    if _document_store is not None:
        await _document_store.aclose()
        _document_store = None
        logger.info("Document store closed")
