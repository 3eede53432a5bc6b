"""Firestore integration: REST client, transactional gateway and collections."""

from gatekeeper.infrastructure.firebase.client import (
    close_document_store,
    get_document_store,
    init_document_store,
)
from gatekeeper.infrastructure.firebase.gateway import DocumentStoreGateway
from gatekeeper.infrastructure.firebase.memory_store import MemoryDocumentStore

__all__ = [
    "DocumentStoreGateway",
    "MemoryDocumentStore",
    "close_document_store",
    "get_document_store",
    "init_document_store",
]
