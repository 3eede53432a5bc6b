"""Firestore-backed document store gateway (REST API + google-auth)."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from functools import wraps
from typing import Any, TypeVar

import httpx
from google.auth.exceptions import GoogleAuthError

from gatekeeper.application.interfaces.store import Filter, IDocumentSnapshot, WriteOp
from gatekeeper.domain.exceptions import StoreUnavailableException
from gatekeeper.infrastructure.firebase._rest_client import FirestoreRESTClient
from gatekeeper.infrastructure.firebase._rest_encoding import encode_write
from gatekeeper.infrastructure.firebase.gateway import (
    MAX_BATCH_WRITES,
    BufferedTransaction,
    DocumentStoreGateway,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _store_call(operation: str) -> Callable:
    """Map transport and credential failures to StoreUnavailableException."""

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            try:
                return await func(*args, **kwargs)
            except (httpx.HTTPError, GoogleAuthError) as e:
                logger.error("Firestore %s failed: %s", operation, type(e).__name__)
                raise StoreUnavailableException(operation, str(e)) from e

        return wrapper

    return decorator


class FirestoreTransaction(BufferedTransaction):
    """Transaction handle bound to a Firestore transaction id."""

    def __init__(self, client: FirestoreRESTClient, transaction_id: str) -> None:
        super().__init__()
        self._client = client
        self.transaction_id = transaction_id

    @_store_call("transactional read")
    async def get(self, collection: str, key: str) -> dict[str, Any] | None:
        return await self._client.get_document(
            collection, key, transaction=self.transaction_id
        )

    @_store_call("transactional query")
    async def query(
        self,
        collection: str,
        filters: list[Filter],
        limit: int | None = None,
        order_by: str | None = None,
    ) -> list[IDocumentSnapshot]:
        return await self._client.run_query(
            collection, filters, limit=limit, order_by=order_by, transaction=self.transaction_id
        )


class FirestoreDocumentStore(DocumentStoreGateway):
    """Document store gateway over the Firestore REST API."""

    def __init__(
        self,
        client: FirestoreRESTClient,
        *,
        max_attempts: int = 5,
        retry_backoff_seconds: float = 0.05,
    ) -> None:
        super().__init__(max_attempts=max_attempts, retry_backoff_seconds=retry_backoff_seconds)
        self._client = client

    async def aclose(self) -> None:
        await self._client.aclose()

    @_store_call("read")
    async def read(self, collection: str, key: str) -> dict[str, Any] | None:
        return await self._client.get_document(collection, key)

    @_store_call("query")
    async def query(
        self,
        collection: str,
        filters: list[Filter],
        limit: int | None = None,
        order_by: str | None = None,
    ) -> list[IDocumentSnapshot]:
        return await self._client.run_query(collection, filters, limit=limit, order_by=order_by)

    def _encode(self, ops: list[WriteOp]) -> list[dict]:
        return [
            encode_write(op.kind, self._client.document_name(op.collection, op.key), op.data)
            for op in ops
        ]

    @_store_call("batch write")
    async def batch_write(self, ops: list[WriteOp]) -> None:
        for start in range(0, len(ops), MAX_BATCH_WRITES):
            await self._client.commit(self._encode(ops[start : start + MAX_BATCH_WRITES]))

    @_store_call("begin transaction")
    async def _begin(self) -> FirestoreTransaction:
        return FirestoreTransaction(self._client, await self._client.begin_transaction())

    @_store_call("commit")
    async def _commit(self, tx: FirestoreTransaction) -> None:
        await self._client.commit(self._encode(tx.writes), transaction=tx.transaction_id)

    @_store_call("rollback")
    async def _rollback(self, tx: FirestoreTransaction) -> None:
        await self._client.rollback(tx.transaction_id)
