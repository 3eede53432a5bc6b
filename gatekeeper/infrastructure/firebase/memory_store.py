"""In-memory document store gateway for tests and local development.

Implements the same contract as the Firestore backend with optimistic
concurrency: every transactional read records the document version, and
the commit aborts (and is retried by the gateway) when any of them moved.
State lives in this process only, so it must never back a multi-node
deployment.
"""

from __future__ import annotations

import asyncio
import copy
import logging
from datetime import datetime
from typing import Any

from gatekeeper.application.interfaces.store import Filter, WriteOp
from gatekeeper.domain.exceptions import StoreUnavailableException
from gatekeeper.infrastructure.firebase._rest_client import (
    DocumentSnapshot,
    TransactionAbortedError,
)
from gatekeeper.infrastructure.firebase.gateway import (
    BufferedTransaction,
    DocumentStoreGateway,
)

logger = logging.getLogger(__name__)

_Key = tuple[str, str]


def _compare(op: str, actual: Any, expected: Any) -> bool:
    if op == "==":
        return actual == expected
    if op == "!=":
        return actual != expected
    if op == "in":
        return actual in expected
    if op == "not-in":
        return actual not in expected
    if op == "array-contains":
        return isinstance(actual, list) and expected in actual
    if actual is None or type(actual) is not type(expected) and not (
        isinstance(actual, (int, float)) and isinstance(expected, (int, float))
    ):
        return False
    if op == "<":
        return actual < expected
    if op == "<=":
        return actual <= expected
    if op == ">":
        return actual > expected
    if op == ">=":
        return actual >= expected
    raise ValueError(f"Unsupported filter op: {op!r}")


def _matches(data: dict[str, Any], filters: list[Filter]) -> bool:
    for field, op, value in filters:
        if field not in data:
            return False
        if not _compare(op, data[field], value):
            return False
    return True


def _sort_key(value: Any) -> tuple:
    if isinstance(value, datetime):
        return (1, value.timestamp())
    return (0, value)


class MemoryTransaction(BufferedTransaction):
    """Transaction handle recording read versions for the commit check."""

    def __init__(self, store: "MemoryDocumentStore") -> None:
        super().__init__()
        self._store = store
        self.read_versions: dict[_Key, int] = {}

    async def get(self, collection: str, key: str) -> dict[str, Any] | None:
        await asyncio.sleep(0)
        self._store._check_available("transactional read")
        self.read_versions[(collection, key)] = self._store._versions.get((collection, key), 0)
        return self._store._snapshot(collection, key)

    async def query(
        self,
        collection: str,
        filters: list[Filter],
        limit: int | None = None,
        order_by: str | None = None,
    ) -> list[DocumentSnapshot]:
        await asyncio.sleep(0)
        self._store._check_available("transactional query")
        results = self._store._run_query(collection, filters, limit, order_by)
        for doc in results:
            self.read_versions[(collection, doc.id)] = self._store._versions.get((collection, doc.id), 0)
        return results


class MemoryDocumentStore(DocumentStoreGateway):
    """Process-local document store with Firestore-like transaction semantics.

    Test hooks:
        commit_faults: exceptions raised, in order, by the next commits.
        unavailable: when True every operation raises StoreUnavailableException.
    """

    def __init__(self, *, max_attempts: int = 5, retry_backoff_seconds: float = 0.0) -> None:
        super().__init__(max_attempts=max_attempts, retry_backoff_seconds=retry_backoff_seconds)
        self._data: dict[_Key, dict[str, Any]] = {}
        self._versions: dict[_Key, int] = {}
        self._clock = 0
        self._lock = asyncio.Lock()
        self.commit_faults: list[Exception] = []
        self.unavailable = False
        self.commits = 0
        self.aborts = 0

    def _check_available(self, operation: str) -> None:
        if self.unavailable:
            raise StoreUnavailableException(operation, "memory store marked unavailable")

    def _snapshot(self, collection: str, key: str) -> dict[str, Any] | None:
        data = self._data.get((collection, key))
        return copy.deepcopy(data) if data is not None else None

    def _run_query(
        self,
        collection: str,
        filters: list[Filter],
        limit: int | None,
        order_by: str | None,
    ) -> list[DocumentSnapshot]:
        hits = [
            (key, data)
            for (coll, key), data in self._data.items()
            if coll == collection and _matches(data, filters)
        ]
        if order_by:
            hits = [h for h in hits if order_by in h[1]]
            hits.sort(key=lambda h: _sort_key(h[1][order_by]))
        if limit:
            hits = hits[:limit]
        return [DocumentSnapshot(key, copy.deepcopy(data)) for key, data in hits]

    def _apply(self, ops: list[WriteOp]) -> None:
        # Validate first so a rejected batch leaves no partial state.
        exists = {k for k in self._data}
        for op in ops:
            k = (op.collection, op.key)
            if op.kind == "update" and k not in exists:
                raise StoreUnavailableException(
                    "commit", f"update of missing document {op.collection}/{op.key}"
                )
            if op.kind == "delete":
                exists.discard(k)
            else:
                exists.add(k)
        for op in ops:
            k = (op.collection, op.key)
            if op.kind == "delete":
                self._data.pop(k, None)
            elif op.kind == "set":
                self._data[k] = copy.deepcopy(op.data)
            else:
                self._data[k].update(copy.deepcopy(op.data))
            self._clock += 1
            self._versions[k] = self._clock

    async def read(self, collection: str, key: str) -> dict[str, Any] | None:
        await asyncio.sleep(0)
        self._check_available("read")
        return self._snapshot(collection, key)

    async def query(
        self,
        collection: str,
        filters: list[Filter],
        limit: int | None = None,
        order_by: str | None = None,
    ) -> list[DocumentSnapshot]:
        await asyncio.sleep(0)
        self._check_available("query")
        return self._run_query(collection, filters, limit, order_by)

    async def batch_write(self, ops: list[WriteOp]) -> None:
        await asyncio.sleep(0)
        self._check_available("batch write")
        async with self._lock:
            self._apply(ops)

    async def _begin(self) -> MemoryTransaction:
        self._check_available("begin transaction")
        return MemoryTransaction(self)

    async def _commit(self, tx: MemoryTransaction) -> None:
        await asyncio.sleep(0)
        self._check_available("commit")
        if self.commit_faults:
            raise self.commit_faults.pop(0)
        async with self._lock:
            for k, version in tx.read_versions.items():
                if self._versions.get(k, 0) != version:
                    self.aborts += 1
                    raise TransactionAbortedError(f"{k[0]}/{k[1]} changed since read")
            self._apply(tx.writes)
            self.commits += 1

    async def _rollback(self, tx: MemoryTransaction) -> None:
        return None

    # Seeding and inspection helpers (tests, local fixtures).

    def put(self, collection: str, key: str, data: dict[str, Any]) -> None:
        """Write a document directly, bypassing transactions."""
        self._apply([WriteOp("set", collection, key, data)])

    def documents(self, collection: str) -> dict[str, dict[str, Any]]:
        """Return a copy of every document in collection, keyed by id."""
        return {
            key: copy.deepcopy(data)
            for (coll, key), data in self._data.items()
            if coll == collection
        }
