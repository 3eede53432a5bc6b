"""Document store gateway: transaction retry loop and TTL sweep shared by backends.

Backends (Firestore REST, in-memory) implement reads, the commit and the
rollback; this module owns the contract every caller relies on:

- run_transaction re-runs the callback on contention and raises
  TransactionConflictException once the attempt budget is spent.
- Any transport failure surfaces as StoreUnavailableException so callers
  fail closed.
- ttl_sweep deletes expired documents in bounded batches; it is driven by
  an external scheduler, never by in-process timers.
"""

from __future__ import annotations

import asyncio
import logging
import random
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any, TypeVar

from gatekeeper.application.interfaces.store import Filter, IDocumentSnapshot, WriteOp
from gatekeeper.domain.exceptions import (
    StoreUnavailableException,
    TransactionConflictException,
)
from gatekeeper.infrastructure.firebase._rest_client import TransactionAbortedError

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_BATCH_WRITES = 500


class BufferedTransaction(ABC):
    """Transaction handle that buffers writes until commit."""

    def __init__(self) -> None:
        self.writes: list[WriteOp] = []

    @abstractmethod
    async def get(self, collection: str, key: str) -> dict[str, Any] | None:
        """Read one document inside the transaction."""

    @abstractmethod
    async def query(
        self,
        collection: str,
        filters: list[Filter],
        limit: int | None = None,
        order_by: str | None = None,
    ) -> list[IDocumentSnapshot]:
        """Query inside the transaction."""

    def set(self, collection: str, key: str, data: dict[str, Any]) -> None:
        self.writes.append(WriteOp("set", collection, key, dict(data)))

    def update(self, collection: str, key: str, data: dict[str, Any]) -> None:
        self.writes.append(WriteOp("update", collection, key, dict(data)))

    def delete(self, collection: str, key: str) -> None:
        self.writes.append(WriteOp("delete", collection, key))


class DocumentStoreGateway(ABC):
    """Typed wrapper around a transactional document store.

    Subclasses provide the backend primitives; the retry policy and the
    TTL sweep are shared so both backends behave the same under contention.
    """

    def __init__(
        self,
        *,
        max_attempts: int = 5,
        retry_backoff_seconds: float = 0.02,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self._max_attempts = max_attempts
        self._retry_backoff_seconds = retry_backoff_seconds

    @abstractmethod
    async def read(self, collection: str, key: str) -> dict[str, Any] | None:
        """Snapshot read of one document."""

    @abstractmethod
    async def query(
        self,
        collection: str,
        filters: list[Filter],
        limit: int | None = None,
        order_by: str | None = None,
    ) -> list[IDocumentSnapshot]:
        """Snapshot query."""

    @abstractmethod
    async def batch_write(self, ops: list[WriteOp]) -> None:
        """Commit writes atomically outside a read-write transaction."""

    @abstractmethod
    async def _begin(self) -> BufferedTransaction:
        """Start a transaction attempt."""

    @abstractmethod
    async def _commit(self, tx: BufferedTransaction) -> None:
        """Commit buffered writes; raise TransactionAbortedError on contention."""

    @abstractmethod
    async def _rollback(self, tx: BufferedTransaction) -> None:
        """Release a transaction attempt without committing."""

    async def aclose(self) -> None:
        """Release connections. Default: nothing to release."""

    async def run_transaction(
        self,
        fn: Callable[[BufferedTransaction], Awaitable[T]],
        *,
        max_attempts: int | None = None,
    ) -> T:
        """Run fn atomically, re-running it when the store reports contention.

        fn must read before it writes and must not have side effects outside
        the transaction handle: it may run more than once.

        Args:
            fn: Coroutine function receiving the transaction handle.
            max_attempts: Override of the configured attempt budget.

        Returns:
            Whatever fn returned on the committed attempt.

        Raises:
            TransactionConflictException: Still contended after the budget.
            StoreUnavailableException: Store unreachable or rejected the request.
        """
        attempts = max_attempts or self._max_attempts
        for attempt in range(1, attempts + 1):
            tx = await self._begin()
            try:
                result = await fn(tx)
                await self._commit(tx)
                return result
            except TransactionAbortedError:
                logger.debug("Transaction attempt %d/%d aborted by contention", attempt, attempts)
                if attempt < attempts and self._retry_backoff_seconds > 0:
                    await asyncio.sleep(
                        random.uniform(0, self._retry_backoff_seconds * (2 ** (attempt - 1)))
                    )
            except BaseException:
                await self._safe_rollback(tx)
                raise
        logger.warning("Transaction conflict after %d attempts", attempts)
        raise TransactionConflictException(attempts)

    async def _safe_rollback(self, tx: BufferedTransaction) -> None:
        try:
            await self._rollback(tx)
        except StoreUnavailableException as e:
            logger.warning("Transaction rollback failed: %s", e.message)

    async def ttl_sweep(
        self, collection: str, field: str, cutoff: datetime, batch: int
    ) -> int:
        """Delete up to batch documents of collection whose field is <= cutoff.

        Args:
            collection: Collection to sweep.
            field: TTL timestamp field (e.g. expiresAt).
            cutoff: Documents with field at or before this instant are deleted.
            batch: Maximum documents deleted by this call.

        Returns:
            Number of documents deleted.
        """
        batch = max(1, min(batch, MAX_BATCH_WRITES))
        expired = await self.query(collection, [(field, "<=", cutoff)], limit=batch)
        if not expired:
            return 0
        await self.batch_write([WriteOp("delete", collection, doc.id) for doc in expired])
        logger.info("TTL sweep deleted %d documents from %s", len(expired), collection)
        return len(expired)
