"""Document store ports.

The document store is the only shared mutable resource. Every
state-dependent decision is made inside run_transaction; readers outside a
transaction get snapshot reads.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol, TypeVar

T = TypeVar("T")

# (field, op, value); ops: == != < <= > >= in not-in array-contains
Filter = tuple[str, str, Any]


@dataclass(frozen=True)
class WriteOp:
    """One write in a batch: kind is 'set', 'update' (merge) or 'delete'."""

    kind: str
    collection: str
    key: str
    data: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.kind not in ("set", "update", "delete"):
            raise ValueError(f"Unsupported write kind: {self.kind!r}")


class IDocumentSnapshot(Protocol):
    """Document id plus decoded field data."""

    id: str

    def to_dict(self) -> dict[str, Any]: ...


class ITransaction(Protocol):
    """Read-write transaction handle passed to run_transaction callbacks.

    Reads see the snapshot at transaction start. Writes are buffered and
    committed atomically when the callback returns; raising from the
    callback discards them.
    """

    async def get(self, collection: str, key: str) -> dict[str, Any] | None:
        """Read one document; None when missing."""

    async def query(
        self,
        collection: str,
        filters: list[Filter],
        limit: int | None = None,
        order_by: str | None = None,
    ) -> list[IDocumentSnapshot]:
        """Run a filtered query inside the transaction."""

    def set(self, collection: str, key: str, data: dict[str, Any]) -> None:
        """Create or fully replace a document."""

    def update(self, collection: str, key: str, data: dict[str, Any]) -> None:
        """Merge fields into an existing document."""

    def delete(self, collection: str, key: str) -> None:
        """Delete a document (no-op when missing)."""


class IDocumentStore(Protocol):
    """Protocol for the transactional document store gateway."""

    async def read(self, collection: str, key: str) -> dict[str, Any] | None:
        """Snapshot read of one document."""

    async def query(
        self,
        collection: str,
        filters: list[Filter],
        limit: int | None = None,
        order_by: str | None = None,
    ) -> list[IDocumentSnapshot]:
        """Snapshot query."""

    async def run_transaction(
        self,
        fn: Callable[[ITransaction], Awaitable[T]],
        *,
        max_attempts: int | None = None,
    ) -> T:
        """Run fn atomically; retry on contention; TransactionConflictException after the budget."""

    async def batch_write(self, ops: list[WriteOp]) -> None:
        """Commit writes atomically outside a read-write transaction."""

    async def ttl_sweep(
        self, collection: str, field: str, cutoff: datetime, batch: int
    ) -> int:
        """Delete up to batch documents whose field is <= cutoff; return the count."""

    async def aclose(self) -> None:
        """Release connections."""
