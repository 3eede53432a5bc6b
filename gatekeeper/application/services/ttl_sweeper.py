"""TTL sweep over every collection that carries expiresAt.

Driven by an external scheduler (scripts/run_ttl_sweep.py or the
maintenance endpoint); nothing in the request path depends on it running.
"""

from __future__ import annotations

import logging

from gatekeeper.application.interfaces.store import IDocumentStore
from gatekeeper.application.services.audit_log import AuditLog
from gatekeeper.core.constants import TTL_COLLECTIONS, TTL_FIELD
from gatekeeper.domain.enums import AuditEventType
from gatekeeper.shared.utils import Clock, utc_now

logger = logging.getLogger(__name__)


class TTLSweeper:
    """Deletes expired documents in bounded batches."""

    def __init__(
        self,
        store: IDocumentStore,
        audit: AuditLog | None = None,
        *,
        batch_size: int = 200,
        max_batches_per_collection: int = 50,
        clock: Clock = utc_now,
    ) -> None:
        self._store = store
        self._audit = audit
        self._batch_size = batch_size
        self._max_batches = max_batches_per_collection
        self._clock = clock

    async def sweep_collection(self, collection: str) -> int:
        cutoff = self._clock()
        total = 0
        for _ in range(self._max_batches):
            deleted = await self._store.ttl_sweep(collection, TTL_FIELD, cutoff, self._batch_size)
            total += deleted
            if deleted < self._batch_size:
                break
        return total

    async def sweep(self, collections: tuple[str, ...] = TTL_COLLECTIONS) -> dict[str, int]:
        """Sweep each collection; returns deleted counts keyed by collection."""
        counts: dict[str, int] = {}
        for collection in collections:
            counts[collection] = await self.sweep_collection(collection)
        logger.info("TTL sweep finished: %s", counts)
        if self._audit is not None:
            await self._audit.append(AuditEventType.TTL_SWEEP, context={"deleted": counts})
        return counts
