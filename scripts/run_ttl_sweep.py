"""Run the TTL sweep: delete expired documents from every TTL collection.

Usage:
    python -m scripts.run_ttl_sweep [collection ...]
With no arguments, sweeps every collection that carries expiresAt.
Intended for an external scheduler (cron, Cloud Scheduler); the request
path never depends on it having run.
"""

import asyncio
import sys

from gatekeeper.application.services.audit_log import AuditLog
from gatekeeper.application.services.ttl_sweeper import TTLSweeper
from gatekeeper.core.config import get_settings
from gatekeeper.core.constants import TTL_COLLECTIONS
from gatekeeper.infrastructure.firebase.client import close_document_store, init_document_store
from gatekeeper.shared.telemetry import setup_logging


async def main() -> None:
    """Sweep the requested collections (default: all) and print deleted counts."""
    setup_logging()
    settings = get_settings()
    requested = tuple(sys.argv[1:]) or TTL_COLLECTIONS
    unknown = [c for c in requested if c not in TTL_COLLECTIONS]
    if unknown:
        print(f"Not a TTL collection: {', '.join(unknown)}", file=sys.stderr)
        sys.exit(1)

    store = init_document_store()
    try:
        audit = AuditLog(
            store,
            audit_retention_days=settings.audit_retention_days,
            incident_retention_days=settings.incident_retention_days,
        )
        sweeper = TTLSweeper(store, audit, batch_size=settings.ttl_sweep_batch_size)
        counts = await sweeper.sweep(requested)
    finally:
        await close_document_store()

    for collection, deleted in counts.items():
        print(f"{collection}: deleted {deleted} document(s)")
    print(f"Done. Total deleted: {sum(counts.values())}")


if __name__ == "__main__":
    asyncio.run(main())
