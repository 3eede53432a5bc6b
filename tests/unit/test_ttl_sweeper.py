"""TTLSweeper: bounded batch deletion of expired documents."""

from datetime import timedelta

from gatekeeper.application.services.ttl_sweeper import TTLSweeper
from gatekeeper.core.constants import (
    COLLECTION_AUDIT_LOG,
    COLLECTION_CONSUMED_TOKENS,
    COLLECTION_LOCKS,
    COLLECTION_USERS,
    TTL_COLLECTIONS,
)


async def test_sweep_deletes_only_expired_documents(store, audit, clock) -> None:
    for i in range(7):
        store.put(COLLECTION_CONSUMED_TOKENS, f"old{i}", {"expiresAt": clock() - timedelta(minutes=i)})
    store.put(COLLECTION_CONSUMED_TOKENS, "live", {"expiresAt": clock() + timedelta(seconds=1)})
    store.put(COLLECTION_LOCKS, "stale", {"expiresAt": clock()})
    store.put(COLLECTION_USERS, "u1", {"expiresAt": clock() - timedelta(days=1)})

    sweeper = TTLSweeper(store, audit, batch_size=3, clock=clock)
    counts = await sweeper.sweep()

    assert set(counts) == set(TTL_COLLECTIONS)
    assert counts[COLLECTION_CONSUMED_TOKENS] == 7
    assert counts[COLLECTION_LOCKS] == 1
    assert list(store.documents(COLLECTION_CONSUMED_TOKENS)) == ["live"]
    assert "u1" in store.documents(COLLECTION_USERS)
    sweeps = [
        e for e in store.documents(COLLECTION_AUDIT_LOG).values() if e["eventType"] == "TTL_SWEEP"
    ]
    assert sweeps[0]["context"]["deleted"][COLLECTION_CONSUMED_TOKENS] == 7


async def test_sweep_is_bounded_per_collection(store, clock) -> None:
    for i in range(10):
        store.put(COLLECTION_LOCKS, f"l{i}", {"expiresAt": clock() - timedelta(seconds=1)})

    sweeper = TTLSweeper(store, batch_size=2, max_batches_per_collection=2, clock=clock)

    assert await sweeper.sweep_collection(COLLECTION_LOCKS) == 4
    assert len(store.documents(COLLECTION_LOCKS)) == 6
