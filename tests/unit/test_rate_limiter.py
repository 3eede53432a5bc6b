"""DistributedRateLimiter: sliding-window admission bound and lockout behavior."""

import asyncio
import random

import pytest

from gatekeeper.application.dtos.rate_limit import RateLimitPolicy
from gatekeeper.application.services.rate_limiter import DistributedRateLimiter, bucket_key
from gatekeeper.core.constants import COLLECTION_RATE_LIMITS, COLLECTION_SECURITY_INCIDENTS
from gatekeeper.domain.enums import ErrorCode, RateLimitScope
from gatekeeper.domain.exceptions import StoreUnavailableException
from gatekeeper.infrastructure.firebase._rest_client import TransactionAbortedError
from gatekeeper.shared.utils import to_epoch_ms

IP = "198.51.100.7"


@pytest.fixture
def policies() -> dict[RateLimitScope, RateLimitPolicy]:
    return {
        RateLimitScope.GENERAL: RateLimitPolicy(max_requests=5, window_ms=60_000),
        RateLimitScope.AUTH_FAILURE: RateLimitPolicy(
            max_requests=5,
            window_ms=60_000,
            max_failures=10,
            failure_window_ms=3_600_000,
            lockout_ms=900_000,
        ),
    }


@pytest.fixture
def limiter(store, policies, audit, clock) -> DistributedRateLimiter:
    return DistributedRateLimiter(store, policies, audit=audit, clock=clock)


async def test_admits_up_to_max_then_throttles(limiter, clock) -> None:
    """The sixth request inside the window is denied with a Retry-After."""
    for expected_remaining in (4, 3, 2, 1, 0):
        decision = await limiter.check(RateLimitScope.GENERAL, IP)
        assert decision.allowed
        assert decision.remaining == expected_remaining
        clock.advance(1)

    denied = await limiter.check(RateLimitScope.GENERAL, IP)
    assert not denied.allowed
    assert denied.error_code == ErrorCode.RATE_LIMIT_EXCEEDED
    # Oldest entry was 5 s ago; it leaves the window after 55 s more.
    assert denied.retry_after_ms == 55_000
    assert denied.retry_after_seconds == 55


async def test_window_entries_expire_after_window(limiter, clock) -> None:
    for _ in range(5):
        await limiter.check(RateLimitScope.GENERAL, IP)
    assert not (await limiter.check(RateLimitScope.GENERAL, IP)).allowed

    clock.advance(60)
    assert (await limiter.check(RateLimitScope.GENERAL, IP)).allowed


async def test_identical_timestamps_all_count(limiter) -> None:
    """Requests at the same millisecond each take a slot."""
    results = [await limiter.check(RateLimitScope.GENERAL, IP) for _ in range(6)]
    assert [r.allowed for r in results] == [True] * 5 + [False]


async def test_buckets_are_per_scope_and_identifier(limiter) -> None:
    for _ in range(5):
        await limiter.check(RateLimitScope.GENERAL, IP)
    assert (await limiter.check(RateLimitScope.GENERAL, "192.0.2.10")).allowed
    assert (await limiter.check(RateLimitScope.AUTH_FAILURE, IP)).allowed


async def test_raw_identifier_is_never_stored(limiter, store) -> None:
    await limiter.check(RateLimitScope.GENERAL, IP)
    docs = store.documents(COLLECTION_RATE_LIMITS)
    assert list(docs) == [bucket_key(RateLimitScope.GENERAL, IP)]
    assert IP not in repr(docs)


async def test_admission_bound_holds_over_random_arrivals(limiter, clock) -> None:
    """In any window-length interval no more than max_requests are admitted."""
    rng = random.Random(1234)
    admitted: list[int] = []
    for _ in range(300):
        clock.advance(rng.uniform(0, 8))
        decision = await limiter.check(RateLimitScope.GENERAL, IP)
        if decision.allowed:
            admitted.append(to_epoch_ms(clock()))

    assert admitted
    for start in admitted:
        in_window = [t for t in admitted if start <= t < start + 60_000]
        assert len(in_window) <= 5


async def test_admission_bound_holds_under_concurrency(limiter) -> None:
    """Concurrent checks against one bucket admit exactly max_requests."""
    decisions = await asyncio.gather(
        *(limiter.check(RateLimitScope.GENERAL, IP) for _ in range(20))
    )
    assert sum(d.allowed for d in decisions) == 5
    assert all(
        d.error_code == ErrorCode.RATE_LIMIT_EXCEEDED for d in decisions if not d.allowed
    )


async def test_lockout_after_max_failures(limiter, clock, store) -> None:
    for i in range(9):
        decision = await limiter.record_failure(IP, ErrorCode.INVALID_TOKEN.value)
        assert decision.allowed, f"locked too early at failure {i + 1}"
        clock.advance(30)

    locked = await limiter.record_failure(IP, ErrorCode.INVALID_TOKEN.value)
    assert not locked.allowed
    assert locked.error_code == ErrorCode.IP_LOCKED
    assert locked.retry_after_ms == 900_000

    incidents = store.documents(COLLECTION_SECURITY_INCIDENTS).values()
    assert [i["type"] for i in incidents] == ["IP_LOCKOUT"]


async def test_lockout_denies_every_check_until_it_ends(limiter, clock) -> None:
    """While lockedUntil > now every check is denied, however empty the window is."""
    for _ in range(10):
        await limiter.record_failure(IP, ErrorCode.INVALID_TOKEN.value)
    locked_until = to_epoch_ms(clock()) + 900_000

    for _ in range(20):
        clock.advance(44.9)
        if to_epoch_ms(clock()) >= locked_until:
            break
        decision = await limiter.check(RateLimitScope.AUTH_FAILURE, IP)
        assert not decision.allowed
        assert decision.error_code == ErrorCode.IP_LOCKED
        assert decision.reset_at_ms == locked_until

    clock.advance(900)
    assert (await limiter.check(RateLimitScope.AUTH_FAILURE, IP)).allowed


async def test_failures_outside_window_do_not_lock(limiter, clock) -> None:
    for _ in range(9):
        await limiter.record_failure(IP, ErrorCode.INVALID_TOKEN.value)
    clock.advance(3601)
    decision = await limiter.record_failure(IP, ErrorCode.INVALID_TOKEN.value)
    assert decision.allowed
    assert decision.remaining == 9


async def test_clear_failures_resets_count_but_keeps_lock(limiter, store) -> None:
    for _ in range(3):
        await limiter.record_failure(IP, ErrorCode.INVALID_TOKEN.value)
    await limiter.clear_failures(IP)
    key = bucket_key(RateLimitScope.AUTH_FAILURE, IP)
    assert store.documents(COLLECTION_RATE_LIMITS)[key]["failures"] == []

    for _ in range(10):
        await limiter.record_failure(IP, ErrorCode.INVALID_TOKEN.value)
    await limiter.clear_failures(IP)
    assert not (await limiter.check(RateLimitScope.AUTH_FAILURE, IP)).allowed


async def test_record_failure_requires_lockout_policy(limiter) -> None:
    with pytest.raises(ValueError):
        await limiter.record_failure(IP, "X", scope=RateLimitScope.GENERAL)


async def test_store_outage_fails_closed(limiter, store) -> None:
    store.unavailable = True
    with pytest.raises(StoreUnavailableException):
        await limiter.check(RateLimitScope.GENERAL, IP)


async def test_lockout_reads_without_counting(limiter, clock, store) -> None:
    """lockout() never takes a window slot; it only reports an active lock."""
    for _ in range(8):
        assert (await limiter.lockout(IP)).allowed
    assert store.documents(COLLECTION_RATE_LIMITS) == {}

    for _ in range(10):
        await limiter.record_failure(IP, ErrorCode.INVALID_TOKEN.value)
    key = bucket_key(RateLimitScope.AUTH_FAILURE, IP)
    before = dict(store.documents(COLLECTION_RATE_LIMITS)[key])

    clock.advance(100)
    locked = await limiter.lockout(IP)
    assert not locked.allowed
    assert locked.error_code == ErrorCode.IP_LOCKED
    assert locked.retry_after_ms == 800_000
    assert store.documents(COLLECTION_RATE_LIMITS)[key] == before

    clock.advance(800)
    assert (await limiter.lockout(IP)).allowed


async def test_retried_transaction_reads_the_clock_again(limiter, clock, store, monkeypatch) -> None:
    """A commit conflict reruns the whole decision at the retry's time."""
    commit = store._commit
    conflicts: list[bool] = []

    async def commit_or_conflict(tx) -> None:
        if conflicts:
            conflicts.pop()
            clock.advance(30)
            raise TransactionAbortedError("bucket changed since read")
        await commit(tx)

    monkeypatch.setattr(store, "_commit", commit_or_conflict)
    start_ms = to_epoch_ms(clock())

    conflicts.append(True)
    decision = await limiter.check(RateLimitScope.GENERAL, IP)
    conflicts.append(True)
    failure = await limiter.record_failure(IP, ErrorCode.INVALID_TOKEN.value)

    assert decision.allowed
    assert decision.reset_at_ms == start_ms + 30_000 + 60_000
    assert failure.allowed
    general = store.documents(COLLECTION_RATE_LIMITS)[bucket_key(RateLimitScope.GENERAL, IP)]
    assert general["window"] == [start_ms + 30_000]
    auth = store.documents(COLLECTION_RATE_LIMITS)[bucket_key(RateLimitScope.AUTH_FAILURE, IP)]
    assert auth["failures"] == [start_ms + 60_000]
    assert auth["lastUpdate"] == start_ms + 60_000
