"""Distributed rate limiter: sliding window plus failed-attempt lockout.

Every decision is one document-store transaction on the bucket for
sha256(scope:identifier), so admission is exact across any number of
stateless instances. Window entries are epoch milliseconds; an entry at t
counts during [t, t + windowMs). Identical timestamps are all kept.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any

from gatekeeper.application.dtos.rate_limit import RateLimitDecision, RateLimitPolicy
from gatekeeper.application.interfaces.store import IDocumentStore, ITransaction
from gatekeeper.application.services.audit_log import AuditLog
from gatekeeper.core.constants import COLLECTION_RATE_LIMITS
from gatekeeper.domain.enums import (
    ErrorCode,
    IncidentSeverity,
    IncidentType,
    RateLimitScope,
)
from gatekeeper.shared.telemetry.tracing import add_span_attributes, traced
from gatekeeper.shared.utils import Clock, sha256_hex, to_epoch_ms, utc_now

logger = logging.getLogger(__name__)


def bucket_key(scope: RateLimitScope | str, identifier: str) -> str:
    """Store key for a (scope, identifier) bucket; raw identifiers are never stored."""
    scope_value = scope.value if isinstance(scope, RateLimitScope) else scope
    return sha256_hex(f"{scope_value}:{identifier}")


def _live(entries: list[int], now_ms: int, window_ms: int) -> list[int]:
    return [t for t in entries if t > now_ms - window_ms]


class DistributedRateLimiter:
    """Atomic sliding-window limiter and lockout counter over the document store."""

    def __init__(
        self,
        store: IDocumentStore,
        policies: dict[RateLimitScope, RateLimitPolicy],
        *,
        audit: AuditLog | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self._store = store
        self._policies = policies
        self._audit = audit
        self._clock = clock

    def _bucket_doc(
        self,
        scope: RateLimitScope,
        policy: RateLimitPolicy,
        bucket: dict[str, Any],
        *,
        window: list[int],
        failures: list[int],
        locked_until: int | None,
        now: datetime,
    ) -> dict[str, Any]:
        return {
            **bucket,
            "scope": scope.value,
            "window": window,
            "failures": failures,
            "lockedUntil": locked_until,
            "lastUpdate": to_epoch_ms(now),
            "expiresAt": now + timedelta(milliseconds=policy.retention_ms),
        }

    @traced("rate_limiter.check")
    async def check(
        self,
        scope: RateLimitScope,
        identifier: str,
        policy: RateLimitPolicy | None = None,
    ) -> RateLimitDecision:
        """Admit or throttle one request for (scope, identifier).

        Args:
            scope: Bucket scope.
            identifier: Usually the source IP.
            policy: Override of the configured policy for scope.

        Returns:
            RateLimitDecision; denied with IP_LOCKED while a lockout is active,
            RATE_LIMIT_EXCEEDED when the window is full.

        Raises:
            StoreUnavailableException / TransactionConflictException: fail closed.
        """
        policy = policy or self._policies[scope]
        key = bucket_key(scope, identifier)

        async def txn(tx: ITransaction) -> RateLimitDecision:
            now = self._clock()
            now_ms = to_epoch_ms(now)
            bucket = await tx.get(COLLECTION_RATE_LIMITS, key) or {}
            window = _live(list(bucket.get("window") or []), now_ms, policy.window_ms)
            locked_until = bucket.get("lockedUntil")
            if locked_until is not None and locked_until > now_ms:
                return RateLimitDecision(
                    allowed=False,
                    limit=policy.max_requests,
                    remaining=0,
                    retry_after_ms=locked_until - now_ms,
                    reset_at_ms=locked_until,
                    error_code=ErrorCode.IP_LOCKED,
                )
            if len(window) >= policy.max_requests:
                oldest = min(window)
                return RateLimitDecision(
                    allowed=False,
                    limit=policy.max_requests,
                    remaining=0,
                    retry_after_ms=policy.window_ms - (now_ms - oldest),
                    reset_at_ms=oldest + policy.window_ms,
                    error_code=ErrorCode.RATE_LIMIT_EXCEEDED,
                )
            window.append(now_ms)
            failures = list(bucket.get("failures") or [])
            if policy.failure_window_ms:
                failures = _live(failures, now_ms, policy.failure_window_ms)
            tx.set(
                COLLECTION_RATE_LIMITS,
                key,
                self._bucket_doc(
                    scope,
                    policy,
                    bucket,
                    window=window,
                    failures=failures,
                    locked_until=None,
                    now=now,
                ),
            )
            return RateLimitDecision(
                allowed=True,
                limit=policy.max_requests,
                remaining=policy.max_requests - len(window),
                reset_at_ms=min(window) + policy.window_ms,
            )

        decision = await self._store.run_transaction(txn)
        add_span_attributes(
            **{"ratelimit.scope": scope.value, "ratelimit.allowed": decision.allowed}
        )
        if not decision.allowed:
            logger.info(
                "Rate limit denied scope=%s key=%s code=%s retry_after_ms=%d",
                scope.value,
                key[:12],
                decision.error_code.value if decision.error_code else None,
                decision.retry_after_ms,
            )
        return decision

    @traced("rate_limiter.record_failure")
    async def record_failure(
        self,
        identifier: str,
        reason: str,
        *,
        scope: RateLimitScope = RateLimitScope.AUTH_FAILURE,
    ) -> RateLimitDecision:
        """Count a failed attempt and lock the bucket once the threshold is reached.

        Args:
            identifier: Usually the source IP.
            reason: Error code of the failed attempt (logged and recorded on lockout).
            scope: Bucket scope; its policy must define a lockout.

        Returns:
            allowed=False with IP_LOCKED when the bucket is (now) locked.
        """
        policy = self._policies[scope]
        if not policy.has_lockout:
            raise ValueError(f"Scope {scope.value!r} has no lockout policy")
        key = bucket_key(scope, identifier)

        async def txn(tx: ITransaction) -> tuple[int, int | None, bool, int]:
            now = self._clock()
            now_ms = to_epoch_ms(now)
            bucket = await tx.get(COLLECTION_RATE_LIMITS, key) or {}
            failures = _live(list(bucket.get("failures") or []), now_ms, policy.failure_window_ms)
            failures.append(now_ms)
            locked_until = bucket.get("lockedUntil")
            if locked_until is not None and locked_until <= now_ms:
                locked_until = None
            newly_locked = False
            if len(failures) >= policy.max_failures:
                newly_locked = locked_until is None
                locked_until = max(locked_until or 0, now_ms + policy.lockout_ms)
            tx.set(
                COLLECTION_RATE_LIMITS,
                key,
                self._bucket_doc(
                    scope,
                    policy,
                    bucket,
                    window=_live(list(bucket.get("window") or []), now_ms, policy.window_ms),
                    failures=failures,
                    locked_until=locked_until,
                    now=now,
                ),
            )
            return len(failures), locked_until, newly_locked, now_ms

        count, locked_until, newly_locked, now_ms = await self._store.run_transaction(txn)
        logger.info(
            "Failed attempt recorded scope=%s key=%s reason=%s count=%d",
            scope.value,
            key[:12],
            reason,
            count,
        )
        if newly_locked and self._audit is not None:
            await self._audit.record_incident(
                IncidentType.IP_LOCKOUT,
                IncidentSeverity.HIGH,
                {
                    "bucket": key[:16],
                    "scope": scope.value,
                    "failures": count,
                    "lastReason": reason,
                    "lockedUntil": locked_until,
                },
            )
        if locked_until is None:
            return RateLimitDecision(
                allowed=True,
                limit=policy.max_failures,
                remaining=max(0, policy.max_failures - count),
            )
        return RateLimitDecision(
            allowed=False,
            limit=policy.max_failures,
            remaining=0,
            retry_after_ms=locked_until - now_ms,
            reset_at_ms=locked_until,
            error_code=ErrorCode.IP_LOCKED,
        )

    async def lockout(
        self,
        identifier: str,
        *,
        scope: RateLimitScope = RateLimitScope.AUTH_FAILURE,
    ) -> RateLimitDecision:
        """Report an active lockout without counting a request against the window.

        Session-authenticated traffic only has to respect the lockout; the
        scope's request window is for authentication attempts.
        """
        policy = self._policies[scope]
        bucket = await self._store.read(COLLECTION_RATE_LIMITS, bucket_key(scope, identifier)) or {}
        now_ms = to_epoch_ms(self._clock())
        locked_until = bucket.get("lockedUntil")
        if locked_until is None or locked_until <= now_ms:
            return RateLimitDecision(allowed=True, limit=policy.max_requests, remaining=policy.max_requests)
        return RateLimitDecision(
            allowed=False,
            limit=policy.max_requests,
            remaining=0,
            retry_after_ms=locked_until - now_ms,
            reset_at_ms=locked_until,
            error_code=ErrorCode.IP_LOCKED,
        )

    async def clear_failures(
        self,
        identifier: str,
        *,
        scope: RateLimitScope = RateLimitScope.AUTH_FAILURE,
    ) -> None:
        """Forget failed attempts after a successful authentication.

        An active lockout is left in place.
        """
        key = bucket_key(scope, identifier)

        async def txn(tx: ITransaction) -> None:
            bucket = await tx.get(COLLECTION_RATE_LIMITS, key)
            if not bucket or not bucket.get("failures"):
                return
            tx.update(COLLECTION_RATE_LIMITS, key, {"failures": []})

        await self._store.run_transaction(txn)
