"""Subscription usage counter: check and increment in one transaction.

The counter lives on the user profile (users/{principalId}); the profile is
created by user-profile CRUD, this service only mutates the usage fields.
Usage resets when the billing period (YYYY-MM, UTC) changes.
"""

from __future__ import annotations

import logging
from typing import Any

from gatekeeper.application.dtos.usage import UsageDecision
from gatekeeper.application.interfaces.store import IDocumentStore, ITransaction
from gatekeeper.application.services.audit_log import AuditLog
from gatekeeper.core.constants import COLLECTION_USERS
from gatekeeper.domain.enums import AuditEventType, ErrorCode, SubscriptionType
from gatekeeper.shared.telemetry.tracing import traced
from gatekeeper.shared.utils import Clock, utc_now

logger = logging.getLogger(__name__)

_ACTIVE_STATUSES = ("active", "trialing")


def billing_period(clock: Clock = utc_now) -> str:
    return clock().strftime("%Y-%m")


def _subscription_active(profile: dict[str, Any], subscription_type: str) -> bool:
    if subscription_type == SubscriptionType.FREE.value:
        return True
    status = str(profile.get("subscriptionStatus") or "").lower()
    return profile.get("isSubscribed") is True or status in _ACTIVE_STATUSES


class UsageCounter:
    """Consumes one unit of the principal's monthly allowance."""

    def __init__(
        self,
        store: IDocumentStore,
        audit: AuditLog,
        *,
        free_tier_max_usage: int = 3,
        clock: Clock = utc_now,
    ) -> None:
        self._store = store
        self._audit = audit
        self._free_tier_max_usage = free_tier_max_usage
        self._clock = clock

    @traced("usage_counter.consume")
    async def consume(self, principal_id: str, *, operation_id: str | None = None) -> UsageDecision:
        """Check the allowance and increment monthlyUsage when allowed.

        Returns:
            UsageDecision; denied with USER_NOT_FOUND, SUBSCRIPTION_INACTIVE or
            USAGE_LIMIT_EXCEEDED without any write.
        """

        async def txn(tx: ITransaction) -> UsageDecision:
            profile = await tx.get(COLLECTION_USERS, principal_id)
            if profile is None:
                return UsageDecision(False, "", 0, None, ErrorCode.USER_NOT_FOUND)
            subscription_type = str(profile.get("subscriptionType") or SubscriptionType.FREE.value)
            period = billing_period(self._clock)
            used = int(profile.get("monthlyUsage") or 0)
            if profile.get("lastResetPeriod") != period:
                used = 0
            unlimited = subscription_type == SubscriptionType.ENTERPRISE.value
            max_usage = None if unlimited else int(
                profile.get("maxUsage") or self._free_tier_max_usage
            )
            if not _subscription_active(profile, subscription_type):
                return UsageDecision(
                    False, subscription_type, used, max_usage, ErrorCode.SUBSCRIPTION_INACTIVE
                )
            if max_usage is not None and used >= max_usage:
                return UsageDecision(
                    False, subscription_type, used, max_usage, ErrorCode.USAGE_LIMIT_EXCEEDED
                )
            now = self._clock()
            tx.update(
                COLLECTION_USERS,
                principal_id,
                {"monthlyUsage": used + 1, "lastResetPeriod": period, "lastActive": now},
            )
            self._audit.stage(
                tx,
                AuditEventType.USAGE_CONSUMED,
                principal_id=principal_id,
                operation_id=operation_id,
                context={"subscriptionType": subscription_type, "used": used + 1},
            )
            return UsageDecision(True, subscription_type, used + 1, max_usage)

        decision = await self._store.run_transaction(txn)
        if not decision.allowed:
            logger.info(
                "Usage denied for principal %s: %s",
                principal_id,
                decision.error_code.value if decision.error_code else None,
            )
        return decision
