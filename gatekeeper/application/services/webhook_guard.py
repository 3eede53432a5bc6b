"""Billing webhook guard: signature, then rate limit, then idempotent commit.

Supported signature schemes:

- `Stripe-Signature: t=<unix ts>,v1=<hex>[,v1=<hex>...]`: HMAC-SHA256 over
  "<t>.<raw body>", timestamp within the tolerance.
- `X-Webhook-Signature-256: sha256=<hex>`: HMAC-SHA256 over the raw body.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import datetime, timedelta

from gatekeeper.application.dtos.rate_limit import RateLimitDecision
from gatekeeper.application.dtos.usage import WebhookReceipt
from gatekeeper.application.interfaces.store import IDocumentStore, ITransaction
from gatekeeper.application.services.audit_log import AuditLog
from gatekeeper.application.services.rate_limiter import DistributedRateLimiter
from gatekeeper.core.constants import COLLECTION_WEBHOOK_EVENTS
from gatekeeper.domain.enums import (
    AuditEventType,
    IncidentSeverity,
    IncidentType,
    RateLimitScope,
)
from gatekeeper.domain.exceptions import InvalidSignatureException
from gatekeeper.shared.telemetry.tracing import traced
from gatekeeper.shared.utils import (
    Clock,
    constant_time_equals,
    hmac_sha256_hex,
    sha256_hex,
    utc_now,
)

logger = logging.getLogger(__name__)

STRIPE_SIGNATURE_HEADER = "stripe-signature"
GENERIC_SIGNATURE_HEADER = "x-webhook-signature-256"


def _parse_stripe_header(value: str) -> tuple[int | None, list[str]]:
    timestamp: int | None = None
    signatures: list[str] = []
    for part in value.split(","):
        key, _, item = part.strip().partition("=")
        if key == "t":
            try:
                timestamp = int(item)
            except ValueError:
                return None, []
        elif key == "v1" and item:
            signatures.append(item)
    return timestamp, signatures


def verify_signature(
    headers: Mapping[str, str],
    body: bytes,
    secret: str | None,
    *,
    tolerance_seconds: int = 300,
    now: datetime | None = None,
) -> bool:
    """Return True when body carries a valid signature under secret.

    Args:
        headers: Request headers (lowercase keys, or a case-insensitive mapping).
        body: Raw request body exactly as received.
        secret: Provider signing secret; None or empty never verifies.
        tolerance_seconds: Maximum age of a Stripe-style timestamp.
        now: Current time (defaults to utc_now()).
    """
    if not secret:
        return False
    stripe_header = headers.get(STRIPE_SIGNATURE_HEADER)
    if stripe_header:
        timestamp, signatures = _parse_stripe_header(stripe_header)
        if timestamp is None or not signatures:
            return False
        current = (now or utc_now()).timestamp()
        if abs(current - timestamp) > tolerance_seconds:
            return False
        expected = hmac_sha256_hex(secret, f"{timestamp}.".encode() + body)
        return any(constant_time_equals(sig, expected) for sig in signatures)
    generic_header = headers.get(GENERIC_SIGNATURE_HEADER)
    if generic_header:
        scheme, _, digest = generic_header.strip().partition("=")
        if scheme.lower() != "sha256" or not digest:
            return False
        return constant_time_equals(digest, hmac_sha256_hex(secret, body))
    return False


def event_key(provider: str, event_id: str) -> str:
    return sha256_hex(f"{provider}:{event_id}")


class WebhookGuard:
    """Signature verification, per-source throttling and exactly-once recording."""

    def __init__(
        self,
        store: IDocumentStore,
        rate_limiter: DistributedRateLimiter,
        audit: AuditLog,
        *,
        tolerance_seconds: int = 300,
        retention_days: int = 30,
        clock: Clock = utc_now,
    ) -> None:
        self._store = store
        self._rate_limiter = rate_limiter
        self._audit = audit
        self._tolerance_seconds = tolerance_seconds
        self._retention = timedelta(days=retention_days)
        self._clock = clock

    async def verify(
        self,
        provider: str,
        headers: Mapping[str, str],
        body: bytes,
        secret: str | None,
        source_ip: str,
    ) -> None:
        """Raise InvalidSignatureException (and record an incident) on a bad signature."""
        if verify_signature(
            headers,
            body,
            secret,
            tolerance_seconds=self._tolerance_seconds,
            now=self._clock(),
        ):
            return
        await self._audit.record_incident(
            IncidentType.INVALID_WEBHOOK_SIGNATURE,
            IncidentSeverity.HIGH,
            {"provider": provider, "ip": source_ip, "bodyHash": sha256_hex(body)[:16]},
        )
        raise InvalidSignatureException(provider)

    async def check_webhook_rate_limit(self, source_ip: str) -> RateLimitDecision:
        return await self._rate_limiter.check(RateLimitScope.WEBHOOK, source_ip)

    @traced("webhook_guard.commit_once")
    async def commit_once(
        self,
        provider: str,
        event_id: str,
        event_type: str,
        body: bytes,
    ) -> WebhookReceipt:
        """Record the delivery; a second delivery of the same event is a duplicate."""
        key = event_key(provider, event_id)

        async def txn(tx: ITransaction) -> bool:
            if await tx.get(COLLECTION_WEBHOOK_EVENTS, key) is not None:
                return True
            now = self._clock()
            tx.set(
                COLLECTION_WEBHOOK_EVENTS,
                key,
                {
                    "provider": provider,
                    "eventId": event_id,
                    "eventType": event_type,
                    "bodyHash": sha256_hex(body),
                    "receivedAt": now,
                    "expiresAt": now + self._retention,
                },
            )
            self._audit.stage(
                tx,
                AuditEventType.WEBHOOK_ACCEPTED,
                context={"provider": provider, "eventId": event_id, "eventType": event_type},
            )
            return False

        duplicate = await self._store.run_transaction(txn)
        if duplicate:
            logger.info("Duplicate webhook %s/%s ignored", provider, event_id)
        return WebhookReceipt(event_key=key, duplicate=duplicate)
