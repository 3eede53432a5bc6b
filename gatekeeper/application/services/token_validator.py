"""Bearer token validation with single-use semantics.

Ordering contract:

1. Pre-validation with no store I/O: shape, minimum length, identity
   provider verification, audience, email verification, auth age.
2. One transaction: validation lock check, ConsumedToken read, replay
   check, ConsumedToken write, success audit entry.
3. valid=True is returned only after that transaction committed, so a
   token can never be observed as valid twice within the replay window.

Any store failure after step 1 fails closed.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import timedelta

from gatekeeper.application.dtos.auth import (
    Principal,
    RequestContext,
    TokenValidationResult,
    VerifiedToken,
)
from gatekeeper.application.interfaces.identity import IIdentityProvider
from gatekeeper.application.interfaces.store import IDocumentStore, ITransaction
from gatekeeper.application.services.audit_log import AuditLog
from gatekeeper.core.constants import COLLECTION_CONSUMED_TOKENS, COLLECTION_LOCKS
from gatekeeper.domain.enums import (
    AuditEventType,
    ErrorCode,
    IncidentSeverity,
    IncidentType,
    RiskLevel,
)
from gatekeeper.domain.exceptions import (
    IdentityProviderError,
    StoreUnavailableException,
    TransactionConflictException,
)
from gatekeeper.shared.telemetry.tracing import add_span_attributes, traced
from gatekeeper.shared.utils import Clock, ensure_utc, generate_cuid, sha256_hex, utc_now

logger = logging.getLogger(__name__)

_JWT_SHAPE = re.compile(r"^[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+$")

_CONSUMED = "consumed"
_REPLAY = "replay"
_LOCKED = "locked"


@dataclass(frozen=True)
class TokenValidatorConfig:
    """Validator tunables (durations in seconds)."""

    project_id: str
    min_token_length: int = 100
    token_replay_window_seconds: int = 3600
    max_session_age_seconds: int = 24 * 3600
    require_email_verified: bool = True


class TokenValidator:
    """Verifies bearer tokens with the identity provider and consumes them exactly once."""

    def __init__(
        self,
        store: IDocumentStore,
        identity_provider: IIdentityProvider,
        audit: AuditLog,
        config: TokenValidatorConfig,
        *,
        clock: Clock = utc_now,
    ) -> None:
        self._store = store
        self._idp = identity_provider
        self._audit = audit
        self._config = config
        self._clock = clock

    def _well_formed(self, token: str | None) -> str | None:
        if not token:
            return None
        token = token.strip()
        if token.lower().startswith("bearer "):
            token = token[7:].strip()
        if len(token) < self._config.min_token_length or not _JWT_SHAPE.match(token):
            return None
        return token

    def _prevalidate_claims(self, verified: VerifiedToken) -> ErrorCode | None:
        if verified.audience != self._config.project_id:
            return ErrorCode.INVALID_TOKEN
        if self._config.require_email_verified and not verified.email_verified:
            return ErrorCode.EMAIL_NOT_VERIFIED
        age = self._clock() - ensure_utc(verified.auth_time)
        if age > timedelta(seconds=self._config.max_session_age_seconds):
            return ErrorCode.SESSION_TOO_OLD
        return None

    @traced("token_validator.validate")
    async def validate(self, bearer_token: str | None, ctx: RequestContext) -> TokenValidationResult:
        """Validate and consume a bearer token.

        Args:
            bearer_token: Raw token (a leading 'Bearer ' is tolerated).
            ctx: Request context recorded with the consumption.

        Returns:
            TokenValidationResult; valid only after the consumption committed.
        """
        operation_id = generate_cuid()
        token = self._well_formed(bearer_token)
        if token is None:
            return TokenValidationResult.failure(operation_id, ErrorCode.INVALID_TOKEN_FORMAT)

        try:
            verified = await self._idp.verify_id_token(token)
        except IdentityProviderError as e:
            logger.info("Token rejected by identity provider: kind=%s op=%s", e.kind, operation_id)
            if e.kind == "unavailable":
                await self._audit.record_incident(
                    IncidentType.SYSTEM_ERROR,
                    IncidentSeverity.HIGH,
                    {"component": "identity_provider", "operationId": operation_id},
                )
                return TokenValidationResult.failure(
                    operation_id, ErrorCode.SYSTEM_UNAVAILABLE, RiskLevel.HIGH
                )
            return TokenValidationResult.failure(operation_id, ErrorCode(e.error_code))

        claim_error = self._prevalidate_claims(verified)
        if claim_error is not None:
            logger.info("Token claims rejected: code=%s op=%s", claim_error.value, operation_id)
            return TokenValidationResult.failure(operation_id, claim_error)

        token_hash = sha256_hex(verified.token_id)
        try:
            outcome = await self._consume(token_hash, verified, ctx, operation_id)
        except (StoreUnavailableException, TransactionConflictException) as e:
            logger.error("Token consumption failed closed: code=%s op=%s", e.error_code, operation_id)
            await self._audit.record_incident(
                IncidentType.SYSTEM_ERROR,
                IncidentSeverity.HIGH,
                {
                    "component": "token_validator",
                    "code": e.error_code,
                    "tokenHash": token_hash[:16],
                    "operationId": operation_id,
                },
            )
            return TokenValidationResult.failure(
                operation_id, ErrorCode(e.error_code), RiskLevel.HIGH
            )

        add_span_attributes(**{"token.outcome": outcome})
        if outcome == _REPLAY:
            await self._audit.record_incident(
                IncidentType.TOKEN_REPLAY_ATTEMPT,
                IncidentSeverity.HIGH,
                {
                    "tokenHash": token_hash[:16],
                    "principalId": verified.principal_id,
                    "context": ctx.audit_dict(),
                    "operationId": operation_id,
                },
            )
            return TokenValidationResult.failure(operation_id, ErrorCode.TOKEN_REPLAY, RiskLevel.HIGH)
        if outcome == _LOCKED:
            await self._audit.record_incident(
                IncidentType.CONCURRENT_VALIDATION,
                IncidentSeverity.MEDIUM,
                {"tokenHash": token_hash[:16], "operationId": operation_id},
            )
            return TokenValidationResult.failure(
                operation_id, ErrorCode.CONCURRENT_VALIDATION_DETECTED, RiskLevel.HIGH
            )

        return TokenValidationResult(
            valid=True,
            operation_id=operation_id,
            risk_level=RiskLevel.LOW,
            principal=Principal.from_token(verified),
        )

    async def _consume(
        self,
        token_hash: str,
        verified: VerifiedToken,
        ctx: RequestContext,
        operation_id: str,
    ) -> str:
        lock_key = f"validation_{token_hash}"
        replay_window = timedelta(seconds=self._config.token_replay_window_seconds)

        async def txn(tx: ITransaction) -> str:
            now = self._clock()
            lock = await tx.get(COLLECTION_LOCKS, lock_key)
            consumed = await tx.get(COLLECTION_CONSUMED_TOKENS, token_hash)
            if lock is not None and ensure_utc(lock["expiresAt"]) > now:
                return _LOCKED
            consumed_live = consumed is not None and now < ensure_utc(consumed["expiresAt"])
            if consumed_live and consumed.get("usageCount", 0) >= consumed.get("maxUsage", 1):
                return _REPLAY
            # The lock read above puts the lock in this transaction's read set;
            # acquisition and release commit together, so the only durable
            # lock write is removing a stale one.
            if lock is not None:
                tx.delete(COLLECTION_LOCKS, lock_key)
            usage_count = (consumed.get("usageCount", 0) if consumed_live else 0) + 1
            tx.set(
                COLLECTION_CONSUMED_TOKENS,
                token_hash,
                {
                    "principalId": verified.principal_id,
                    "consumedAt": now,
                    "expiresAt": now + replay_window,
                    "usageCount": usage_count,
                    "maxUsage": 1,
                    "operationId": operation_id,
                    "context": {
                        "ip": ctx.ip_address,
                        "uaHash": ctx.ua_hash,
                        "origin": ctx.origin,
                    },
                },
            )
            self._audit.stage(
                tx,
                AuditEventType.TOKEN_VALIDATED,
                principal_id=verified.principal_id,
                operation_id=operation_id,
                context={**ctx.audit_dict(), "tokenHash": token_hash[:16]},
            )
            return _CONSUMED

        return await self._store.run_transaction(txn)
