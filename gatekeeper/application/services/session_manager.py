"""Session manager: opaque HMAC-tagged handles backed by the document store.

Handle format::

    sess_<hex 32 random bytes>.<hex 16 random bytes>.<first 8 bytes of HMAC-SHA256, hex>

The tag is HMAC(SESSION_SECRET, "<r1>.<r2>"). Only sha256(handle) is
stored: it is both the session document key and the sessionId. Every
state transition runs in one transaction together with the principal's
ConcurrentSessionIndex so the cap holds across any interleaving.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from gatekeeper.application.dtos.auth import RequestContext
from gatekeeper.application.dtos.session import SessionIssue, SessionValidation
from gatekeeper.application.interfaces.store import IDocumentStore, ITransaction
from gatekeeper.application.services.audit_log import AuditLog
from gatekeeper.core.constants import COLLECTION_SESSION_INDEXES, COLLECTION_SESSIONS
from gatekeeper.domain.enums import (
    AuditEventType,
    AuditSeverity,
    ConcurrentSessionPolicy,
    ErrorCode,
    IncidentSeverity,
    IncidentType,
    InvalidationReason,
    RiskLevel,
    SecurityIndicator,
    SessionState,
)
from gatekeeper.domain.exceptions import ConcurrentSessionLimitException
from gatekeeper.shared.telemetry.tracing import add_span_attributes, traced
from gatekeeper.shared.utils import (
    Clock,
    constant_time_equals,
    ensure_utc,
    hmac_sha256_hex,
    random_hex,
    sha256_hex,
    utc_now,
)

logger = logging.getLogger(__name__)

_HANDLE_RE = re.compile(r"^sess_([0-9a-f]{64})\.([0-9a-f]{32})\.([0-9a-f]{16})$")
_EXPIRED_CLEANUP_LIMIT = 50
_BULK_INVALIDATION_LIMIT = 100
_REJECT_FINDINGS = 3

_INDICATOR_RISK = {
    SecurityIndicator.IP_ADDRESS_MISMATCH: RiskLevel.HIGH,
    SecurityIndicator.USER_AGENT_MISMATCH: RiskLevel.MEDIUM,
    SecurityIndicator.SESSION_EXCEEDED_MAX_AGE: RiskLevel.HIGH,
    SecurityIndicator.EXTENDED_INACTIVITY: RiskLevel.MEDIUM,
}


@dataclass(frozen=True)
class SessionConfig:
    """Session tunables (seconds)."""

    secret: str
    timeout_seconds: int = 24 * 3600
    max_timeout_seconds: int = 7 * 24 * 3600
    activity_interval_seconds: int = 300
    inactivity_warning_seconds: int = 2 * 3600
    max_concurrent_sessions: int = 5
    policy: ConcurrentSessionPolicy = ConcurrentSessionPolicy.ROLLING

    def __post_init__(self) -> None:
        if not self.secret:
            raise ValueError("Session secret must not be empty")
        if self.max_concurrent_sessions < 1:
            raise ValueError("max_concurrent_sessions must be at least 1")


def session_id_for(handle: str) -> str:
    """Store key (and public session id) for a handle."""
    return sha256_hex(handle)


def _ua_hash(ctx: RequestContext) -> str:
    return ctx.ua_hash or sha256_hex(ctx.user_agent or "")[:16]


class SessionManager:
    """Creates, validates, rotates and revokes sessions."""

    def __init__(
        self,
        store: IDocumentStore,
        audit: AuditLog,
        config: SessionConfig,
        *,
        clock: Clock = utc_now,
    ) -> None:
        self._store = store
        self._audit = audit
        self._config = config
        self._clock = clock

    @property
    def config(self) -> SessionConfig:
        return self._config

    # Handles

    def _tag(self, r1: str, r2: str) -> str:
        return hmac_sha256_hex(self._config.secret, f"{r1}.{r2}")[:16]

    def mint_handle(self) -> str:
        r1, r2 = random_hex(32), random_hex(16)
        return f"sess_{r1}.{r2}.{self._tag(r1, r2)}"

    def verify_handle(self, handle: str | None) -> bool:
        """Check the handle shape and HMAC tag without any I/O."""
        if not handle:
            return False
        match = _HANDLE_RE.match(handle)
        if match is None:
            return False
        r1, r2, tag = match.groups()
        return constant_time_equals(tag, self._tag(r1, r2))

    # Transaction helpers

    def _sliding_expiry(self, now: datetime, created_at: datetime) -> datetime:
        return min(
            now + timedelta(seconds=self._config.timeout_seconds),
            created_at + timedelta(seconds=self._config.max_timeout_seconds),
        )

    def _index_doc(self, now: datetime, active_ids: list[str], total: int) -> dict[str, Any]:
        return {
            "activeSessionIds": active_ids,
            "totalSessions": total,
            "lastUpdated": now,
            "expiresAt": now + timedelta(seconds=self._config.max_timeout_seconds),
        }

    @staticmethod
    def _terminal_fields(
        now: datetime, state: SessionState, reason: InvalidationReason
    ) -> dict[str, Any]:
        return {
            "isActive": False,
            "state": state.value,
            "invalidatedAt": now,
            "invalidationReason": reason.value,
        }

    async def _load_index(self, tx: ITransaction, principal_id: str) -> dict[str, Any] | None:
        return await tx.get(COLLECTION_SESSION_INDEXES, principal_id)

    def _drop_from_index(
        self,
        tx: ITransaction,
        index: dict[str, Any] | None,
        principal_id: str,
        session_ids: set[str],
        now: datetime,
    ) -> None:
        if index is None:
            return
        active = [sid for sid in index.get("activeSessionIds", []) if sid not in session_ids]
        tx.set(
            COLLECTION_SESSION_INDEXES,
            principal_id,
            self._index_doc(now, active, int(index.get("totalSessions", 0))),
        )

    async def _stage_new_session(
        self,
        tx: ITransaction,
        principal_id: str,
        session_data: dict[str, Any],
        ctx: RequestContext,
        now: datetime,
        *,
        excluded_ids: set[str] = frozenset(),
    ) -> tuple[SessionIssue, list[str]]:
        """Enforce the cap, write a new session and the index into tx.

        Returns:
            The issue and the ids evicted under the ROLLING policy.
        """
        index = await self._load_index(tx, principal_id)
        candidate_ids = [
            sid for sid in (index or {}).get("activeSessionIds", []) if sid not in excluded_ids
        ]
        live_ids: list[str] = []
        for sid in candidate_ids:
            doc = await tx.get(COLLECTION_SESSIONS, sid)
            if doc is None or not doc.get("isActive"):
                continue
            if ensure_utc(doc["expiresAt"]) <= now:
                tx.update(
                    COLLECTION_SESSIONS,
                    sid,
                    self._terminal_fields(now, SessionState.EXPIRED, InvalidationReason.EXPIRED),
                )
                continue
            live_ids.append(sid)

        stale = await tx.query(
            COLLECTION_SESSIONS,
            [("principalId", "==", principal_id), ("isActive", "==", True), ("expiresAt", "<=", now)],
            limit=_EXPIRED_CLEANUP_LIMIT,
        )
        for snap in stale:
            if snap.id not in candidate_ids and snap.id not in excluded_ids:
                tx.update(
                    COLLECTION_SESSIONS,
                    snap.id,
                    self._terminal_fields(now, SessionState.EXPIRED, InvalidationReason.EXPIRED),
                )

        evicted: list[str] = []
        cap = self._config.max_concurrent_sessions
        if len(live_ids) >= cap:
            if self._config.policy == ConcurrentSessionPolicy.STRICT:
                raise ConcurrentSessionLimitException(principal_id, cap)
            while len(live_ids) >= cap:
                oldest = live_ids.pop(0)
                tx.update(
                    COLLECTION_SESSIONS,
                    oldest,
                    self._terminal_fields(
                        now, SessionState.REVOKED, InvalidationReason.CONCURRENT_SESSION_EVICTED
                    ),
                )
                evicted.append(oldest)

        handle = self.mint_handle()
        session_id = session_id_for(handle)
        csrf_token = random_hex(32)
        expires_at = min(
            now + timedelta(seconds=self._config.timeout_seconds),
            now + timedelta(seconds=self._config.max_timeout_seconds),
        )
        tx.set(
            COLLECTION_SESSIONS,
            session_id,
            {
                "sessionId": session_id,
                "principalId": principal_id,
                "createdAt": now,
                "lastActivityAt": now,
                "expiresAt": expires_at,
                "isActive": True,
                "state": SessionState.CREATED.value,
                "csrfHash": sha256_hex(csrf_token),
                "config": {
                    "timeout": self._config.timeout_seconds,
                    "maxTimeout": self._config.max_timeout_seconds,
                    "activityInterval": self._config.activity_interval_seconds,
                },
                "securityContext": {
                    "ipAddress": ctx.ip_address,
                    "uaHash": _ua_hash(ctx),
                    "origin": ctx.origin,
                    "riskLevel": RiskLevel.LOW.value,
                },
                "sessionData": dict(session_data),
            },
        )
        total = int((index or {}).get("totalSessions", 0)) + 1
        tx.set(
            COLLECTION_SESSION_INDEXES,
            principal_id,
            self._index_doc(now, live_ids + [session_id], total),
        )
        issue = SessionIssue(
            handle=handle,
            session_id=session_id,
            csrf_token=csrf_token,
            principal_id=principal_id,
            expires_at=expires_at,
            evicted_session_ids=evicted,
        )
        return issue, evicted

    # Operations

    @traced("session_manager.create")
    async def create(
        self,
        principal_id: str,
        session_data: dict[str, Any] | None,
        ctx: RequestContext,
    ) -> SessionIssue:
        """Issue a new session for principal_id.

        Raises:
            ConcurrentSessionLimitException: STRICT policy and the cap is reached.
            StoreUnavailableException / TransactionConflictException: fail closed.
        """

        async def txn(tx: ITransaction) -> SessionIssue:
            now = self._clock()
            issue, evicted = await self._stage_new_session(
                tx, principal_id, session_data or {}, ctx, now
            )
            self._audit.stage(
                tx,
                AuditEventType.SESSION_CREATED,
                principal_id=principal_id,
                session_id=issue.session_id,
                context={**ctx.audit_dict(), "evicted": len(evicted)},
            )
            return issue

        issue = await self._store.run_transaction(txn)
        if issue.evicted_session_ids:
            logger.info(
                "Evicted %d session(s) for principal %s (ROLLING)",
                len(issue.evicted_session_ids),
                principal_id,
            )
        return issue

    def _security_findings(
        self, session: dict[str, Any], ctx: RequestContext, now: datetime
    ) -> list[SecurityIndicator]:
        findings: list[SecurityIndicator] = []
        security = session.get("securityContext") or {}
        if security.get("ipAddress") and security["ipAddress"] != ctx.ip_address:
            findings.append(SecurityIndicator.IP_ADDRESS_MISMATCH)
        if security.get("uaHash") and security["uaHash"] != _ua_hash(ctx):
            findings.append(SecurityIndicator.USER_AGENT_MISMATCH)
        created_at = ensure_utc(session["createdAt"])
        if now - created_at > timedelta(seconds=self._config.max_timeout_seconds):
            findings.append(SecurityIndicator.SESSION_EXCEEDED_MAX_AGE)
        last_activity = ensure_utc(session.get("lastActivityAt") or session["createdAt"])
        if now - last_activity > timedelta(seconds=self._config.inactivity_warning_seconds):
            findings.append(SecurityIndicator.EXTENDED_INACTIVITY)
        return findings

    async def _validate_in_tx(
        self,
        tx: ITransaction,
        session_id: str,
        ctx: RequestContext,
        *,
        touch: bool = True,
    ) -> SessionValidation:
        now = self._clock()
        session = await tx.get(COLLECTION_SESSIONS, session_id)
        if session is None or not session.get("isActive"):
            return SessionValidation.rejected(ErrorCode.SESSION_NOT_FOUND, session_id=session_id)
        principal_id = session["principalId"]

        if ensure_utc(session["expiresAt"]) <= now:
            index = await self._load_index(tx, principal_id)
            tx.update(
                COLLECTION_SESSIONS,
                session_id,
                self._terminal_fields(now, SessionState.EXPIRED, InvalidationReason.EXPIRED),
            )
            self._drop_from_index(tx, index, principal_id, {session_id}, now)
            return SessionValidation.rejected(ErrorCode.SESSION_EXPIRED, session_id=session_id)

        findings = self._security_findings(session, ctx, now)
        risk = RiskLevel.highest([_INDICATOR_RISK[f] for f in findings])
        if risk == RiskLevel.HIGH or len(findings) >= _REJECT_FINDINGS:
            index = await self._load_index(tx, principal_id)
            tx.update(
                COLLECTION_SESSIONS,
                session_id,
                {
                    **self._terminal_fields(
                        now, SessionState.REVOKED, InvalidationReason.SECURITY_VIOLATION
                    ),
                    "securityContext": {
                        **(session.get("securityContext") or {}),
                        "riskLevel": RiskLevel.HIGH.value,
                    },
                },
            )
            self._drop_from_index(tx, index, principal_id, {session_id}, now)
            self._audit.stage(
                tx,
                AuditEventType.SESSION_INVALIDATED,
                result="FAILURE",
                severity=AuditSeverity.WARN,
                principal_id=principal_id,
                session_id=session_id,
                context={
                    **ctx.audit_dict(),
                    "reason": InvalidationReason.SECURITY_VIOLATION.value,
                    "indicators": [f.value for f in findings],
                },
            )
            return SessionValidation(
                valid=False,
                risk_level=RiskLevel.HIGH,
                error_code=ErrorCode.SESSION_VALIDATION_FAILED,
                session_id=session_id,
                principal_id=principal_id,
                indicators=findings,
            )

        created_at = ensure_utc(session["createdAt"])
        expires_at = ensure_utc(session["expiresAt"])
        last_activity = ensure_utc(session.get("lastActivityAt") or created_at)
        stale = now - last_activity > timedelta(seconds=self._config.activity_interval_seconds)
        if touch and (stale or session.get("state") == SessionState.CREATED.value):
            expires_at = self._sliding_expiry(now, created_at)
            tx.update(
                COLLECTION_SESSIONS,
                session_id,
                {
                    "lastActivityAt": now,
                    "state": SessionState.ACTIVE.value,
                    "expiresAt": expires_at,
                },
            )
        return SessionValidation(
            valid=True,
            risk_level=risk,
            session_id=session_id,
            principal_id=principal_id,
            session_data=session.get("sessionData") or {},
            created_at=created_at,
            expires_at=expires_at,
            csrf_hash=session.get("csrfHash"),
            indicators=findings,
        )

    @traced("session_manager.validate")
    async def validate(self, handle: str | None, ctx: RequestContext) -> SessionValidation:
        """Validate a handle and refresh its activity.

        The HMAC tag is checked first with no I/O. Security findings are
        evaluated against the stored securityContext; a HIGH finding or three
        findings revoke the session.
        """
        if not self.verify_handle(handle):
            return SessionValidation.rejected(ErrorCode.INVALID_AUTH_TOKEN)
        session_id = session_id_for(handle)

        result = await self._store.run_transaction(
            lambda tx: self._validate_in_tx(tx, session_id, ctx)
        )
        add_span_attributes(
            **{"session.valid": result.valid, "session.risk": result.risk_level.value}
        )
        if result.error_code == ErrorCode.SESSION_VALIDATION_FAILED:
            await self._audit.record_incident(
                IncidentType.SESSION_HIJACK_SUSPECTED,
                IncidentSeverity.HIGH,
                {
                    "sessionId": session_id,
                    "principalId": result.principal_id,
                    "indicators": [f.value for f in result.indicators],
                    "context": ctx.audit_dict(),
                },
            )
        return result

    @traced("session_manager.rotate")
    async def rotate(
        self, handle: str | None, ctx: RequestContext
    ) -> tuple[SessionValidation, SessionIssue | None]:
        """Replace a valid session with a new handle carrying the same sessionData.

        Returns:
            (validation of the old handle, new issue or None when it was rejected).
        """
        if not self.verify_handle(handle):
            return SessionValidation.rejected(ErrorCode.INVALID_AUTH_TOKEN), None
        old_id = session_id_for(handle)

        async def txn(tx: ITransaction) -> tuple[SessionValidation, SessionIssue | None]:
            validation = await self._validate_in_tx(tx, old_id, ctx, touch=False)
            if not validation.valid:
                return validation, None
            now = self._clock()
            tx.update(
                COLLECTION_SESSIONS,
                old_id,
                self._terminal_fields(now, SessionState.REVOKED, InvalidationReason.ROTATED),
            )
            issue, _ = await self._stage_new_session(
                tx,
                validation.principal_id,
                validation.session_data,
                ctx,
                now,
                excluded_ids={old_id},
            )
            self._audit.stage(
                tx,
                AuditEventType.SESSION_ROTATED,
                principal_id=validation.principal_id,
                session_id=issue.session_id,
                context={**ctx.audit_dict(), "previousSessionId": old_id},
            )
            return validation, issue

        validation, issue = await self._store.run_transaction(txn)
        if validation.error_code == ErrorCode.SESSION_VALIDATION_FAILED:
            await self._audit.record_incident(
                IncidentType.SESSION_HIJACK_SUSPECTED,
                IncidentSeverity.HIGH,
                {
                    "sessionId": old_id,
                    "principalId": validation.principal_id,
                    "indicators": [f.value for f in validation.indicators],
                    "context": ctx.audit_dict(),
                },
            )
        return validation, issue

    @traced("session_manager.invalidate")
    async def invalidate(
        self,
        handle: str | None,
        reason: InvalidationReason = InvalidationReason.LOGOUT,
    ) -> bool:
        """Deactivate one session.

        Returns:
            True when this call flipped isActive; False when the handle was
            malformed, unknown or already inactive.
        """
        if not self.verify_handle(handle):
            return False
        session_id = session_id_for(handle)

        async def txn(tx: ITransaction) -> bool:
            now = self._clock()
            session = await tx.get(COLLECTION_SESSIONS, session_id)
            if session is None or not session.get("isActive"):
                return False
            principal_id = session["principalId"]
            index = await self._load_index(tx, principal_id)
            tx.update(
                COLLECTION_SESSIONS,
                session_id,
                self._terminal_fields(now, SessionState.REVOKED, reason),
            )
            self._drop_from_index(tx, index, principal_id, {session_id}, now)
            self._audit.stage(
                tx,
                AuditEventType.SESSION_INVALIDATED,
                principal_id=principal_id,
                session_id=session_id,
                context={"reason": reason.value},
            )
            return True

        return await self._store.run_transaction(txn)

    @traced("session_manager.invalidate_all")
    async def invalidate_all(
        self,
        principal_id: str,
        reason: InvalidationReason = InvalidationReason.LOGOUT_ALL,
    ) -> int:
        """Bulk-revoke the principal's active sessions (capped query) and clear the index.

        Returns:
            Number of sessions revoked.
        """

        async def txn(tx: ITransaction) -> int:
            now = self._clock()
            index = await self._load_index(tx, principal_id)
            active = await tx.query(
                COLLECTION_SESSIONS,
                [("principalId", "==", principal_id), ("isActive", "==", True)],
                limit=_BULK_INVALIDATION_LIMIT,
            )
            for snap in active:
                tx.update(
                    COLLECTION_SESSIONS,
                    snap.id,
                    self._terminal_fields(now, SessionState.BULK_REVOKED, reason),
                )
            if index is not None:
                tx.set(
                    COLLECTION_SESSION_INDEXES,
                    principal_id,
                    self._index_doc(now, [], int(index.get("totalSessions", 0))),
                )
            self._audit.stage(
                tx,
                AuditEventType.BULK_SESSION_INVALIDATION,
                principal_id=principal_id,
                context={"reason": reason.value, "count": len(active)},
            )
            return len(active)

        count = await self._store.run_transaction(txn)
        logger.info("Bulk-revoked %d session(s) for principal %s", count, principal_id)
        return count
