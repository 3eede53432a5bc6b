"""Audit log and security incident sink.

Two append-only collections: audit_log (DEBUG/INFO/WARN) and
security_incidents (MEDIUM/HIGH/CRITICAL). Appends are best-effort: a
failed write is logged locally and never changes the security decision
the caller already made. Entries that must commit together with a decision
are staged into the caller's transaction with stage().
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any

from gatekeeper.application.interfaces.store import IDocumentStore, ITransaction, WriteOp
from gatekeeper.core.constants import (
    COLLECTION_AUDIT_LOG,
    COLLECTION_SECURITY_INCIDENTS,
)
from gatekeeper.domain.enums import (
    AuditEventType,
    AuditSeverity,
    IncidentSeverity,
    IncidentType,
)
from gatekeeper.domain.exceptions import GatekeeperException
from gatekeeper.shared.utils import Clock, generate_cuid, random_hex, utc_now

logger = logging.getLogger(__name__)

# Identifies this process in audit entries; diagnostic only.
NODE_ID = f"node_{random_hex(6)}"


class AuditLog:
    """Appends audit entries and security incidents to the document store."""

    def __init__(
        self,
        store: IDocumentStore,
        *,
        clock: Clock = utc_now,
        audit_retention_days: int = 90,
        incident_retention_days: int = 365,
    ) -> None:
        self._store = store
        self._clock = clock
        self._audit_retention = timedelta(days=audit_retention_days)
        self._incident_retention = timedelta(days=incident_retention_days)

    def _entry(
        self,
        event_type: AuditEventType,
        *,
        result: str,
        severity: AuditSeverity,
        principal_id: str | None,
        session_id: str | None,
        operation_id: str | None,
        context: dict[str, Any] | None,
    ) -> tuple[str, dict[str, Any]]:
        now = self._clock()
        event_id = generate_cuid()
        return event_id, {
            "eventId": event_id,
            "timestamp": now,
            "eventType": event_type.value,
            "principalId": principal_id,
            "sessionId": session_id,
            "operationId": operation_id or event_id,
            "nodeId": NODE_ID,
            "context": context or {},
            "result": result,
            "severity": severity.value,
            "expiresAt": now + self._audit_retention,
        }

    def stage(
        self,
        tx: ITransaction,
        event_type: AuditEventType,
        *,
        result: str = "SUCCESS",
        severity: AuditSeverity = AuditSeverity.INFO,
        principal_id: str | None = None,
        session_id: str | None = None,
        operation_id: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> str:
        """Stage an audit entry in tx; it commits or rolls back with the caller's writes.

        Returns:
            The event id.
        """
        event_id, entry = self._entry(
            event_type,
            result=result,
            severity=severity,
            principal_id=principal_id,
            session_id=session_id,
            operation_id=operation_id,
            context=context,
        )
        tx.set(COLLECTION_AUDIT_LOG, event_id, entry)
        return event_id

    async def append(
        self,
        event_type: AuditEventType,
        *,
        result: str = "SUCCESS",
        severity: AuditSeverity = AuditSeverity.INFO,
        principal_id: str | None = None,
        session_id: str | None = None,
        operation_id: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> str | None:
        """Append an audit entry outside any transaction (best-effort).

        Returns:
            The event id, or None when the write failed.
        """
        event_id, entry = self._entry(
            event_type,
            result=result,
            severity=severity,
            principal_id=principal_id,
            session_id=session_id,
            operation_id=operation_id,
            context=context,
        )
        try:
            await self._store.batch_write([WriteOp("set", COLLECTION_AUDIT_LOG, event_id, entry)])
        except GatekeeperException as e:
            logger.warning(
                "Audit append failed (event_type=%s, code=%s): %s",
                event_type.value,
                e.error_code,
                e.message,
            )
            return None
        return event_id

    async def record_incident(
        self,
        incident_type: IncidentType,
        severity: IncidentSeverity,
        evidence: dict[str, Any],
        *,
        mitigation_status: str = "BLOCKED",
    ) -> str | None:
        """Record a security incident (best-effort).

        Args:
            incident_type: What was detected.
            severity: MEDIUM, HIGH or CRITICAL.
            evidence: Hashes, codes and context; never raw credentials.
            mitigation_status: What the core did about it.

        Returns:
            The incident id, or None when the write failed.
        """
        now = self._clock()
        incident_id = generate_cuid()
        incident = {
            "incidentId": incident_id,
            "timestamp": now,
            "type": incident_type.value,
            "severity": severity.value,
            "evidence": evidence,
            "mitigationStatus": mitigation_status,
            "nodeId": NODE_ID,
            "expiresAt": now + self._incident_retention,
        }
        log = logger.error if severity != IncidentSeverity.MEDIUM else logger.warning
        log("Security incident %s (%s): %s", incident_type.value, severity.value, incident_id)
        try:
            await self._store.batch_write(
                [WriteOp("set", COLLECTION_SECURITY_INCIDENTS, incident_id, incident)]
            )
        except GatekeeperException as e:
            logger.warning(
                "Incident append failed (type=%s, code=%s): %s",
                incident_type.value,
                e.error_code,
                e.message,
            )
            return None
        return incident_id
