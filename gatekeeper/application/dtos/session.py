"""DTOs for session issuance and validation."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from gatekeeper.domain.enums import ErrorCode, RiskLevel, SecurityIndicator


@dataclass(frozen=True)
class SessionIssue:
    """A freshly issued session. handle and csrf_token are only ever returned here."""

    handle: str
    session_id: str
    csrf_token: str
    principal_id: str
    expires_at: datetime
    evicted_session_ids: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class SessionValidation:
    """Outcome of validating a session handle."""

    valid: bool
    risk_level: RiskLevel = RiskLevel.LOW
    error_code: ErrorCode | None = None
    session_id: str | None = None
    principal_id: str | None = None
    session_data: dict[str, Any] = field(default_factory=dict)
    created_at: datetime | None = None
    expires_at: datetime | None = None
    csrf_hash: str | None = None
    indicators: list[SecurityIndicator] = field(default_factory=list)

    @classmethod
    def rejected(
        cls,
        error_code: ErrorCode,
        risk_level: RiskLevel = RiskLevel.LOW,
        *,
        session_id: str | None = None,
        indicators: list[SecurityIndicator] | None = None,
    ) -> "SessionValidation":
        return cls(
            valid=False,
            risk_level=risk_level,
            error_code=error_code,
            session_id=session_id,
            indicators=indicators or [],
        )
