"""DTOs for bearer-token validation (no dependency on HTTP or the store)."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from gatekeeper.domain.enums import ErrorCode, RiskLevel
from gatekeeper.domain.exceptions import status_for


@dataclass(frozen=True)
class VerifiedToken:
    """Claims returned by the identity provider for a verified bearer token."""

    principal_id: str
    email: str | None
    email_verified: bool
    audience: str
    auth_time: datetime
    issued_at: datetime
    token_id: str
    expires_at: datetime | None = None
    claims: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Principal:
    """Authenticated identity attached to an authorized request."""

    principal_id: str
    email: str | None = None
    email_verified: bool = False
    auth_time: datetime | None = None
    token_id: str | None = None
    auth_method: str = "bearer"

    @classmethod
    def from_token(cls, token: VerifiedToken) -> "Principal":
        return cls(
            principal_id=token.principal_id,
            email=token.email,
            email_verified=token.email_verified,
            auth_time=token.auth_time,
            token_id=token.token_id,
        )

    @classmethod
    def from_session(cls, principal_id: str, session_data: dict[str, Any]) -> "Principal":
        """Principal recovered from a session; email facts come from sessionData."""
        return cls(
            principal_id=principal_id,
            email=session_data.get("email"),
            email_verified=bool(session_data.get("emailVerified", False)),
            auth_method="session",
        )

    def public_dict(self) -> dict[str, Any]:
        """Fields safe to return to the client."""
        return {
            "uid": self.principal_id,
            "email": self.email,
            "emailVerified": self.email_verified,
        }


@dataclass(frozen=True)
class RequestContext:
    """Request facts the core checks against: caller IP, UA hash, origin."""

    ip_address: str
    user_agent: str = ""
    ua_hash: str = ""
    origin: str | None = None
    method: str = "GET"
    path: str = "/"
    request_id: str | None = None
    headers: dict[str, str] = field(default_factory=dict)

    def audit_dict(self) -> dict[str, Any]:
        """Context recorded with audit entries (never raw headers)."""
        return {
            "ip": self.ip_address,
            "uaHash": self.ua_hash,
            "origin": self.origin,
            "method": self.method,
            "path": self.path,
            "requestId": self.request_id,
        }


@dataclass(frozen=True)
class TokenValidationResult:
    """Outcome of a bearer-token validation.

    valid is True only after the consumption write has committed.
    """

    valid: bool
    operation_id: str
    risk_level: RiskLevel = RiskLevel.LOW
    principal: Principal | None = None
    error_code: ErrorCode | None = None

    @property
    def status_code(self) -> int:
        return 200 if self.valid else status_for(self.error_code)

    @classmethod
    def failure(
        cls,
        operation_id: str,
        error_code: ErrorCode,
        risk_level: RiskLevel = RiskLevel.MEDIUM,
    ) -> "TokenValidationResult":
        return cls(
            valid=False,
            operation_id=operation_id,
            risk_level=risk_level,
            error_code=error_code,
        )
