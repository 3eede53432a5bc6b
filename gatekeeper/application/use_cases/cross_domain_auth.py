"""Cross-domain authentication actions behind POST /api/v1/auth.

One component for every sibling origin: exchange an identity-provider
token for a session cookie pair, verify the cookie, rotate it, and log out
one or all sessions. Results are plain data; the endpoint renders them.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any

from gatekeeper.application.dtos.auth import Principal, RequestContext
from gatekeeper.application.dtos.session import SessionIssue, SessionValidation
from gatekeeper.application.services.admin_roles import AdminRoleLookup
from gatekeeper.application.services.rate_limiter import DistributedRateLimiter
from gatekeeper.application.services.session_manager import SessionManager
from gatekeeper.application.services.token_validator import TokenValidator
from gatekeeper.core.cookie_envelope import CookieEnvelope, CookieSpec
from gatekeeper.domain.enums import ErrorCode, InvalidationReason, RateLimitScope
from gatekeeper.domain.exceptions import ValidationException, public_message, status_for
from gatekeeper.shared.utils import Clock, utc_now

logger = logging.getLogger(__name__)


@dataclass
class AuthActionResult:
    """Status, JSON body and cookies for one auth action."""

    status_code: int
    body: dict[str, Any]
    cookies: list[CookieSpec] = field(default_factory=list)
    headers: dict[str, str] = field(default_factory=dict)

    @classmethod
    def ok(cls, body: dict[str, Any], cookies: list[CookieSpec] | None = None) -> "AuthActionResult":
        return cls(200, body, cookies or [])

    @classmethod
    def error(
        cls,
        code: ErrorCode,
        *,
        cookies: list[CookieSpec] | None = None,
        headers: dict[str, str] | None = None,
        **extra: Any,
    ) -> "AuthActionResult":
        body = {"error": public_message(code), "code": code.value}
        body.update({k: v for k, v in extra.items() if v is not None})
        return cls(status_for(code), body, cookies or [], headers or {})


def _session_body(session_id: str, expires_at) -> dict[str, Any]:
    return {"sessionId": session_id, "expiresAt": expires_at.isoformat() if expires_at else None}


class CrossDomainAuth:
    """Use case for the auth actions; every step delegates to the core services."""

    def __init__(
        self,
        *,
        envelope: CookieEnvelope,
        rate_limiter: DistributedRateLimiter,
        token_validator: TokenValidator,
        sessions: SessionManager,
        admin_roles: AdminRoleLookup,
        near_expiry_seconds: int = 300,
        max_session_age_seconds: int = 12 * 3600,
        clock: Clock = utc_now,
    ) -> None:
        self._envelope = envelope
        self._rate_limiter = rate_limiter
        self._token_validator = token_validator
        self._sessions = sessions
        self._admin_roles = admin_roles
        self._near_expiry = timedelta(seconds=near_expiry_seconds)
        self._max_session_age = timedelta(seconds=max_session_age_seconds)
        self._clock = clock

    async def handle(
        self, action: str, ctx: RequestContext, id_token: str | None = None
    ) -> AuthActionResult:
        """Dispatch one action.

        Raises:
            ValidationException: unknown action or missing idToken.
        """
        handlers: dict[str, Callable[[], Awaitable[AuthActionResult]]] = {
            "authenticate": lambda: self.authenticate(id_token, ctx),
            "verify": lambda: self.verify(ctx),
            "verify_admin": lambda: self.verify_admin(ctx),
            "refresh": lambda: self.refresh(ctx),
            "logout": lambda: self.logout(ctx),
            "logout_all": lambda: self.logout_all(ctx),
        }
        handler = handlers.get(action)
        if handler is None:
            raise ValidationException(f"Unknown auth action: {action!r}", field="action")
        return await handler()

    async def authenticate(self, id_token: str | None, ctx: RequestContext) -> AuthActionResult:
        """Exchange a bearer token for a session cookie pair."""
        if not id_token:
            raise ValidationException("idToken is required for authenticate", field="idToken")
        ip = ctx.ip_address
        throttle = await self._rate_limiter.check(RateLimitScope.AUTH_FAILURE, ip)
        if not throttle.allowed:
            return AuthActionResult.error(
                throttle.error_code or ErrorCode.RATE_LIMIT_EXCEEDED,
                headers={"Retry-After": str(throttle.retry_after_seconds)},
                retryAfter=throttle.retry_after_seconds,
            )
        result = await self._token_validator.validate(id_token, ctx)
        if not result.valid:
            if result.error_code not in (ErrorCode.SYSTEM_UNAVAILABLE, ErrorCode.TRANSACTION_CONFLICT):
                await self._rate_limiter.record_failure(ip, result.error_code.value)
            return AuthActionResult.error(result.error_code)
        await self._rate_limiter.clear_failures(ip)
        principal = result.principal
        issue = await self._sessions.create(
            principal.principal_id,
            {"email": principal.email, "emailVerified": principal.email_verified},
            ctx,
        )
        logger.info("Session issued for principal %s", principal.principal_id)
        return AuthActionResult.ok(
            {
                "success": True,
                "user": principal.public_dict(),
                "csrfToken": issue.csrf_token,
                "session": _session_body(issue.session_id, issue.expires_at),
            },
            self._envelope.session_cookies(issue.handle, issue.csrf_token),
        )

    async def _current_session(
        self, ctx: RequestContext, *, csrf: bool = False
    ) -> tuple[SessionValidation | None, AuthActionResult | None]:
        handle = self._envelope.extract_session(ctx.headers)
        if not handle:
            return None, AuthActionResult.error(ErrorCode.NO_AUTH_COOKIE)
        session = await self._sessions.validate(handle, ctx)
        if not session.valid:
            return None, AuthActionResult.error(
                session.error_code,
                cookies=self._envelope.clearing_cookies(),
                requireReauth=True,
            )
        if csrf and self._envelope.session_from_cookie(ctx.headers):
            header_value, cookie_value = self._envelope.csrf_values(ctx.headers)
            if not self._envelope.csrf_matches(header_value, cookie_value, session.csrf_hash):
                return None, AuthActionResult.error(ErrorCode.CSRF_TOKEN_MISMATCH)
        return session, None

    async def verify(self, ctx: RequestContext) -> AuthActionResult:
        """Check the cookie session; ask for a refresh shortly before expiry."""
        session, failure = await self._current_session(ctx)
        if failure is not None:
            return failure
        now = self._clock()
        if session.created_at and now - session.created_at > self._max_session_age:
            return AuthActionResult.error(
                ErrorCode.CROSS_DOMAIN_SESSION_EXPIRED,
                cookies=self._envelope.clearing_cookies(),
                requireReauth=True,
            )
        if session.expires_at and session.expires_at - now <= self._near_expiry:
            return AuthActionResult.error(ErrorCode.TOKEN_NEAR_EXPIRY, refreshRequired=True)
        principal = Principal.from_session(session.principal_id, session.session_data)
        return AuthActionResult.ok(
            {
                "valid": True,
                "user": principal.public_dict(),
                "session": _session_body(session.session_id, session.expires_at),
            }
        )

    async def verify_admin(self, ctx: RequestContext) -> AuthActionResult:
        session, failure = await self._current_session(ctx)
        if failure is not None:
            return failure
        principal = Principal.from_session(session.principal_id, session.session_data)
        if not await self._admin_roles.is_admin(principal):
            return AuthActionResult.error(ErrorCode.INSUFFICIENT_PRIVILEGES)
        return AuthActionResult.ok({"valid": True, "isAdmin": True, "user": principal.public_dict()})

    async def refresh(self, ctx: RequestContext) -> AuthActionResult:
        """Rotate the session handle; the old one stops working immediately."""
        session, failure = await self._current_session(ctx, csrf=True)
        if failure is not None:
            return failure
        validation, issue = await self._sessions.rotate(
            self._envelope.extract_session(ctx.headers), ctx
        )
        if issue is None:
            return AuthActionResult.error(
                validation.error_code,
                cookies=self._envelope.clearing_cookies(),
                requireReauth=True,
            )
        return self._issued(issue)

    def _issued(self, issue: SessionIssue) -> AuthActionResult:
        return AuthActionResult.ok(
            {
                "success": True,
                "csrfToken": issue.csrf_token,
                "session": _session_body(issue.session_id, issue.expires_at),
            },
            self._envelope.session_cookies(issue.handle, issue.csrf_token),
        )

    async def logout(self, ctx: RequestContext) -> AuthActionResult:
        """Invalidate the presented session (idempotent) and clear the cookies."""
        handle = self._envelope.extract_session(ctx.headers)
        if handle:
            session, failure = await self._current_session(ctx, csrf=True)
            if failure is not None and failure.body["code"] == ErrorCode.CSRF_TOKEN_MISMATCH.value:
                return failure
            if session is not None:
                await self._sessions.invalidate(handle, InvalidationReason.LOGOUT)
        return AuthActionResult.ok({"success": True}, self._envelope.clearing_cookies())

    async def logout_all(self, ctx: RequestContext) -> AuthActionResult:
        session, failure = await self._current_session(ctx, csrf=True)
        if failure is not None:
            return failure
        revoked = await self._sessions.invalidate_all(
            session.principal_id, InvalidationReason.LOGOUT_ALL
        )
        return AuthActionResult.ok(
            {"success": True, "revokedSessions": revoked}, self._envelope.clearing_cookies()
        )
