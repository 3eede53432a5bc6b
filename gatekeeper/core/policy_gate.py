"""Policy gate: the single entry point every privileged request traverses.

Order of checks (each deny short-circuits with a complete response):

1. Preflight: OPTIONS returns 200 with CORS/security headers, empty body.
2. Method guard: 405 with the allowed methods.
3. General rate limit per source IP, then the endpoint's extra scope.
4. Authentication: an active IP lockout denies first. A bearer token is an
   authentication attempt and also counts against the auth window before its
   single-use validation; without a bearer the session handle is validated. Cookie
   sessions must present a matching CSRF witness on state-changing methods.
5. Admin role, session binding/issuance, subscription usage.

Every deny is appended to the audit log; security events also produce an
incident. Internal error text never reaches the client.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from starlette.responses import JSONResponse, Response

from gatekeeper.application.dtos.auth import Principal, RequestContext
from gatekeeper.application.dtos.rate_limit import RateLimitDecision
from gatekeeper.application.dtos.session import SessionIssue, SessionValidation
from gatekeeper.application.dtos.usage import UsageDecision
from gatekeeper.application.services.admin_roles import AdminRoleLookup
from gatekeeper.application.services.audit_log import AuditLog
from gatekeeper.application.services.rate_limiter import DistributedRateLimiter
from gatekeeper.application.services.session_manager import SessionManager
from gatekeeper.application.services.subscription_usage import UsageCounter
from gatekeeper.application.services.token_validator import TokenValidator
from gatekeeper.core.cookie_envelope import HEADER_KIND_API, CookieEnvelope, CookieSpec
from gatekeeper.domain.enums import (
    AuditEventType,
    AuditSeverity,
    ErrorCode,
    IncidentSeverity,
    IncidentType,
    RateLimitScope,
)
from gatekeeper.domain.exceptions import (
    ConcurrentSessionLimitException,
    GatekeeperException,
    public_message,
    status_for,
)
from gatekeeper.shared.telemetry.tracing import add_span_attributes, traced
from gatekeeper.shared.utils import from_timestamp_ms_utc

logger = logging.getLogger(__name__)

STATE_CHANGING_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})

# Failures that say nothing about the caller and must not count toward lockout.
_NON_CALLER_FAILURES = frozenset({ErrorCode.SYSTEM_UNAVAILABLE, ErrorCode.TRANSACTION_CONFLICT})


class GateShortCircuit(Exception):
    """Raised by the FastAPI dependency to return a gate-produced response."""

    def __init__(self, response: Response) -> None:
        super().__init__(f"Gate short-circuit ({response.status_code})")
        self.response = response


@dataclass(frozen=True)
class GateRequirements:
    """What an endpoint needs from the gate."""

    methods: tuple[str, ...] = ("POST",)
    require_auth: bool = False
    require_admin: bool = False
    require_session: bool = False
    require_subscription: bool = False
    rate_limit_scope: RateLimitScope | None = None
    header_kind: str = HEADER_KIND_API

    def __post_init__(self) -> None:
        if (self.require_admin or self.require_session or self.require_subscription) and not (
            self.require_auth
        ):
            raise ValueError("require_admin/session/subscription imply require_auth")


@dataclass
class AuthorizedContext:
    """What a downstream handler receives when the gate admits the request."""

    request: RequestContext
    headers: dict[str, str]
    rate_limit: RateLimitDecision
    principal: Principal | None = None
    session: SessionValidation | None = None
    session_issue: SessionIssue | None = None
    usage: UsageDecision | None = None
    cookies: list[CookieSpec] = field(default_factory=list)

    @property
    def principal_id(self) -> str | None:
        return self.principal.principal_id if self.principal else None

    def apply(self, response: Response) -> Response:
        """Copy gate headers and cookies onto the handler's response."""
        for name, value in self.headers.items():
            response.headers[name] = value
        CookieEnvelope.apply_cookies(response, self.cookies)
        return response

    def respond(self, content: Any, status_code: int = 200) -> JSONResponse:
        return self.apply(JSONResponse(content=content, status_code=status_code))


def error_response(
    code: ErrorCode,
    headers: dict[str, str],
    **extra: Any,
) -> JSONResponse:
    """JSON error body `{error, code, ...}` with the gate headers."""
    body: dict[str, Any] = {"error": public_message(code), "code": code.value}
    body.update({k: v for k, v in extra.items() if v is not None})
    return JSONResponse(status_code=status_for(code), content=body, headers=dict(headers))


def throttled_response(decision: RateLimitDecision, headers: dict[str, str]) -> JSONResponse:
    """429 with Retry-After and X-RateLimit-* headers."""
    retry_after = decision.retry_after_seconds
    reset_time = (
        from_timestamp_ms_utc(decision.reset_at_ms).isoformat() if decision.reset_at_ms else None
    )
    response_headers = {
        **headers,
        "Retry-After": str(retry_after),
        "X-RateLimit-Limit": str(decision.limit),
        "X-RateLimit-Remaining": str(decision.remaining),
    }
    if decision.reset_at_ms:
        response_headers["X-RateLimit-Reset"] = str(-(-decision.reset_at_ms // 1000))
    return error_response(
        decision.error_code or ErrorCode.RATE_LIMIT_EXCEEDED,
        response_headers,
        retryAfter=retry_after,
        resetTime=reset_time,
    )


class _Denied(Exception):
    """Internal control flow: carries the deny response out of nested checks."""

    def __init__(self, code: ErrorCode, response: Response) -> None:
        super().__init__(code.value)
        self.code = code
        self.response = response


class PolicyGate:
    """Composes rate limiting, token validation, sessions and role checks."""

    def __init__(
        self,
        *,
        envelope: CookieEnvelope,
        rate_limiter: DistributedRateLimiter,
        token_validator: TokenValidator,
        sessions: SessionManager,
        admin_roles: AdminRoleLookup,
        usage: UsageCounter,
        audit: AuditLog,
    ) -> None:
        self._envelope = envelope
        self._rate_limiter = rate_limiter
        self._token_validator = token_validator
        self._sessions = sessions
        self._admin_roles = admin_roles
        self._usage = usage
        self._audit = audit

    @property
    def envelope(self) -> CookieEnvelope:
        return self._envelope

    @traced("policy_gate.evaluate")
    async def evaluate(
        self, ctx: RequestContext, requirements: GateRequirements
    ) -> AuthorizedContext | Response:
        """Admit the request (AuthorizedContext) or return the deny response."""
        methods = tuple(m.upper() for m in requirements.methods)
        headers = self._envelope.response_headers(ctx.origin, methods, requirements.header_kind)
        method = ctx.method.upper()

        if method == "OPTIONS":
            return Response(status_code=200, headers=headers)
        if method not in methods:
            return await self._deny(
                ctx, ErrorCode.METHOD_NOT_ALLOWED, headers, allowed=list(methods)
            )

        try:
            return await self._evaluate(ctx, requirements, method, headers)
        except _Denied as denied:
            await self._audit_denied(ctx, denied.code)
            add_span_attributes(**{"gate.denied": denied.code.value})
            return denied.response
        except ConcurrentSessionLimitException as e:
            return await self._deny(ctx, ErrorCode(e.error_code), headers, **e.details)
        except GatekeeperException as e:
            logger.error("Gate failed closed: code=%s %s", e.error_code, e.message)
            await self._audit.record_incident(
                IncidentType.SYSTEM_ERROR,
                IncidentSeverity.HIGH,
                {"component": "policy_gate", "code": e.error_code, "context": ctx.audit_dict()},
            )
            code = ErrorCode(e.error_code)
            if code not in _NON_CALLER_FAILURES:
                code = ErrorCode.SYSTEM_UNAVAILABLE
            return await self._deny(ctx, code, headers)

    async def _evaluate(
        self,
        ctx: RequestContext,
        requirements: GateRequirements,
        method: str,
        headers: dict[str, str],
    ) -> AuthorizedContext:
        ip = ctx.ip_address
        decision = await self._throttle(RateLimitScope.GENERAL, ip, headers)
        if requirements.rate_limit_scope is not None:
            await self._throttle(requirements.rate_limit_scope, ip, headers)

        authorized = AuthorizedContext(request=ctx, headers=dict(headers), rate_limit=decision)
        if not requirements.require_auth:
            return authorized

        lockout = await self._rate_limiter.lockout(ip)
        if not lockout.allowed:
            raise _Denied(ErrorCode.IP_LOCKED, throttled_response(lockout, headers))
        bearer = self._envelope.extract_bearer(ctx.headers)
        if bearer:
            await self._throttle(RateLimitScope.AUTH_FAILURE, ip, headers)
            result = await self._token_validator.validate(bearer, ctx)
            if not result.valid:
                await self._count_failure(ip, result.error_code)
                raise _Denied(result.error_code, error_response(result.error_code, headers))
            await self._rate_limiter.clear_failures(ip)
            authorized.principal = result.principal
        else:
            authorized.session = await self._session_from_request(ctx, method, headers)
            authorized.principal = Principal.from_session(
                authorized.session.principal_id, authorized.session.session_data
            )

        if requirements.require_admin and not await self._admin_roles.is_admin(
            authorized.principal
        ):
            await self._audit.record_incident(
                IncidentType.PRIVILEGE_ESCALATION_ATTEMPT,
                IncidentSeverity.MEDIUM,
                {"principalId": authorized.principal_id, "context": ctx.audit_dict()},
                mitigation_status="DENIED",
            )
            raise _Denied(
                ErrorCode.INSUFFICIENT_PRIVILEGES,
                error_response(ErrorCode.INSUFFICIENT_PRIVILEGES, headers),
            )

        if requirements.require_session and authorized.session is None:
            await self._bind_session(ctx, authorized, headers)

        if requirements.require_subscription:
            usage = await self._usage.consume(authorized.principal_id)
            if not usage.allowed:
                raise _Denied(
                    usage.error_code,
                    error_response(usage.error_code, headers, usage=usage.public_dict()),
                )
            authorized.usage = usage

        await self._audit.append(
            AuditEventType.AUTHORIZATION_GRANTED,
            severity=AuditSeverity.DEBUG,
            principal_id=authorized.principal_id,
            session_id=authorized.session.session_id if authorized.session else None,
            context=ctx.audit_dict(),
        )
        return authorized

    async def _throttle(
        self, scope: RateLimitScope, identifier: str, headers: dict[str, str]
    ) -> RateLimitDecision:
        decision = await self._rate_limiter.check(scope, identifier)
        if decision.allowed:
            return decision
        if decision.error_code == ErrorCode.RATE_LIMIT_EXCEEDED:
            await self._audit.record_incident(
                IncidentType.RATE_LIMIT_EXCEEDED,
                IncidentSeverity.MEDIUM,
                {"scope": scope.value, "ip": identifier, "retryAfterMs": decision.retry_after_ms},
                mitigation_status="THROTTLED",
            )
        raise _Denied(
            decision.error_code or ErrorCode.RATE_LIMIT_EXCEEDED,
            throttled_response(decision, headers),
        )

    async def _count_failure(self, ip: str, code: ErrorCode | None) -> None:
        if code is None or code in _NON_CALLER_FAILURES:
            return
        await self._rate_limiter.record_failure(ip, code.value)

    async def _session_from_request(
        self, ctx: RequestContext, method: str, headers: dict[str, str]
    ) -> SessionValidation:
        handle = self._envelope.extract_session(ctx.headers)
        if not handle:
            raise _Denied(ErrorCode.NO_AUTH_COOKIE, error_response(ErrorCode.NO_AUTH_COOKIE, headers))
        session = await self._sessions.validate(handle, ctx)
        if not session.valid:
            await self._count_failure(ctx.ip_address, session.error_code)
            raise _Denied(
                session.error_code,
                error_response(session.error_code, headers, requireReauth=True),
            )
        if method in STATE_CHANGING_METHODS and self._envelope.session_from_cookie(ctx.headers):
            header_value, cookie_value = self._envelope.csrf_values(ctx.headers)
            if not self._envelope.csrf_matches(header_value, cookie_value, session.csrf_hash):
                raise _Denied(
                    ErrorCode.CSRF_TOKEN_MISMATCH,
                    error_response(ErrorCode.CSRF_TOKEN_MISMATCH, headers),
                )
        return session

    async def _bind_session(
        self,
        ctx: RequestContext,
        authorized: AuthorizedContext,
        headers: dict[str, str],
    ) -> None:
        """Bearer path: validate the presented session, or issue one."""
        handle = self._envelope.extract_session(ctx.headers)
        if handle:
            session = await self._sessions.validate(handle, ctx)
            if not session.valid:
                raise _Denied(
                    session.error_code,
                    error_response(session.error_code, headers, requireReauth=True),
                )
            if session.principal_id != authorized.principal_id:
                await self._audit.record_incident(
                    IncidentType.SESSION_HIJACK_SUSPECTED,
                    IncidentSeverity.HIGH,
                    {
                        "sessionId": session.session_id,
                        "sessionPrincipalId": session.principal_id,
                        "tokenPrincipalId": authorized.principal_id,
                    },
                )
                raise _Denied(
                    ErrorCode.USER_ID_MISMATCH,
                    error_response(ErrorCode.USER_ID_MISMATCH, headers, requireReauth=True),
                )
            authorized.session = session
            return
        issue = await self._sessions.create(authorized.principal_id, {}, ctx)
        authorized.session_issue = issue
        authorized.session = SessionValidation(
            valid=True,
            session_id=issue.session_id,
            principal_id=issue.principal_id,
            expires_at=issue.expires_at,
        )
        authorized.cookies = self._envelope.session_cookies(issue.handle, issue.csrf_token)

    async def _audit_denied(self, ctx: RequestContext, code: ErrorCode) -> None:
        await self._audit.append(
            AuditEventType.AUTHORIZATION_DENIED,
            result="FAILURE",
            severity=AuditSeverity.WARN,
            context={**ctx.audit_dict(), "code": code.value},
        )

    async def _deny(
        self,
        ctx: RequestContext,
        code: ErrorCode,
        headers: dict[str, str],
        **extra: Any,
    ) -> JSONResponse:
        await self._audit_denied(ctx, code)
        return error_response(code, headers, **extra)
