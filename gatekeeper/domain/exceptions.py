"""Domain exceptions and the stable error taxonomy.

Every failure that reaches a client carries a stable ErrorCode, a short
user-safe message from ERROR_MESSAGES and the HTTP status from ERROR_STATUS.
Internal detail (store errors, provider responses) is logged, never returned.
Presentation layer maps GatekeeperException to HTTP responses in exception
handlers.
"""

from typing import Any

from gatekeeper.domain.enums import ErrorCode

ERROR_STATUS: dict[ErrorCode, int] = {
    ErrorCode.INVALID_TOKEN_FORMAT: 401,
    ErrorCode.INVALID_TOKEN: 401,
    ErrorCode.TOKEN_EXPIRED: 401,
    ErrorCode.TOKEN_REVOKED: 401,
    ErrorCode.TOKEN_REPLAY: 401,
    ErrorCode.EMAIL_NOT_VERIFIED: 403,
    ErrorCode.SESSION_TOO_OLD: 401,
    ErrorCode.NO_AUTH_COOKIE: 401,
    ErrorCode.INVALID_AUTH_TOKEN: 401,
    ErrorCode.TOKEN_NEAR_EXPIRY: 401,
    ErrorCode.CROSS_DOMAIN_SESSION_EXPIRED: 401,
    ErrorCode.CSRF_TOKEN_MISMATCH: 403,
    ErrorCode.SESSION_NOT_FOUND: 401,
    ErrorCode.SESSION_EXPIRED: 401,
    ErrorCode.SESSION_VALIDATION_FAILED: 401,
    ErrorCode.CONCURRENT_SESSION_LIMIT_EXCEEDED: 403,
    ErrorCode.RATE_LIMIT_EXCEEDED: 429,
    ErrorCode.IP_LOCKED: 429,
    ErrorCode.CONCURRENT_VALIDATION_DETECTED: 401,
    ErrorCode.TRANSACTION_CONFLICT: 500,
    ErrorCode.INSUFFICIENT_PRIVILEGES: 403,
    ErrorCode.USER_ID_MISMATCH: 401,
    ErrorCode.USER_NOT_FOUND: 403,
    ErrorCode.USAGE_LIMIT_EXCEEDED: 403,
    ErrorCode.SUBSCRIPTION_INACTIVE: 403,
    ErrorCode.METHOD_NOT_ALLOWED: 405,
    ErrorCode.VALIDATION_ERROR: 400,
    ErrorCode.INVALID_SIGNATURE: 400,
    ErrorCode.MAINTENANCE_FORBIDDEN: 403,
    ErrorCode.SYSTEM_UNAVAILABLE: 500,
}

ERROR_MESSAGES: dict[ErrorCode, str] = {
    ErrorCode.INVALID_TOKEN_FORMAT: "Invalid authentication token format",
    ErrorCode.INVALID_TOKEN: "Invalid authentication token",
    ErrorCode.TOKEN_EXPIRED: "Authentication token expired",
    ErrorCode.TOKEN_REVOKED: "Authentication token revoked",
    ErrorCode.TOKEN_REPLAY: "Authentication token already used",
    ErrorCode.EMAIL_NOT_VERIFIED: "Email verification required",
    ErrorCode.SESSION_TOO_OLD: "Please sign in again",
    ErrorCode.NO_AUTH_COOKIE: "Authentication required",
    ErrorCode.INVALID_AUTH_TOKEN: "Invalid session",
    ErrorCode.TOKEN_NEAR_EXPIRY: "Session is about to expire, refresh required",
    ErrorCode.CROSS_DOMAIN_SESSION_EXPIRED: "Cross-domain session expired",
    ErrorCode.CSRF_TOKEN_MISMATCH: "CSRF token missing or invalid",
    ErrorCode.SESSION_NOT_FOUND: "Session not found",
    ErrorCode.SESSION_EXPIRED: "Session expired",
    ErrorCode.SESSION_VALIDATION_FAILED: "Session validation failed",
    ErrorCode.CONCURRENT_SESSION_LIMIT_EXCEEDED: "Too many active sessions",
    ErrorCode.RATE_LIMIT_EXCEEDED: "Too many requests",
    ErrorCode.IP_LOCKED: "Too many failed attempts, try again later",
    ErrorCode.CONCURRENT_VALIDATION_DETECTED: "Authentication already in progress",
    ErrorCode.TRANSACTION_CONFLICT: "Service busy, try again",
    ErrorCode.INSUFFICIENT_PRIVILEGES: "Insufficient privileges",
    ErrorCode.USER_ID_MISMATCH: "Session does not match the authenticated user",
    ErrorCode.USER_NOT_FOUND: "User profile not found",
    ErrorCode.USAGE_LIMIT_EXCEEDED: "Usage limit reached",
    ErrorCode.SUBSCRIPTION_INACTIVE: "Subscription is not active",
    ErrorCode.METHOD_NOT_ALLOWED: "Method not allowed",
    ErrorCode.VALIDATION_ERROR: "Request validation failed",
    ErrorCode.INVALID_SIGNATURE: "Invalid signature",
    ErrorCode.MAINTENANCE_FORBIDDEN: "Forbidden",
    ErrorCode.SYSTEM_UNAVAILABLE: "Service temporarily unavailable",
}


def status_for(code: ErrorCode | str) -> int:
    """Return the HTTP status for an error code (500 for unknown codes)."""
    try:
        return ERROR_STATUS[ErrorCode(code)]
    except ValueError:
        return 500


def public_message(code: ErrorCode | str) -> str:
    """Return the user-safe message for an error code."""
    try:
        return ERROR_MESSAGES[ErrorCode(code)]
    except ValueError:
        return ERROR_MESSAGES[ErrorCode.SYSTEM_UNAVAILABLE]


class GatekeeperException(Exception):
    """Base exception for all authorization-core errors.

    All custom exceptions should inherit from this class to allow
    consistent error handling and logging. Presentation layer maps
    these to HTTP responses using error_code and the public message table;
    message is for logs.

    Attributes:
        message: Human-readable error description (logged, not returned).
        error_code: Stable error code.
        details: Additional context safe to return to the client.
    """

    def __init__(
        self,
        message: str,
        error_code: ErrorCode | str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize the exception.

        Args:
            message: Human-readable error description.
            error_code: Optional stable code; defaults to class name.
            details: Optional dict of extra context.
        """
        self.message = message
        self.error_code = error_code.value if isinstance(error_code, ErrorCode) else (
            error_code or self.__class__.__name__
        )
        self.details = details or {}
        super().__init__(self.message)

    @property
    def status_code(self) -> int:
        return status_for(self.error_code)

    def to_dict(self) -> dict[str, Any]:
        """Return the client-facing error body `{error, code, ...details}`."""
        return {
            "error": public_message(self.error_code),
            "code": self.error_code,
            **self.details,
        }


class ValidationException(GatekeeperException):
    """Raised when input validation fails (e.g. unknown auth action)."""

    def __init__(self, message: str, field: str | None = None) -> None:
        """Initialize with message and optional field name.

        Args:
            message: Description of the validation failure.
            field: Optional field or attribute that failed validation.
        """
        details = {"field": field} if field else {}
        super().__init__(message, ErrorCode.VALIDATION_ERROR, details)


class StoreUnavailableException(GatekeeperException):
    """Raised when the document store cannot be reached or rejects a request.

    Every caller fails closed on this exception.
    """

    def __init__(self, operation: str, reason: str = "") -> None:
        """Initialize with the failed store operation.

        Args:
            operation: Gateway operation that failed (e.g. 'commit', 'read').
            reason: Internal reason; logged only.
        """
        super().__init__(
            f"Document store unavailable during {operation}: {reason}".rstrip(": "),
            ErrorCode.SYSTEM_UNAVAILABLE,
        )
        self.operation = operation


class TransactionConflictException(GatekeeperException):
    """Raised when a transaction still conflicts after the retry budget."""

    def __init__(self, attempts: int) -> None:
        super().__init__(
            f"Transaction aborted after {attempts} attempts",
            ErrorCode.TRANSACTION_CONFLICT,
        )
        self.attempts = attempts


class ConcurrentSessionLimitException(GatekeeperException):
    """Raised by session creation under the STRICT policy when the cap is reached."""

    def __init__(self, principal_id: str, limit: int) -> None:
        """Initialize with principal and cap.

        Args:
            principal_id: Principal at the cap.
            limit: Configured maximum concurrent sessions.
        """
        super().__init__(
            f"Principal {principal_id} has reached {limit} concurrent sessions",
            ErrorCode.CONCURRENT_SESSION_LIMIT_EXCEEDED,
            {"maxSessions": limit},
        )


class IdentityProviderError(GatekeeperException):
    """Raised by identity provider adapters when a bearer token cannot be verified.

    kind is one of 'expired', 'revoked', 'invalid', 'unavailable'.
    """

    _KIND_CODES = {
        "expired": ErrorCode.TOKEN_EXPIRED,
        "revoked": ErrorCode.TOKEN_REVOKED,
        "invalid": ErrorCode.INVALID_TOKEN,
        "unavailable": ErrorCode.SYSTEM_UNAVAILABLE,
    }

    def __init__(self, kind: str, message: str = "") -> None:
        """Initialize with failure kind and internal message.

        Args:
            kind: Failure classification.
            message: Provider detail; logged only.
        """
        if kind not in self._KIND_CODES:
            raise ValueError(f"Unknown identity provider failure kind: {kind!r}")
        super().__init__(message or f"Identity provider: {kind}", self._KIND_CODES[kind])
        self.kind = kind


class MaintenanceForbiddenException(GatekeeperException):
    """Raised when a maintenance endpoint is called without the shared secret."""

    def __init__(self) -> None:
        super().__init__("Maintenance secret missing or invalid", ErrorCode.MAINTENANCE_FORBIDDEN)


class InvalidSignatureException(GatekeeperException):
    """Raised when a webhook delivery fails signature verification."""

    def __init__(self, provider: str) -> None:
        super().__init__(
            f"Webhook signature verification failed for {provider}",
            ErrorCode.INVALID_SIGNATURE,
        )
