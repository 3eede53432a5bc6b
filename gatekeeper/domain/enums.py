"""Domain enumerations for the authorization core.

Enums represent fixed sets of domain values: stable error codes, risk and
severity levels, session lifecycle states and rate-limit scopes. Values are
what gets persisted and what clients see, so they must never be renamed.
"""

from enum import Enum


class _ValuesMixin:
    """Mixin that adds a values() classmethod to str Enums."""

    @classmethod
    def values(cls) -> list[str]:
        """Return all valid values as strings."""
        return [member.value for member in cls]


class ErrorCode(_ValuesMixin, str, Enum):
    """Stable error codes surfaced to clients as the `code` field."""

    # Bearer token
    INVALID_TOKEN_FORMAT = "INVALID_TOKEN_FORMAT"
    INVALID_TOKEN = "INVALID_TOKEN"
    TOKEN_EXPIRED = "TOKEN_EXPIRED"
    TOKEN_REVOKED = "TOKEN_REVOKED"
    TOKEN_REPLAY = "TOKEN_REPLAY"
    EMAIL_NOT_VERIFIED = "EMAIL_NOT_VERIFIED"
    SESSION_TOO_OLD = "SESSION_TOO_OLD"
    # Cookie envelope
    NO_AUTH_COOKIE = "NO_AUTH_COOKIE"
    INVALID_AUTH_TOKEN = "INVALID_AUTH_TOKEN"
    TOKEN_NEAR_EXPIRY = "TOKEN_NEAR_EXPIRY"
    CROSS_DOMAIN_SESSION_EXPIRED = "CROSS_DOMAIN_SESSION_EXPIRED"
    CSRF_TOKEN_MISMATCH = "CSRF_TOKEN_MISMATCH"
    # Sessions
    SESSION_NOT_FOUND = "SESSION_NOT_FOUND"
    SESSION_EXPIRED = "SESSION_EXPIRED"
    SESSION_VALIDATION_FAILED = "SESSION_VALIDATION_FAILED"
    CONCURRENT_SESSION_LIMIT_EXCEEDED = "CONCURRENT_SESSION_LIMIT_EXCEEDED"
    # Throttling and concurrency
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    IP_LOCKED = "IP_LOCKED"
    CONCURRENT_VALIDATION_DETECTED = "CONCURRENT_VALIDATION_DETECTED"
    TRANSACTION_CONFLICT = "TRANSACTION_CONFLICT"
    # Authorization
    INSUFFICIENT_PRIVILEGES = "INSUFFICIENT_PRIVILEGES"
    USER_ID_MISMATCH = "USER_ID_MISMATCH"
    USER_NOT_FOUND = "USER_NOT_FOUND"
    USAGE_LIMIT_EXCEEDED = "USAGE_LIMIT_EXCEEDED"
    SUBSCRIPTION_INACTIVE = "SUBSCRIPTION_INACTIVE"
    # Request shape
    METHOD_NOT_ALLOWED = "METHOD_NOT_ALLOWED"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_SIGNATURE = "INVALID_SIGNATURE"
    MAINTENANCE_FORBIDDEN = "MAINTENANCE_FORBIDDEN"
    # System
    SYSTEM_UNAVAILABLE = "SYSTEM_UNAVAILABLE"


class RiskLevel(_ValuesMixin, str, Enum):
    """Risk assessed for a token validation or session check."""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"

    @property
    def rank(self) -> int:
        return _RISK_RANK[self]

    @classmethod
    def highest(cls, levels: "list[RiskLevel]") -> "RiskLevel":
        """Return the most severe level in levels (LOW when empty)."""
        return max(levels, key=lambda level: level.rank, default=cls.LOW)


_RISK_RANK = {RiskLevel.LOW: 0, RiskLevel.MEDIUM: 1, RiskLevel.HIGH: 2}


class AuditSeverity(_ValuesMixin, str, Enum):
    """Severity of an audit log entry."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARN = "WARN"


class IncidentSeverity(_ValuesMixin, str, Enum):
    """Severity of a security incident."""

    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class AuditEventType(_ValuesMixin, str, Enum):
    """Event types written to the audit log."""

    TOKEN_VALIDATED = "TOKEN_VALIDATED"
    SESSION_CREATED = "SESSION_CREATED"
    SESSION_ROTATED = "SESSION_ROTATED"
    SESSION_INVALIDATED = "SESSION_INVALIDATED"
    BULK_SESSION_INVALIDATION = "BULK_SESSION_INVALIDATION"
    AUTHORIZATION_GRANTED = "AUTHORIZATION_GRANTED"
    AUTHORIZATION_DENIED = "AUTHORIZATION_DENIED"
    USAGE_CONSUMED = "USAGE_CONSUMED"
    WEBHOOK_ACCEPTED = "WEBHOOK_ACCEPTED"
    TTL_SWEEP = "TTL_SWEEP"


class IncidentType(_ValuesMixin, str, Enum):
    """Security incident types."""

    TOKEN_REPLAY_ATTEMPT = "TOKEN_REPLAY_ATTEMPT"
    CONCURRENT_VALIDATION = "CONCURRENT_VALIDATION"
    SESSION_HIJACK_SUSPECTED = "SESSION_HIJACK_SUSPECTED"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    IP_LOCKOUT = "IP_LOCKOUT"
    PRIVILEGE_ESCALATION_ATTEMPT = "PRIVILEGE_ESCALATION_ATTEMPT"
    INVALID_WEBHOOK_SIGNATURE = "INVALID_WEBHOOK_SIGNATURE"
    SYSTEM_ERROR = "SYSTEM_ERROR"


class SessionState(_ValuesMixin, str, Enum):
    """Session lifecycle. Terminal states never transition back."""

    CREATED = "CREATED"
    ACTIVE = "ACTIVE"
    EXPIRED = "EXPIRED"
    REVOKED = "REVOKED"
    BULK_REVOKED = "BULK_REVOKED"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionState.EXPIRED, SessionState.REVOKED, SessionState.BULK_REVOKED)


class ConcurrentSessionPolicy(_ValuesMixin, str, Enum):
    """What to do when a principal is at the concurrent-session cap."""

    STRICT = "STRICT"
    ROLLING = "ROLLING"


class RateLimitScope(_ValuesMixin, str, Enum):
    """Rate-limit bucket scopes."""

    GENERAL = "general"
    PAYMENT = "payment"
    WEBHOOK = "webhook"
    REGISTRATION = "registration"
    AUTH_FAILURE = "auth-failure"


class SecurityIndicator(_ValuesMixin, str, Enum):
    """Findings produced by session security checks."""

    IP_ADDRESS_MISMATCH = "IP_ADDRESS_MISMATCH"
    USER_AGENT_MISMATCH = "USER_AGENT_MISMATCH"
    SESSION_EXCEEDED_MAX_AGE = "SESSION_EXCEEDED_MAX_AGE"
    EXTENDED_INACTIVITY = "EXTENDED_INACTIVITY"


class InvalidationReason(_ValuesMixin, str, Enum):
    """Why a session stopped being active."""

    EXPIRED = "EXPIRED"
    LOGOUT = "LOGOUT"
    LOGOUT_ALL = "LOGOUT_ALL"
    ROTATED = "ROTATED"
    SECURITY_VIOLATION = "SECURITY_VIOLATION"
    CONCURRENT_SESSION_EVICTED = "CONCURRENT_SESSION_EVICTED"
    ADMIN_REVOKED = "ADMIN_REVOKED"


class SubscriptionType(_ValuesMixin, str, Enum):
    """Subscription tiers known to the usage counter."""

    FREE = "free"
    BASIC = "basic"
    PRO = "pro"
    ENTERPRISE = "enterprise"
