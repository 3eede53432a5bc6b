"""Application services: audit log, rate limiter, token validator, sessions,
admin roles, usage counter, webhook guard, TTL sweeper."""

from gatekeeper.application.services.admin_roles import AdminRoleLookup
from gatekeeper.application.services.audit_log import AuditLog
from gatekeeper.application.services.rate_limiter import DistributedRateLimiter
from gatekeeper.application.services.session_manager import SessionConfig, SessionManager
from gatekeeper.application.services.subscription_usage import UsageCounter
from gatekeeper.application.services.token_validator import TokenValidator, TokenValidatorConfig
from gatekeeper.application.services.ttl_sweeper import TTLSweeper
from gatekeeper.application.services.webhook_guard import WebhookGuard

__all__ = [
    "AdminRoleLookup",
    "AuditLog",
    "DistributedRateLimiter",
    "SessionConfig",
    "SessionManager",
    "TTLSweeper",
    "TokenValidator",
    "TokenValidatorConfig",
    "UsageCounter",
    "WebhookGuard",
]
