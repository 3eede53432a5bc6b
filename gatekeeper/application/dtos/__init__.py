"""DTOs for application services (no dependency on HTTP or the store)."""

from gatekeeper.application.dtos.auth import (
    Principal,
    RequestContext,
    TokenValidationResult,
    VerifiedToken,
)
from gatekeeper.application.dtos.rate_limit import RateLimitDecision, RateLimitPolicy
from gatekeeper.application.dtos.session import SessionIssue, SessionValidation
from gatekeeper.application.dtos.usage import UsageDecision, WebhookReceipt

__all__ = [
    "Principal",
    "RateLimitDecision",
    "RateLimitPolicy",
    "RequestContext",
    "SessionIssue",
    "SessionValidation",
    "TokenValidationResult",
    "UsageDecision",
    "VerifiedToken",
    "WebhookReceipt",
]
