"""Presentation-layer dependency injection (composition root).

Provides FastAPI Depends() for the document store, identity provider,
clock and every core service. Routes depend only on these dependencies,
never on infrastructure directly.
"""

from gatekeeper.api.v1.dependencies.gate import require_gate
from gatekeeper.api.v1.dependencies.infra import get_clock, get_identity_provider, get_store
from gatekeeper.api.v1.dependencies.services import (
    get_admin_roles,
    get_audit_log,
    get_cookie_envelope,
    get_cross_domain_auth,
    get_policy_gate,
    get_rate_limiter,
    get_session_manager,
    get_token_validator,
    get_ttl_sweeper,
    get_usage_counter,
    get_webhook_guard,
)

__all__ = [
    "get_admin_roles",
    "get_audit_log",
    "get_clock",
    "get_cookie_envelope",
    "get_cross_domain_auth",
    "get_identity_provider",
    "get_policy_gate",
    "get_rate_limiter",
    "get_session_manager",
    "get_store",
    "get_token_validator",
    "get_ttl_sweeper",
    "get_usage_counter",
    "get_webhook_guard",
    "require_gate",
]
