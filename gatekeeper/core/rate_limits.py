"""Rate-limit policy table.

One policy per bucket scope. Values come from settings so deployments can
tune them without code changes; the defaults are:

- general: 60 requests / minute per source IP
- auth (auth-failure scope): 5 / minute, 15 minute lockout after 10 failures / hour
- payment: 5 / 5 minutes
- webhook: 100 / minute per source
- registration: 5 / hour
"""

from gatekeeper.application.dtos.rate_limit import RateLimitPolicy
from gatekeeper.core.config import Settings
from gatekeeper.domain.enums import RateLimitScope

_MINUTE_MS = 60_000
_HOUR_MS = 60 * _MINUTE_MS


def build_policies(settings: Settings) -> dict[RateLimitScope, RateLimitPolicy]:
    """Return the policy for every scope, built from settings."""
    return {
        RateLimitScope.GENERAL: RateLimitPolicy(
            max_requests=settings.rate_limit_general_per_minute,
            window_ms=_MINUTE_MS,
        ),
        RateLimitScope.AUTH_FAILURE: RateLimitPolicy(
            max_requests=settings.rate_limit_auth_per_minute,
            window_ms=_MINUTE_MS,
            max_failures=settings.rate_limit_auth_max_failures,
            failure_window_ms=settings.rate_limit_auth_failure_window_seconds * 1000,
            lockout_ms=settings.rate_limit_auth_lockout_seconds * 1000,
        ),
        RateLimitScope.PAYMENT: RateLimitPolicy(
            max_requests=settings.rate_limit_payment_per_window,
            window_ms=settings.rate_limit_payment_window_seconds * 1000,
        ),
        RateLimitScope.WEBHOOK: RateLimitPolicy(
            max_requests=settings.rate_limit_webhook_per_minute,
            window_ms=_MINUTE_MS,
        ),
        RateLimitScope.REGISTRATION: RateLimitPolicy(
            max_requests=settings.rate_limit_registration_per_hour,
            window_ms=_HOUR_MS,
        ),
    }
