"""DTOs for the subscription usage counter and webhook idempotency."""

from dataclasses import dataclass

from gatekeeper.domain.enums import ErrorCode


@dataclass(frozen=True)
class UsageDecision:
    """Outcome of a usage check-and-increment. max_usage None means unlimited."""

    allowed: bool
    subscription_type: str
    used: int
    max_usage: int | None
    error_code: ErrorCode | None = None

    @property
    def remaining(self) -> int | None:
        if self.max_usage is None:
            return None
        return max(0, self.max_usage - self.used)

    def public_dict(self) -> dict:
        return {
            "subscriptionType": self.subscription_type,
            "used": self.used,
            "limit": self.max_usage,
            "remaining": self.remaining,
        }


@dataclass(frozen=True)
class WebhookReceipt:
    """Result of committing a webhook delivery exactly once."""

    event_key: str
    duplicate: bool
