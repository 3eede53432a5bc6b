"""DTOs for the distributed rate limiter."""

from dataclasses import dataclass

from gatekeeper.domain.enums import ErrorCode


@dataclass(frozen=True)
class RateLimitPolicy:
    """Sliding-window policy with optional failure lockout (all durations in ms)."""

    max_requests: int
    window_ms: int
    max_failures: int | None = None
    failure_window_ms: int | None = None
    lockout_ms: int | None = None

    def __post_init__(self) -> None:
        if self.max_requests < 1 or self.window_ms < 1:
            raise ValueError("max_requests and window_ms must be positive")

    @property
    def has_lockout(self) -> bool:
        return bool(self.max_failures and self.failure_window_ms and self.lockout_ms)

    @property
    def retention_ms(self) -> int:
        """How long a bucket stays meaningful after its last update."""
        return max(self.window_ms, self.failure_window_ms or 0, self.lockout_ms or 0)


@dataclass(frozen=True)
class RateLimitDecision:
    """Result of a rate-limit check. Times are epoch milliseconds."""

    allowed: bool
    limit: int
    remaining: int
    retry_after_ms: int = 0
    reset_at_ms: int | None = None
    error_code: ErrorCode | None = None

    @property
    def retry_after_seconds(self) -> int:
        """Retry-After header value (ceil of ms, at least 1 when denied)."""
        if self.allowed:
            return 0
        return max(1, -(-self.retry_after_ms // 1000))
