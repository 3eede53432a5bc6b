"""Pydantic request/response schemas for the API."""

from gatekeeper.schemas.auth import (
    AuthActionRequest,
    RevokeSessionsResponse,
    UsageResponse,
    UserStatusResponse,
)
from gatekeeper.schemas.health import HealthResponse
from gatekeeper.schemas.webhook import TTLSweepResponse, WebhookEvent, WebhookReceivedResponse

__all__ = [
    "AuthActionRequest",
    "HealthResponse",
    "RevokeSessionsResponse",
    "TTLSweepResponse",
    "UsageResponse",
    "UserStatusResponse",
    "WebhookEvent",
    "WebhookReceivedResponse",
]
