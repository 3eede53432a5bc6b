"""Webhook and maintenance API schemas."""

from pydantic import BaseModel, ConfigDict, Field


class WebhookEvent(BaseModel):
    """Minimal envelope every billing provider delivery must carry."""

    model_config = ConfigDict(extra="allow")

    id: str = Field(..., min_length=1, max_length=255, description="Provider event id")
    type: str = Field(default="unknown", max_length=255, description="Provider event type")


class WebhookReceivedResponse(BaseModel):
    received: bool = True
    duplicate: bool = False


class TTLSweepResponse(BaseModel):
    """Deleted document counts keyed by collection."""

    success: bool = True
    deleted: dict[str, int]
