"""Billing webhooks: signature, per-source rate limit, exactly-once commit.

Webhooks carry no cookies and no bearer tokens, so they bypass the policy
gate; responses get the webhook header set (no CORS credentials).
"""

import json
import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from gatekeeper.api.v1.dependencies import get_cookie_envelope, get_webhook_guard
from gatekeeper.application.services.webhook_guard import WebhookGuard
from gatekeeper.core.config import get_settings
from gatekeeper.core.cookie_envelope import HEADER_KIND_WEBHOOK, CookieEnvelope
from gatekeeper.core.policy_gate import GateShortCircuit, throttled_response
from gatekeeper.domain.exceptions import ValidationException
from gatekeeper.schemas.webhook import WebhookEvent, WebhookReceivedResponse
from gatekeeper.shared.request_context import client_ip

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/{provider}", response_model=WebhookReceivedResponse)
async def receive_webhook(
    provider: str,
    request: Request,
    guard: Annotated[WebhookGuard, Depends(get_webhook_guard)],
    envelope: Annotated[CookieEnvelope, Depends(get_cookie_envelope)],
) -> JSONResponse:
    """Accept one provider delivery; redeliveries answer 200 with duplicate=true."""
    headers = envelope.response_headers(None, ("POST",), HEADER_KIND_WEBHOOK)
    source_ip = client_ip(request)
    body = await request.body()
    lowered = {k.lower(): v for k, v in request.headers.items()}

    await guard.verify(
        provider, lowered, body, get_settings().webhook_secret(provider), source_ip
    )

    decision = await guard.check_webhook_rate_limit(source_ip)
    if not decision.allowed:
        raise GateShortCircuit(throttled_response(decision, headers))

    try:
        event = WebhookEvent.model_validate(json.loads(body))
    except ValueError as e:
        raise ValidationException(f"Malformed {provider} webhook payload: {e}", field="id") from e

    receipt = await guard.commit_once(provider, event.id, event.type, body)
    payload = WebhookReceivedResponse(duplicate=receipt.duplicate)
    return JSONResponse(content=payload.model_dump(), headers=headers)
