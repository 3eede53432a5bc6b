"""Per-user endpoints behind the policy gate: status and metered usage."""

from typing import Annotated

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from gatekeeper.api.v1.dependencies import require_gate
from gatekeeper.core.policy_gate import AuthorizedContext, GateRequirements
from gatekeeper.schemas.auth import UsageResponse, UserStatusResponse

router = APIRouter()

STATUS_GATE = GateRequirements(methods=("GET", "POST"), require_auth=True, require_session=True)
USAGE_GATE = GateRequirements(methods=("POST",), require_auth=True, require_subscription=True)

_ALL_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


@router.api_route("/status", methods=_ALL_METHODS, response_model=UserStatusResponse)
async def user_status(
    authorized: Annotated[AuthorizedContext, Depends(require_gate(STATUS_GATE))],
) -> JSONResponse:
    """Return the authenticated user and the session bound to this request.

    A bearer-authenticated call without a session cookie gets a new session
    and its cookies on this response.
    """
    session = authorized.session
    payload = UserStatusResponse(
        user=authorized.principal.public_dict(),
        session={
            "sessionId": session.session_id,
            "expiresAt": session.expires_at.isoformat() if session.expires_at else None,
        },
        sessionIssued=authorized.session_issue is not None,
    )
    return authorized.respond(payload.model_dump())


@router.api_route("/usage", methods=_ALL_METHODS, response_model=UsageResponse)
async def consume_usage(
    authorized: Annotated[AuthorizedContext, Depends(require_gate(USAGE_GATE))],
) -> JSONResponse:
    """Consume one unit of the caller's subscription allowance."""
    payload = UsageResponse(usage=authorized.usage.public_dict())
    return authorized.respond(payload.model_dump())
