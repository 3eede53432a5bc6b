"""Cross-domain auth API: one POST endpoint, dispatched on `action`.

The gate only applies the general rate limit here; each action does its
own authentication (bearer exchange or cookie session) inside the
cross-domain auth use case. The body is read after the gate has admitted
the request, so malformed input is still rate limited and answered with
the envelope headers.
"""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from gatekeeper.api.v1.dependencies import get_cross_domain_auth, require_gate
from gatekeeper.application.use_cases.cross_domain_auth import CrossDomainAuth
from gatekeeper.core.cookie_envelope import CookieEnvelope
from gatekeeper.core.policy_gate import AuthorizedContext, GateRequirements, error_response
from gatekeeper.domain.enums import ErrorCode
from gatekeeper.domain.exceptions import ValidationException
from gatekeeper.schemas.auth import AuthActionRequest

logger = logging.getLogger(__name__)

router = APIRouter()

AUTH_GATE = GateRequirements(methods=("POST",))


@router.api_route("", methods=["POST", "OPTIONS", "GET", "PUT", "PATCH", "DELETE"])
async def auth_action(
    request: Request,
    authorized: Annotated[AuthorizedContext, Depends(require_gate(AUTH_GATE))],
    auth: Annotated[CrossDomainAuth, Depends(get_cross_domain_auth)],
) -> JSONResponse:
    """Run one auth action (authenticate, verify, verify_admin, refresh, logout, logout_all)."""
    try:
        body = AuthActionRequest.model_validate_json(await request.body())
        result = await auth.handle(body.action, authorized.request, body.id_token)
    except (ValidationError, ValidationException) as e:
        logger.info("Rejected auth action: %s", type(e).__name__)
        return authorized.apply(error_response(ErrorCode.VALIDATION_ERROR, authorized.headers))
    response = authorized.respond(result.body, status_code=result.status_code)
    for name, value in result.headers.items():
        response.headers[name] = value
    CookieEnvelope.apply_cookies(response, result.cookies)
    return response
