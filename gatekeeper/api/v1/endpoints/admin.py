"""Admin endpoints (auth + admin role)."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from gatekeeper.api.v1.dependencies import get_session_manager, require_gate
from gatekeeper.application.services.session_manager import SessionManager
from gatekeeper.core.policy_gate import AuthorizedContext, GateRequirements
from gatekeeper.domain.enums import InvalidationReason
from gatekeeper.schemas.auth import RevokeSessionsResponse

logger = logging.getLogger(__name__)

router = APIRouter()

ADMIN_GATE = GateRequirements(methods=("POST",), require_auth=True, require_admin=True)


@router.api_route(
    "/principals/{principal_id}/sessions/revoke",
    methods=["POST", "OPTIONS", "GET", "PUT", "PATCH", "DELETE"],
    response_model=RevokeSessionsResponse,
)
async def revoke_principal_sessions(
    principal_id: str,
    authorized: Annotated[AuthorizedContext, Depends(require_gate(ADMIN_GATE))],
    sessions: Annotated[SessionManager, Depends(get_session_manager)],
) -> JSONResponse:
    """Revoke every active session of a principal."""
    revoked = await sessions.invalidate_all(principal_id, InvalidationReason.ADMIN_REVOKED)
    logger.info(
        "Admin %s revoked %d session(s) of principal %s",
        authorized.principal_id,
        revoked,
        principal_id,
    )
    payload = RevokeSessionsResponse(principalId=principal_id, revokedSessions=revoked)
    return authorized.respond(payload.model_dump())
