"""Maintenance trigger for the external scheduler (TTL sweep)."""

from typing import Annotated

from fastapi import APIRouter, Depends, Header

from gatekeeper.api.v1.dependencies import get_ttl_sweeper
from gatekeeper.application.services.ttl_sweeper import TTLSweeper
from gatekeeper.core.config import get_settings
from gatekeeper.domain.exceptions import MaintenanceForbiddenException
from gatekeeper.schemas.webhook import TTLSweepResponse
from gatekeeper.shared.utils import constant_time_equals

router = APIRouter()


def require_maintenance_secret(
    x_maintenance_secret: Annotated[str | None, Header()] = None,
) -> None:
    """Reject unless X-Maintenance-Secret matches MAINTENANCE_SECRET (unset: always reject)."""
    configured = get_settings().maintenance_secret
    expected = configured.get_secret_value() if configured else ""
    if not expected or not constant_time_equals(x_maintenance_secret, expected):
        raise MaintenanceForbiddenException()


@router.post(
    "/ttl-sweep",
    response_model=TTLSweepResponse,
    dependencies=[Depends(require_maintenance_secret)],
)
async def run_ttl_sweep(
    sweeper: Annotated[TTLSweeper, Depends(get_ttl_sweeper)],
) -> TTLSweepResponse:
    """Delete expired documents in every TTL collection."""
    return TTLSweepResponse(deleted=await sweeper.sweep())
