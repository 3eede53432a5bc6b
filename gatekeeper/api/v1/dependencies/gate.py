"""Policy gate as a FastAPI dependency.

Routes declare their requirements once:

    authorized: AuthorizedContext = Depends(require_gate(GateRequirements(...)))

A denied request never reaches the route: the gate's response is carried
out by GateShortCircuit and returned by its exception handler.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Annotated

from fastapi import Depends, Request
from starlette.responses import Response

from gatekeeper.api.v1.dependencies.services import get_policy_gate
from gatekeeper.core.policy_gate import (
    AuthorizedContext,
    GateRequirements,
    GateShortCircuit,
    PolicyGate,
)
from gatekeeper.shared.request_context import build_request_context


def require_gate(
    requirements: GateRequirements,
) -> Callable[..., Awaitable[AuthorizedContext]]:
    """Build a dependency that runs the gate with fixed requirements."""

    async def dependency(
        request: Request,
        gate: Annotated[PolicyGate, Depends(get_policy_gate)],
    ) -> AuthorizedContext:
        result = await gate.evaluate(build_request_context(request), requirements)
        if isinstance(result, Response):
            raise GateShortCircuit(result)
        return result

    return dependency
