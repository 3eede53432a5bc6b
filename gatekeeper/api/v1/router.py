"""API v1 router aggregation.

Includes all endpoint modules with consistent prefix and tags. Gated
routes use require_gate from gatekeeper.api.v1.dependencies.
"""

from fastapi import APIRouter

from gatekeeper.api.v1.endpoints import admin, auth, health, maintenance, user, webhooks

api_router = APIRouter()

api_router.include_router(health.router, prefix="/health", tags=["health"])
api_router.include_router(auth.router, prefix="/auth", tags=["auth"])
api_router.include_router(user.router, prefix="/user", tags=["user"])
api_router.include_router(admin.router, prefix="/admin", tags=["admin"])
api_router.include_router(webhooks.router, prefix="/webhooks", tags=["webhooks"])
api_router.include_router(maintenance.router, prefix="/maintenance", tags=["maintenance"])
