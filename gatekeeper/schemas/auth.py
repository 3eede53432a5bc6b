"""Auth API schemas."""

from pydantic import BaseModel, ConfigDict, Field


class AuthActionRequest(BaseModel):
    """Request body for POST /auth.

    The action is checked by the cross-domain auth use case so an unknown
    action gets the same VALIDATION_ERROR body as any other bad input.
    """

    model_config = ConfigDict(populate_by_name=True)

    action: str = Field(..., min_length=1, max_length=32, description="Auth action name")
    id_token: str | None = Field(
        default=None,
        alias="idToken",
        max_length=8192,
        description="Identity-provider ID token (authenticate only)",
    )


class SessionSummary(BaseModel):
    sessionId: str
    expiresAt: str | None = None


class UserSummary(BaseModel):
    uid: str
    email: str | None = None
    emailVerified: bool = False


class UserStatusResponse(BaseModel):
    """Response for /user/status."""

    valid: bool = True
    user: UserSummary
    session: SessionSummary | None = None
    sessionIssued: bool = False


class UsageSummary(BaseModel):
    subscriptionType: str
    used: int
    limit: int | None = None
    remaining: int | None = None


class UsageResponse(BaseModel):
    """Response for /user/usage after one unit of usage was consumed."""

    success: bool = True
    usage: UsageSummary


class RevokeSessionsResponse(BaseModel):
    """Response for the admin bulk revoke."""

    success: bool = True
    principalId: str
    revokedSessions: int
