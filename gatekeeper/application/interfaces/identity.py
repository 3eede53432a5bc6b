"""Identity provider port."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from gatekeeper.application.dtos.auth import VerifiedToken


class IIdentityProvider(Protocol):
    """Protocol for bearer-token verification by the external identity provider."""

    async def verify_id_token(self, token: str) -> VerifiedToken:
        """Verify signature, expiry and revocation of token.

        Raises IdentityProviderError with kind 'expired', 'revoked',
        'invalid' or 'unavailable'.
        """

    async def aclose(self) -> None:
        """Release connections."""
