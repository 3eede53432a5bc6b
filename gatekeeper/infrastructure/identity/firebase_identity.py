"""Firebase ID token verification (google-auth + Identity Toolkit REST, no firebase-admin).

Signature, issuer, audience and expiry are checked by
google.oauth2.id_token.verify_firebase_token against Google's public
certificates. Revocation is checked through accounts:lookup with the same
service account used for Firestore: a token issued before the account's
validSince, or for a disabled account, is revoked.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx
from google.auth import exceptions as google_auth_exceptions
from google.auth.transport.requests import Request
from google.oauth2 import id_token

from gatekeeper.application.dtos.auth import VerifiedToken
from gatekeeper.domain.exceptions import IdentityProviderError
from gatekeeper.shared.utils import from_timestamp_utc, sha256_hex

logger = logging.getLogger(__name__)

_IDENTITY_TOOLKIT = "https://identitytoolkit.googleapis.com/v1"
IDENTITY_SCOPE = "https://www.googleapis.com/auth/cloud-platform"


def _get_access_token(credentials) -> str:
    if not credentials.valid:
        credentials.refresh(Request())
    return credentials.token


def _classify_verification_error(exc: Exception) -> IdentityProviderError:
    """Map google-auth verification failures to expired / invalid / unavailable."""
    if isinstance(exc, google_auth_exceptions.TransportError):
        return IdentityProviderError("unavailable", f"Certificate fetch failed: {exc}")
    message = str(exc).lower()
    if "expired" in message:
        return IdentityProviderError("expired", "Token expired")
    return IdentityProviderError("invalid", f"Token rejected: {type(exc).__name__}")


class FirebaseIdentityProvider:
    """Identity provider adapter for Firebase Authentication ID tokens."""

    def __init__(
        self,
        project_id: str,
        *,
        credentials=None,
        check_revoked: bool = True,
        clock_skew_seconds: int = 10,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the adapter.

        Args:
            project_id: Firebase project id; the required token audience.
            credentials: Service account credentials for the revocation lookup.
            check_revoked: Whether to call accounts:lookup after verification.
            clock_skew_seconds: Allowed clock skew for iat/exp checks.
            http_client: Optional shared httpx client.
        """
        if check_revoked and credentials is None:
            raise ValueError("credentials are required when check_revoked is True")
        self._project_id = project_id
        self._credentials = credentials
        self._check_revoked = check_revoked
        self._clock_skew_seconds = clock_skew_seconds
        self._request = Request()
        self._http = http_client if http_client is not None else httpx.AsyncClient(timeout=10.0)
        self._owns_http = http_client is None

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    def _verify_sync(self, token: str) -> dict[str, Any]:
        return id_token.verify_firebase_token(
            token,
            self._request,
            audience=self._project_id,
            clock_skew_in_seconds=self._clock_skew_seconds,
        )

    async def verify_id_token(self, token: str) -> VerifiedToken:
        """Verify token and return its claims.

        Raises:
            IdentityProviderError: kind expired, revoked, invalid or unavailable.
        """
        try:
            claims = await asyncio.to_thread(self._verify_sync, token)
        except (ValueError, google_auth_exceptions.GoogleAuthError) as e:
            raise _classify_verification_error(e) from e
        if not claims or not claims.get("sub"):
            raise IdentityProviderError("invalid", "Token has no subject")
        if self._check_revoked:
            await self._ensure_not_revoked(claims)
        return self._to_verified(token, claims)

    async def _ensure_not_revoked(self, claims: dict[str, Any]) -> None:
        try:
            access_token = await asyncio.to_thread(_get_access_token, self._credentials)
            resp = await self._http.post(
                f"{_IDENTITY_TOOLKIT}/projects/{self._project_id}/accounts:lookup",
                headers={"Authorization": f"Bearer {access_token}"},
                json={"localId": [claims["sub"]]},
            )
            resp.raise_for_status()
            payload = resp.json()
        except (httpx.HTTPError, google_auth_exceptions.GoogleAuthError, ValueError) as e:
            logger.error("Revocation lookup failed: %s", type(e).__name__)
            raise IdentityProviderError("unavailable", "Revocation lookup failed") from e
        users = payload.get("users") or []
        if not users:
            raise IdentityProviderError("invalid", "Account not found")
        account = users[0]
        if account.get("disabled"):
            raise IdentityProviderError("revoked", "Account disabled")
        valid_since = int(account.get("validSince") or 0)
        if valid_since and int(claims.get("iat", 0)) < valid_since:
            raise IdentityProviderError("revoked", "Token issued before revocation")

    @staticmethod
    def _to_verified(token: str, claims: dict[str, Any]) -> VerifiedToken:
        aud = claims.get("aud")
        audience = aud[0] if isinstance(aud, list) and aud else str(aud or "")
        issued_at = from_timestamp_utc(int(claims.get("iat", 0)))
        auth_time = claims.get("auth_time")
        return VerifiedToken(
            principal_id=claims["sub"],
            email=claims.get("email"),
            email_verified=bool(claims.get("email_verified", False)),
            audience=audience,
            auth_time=from_timestamp_utc(int(auth_time)) if auth_time is not None else issued_at,
            issued_at=issued_at,
            token_id=claims.get("jti") or sha256_hex(token),
            expires_at=from_timestamp_utc(int(claims["exp"])) if claims.get("exp") else None,
            claims={
                k: v
                for k, v in claims.items()
                if k in ("role", "admin", "isAdmin", "firebase", "name")
            },
        )
