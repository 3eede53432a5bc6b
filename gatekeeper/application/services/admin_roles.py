"""Admin role lookup against the users collection."""

from __future__ import annotations

import logging

from gatekeeper.application.dtos.auth import Principal
from gatekeeper.application.interfaces.store import IDocumentStore
from gatekeeper.core.constants import COLLECTION_USERS

logger = logging.getLogger(__name__)


class AdminRoleLookup:
    """Decides whether a principal holds the admin role.

    A principal is admin when its profile has role 'admin' or isAdmin true;
    when ADMIN_EMAIL is configured the verified email must also match it.
    """

    def __init__(self, store: IDocumentStore, admin_email: str | None = None) -> None:
        self._store = store
        self._admin_email = (admin_email or "").strip().lower() or None

    async def is_admin(self, principal: Principal) -> bool:
        profile = await self._store.read(COLLECTION_USERS, principal.principal_id)
        if profile is None:
            logger.info("Admin check: no profile for principal %s", principal.principal_id)
            return False
        if profile.get("role") != "admin" and profile.get("isAdmin") is not True:
            return False
        if self._admin_email and (principal.email or "").lower() != self._admin_email:
            logger.warning("Admin check: email mismatch for principal %s", principal.principal_id)
            return False
        return True
