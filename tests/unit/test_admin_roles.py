"""AdminRoleLookup: role flags and the optional admin email pin."""

import pytest

from gatekeeper.application.dtos.auth import Principal
from gatekeeper.application.services.admin_roles import AdminRoleLookup
from gatekeeper.core.constants import COLLECTION_USERS


@pytest.mark.parametrize(
    ("profile", "expected"),
    [
        ({"role": "admin"}, True),
        ({"isAdmin": True}, True),
        ({"role": "user"}, False),
        ({"isAdmin": "true"}, False),
        (None, False),
    ],
)
async def test_admin_flags(store, profile, expected) -> None:
    if profile is not None:
        store.put(COLLECTION_USERS, "u1", profile)
    lookup = AdminRoleLookup(store)
    assert await lookup.is_admin(Principal("u1", email="u1@example.com")) is expected


async def test_admin_email_must_match_when_configured(store) -> None:
    store.put(COLLECTION_USERS, "u1", {"role": "admin"})
    lookup = AdminRoleLookup(store, admin_email=" Ops@Example.com ")

    assert await lookup.is_admin(Principal("u1", email="ops@example.com"))
    assert not await lookup.is_admin(Principal("u1", email="u1@example.com"))
    assert not await lookup.is_admin(Principal("u1"))
