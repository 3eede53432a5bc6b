"""Policy gate over HTTP: method guard, lockout, CSRF, admin and usage requirements."""

import pytest

from gatekeeper.application.services.rate_limiter import bucket_key
from gatekeeper.core.constants import (
    COLLECTION_RATE_LIMITS,
    COLLECTION_SECURITY_INCIDENTS,
    COLLECTION_SESSIONS,
    COLLECTION_USERS,
)
from gatekeeper.domain.enums import RateLimitScope
from gatekeeper.shared.utils import to_epoch_ms

AUTH = "/api/v1/auth"
STATUS = "/api/v1/user/status"
USAGE = "/api/v1/user/usage"


def _bearer(token: str, **extra: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}", **extra}


async def test_method_guard_lists_allowed_methods(client) -> None:
    response = await client.get(AUTH, headers={"Origin": "https://www.example.com"})

    assert response.status_code == 405
    assert response.json() == {
        "error": "Method not allowed",
        "code": "METHOD_NOT_ALLOWED",
        "allowed": ["POST"],
    }
    assert response.headers["access-control-allow-origin"] == "https://www.example.com"


async def test_preflight_returns_empty_200_with_cors(client) -> None:
    response = await client.options(AUTH, headers={"Origin": "https://a.example.com"})

    assert response.status_code == 200
    assert response.content == b""
    assert response.headers["access-control-allow-origin"] == "https://a.example.com"
    assert response.headers["access-control-allow-methods"] == "OPTIONS, POST"
    assert response.headers["access-control-allow-credentials"] == "true"
    assert "x-csrf-token" in response.headers["access-control-allow-headers"].lower()


async def test_unknown_origin_gets_first_allowed_origin(client) -> None:
    response = await client.options(STATUS, headers={"Origin": "https://evil.example.net"})
    assert response.headers["access-control-allow-origin"] == "https://www.example.com"
    assert "'unsafe-inline'" not in response.headers["content-security-policy"]


@pytest.mark.slow
async def test_auth_failures_lock_out_the_ip(client, identity_provider, clock, store) -> None:
    """Ten bad tokens in an hour lock the IP for 15 minutes, even for a valid token."""
    ip = "198.51.100.7"
    for i in range(10):
        if i:
            clock.advance(15)
        response = await client.get(STATUS, headers=_bearer("not-a-jwt", **{"X-Forwarded-For": ip}))
        assert response.status_code == 401
        assert response.json()["code"] == "INVALID_TOKEN_FORMAT"

    clock.advance(1)
    locked = await client.get(
        STATUS, headers=_bearer(identity_provider.mint("u1"), **{"X-Forwarded-For": ip})
    )
    assert locked.status_code == 429
    assert locked.json()["code"] == "IP_LOCKED"
    assert 895 <= int(locked.headers["retry-after"]) <= 900
    assert locked.json()["retryAfter"] == int(locked.headers["retry-after"])

    other_ip = await client.get(
        STATUS, headers=_bearer(identity_provider.mint("u2"), **{"X-Forwarded-For": "192.0.2.1"})
    )
    assert other_ip.status_code == 200

    clock.advance(900)
    unlocked = await client.get(
        STATUS, headers=_bearer(identity_provider.mint("u1"), **{"X-Forwarded-For": ip})
    )
    assert unlocked.status_code == 200, unlocked.text
    bucket = store.documents(COLLECTION_RATE_LIMITS)[bucket_key(RateLimitScope.AUTH_FAILURE, ip)]
    assert bucket["failures"] == []
    assert "IP_LOCKOUT" in [i["type"] for i in store.documents(COLLECTION_SECURITY_INCIDENTS).values()]


async def test_bearer_status_issues_session(client, identity_provider, set_cookies) -> None:
    response = await client.get(STATUS, headers=_bearer(identity_provider.mint("u1")))

    assert response.status_code == 200
    body = response.json()
    assert body["sessionIssued"] is True
    assert body["user"]["uid"] == "u1"
    cookies = set_cookies(response)
    assert body["session"]["sessionId"]
    assert cookies["session"][0].startswith("sess_")


async def test_bearer_with_foreign_session_is_user_id_mismatch(client, identity_provider, login) -> None:
    handle, _ = await login("u2")

    response = await client.get(
        STATUS, headers=_bearer(identity_provider.mint("u1"), Cookie=f"session={handle}")
    )

    assert response.status_code == 401
    assert response.json()["code"] == "USER_ID_MISMATCH"


async def test_missing_credentials(client) -> None:
    response = await client.get(STATUS)
    assert response.status_code == 401
    assert response.json()["code"] == "NO_AUTH_COOKIE"


async def test_cookie_session_needs_csrf_on_state_changing_methods(client, login) -> None:
    handle, csrf = await login("u1")
    cookie = f"session={handle}; csrf={csrf}"

    async def call(method: str, headers: dict[str, str]):
        return await client.request(method, STATUS, headers=headers)

    read = await call("GET", {"Cookie": cookie})
    no_header = await call("POST", {"Cookie": cookie})
    wrong_header = await call("POST", {"Cookie": cookie, "X-CSRF-Token": "a" * 64})
    forged_pair = await call(
        "POST", {"Cookie": f"session={handle}; csrf={'b' * 64}", "X-CSRF-Token": "b" * 64}
    )
    good = await call("POST", {"Cookie": cookie, "X-CSRF-Token": csrf})

    assert read.status_code == 200
    for denied in (no_header, wrong_header, forged_pair):
        assert denied.status_code == 403
        assert denied.json()["code"] == "CSRF_TOKEN_MISMATCH"
    assert good.status_code == 200


async def test_header_session_skips_csrf(client, login) -> None:
    handle, _ = await login("u1")
    response = await client.post(STATUS, headers={"X-Session-Token": handle})
    assert response.status_code == 200


async def test_session_traffic_is_not_held_to_the_auth_window(client, login, clock, store) -> None:
    """A logged-in client polling every second stays under the general limit only."""
    handle, _ = await login("u1")

    statuses = []
    for _ in range(12):
        clock.advance(1)
        response = await client.get(STATUS, headers={"X-Session-Token": handle})
        statuses.append(response.status_code)

    assert statuses == [200] * 12
    incidents = store.documents(COLLECTION_SECURITY_INCIDENTS).values()
    assert "RATE_LIMIT_EXCEEDED" not in [i["type"] for i in incidents]
    # Only the login exchange counted against the auth window.
    key = bucket_key(RateLimitScope.AUTH_FAILURE, "127.0.0.1")
    auth_bucket = store.documents(COLLECTION_RATE_LIMITS)[key]
    assert len(auth_bucket["window"]) == 1


async def test_session_traffic_respects_an_active_lockout(client, login, clock, store) -> None:
    handle, _ = await login("u1")
    store.put(
        COLLECTION_RATE_LIMITS,
        bucket_key(RateLimitScope.AUTH_FAILURE, "127.0.0.1"),
        {"window": [], "failures": [], "lockedUntil": to_epoch_ms(clock()) + 60_000},
    )

    locked = await client.get(STATUS, headers={"X-Session-Token": handle})
    assert locked.status_code == 429
    assert locked.json()["code"] == "IP_LOCKED"
    assert locked.headers["retry-after"] == "60"

    clock.advance(61)
    response = await client.get(STATUS, headers={"X-Session-Token": handle})
    assert response.status_code == 200


async def test_hijacked_session_is_revoked(client, login, store) -> None:
    handle, _ = await login("u1", **{"X-Forwarded-For": "203.0.113.1"})

    response = await client.get(
        STATUS, headers={"Cookie": f"session={handle}", "X-Forwarded-For": "203.0.113.9"}
    )

    assert response.status_code == 401
    assert response.json()["code"] == "SESSION_VALIDATION_FAILED"
    session = next(iter(store.documents(COLLECTION_SESSIONS).values()))
    assert session["isActive"] is False
    incidents = [
        i for i in store.documents(COLLECTION_SECURITY_INCIDENTS).values()
        if i["type"] == "SESSION_HIJACK_SUSPECTED"
    ]
    assert incidents[0]["evidence"]["indicators"] == ["IP_ADDRESS_MISMATCH"]


async def test_admin_revokes_principal_sessions(client, identity_provider, login, store) -> None:
    store.put(COLLECTION_USERS, "boss", {"role": "admin"})
    await login("u2")
    await login("u2")

    response = await client.post(
        "/api/v1/admin/principals/u2/sessions/revoke",
        headers=_bearer(identity_provider.mint("boss")),
    )

    assert response.status_code == 200, response.text
    assert response.json() == {"success": True, "principalId": "u2", "revokedSessions": 2}
    reasons = {s["invalidationReason"] for s in store.documents(COLLECTION_SESSIONS).values()}
    assert reasons == {"ADMIN_REVOKED"}


async def test_non_admin_cannot_revoke(client, identity_provider, store) -> None:
    store.put(COLLECTION_USERS, "u1", {"role": "user"})

    response = await client.post(
        "/api/v1/admin/principals/u2/sessions/revoke",
        headers=_bearer(identity_provider.mint("u1")),
    )

    assert response.status_code == 403
    assert response.json()["code"] == "INSUFFICIENT_PRIVILEGES"
    types = [i["type"] for i in store.documents(COLLECTION_SECURITY_INCIDENTS).values()]
    assert "PRIVILEGE_ESCALATION_ATTEMPT" in types


async def test_usage_is_metered_per_request(client, identity_provider, store) -> None:
    store.put(COLLECTION_USERS, "u1", {"subscriptionType": "free"})

    responses = [
        await client.post(USAGE, headers=_bearer(identity_provider.mint("u1"))) for _ in range(4)
    ]

    assert [r.status_code for r in responses] == [200, 200, 200, 403]
    assert responses[0].json() == {
        "success": True,
        "usage": {"subscriptionType": "free", "used": 1, "limit": 3, "remaining": 2},
    }
    assert responses[3].json()["code"] == "USAGE_LIMIT_EXCEEDED"
    assert responses[3].json()["usage"]["remaining"] == 0


async def test_usage_without_profile(client, identity_provider) -> None:
    response = await client.post(USAGE, headers=_bearer(identity_provider.mint("ghost")))
    assert response.status_code == 403
    assert response.json()["code"] == "USER_NOT_FOUND"


async def test_store_outage_fails_closed(client, identity_provider, store) -> None:
    store.unavailable = True
    response = await client.get(STATUS, headers=_bearer(identity_provider.mint("u1")))
    assert response.status_code == 500
    assert response.json() == {
        "error": "Service temporarily unavailable",
        "code": "SYSTEM_UNAVAILABLE",
    }


async def test_identity_provider_outage_does_not_count_toward_lockout(
    client, identity_provider, store
) -> None:
    identity_provider.outage = True
    response = await client.get(STATUS, headers=_bearer(identity_provider.mint("u1")))

    assert response.status_code == 500
    assert response.json()["code"] == "SYSTEM_UNAVAILABLE"
    bucket = store.documents(COLLECTION_RATE_LIMITS)[
        bucket_key(RateLimitScope.AUTH_FAILURE, "127.0.0.1")
    ]
    assert bucket.get("failures", []) == []
