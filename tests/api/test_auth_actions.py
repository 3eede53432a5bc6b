"""POST /api/v1/auth: authenticate, verify, refresh, logout across sibling origins."""

from gatekeeper.application.services.rate_limiter import bucket_key
from gatekeeper.core.config import get_settings
from gatekeeper.core.constants import COLLECTION_RATE_LIMITS, COLLECTION_SESSIONS
from gatekeeper.domain.enums import RateLimitScope

AUTH = "/api/v1/auth"
STATUS = "/api/v1/user/status"


async def test_authenticate_sets_parent_domain_cookies(client, identity_provider, set_cookies) -> None:
    token = identity_provider.mint("u1", email="u1@example.com")

    response = await client.post(AUTH, json={"action": "authenticate", "idToken": token})

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["user"] == {"uid": "u1", "email": "u1@example.com", "emailVerified": True}
    cookies = set_cookies(response)
    session_value, session_attrs = cookies["session"]
    csrf_value, csrf_attrs = cookies["csrf"]
    assert session_value.startswith("sess_")
    assert csrf_value == body["csrfToken"]
    for attrs in (session_attrs, csrf_attrs):
        lowered = [a.lower() for a in attrs]
        assert "domain=.example.com" in lowered
        assert "secure" in lowered
    assert "httponly" in [a.lower() for a in session_attrs]
    assert "httponly" not in [a.lower() for a in csrf_attrs]
    assert "samesite=strict" in [a.lower() for a in csrf_attrs]


async def test_session_works_from_sibling_origin_and_tamper_fails(
    client, login, session_headers
) -> None:
    """Cookies issued via www are accepted from a.example.com; a flipped byte is rejected."""
    handle, csrf = await login("u1", Origin="https://www.example.com")

    response = await client.post(
        STATUS, headers=session_headers(handle, csrf, origin="https://a.example.com")
    )

    assert response.status_code == 200, response.text
    assert response.json()["user"]["uid"] == "u1"
    assert response.headers["access-control-allow-origin"] == "https://a.example.com"
    assert response.headers["access-control-allow-credentials"] == "true"

    tampered = handle[:-1] + ("0" if handle[-1] != "0" else "1")
    rejected = await client.post(
        STATUS, headers=session_headers(tampered, csrf, origin="https://a.example.com")
    )
    assert rejected.status_code == 401
    assert rejected.json()["code"] == "INVALID_AUTH_TOKEN"
    assert rejected.json()["requireReauth"] is True


async def test_replayed_id_token_is_rejected(client, identity_provider) -> None:
    token = identity_provider.mint("u1")
    first = await client.post(AUTH, json={"action": "authenticate", "idToken": token})
    second = await client.post(AUTH, json={"action": "authenticate", "idToken": token})

    assert first.status_code == 200
    assert second.status_code == 401
    assert second.json() == {"error": "Authentication token already used", "code": "TOKEN_REPLAY"}


async def test_verify_returns_user_and_session(client, login) -> None:
    handle, _ = await login("u1")

    response = await client.post(AUTH, json={"action": "verify"}, headers={"Cookie": f"session={handle}"})

    assert response.status_code == 200
    body = response.json()
    assert body["valid"] is True
    assert body["user"]["uid"] == "u1"
    assert body["session"]["expiresAt"]


async def test_verify_without_cookie(client) -> None:
    response = await client.post(AUTH, json={"action": "verify"})
    assert response.status_code == 401
    assert response.json()["code"] == "NO_AUTH_COOKIE"


async def test_verify_rejects_sessions_older_than_cross_domain_limit(client, login, clock, set_cookies) -> None:
    handle, _ = await login("u1")
    clock.advance(12 * 3600 + 1)

    response = await client.post(AUTH, json={"action": "verify"}, headers={"Cookie": f"session={handle}"})

    assert response.status_code == 401
    assert response.json()["code"] == "CROSS_DOMAIN_SESSION_EXPIRED"
    assert set_cookies(response)["session"][0] == ""


async def test_verify_asks_for_refresh_near_expiry(client, login, clock, monkeypatch) -> None:
    monkeypatch.setenv("SESSION_TIMEOUT_SECONDS", "600")
    monkeypatch.setenv("SESSION_ACTIVITY_INTERVAL_SECONDS", "3600")
    get_settings.cache_clear()
    handle, _ = await login("u1")
    cookie = {"Cookie": f"session={handle}"}
    assert (await client.post(AUTH, json={"action": "verify"}, headers=cookie)).status_code == 200

    clock.advance(400)
    response = await client.post(AUTH, json={"action": "verify"}, headers=cookie)

    assert response.status_code == 401
    assert response.json()["code"] == "TOKEN_NEAR_EXPIRY"
    assert response.json()["refreshRequired"] is True


async def test_refresh_rotates_handle(client, login, session_headers, set_cookies) -> None:
    handle, csrf = await login("u1")

    response = await client.post(AUTH, json={"action": "refresh"}, headers=session_headers(handle, csrf))

    assert response.status_code == 200, response.text
    cookies = set_cookies(response)
    new_handle, new_csrf = cookies["session"][0], cookies["csrf"][0]
    assert new_handle != handle
    assert response.json()["csrfToken"] == new_csrf

    old = await client.post(AUTH, json={"action": "verify"}, headers={"Cookie": f"session={handle}"})
    assert old.json()["code"] == "SESSION_NOT_FOUND"
    new = await client.post(AUTH, json={"action": "verify"}, headers={"Cookie": f"session={new_handle}"})
    assert new.status_code == 200


async def test_refresh_requires_csrf(client, login) -> None:
    handle, csrf = await login("u1")

    response = await client.post(
        AUTH,
        json={"action": "refresh"},
        headers={"Cookie": f"session={handle}; csrf={csrf}", "X-CSRF-Token": "0" * 64},
    )

    assert response.status_code == 403
    assert response.json()["code"] == "CSRF_TOKEN_MISMATCH"


async def test_logout_clears_cookies_and_is_idempotent(
    client, login, session_headers, set_cookies, store
) -> None:
    handle, csrf = await login("u1")

    first = await client.post(AUTH, json={"action": "logout"}, headers=session_headers(handle, csrf))
    second = await client.post(AUTH, json={"action": "logout"}, headers=session_headers(handle, csrf))

    assert first.status_code == 200
    assert second.status_code == 200
    assert "max-age=0" in [a.lower() for a in set_cookies(first)["session"][1]]
    doc = next(iter(store.documents(COLLECTION_SESSIONS).values()))
    assert doc["isActive"] is False
    assert doc["invalidationReason"] == "LOGOUT"


async def test_logout_all_revokes_every_session(client, login, session_headers) -> None:
    first_handle, first_csrf = await login("u1")
    second_handle, _ = await login("u1")

    response = await client.post(
        AUTH, json={"action": "logout_all"}, headers=session_headers(first_handle, first_csrf)
    )

    assert response.status_code == 200
    assert response.json()["revokedSessions"] == 2
    other = await client.post(AUTH, json={"action": "verify"}, headers={"Cookie": f"session={second_handle}"})
    assert other.status_code == 401


async def test_verify_admin(client, login, store) -> None:
    store.put("users", "boss", {"role": "admin"})
    admin_handle, _ = await login("boss")
    user_handle, _ = await login("u1")

    ok = await client.post(AUTH, json={"action": "verify_admin"}, headers={"Cookie": f"session={admin_handle}"})
    denied = await client.post(AUTH, json={"action": "verify_admin"}, headers={"Cookie": f"session={user_handle}"})

    assert ok.status_code == 200
    assert ok.json()["isAdmin"] is True
    assert denied.status_code == 403
    assert denied.json()["code"] == "INSUFFICIENT_PRIVILEGES"


async def test_unknown_action_and_missing_token_are_validation_errors(client) -> None:
    unknown = await client.post(AUTH, json={"action": "impersonate"})
    missing = await client.post(AUTH, json={"action": "authenticate"})
    no_body = await client.post(AUTH)

    for response in (unknown, missing, no_body):
        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"


async def test_malformed_body_is_rate_limited_and_enveloped(client, store) -> None:
    """Undecodable JSON still passes the gate first: CORS headers and a general-bucket slot."""
    response = await client.post(
        AUTH,
        content=b"{not json",
        headers={"Origin": "https://a.example.com", "Content-Type": "application/json"},
    )

    assert response.status_code == 400
    assert response.json()["code"] == "VALIDATION_ERROR"
    assert response.headers["access-control-allow-origin"] == "https://a.example.com"
    assert response.headers["access-control-allow-credentials"] == "true"
    key = bucket_key(RateLimitScope.GENERAL, "127.0.0.1")
    bucket = store.documents(COLLECTION_RATE_LIMITS)[key]
    assert len(bucket["window"]) == 1
