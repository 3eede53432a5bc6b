"""Pytest configuration and fixtures for gatekeeper.

Environment is set before any gatekeeper import so settings validate with
the in-memory store. HTTP tests build a fresh app per test with the memory
store, a fake identity provider and a controllable clock injected; nothing
talks to Firebase.
"""

import asyncio
import base64
import json
import os
import secrets
from datetime import UTC, datetime, timedelta

os.environ.update(
    {
        "ENVIRONMENT": "test",
        "STORE_BACKEND": "memory",
        "FIREBASE_PROJECT_ID": "test-project",
        "SESSION_SECRET": "test-session-secret-0123456789abcdef0123456789",
        "COOKIE_DOMAIN": ".example.com",
        "ALLOWED_ORIGINS": "https://www.example.com,https://a.example.com",
        "IDENTITY_CHECK_REVOKED": "false",
        "MAINTENANCE_SECRET": "test-maintenance-secret",
        "WEBHOOK_SECRET_STRIPE": "whsec_test_secret",
        "TELEMETRY_ENABLED": "false",
    }
)

import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402

from gatekeeper.api.v1.dependencies import get_clock  # noqa: E402
from gatekeeper.application.dtos.auth import RequestContext, VerifiedToken  # noqa: E402
from gatekeeper.application.services.audit_log import AuditLog  # noqa: E402
from gatekeeper.core.config import get_settings  # noqa: E402
from gatekeeper.domain.exceptions import IdentityProviderError  # noqa: E402
from gatekeeper.infrastructure.firebase.memory_store import MemoryDocumentStore  # noqa: E402
from gatekeeper.main import create_app  # noqa: E402
from gatekeeper.shared.request_context import user_agent_hash  # noqa: E402

TEST_PROJECT_ID = "test-project"
TEST_USER_AGENT = "Mozilla/5.0 (gatekeeper-tests)"

_JWT_HEADER = "eyJhbGciOiJSUzI1NiIsImtpZCI6InRlc3Qta2V5IiwidHlwIjoiSldUIn0"


def _b64url(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


class FakeClock:
    """Callable clock; tests move time with advance()."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class FakeIdentityProvider:
    """Identity provider that accepts only tokens it minted."""

    def __init__(self, clock: FakeClock, project_id: str = TEST_PROJECT_ID) -> None:
        self._clock = clock
        self._project_id = project_id
        self._tokens: dict[str, VerifiedToken] = {}
        self._rejections: dict[str, str] = {}
        self.outage = False
        self.calls = 0

    def mint(
        self,
        principal_id: str,
        *,
        token_id: str | None = None,
        email: str | None = None,
        email_verified: bool = True,
        audience: str | None = None,
        auth_age_seconds: int = 0,
    ) -> str:
        """Return a JWT-shaped token the fake will verify."""
        token_id = token_id or secrets.token_hex(8)
        payload = _b64url(
            json.dumps({"sub": principal_id, "jti": token_id, "nonce": secrets.token_hex(16)}).encode()
        )
        signature = _b64url(secrets.token_bytes(48))
        token = f"{_JWT_HEADER}.{payload}.{signature}"
        now = self._clock()
        self._tokens[token] = VerifiedToken(
            principal_id=principal_id,
            email=email or f"{principal_id}@example.com",
            email_verified=email_verified,
            audience=audience or self._project_id,
            auth_time=now - timedelta(seconds=auth_age_seconds),
            issued_at=now,
            token_id=token_id,
            expires_at=now + timedelta(hours=1),
        )
        return token

    def reject(self, token: str, kind: str) -> None:
        """Make a minted token fail verification with kind (expired, revoked, ...)."""
        self._rejections[token] = kind

    async def verify_id_token(self, token: str) -> VerifiedToken:
        await asyncio.sleep(0)
        self.calls += 1
        if self.outage:
            raise IdentityProviderError("unavailable", "identity provider outage (test)")
        if token in self._rejections:
            raise IdentityProviderError(self._rejections[token])
        verified = self._tokens.get(token)
        if verified is None:
            raise IdentityProviderError("invalid", "unknown token")
        return verified

    async def aclose(self) -> None:
        return None


@pytest.fixture(autouse=True)
def _fresh_settings():
    """Each test sees settings built from the current environment."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 3, 10, 12, 0, tzinfo=UTC))


@pytest.fixture
def store() -> MemoryDocumentStore:
    """In-memory store with a generous retry budget for concurrency tests."""
    return MemoryDocumentStore(max_attempts=50)


@pytest.fixture
def identity_provider(clock: FakeClock) -> FakeIdentityProvider:
    return FakeIdentityProvider(clock)


@pytest.fixture
def audit(store: MemoryDocumentStore, clock: FakeClock) -> AuditLog:
    return AuditLog(store, clock=clock)


@pytest.fixture
def request_context() -> RequestContext:
    """Request from the primary origin at a fixed IP and user agent."""
    return RequestContext(
        ip_address="203.0.113.1",
        user_agent=TEST_USER_AGENT,
        ua_hash=user_agent_hash(TEST_USER_AGENT),
        origin="https://www.example.com",
        method="POST",
        path="/api/v1/user/status",
    )


@pytest.fixture
def app(store: MemoryDocumentStore, identity_provider: FakeIdentityProvider, clock: FakeClock):
    """Fresh app with the memory store, fake identity provider and fake clock injected."""
    application = create_app()
    application.state.document_store = store
    application.state.identity_provider = identity_provider
    application.dependency_overrides[get_clock] = lambda: clock
    return application


@pytest.fixture
async def client(app) -> AsyncClient:
    """Async HTTP client against the FastAPI app (ASGI)."""
    transport = ASGITransport(app=app)
    async with AsyncClient(
        transport=transport,
        base_url="http://testserver",
        headers={"User-Agent": TEST_USER_AGENT},
    ) as ac:
        yield ac


@pytest.fixture
def set_cookies():
    """Parse a response's Set-Cookie headers into {name: (value, attributes)}."""

    def parse(response) -> dict[str, tuple[str, list[str]]]:
        cookies: dict[str, tuple[str, list[str]]] = {}
        for header in response.headers.get_list("set-cookie"):
            first, *attributes = [part.strip() for part in header.split(";")]
            name, _, value = first.partition("=")
            cookies[name] = (value.strip('"'), attributes)
        return cookies

    return parse


@pytest.fixture
def login(client: AsyncClient, identity_provider: FakeIdentityProvider, set_cookies):
    """Exchange a fresh bearer token for a session; returns (handle, csrf_token)."""

    async def _login(principal_id: str = "u1", **headers: str) -> tuple[str, str]:
        token = identity_provider.mint(principal_id)
        response = await client.post(
            "/api/v1/auth",
            json={"action": "authenticate", "idToken": token},
            headers=headers,
        )
        assert response.status_code == 200, response.text
        cookies = set_cookies(response)
        return cookies["session"][0], cookies["csrf"][0]

    return _login


def cookie_header(handle: str, csrf_token: str | None = None) -> str:
    """Cookie header value carrying the session (and CSRF) cookies."""
    if csrf_token is None:
        return f"session={handle}"
    return f"session={handle}; csrf={csrf_token}"


@pytest.fixture
def session_headers():
    """Headers for a cookie-authenticated, CSRF-protected request."""

    def build(handle: str, csrf_token: str, origin: str = "https://www.example.com") -> dict[str, str]:
        return {
            "Cookie": cookie_header(handle, csrf_token),
            "X-CSRF-Token": csrf_token,
            "Origin": origin,
        }

    return build
