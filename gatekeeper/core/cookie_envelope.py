"""Cookie envelope: session and CSRF cookies plus CORS/CSP response headers.

Two cookies are scoped to the parent domain so sibling origins
(www.example.com, a.example.com) share one session:

- session: opaque handle, HttpOnly, Secure, SameSite=Lax
- csrf: random witness, readable by JS (echoed as X-CSRF-Token), Secure, SameSite=Strict

Access-Control-Allow-Origin is always a single origin from ALLOWED_ORIGINS,
never '*', because credentials are allowed.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass

from starlette.requests import cookie_parser
from starlette.responses import Response

from gatekeeper.core.config import Settings
from gatekeeper.shared.utils import constant_time_equals, sha256_hex

HEADER_KIND_API = "api"
HEADER_KIND_WEBHOOK = "webhook"

_HSTS = "max-age=31536000; includeSubDomains; preload"
_PERMISSIONS_POLICY = "geolocation=(), microphone=(), camera=(), payment=(self)"
_CACHE_CONTROL = "no-store, no-cache, must-revalidate, private"
_ALLOWED_REQUEST_HEADERS = (
    "Content-Type, Authorization, X-CSRF-Token, X-Session-Token, X-Request-ID"
)


@dataclass(frozen=True)
class CookieSpec:
    """One Set-Cookie instruction; max_age 0 clears the cookie."""

    name: str
    value: str
    max_age: int
    http_only: bool
    same_site: str
    domain: str | None
    secure: bool = True
    path: str = "/"


def _sources(raw: str) -> str:
    return " ".join(s.strip() for s in raw.split(",") if s.strip())


class CookieEnvelope:
    """Builds cookies and response headers from settings."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._allowed_origins = settings.allowed_origin_list
        self._csp = "; ".join(
            [
                "default-src 'self'",
                f"script-src {_sources(settings.csp_script_sources)}",
                f"connect-src {_sources(settings.csp_connect_sources)}",
                "style-src 'self'",
                "img-src 'self' data: https:",
                "object-src 'none'",
                "base-uri 'self'",
                "form-action 'self'",
                "frame-ancestors 'none'",
            ]
        )

    @property
    def session_cookie_name(self) -> str:
        return self._settings.session_cookie_name

    @property
    def csrf_cookie_name(self) -> str:
        return self._settings.csrf_cookie_name

    @property
    def csrf_header_name(self) -> str:
        return self._settings.csrf_header_name

    # Cookies

    def _domain(self) -> str | None:
        return self._settings.cookie_domain or None

    def session_cookies(self, handle: str, csrf_token: str) -> list[CookieSpec]:
        """Cookies carrying a freshly issued session handle and its CSRF witness."""
        max_age = self._settings.cookie_max_age_seconds
        return [
            CookieSpec(
                name=self.session_cookie_name,
                value=handle,
                max_age=max_age,
                http_only=True,
                same_site="lax",
                domain=self._domain(),
            ),
            CookieSpec(
                name=self.csrf_cookie_name,
                value=csrf_token,
                max_age=max_age,
                http_only=False,
                same_site="strict",
                domain=self._domain(),
            ),
        ]

    def clearing_cookies(self) -> list[CookieSpec]:
        """Cookies that remove both envelope cookies (logout)."""
        return [
            CookieSpec(
                name=self.session_cookie_name,
                value="",
                max_age=0,
                http_only=True,
                same_site="lax",
                domain=self._domain(),
            ),
            CookieSpec(
                name=self.csrf_cookie_name,
                value="",
                max_age=0,
                http_only=False,
                same_site="strict",
                domain=self._domain(),
            ),
        ]

    @staticmethod
    def apply_cookies(response: Response, specs: Iterable[CookieSpec]) -> None:
        for spec in specs:
            response.set_cookie(
                key=spec.name,
                value=spec.value,
                max_age=spec.max_age,
                path=spec.path,
                domain=spec.domain,
                secure=spec.secure,
                httponly=spec.http_only,
                samesite=spec.same_site,
            )

    # Parsing

    @staticmethod
    def parse_cookies(cookie_header: str | None) -> dict[str, str]:
        if not cookie_header:
            return {}
        return cookie_parser(cookie_header)

    def extract_session(self, headers: Mapping[str, str]) -> str | None:
        """Session handle from the cookie, then `Authorization: Session`, then X-Session-Token."""
        cookies = self.parse_cookies(headers.get("cookie"))
        handle = cookies.get(self.session_cookie_name)
        if handle:
            return handle
        authorization = headers.get("authorization") or ""
        scheme, _, value = authorization.strip().partition(" ")
        if scheme.lower() == "session" and value.strip():
            return value.strip()
        return headers.get("x-session-token") or None

    def session_from_cookie(self, headers: Mapping[str, str]) -> bool:
        """True when the session handle arrived in the cookie (CSRF applies)."""
        cookies = self.parse_cookies(headers.get("cookie"))
        return bool(cookies.get(self.session_cookie_name))

    def csrf_values(self, headers: Mapping[str, str]) -> tuple[str | None, str | None]:
        """(header value, cookie value) of the CSRF witness."""
        cookies = self.parse_cookies(headers.get("cookie"))
        return headers.get(self.csrf_header_name.lower()), cookies.get(self.csrf_cookie_name)

    @staticmethod
    def extract_bearer(headers: Mapping[str, str]) -> str | None:
        """Token from `Authorization: Bearer <token>`."""
        authorization = headers.get("authorization")
        if not authorization:
            return None
        scheme, _, value = authorization.strip().partition(" ")
        if scheme.lower() != "bearer" or not value.strip():
            return None
        return value.strip()

    @staticmethod
    def csrf_matches(
        header_value: str | None, cookie_value: str | None, csrf_hash: str | None
    ) -> bool:
        """Header must equal cookie, and both must hash to the session's csrfHash."""
        if not header_value or not cookie_value or not csrf_hash:
            return False
        if not constant_time_equals(header_value, cookie_value):
            return False
        return constant_time_equals(sha256_hex(header_value), csrf_hash)

    # Headers

    def allowed_origin(self, origin: str | None) -> str | None:
        """The origin to echo: the request origin when allowed, else the first allowed one."""
        if origin and origin in self._allowed_origins:
            return origin
        return self._allowed_origins[0] if self._allowed_origins else None

    def security_headers(self, kind: str = HEADER_KIND_API) -> dict[str, str]:
        """Static security headers (no CORS)."""
        csp = "default-src 'none'; frame-ancestors 'none'" if kind == HEADER_KIND_WEBHOOK else self._csp
        return {
            "Content-Security-Policy": csp,
            "Strict-Transport-Security": _HSTS,
            "X-Frame-Options": "DENY",
            "X-Content-Type-Options": "nosniff",
            "Referrer-Policy": "strict-origin-when-cross-origin",
            "Permissions-Policy": _PERMISSIONS_POLICY,
            "Cross-Origin-Opener-Policy": "same-origin",
            "Cross-Origin-Embedder-Policy": "require-corp",
            "Cross-Origin-Resource-Policy": "same-site",
            "Cache-Control": _CACHE_CONTROL,
            "Pragma": "no-cache",
        }

    def response_headers(
        self,
        origin: str | None,
        methods: Iterable[str],
        kind: str = HEADER_KIND_API,
    ) -> dict[str, str]:
        """Full header set for a gated response: security headers plus CORS.

        Webhook responses carry no Access-Control-Allow-Origin and never
        allow credentials.
        """
        headers = self.security_headers(kind)
        allow_methods = ", ".join(sorted({m.upper() for m in methods} | {"OPTIONS"}))
        if kind == HEADER_KIND_WEBHOOK:
            headers["Access-Control-Allow-Credentials"] = "false"
            headers["Access-Control-Allow-Methods"] = allow_methods
            return headers
        allowed = self.allowed_origin(origin)
        if allowed:
            headers["Access-Control-Allow-Origin"] = allowed
        headers["Access-Control-Allow-Credentials"] = "true"
        headers["Access-Control-Allow-Methods"] = allow_methods
        headers["Access-Control-Allow-Headers"] = _ALLOWED_REQUEST_HEADERS
        headers["Access-Control-Max-Age"] = "86400"
        headers["Vary"] = "Origin"
        return headers
