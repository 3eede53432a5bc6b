"""Application configuration (settings and environment).

Single source of truth for all configuration. Uses pydantic-settings
with .env support. Secrets (session HMAC key, webhook secrets, Firebase
service account) are SecretStr and validated at load time.
"""

from functools import lru_cache

from pydantic import SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment and .env.

    Durations are in seconds unless the name says otherwise. Rate-limit
    policies default to the table in gatekeeper.core.rate_limits and can be
    tuned per scope here.
    """

    # App
    app_name: str = "gatekeeper"
    app_version: str = "1.0.0"
    debug: bool = False
    environment: str = "development"

    # Document store: "firestore" (REST) or "memory" (tests / local development)
    store_backend: str = "firestore"
    store_transaction_max_attempts: int = 5
    store_request_timeout_seconds: float = 10.0

    # Firebase / Firestore: use key (env) or path (file). For serverless, use key.
    firebase_project_id: str = ""
    firebase_service_account_key: SecretStr | None = None
    firebase_service_account_path: str | None = None  # Path to JSON file

    # Bearer tokens
    min_token_length: int = 100
    token_replay_window_seconds: int = 3600
    max_session_age_seconds: int = 24 * 3600
    identity_check_revoked: bool = True
    identity_clock_skew_seconds: int = 10

    # Sessions
    session_secret: SecretStr = SecretStr("")
    session_timeout_seconds: int = 24 * 3600
    session_max_timeout_seconds: int = 7 * 24 * 3600
    session_activity_interval_seconds: int = 300
    session_inactivity_warning_seconds: int = 2 * 3600
    max_concurrent_sessions: int = 5
    concurrent_session_policy: str = "ROLLING"
    session_near_expiry_seconds: int = 300
    cross_domain_max_session_age_seconds: int = 12 * 3600

    # Cookies / CORS / CSP
    cookie_domain: str = ""
    cookie_max_age_seconds: int = 3600
    session_cookie_name: str = "session"
    csrf_cookie_name: str = "csrf"
    csrf_header_name: str = "X-CSRF-Token"
    allowed_origins: str = "http://localhost:3000,http://localhost:8080"
    csp_script_sources: str = "'self',https://apis.google.com,https://www.gstatic.com"
    csp_connect_sources: str = (
        "'self',https://identitytoolkit.googleapis.com,"
        "https://securetoken.googleapis.com,https://firestore.googleapis.com"
    )

    # Rate limits (scope overrides; None = table default)
    rate_limit_general_per_minute: int = 60
    rate_limit_auth_per_minute: int = 5
    rate_limit_auth_max_failures: int = 10
    rate_limit_auth_failure_window_seconds: int = 3600
    rate_limit_auth_lockout_seconds: int = 900
    rate_limit_payment_per_window: int = 5
    rate_limit_payment_window_seconds: int = 300
    rate_limit_webhook_per_minute: int = 100
    rate_limit_registration_per_hour: int = 5

    # Admin / subscription
    admin_email: str | None = None
    free_tier_max_usage: int = 3

    # Webhooks: HMAC secrets per provider, e.g. WEBHOOK_SECRET_STRIPE.
    webhook_secret_stripe: SecretStr | None = None
    webhook_secret_paypal: SecretStr | None = None
    webhook_signature_tolerance_seconds: int = 300

    # Audit retention
    audit_retention_days: int = 90
    incident_retention_days: int = 365
    webhook_event_retention_days: int = 30

    # Maintenance (TTL sweep trigger for an external scheduler)
    maintenance_secret: SecretStr | None = None
    ttl_sweep_batch_size: int = 200

    # Request / middleware
    request_id_header: str = "X-Request-ID"

    # OpenTelemetry
    telemetry_enabled: bool = False
    telemetry_exporter: str = "console"
    telemetry_otlp_endpoint: str | None = None
    telemetry_sample_rate: float = 1.0

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    @property
    def allowed_origin_list(self) -> list[str]:
        """Allowed CORS origins, in configured order."""
        return [o.strip() for o in self.allowed_origins.split(",") if o.strip()]

    def webhook_secret(self, provider: str) -> str | None:
        """Return the signing secret for a webhook provider, or None if unset."""
        secret = getattr(self, f"webhook_secret_{provider.lower()}", None)
        if secret is None:
            return None
        return secret.get_secret_value() or None

    @model_validator(mode="after")
    def validate_required_and_store(self) -> "Settings":
        """Validate store backend, secrets and cross-origin policy.

        - Firestore: FIREBASE_PROJECT_ID and a service account key or path required.
        - SESSION_SECRET required (32+ chars outside development).
        - ALLOWED_ORIGINS may not contain '*' (credentials are always allowed).
        - CSP script sources may not contain 'unsafe-inline'.
        """
        if self.store_backend == "firestore":
            if not self.firebase_project_id:
                raise ValueError(
                    "FIREBASE_PROJECT_ID is required when store_backend is 'firestore'."
                )
            has_key = (
                self.firebase_service_account_key
                and self.firebase_service_account_key.get_secret_value()
            )
            if not has_key and not self.firebase_service_account_path:
                raise ValueError(
                    "When store_backend is 'firestore', set FIREBASE_SERVICE_ACCOUNT_KEY (full JSON string) "
                    "or FIREBASE_SERVICE_ACCOUNT_PATH (path to JSON file)."
                )
        elif self.store_backend != "memory":
            raise ValueError(
                f"store_backend must be 'firestore' or 'memory', got: {self.store_backend!r}"
            )
        secret = self.session_secret.get_secret_value()
        if not secret:
            raise ValueError(
                "SESSION_SECRET is required. Generate with: openssl rand -hex 32."
            )
        if self.environment == "production":
            if len(secret) < 32:
                raise ValueError("SESSION_SECRET must be at least 32 characters in production.")
            if not self.cookie_domain:
                raise ValueError("COOKIE_DOMAIN is required in production (e.g. '.example.com').")
        if self.concurrent_session_policy.upper() not in ("STRICT", "ROLLING"):
            raise ValueError(
                "concurrent_session_policy must be 'STRICT' or 'ROLLING', "
                f"got: {self.concurrent_session_policy!r}"
            )
        if any(o == "*" for o in self.allowed_origin_list):
            raise ValueError(
                "allowed_origins may not contain '*': responses always allow credentials."
            )
        if "'unsafe-inline'" in self.csp_script_sources:
            raise ValueError("csp_script_sources may not contain 'unsafe-inline'.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return cached application settings (single instance per process).

    Validation runs on first call, not at import time. In tests, call
    get_settings.cache_clear() before overriding env vars so the next
    get_settings() uses the new values.

    Returns:
        Loaded and validated Settings instance.
    """
    return Settings()
