"""Core services (composition root).

Every service is stateless and cheap to build, so each request gets fresh
instances wired to the shared store, identity provider and clock. All
durable state lives in the document store.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends

from gatekeeper.api.v1.dependencies.infra import get_clock, get_identity_provider, get_store
from gatekeeper.application.interfaces.identity import IIdentityProvider
from gatekeeper.application.interfaces.store import IDocumentStore
from gatekeeper.application.services.admin_roles import AdminRoleLookup
from gatekeeper.application.services.audit_log import AuditLog
from gatekeeper.application.services.rate_limiter import DistributedRateLimiter
from gatekeeper.application.services.session_manager import SessionConfig, SessionManager
from gatekeeper.application.services.subscription_usage import UsageCounter
from gatekeeper.application.services.token_validator import TokenValidator, TokenValidatorConfig
from gatekeeper.application.services.ttl_sweeper import TTLSweeper
from gatekeeper.application.services.webhook_guard import WebhookGuard
from gatekeeper.application.use_cases.cross_domain_auth import CrossDomainAuth
from gatekeeper.core.config import get_settings
from gatekeeper.core.cookie_envelope import CookieEnvelope
from gatekeeper.core.policy_gate import PolicyGate
from gatekeeper.core.rate_limits import build_policies
from gatekeeper.domain.enums import ConcurrentSessionPolicy
from gatekeeper.shared.utils import Clock

StoreDep = Annotated[IDocumentStore, Depends(get_store)]
ClockDep = Annotated[Clock, Depends(get_clock)]


def get_audit_log(store: StoreDep, clock: ClockDep) -> AuditLog:
    settings = get_settings()
    return AuditLog(
        store,
        clock=clock,
        audit_retention_days=settings.audit_retention_days,
        incident_retention_days=settings.incident_retention_days,
    )


AuditDep = Annotated[AuditLog, Depends(get_audit_log)]


def get_rate_limiter(store: StoreDep, audit: AuditDep, clock: ClockDep) -> DistributedRateLimiter:
    """Rate limiter with the configured policy table."""
    return DistributedRateLimiter(store, build_policies(get_settings()), audit=audit, clock=clock)


def get_token_validator(
    store: StoreDep,
    identity_provider: Annotated[IIdentityProvider, Depends(get_identity_provider)],
    audit: AuditDep,
    clock: ClockDep,
) -> TokenValidator:
    settings = get_settings()
    config = TokenValidatorConfig(
        project_id=settings.firebase_project_id,
        min_token_length=settings.min_token_length,
        token_replay_window_seconds=settings.token_replay_window_seconds,
        max_session_age_seconds=settings.max_session_age_seconds,
    )
    return TokenValidator(store, identity_provider, audit, config, clock=clock)


def get_session_manager(store: StoreDep, audit: AuditDep, clock: ClockDep) -> SessionManager:
    settings = get_settings()
    config = SessionConfig(
        secret=settings.session_secret.get_secret_value(),
        timeout_seconds=settings.session_timeout_seconds,
        max_timeout_seconds=settings.session_max_timeout_seconds,
        activity_interval_seconds=settings.session_activity_interval_seconds,
        inactivity_warning_seconds=settings.session_inactivity_warning_seconds,
        max_concurrent_sessions=settings.max_concurrent_sessions,
        policy=ConcurrentSessionPolicy(settings.concurrent_session_policy.upper()),
    )
    return SessionManager(store, audit, config, clock=clock)


def get_cookie_envelope() -> CookieEnvelope:
    return CookieEnvelope(get_settings())


def get_admin_roles(store: StoreDep) -> AdminRoleLookup:
    return AdminRoleLookup(store, get_settings().admin_email)


def get_usage_counter(store: StoreDep, audit: AuditDep, clock: ClockDep) -> UsageCounter:
    return UsageCounter(
        store, audit, free_tier_max_usage=get_settings().free_tier_max_usage, clock=clock
    )


RateLimiterDep = Annotated[DistributedRateLimiter, Depends(get_rate_limiter)]
TokenValidatorDep = Annotated[TokenValidator, Depends(get_token_validator)]
SessionManagerDep = Annotated[SessionManager, Depends(get_session_manager)]
EnvelopeDep = Annotated[CookieEnvelope, Depends(get_cookie_envelope)]
AdminRolesDep = Annotated[AdminRoleLookup, Depends(get_admin_roles)]


def get_policy_gate(
    envelope: EnvelopeDep,
    rate_limiter: RateLimiterDep,
    token_validator: TokenValidatorDep,
    sessions: SessionManagerDep,
    admin_roles: AdminRolesDep,
    usage: Annotated[UsageCounter, Depends(get_usage_counter)],
    audit: AuditDep,
) -> PolicyGate:
    """Policy gate composed from the core services (composition root)."""
    return PolicyGate(
        envelope=envelope,
        rate_limiter=rate_limiter,
        token_validator=token_validator,
        sessions=sessions,
        admin_roles=admin_roles,
        usage=usage,
        audit=audit,
    )


def get_cross_domain_auth(
    envelope: EnvelopeDep,
    rate_limiter: RateLimiterDep,
    token_validator: TokenValidatorDep,
    sessions: SessionManagerDep,
    admin_roles: AdminRolesDep,
    clock: ClockDep,
) -> CrossDomainAuth:
    settings = get_settings()
    return CrossDomainAuth(
        envelope=envelope,
        rate_limiter=rate_limiter,
        token_validator=token_validator,
        sessions=sessions,
        admin_roles=admin_roles,
        near_expiry_seconds=settings.session_near_expiry_seconds,
        max_session_age_seconds=settings.cross_domain_max_session_age_seconds,
        clock=clock,
    )


def get_webhook_guard(
    store: StoreDep, rate_limiter: RateLimiterDep, audit: AuditDep, clock: ClockDep
) -> WebhookGuard:
    settings = get_settings()
    return WebhookGuard(
        store,
        rate_limiter,
        audit,
        tolerance_seconds=settings.webhook_signature_tolerance_seconds,
        retention_days=settings.webhook_event_retention_days,
        clock=clock,
    )


def get_ttl_sweeper(store: StoreDep, audit: AuditDep, clock: ClockDep) -> TTLSweeper:
    return TTLSweeper(store, audit, batch_size=get_settings().ttl_sweep_batch_size, clock=clock)
