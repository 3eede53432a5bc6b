"""TokenValidator: pre-validation, single-use consumption and fail-closed store handling."""

import asyncio
from datetime import timedelta

import pytest

from gatekeeper.application.services.token_validator import TokenValidator, TokenValidatorConfig
from gatekeeper.core.constants import (
    COLLECTION_AUDIT_LOG,
    COLLECTION_CONSUMED_TOKENS,
    COLLECTION_LOCKS,
    COLLECTION_SECURITY_INCIDENTS,
)
from gatekeeper.domain.enums import ErrorCode
from gatekeeper.domain.exceptions import StoreUnavailableException
from gatekeeper.infrastructure.firebase._rest_client import TransactionAbortedError
from gatekeeper.shared.utils import sha256_hex


@pytest.fixture
def validator(store, identity_provider, audit, clock) -> TokenValidator:
    config = TokenValidatorConfig(project_id="test-project", max_session_age_seconds=86400)
    return TokenValidator(store, identity_provider, audit, config, clock=clock)


def _incident_types(store) -> list[str]:
    return [i["type"] for i in store.documents(COLLECTION_SECURITY_INCIDENTS).values()]


def _audit_types(store) -> list[str]:
    return [e["eventType"] for e in store.documents(COLLECTION_AUDIT_LOG).values()]


async def test_replay_is_rejected_and_consumption_recorded_once(
    validator, identity_provider, store, request_context
) -> None:
    """Same token twice: one success for u1, one TOKEN_REPLAY; one ConsumedToken record."""
    token = identity_provider.mint("u1", token_id="abc")

    first = await validator.validate(token, request_context)
    second = await validator.validate(token, request_context)

    assert first.valid
    assert first.principal.principal_id == "u1"
    assert first.status_code == 200
    assert not second.valid
    assert second.error_code == ErrorCode.TOKEN_REPLAY
    assert second.status_code == 401

    consumed = store.documents(COLLECTION_CONSUMED_TOKENS)
    assert list(consumed) == [sha256_hex("abc")]
    assert consumed[sha256_hex("abc")]["usageCount"] == 1
    assert consumed[sha256_hex("abc")]["principalId"] == "u1"
    assert "TOKEN_REPLAY_ATTEMPT" in _incident_types(store)


async def test_concurrent_validations_admit_exactly_one(
    validator, identity_provider, store, request_context
) -> None:
    token = identity_provider.mint("u1")

    results = await asyncio.gather(*(validator.validate(token, request_context) for _ in range(10)))

    assert sum(r.valid for r in results) == 1
    assert {r.error_code for r in results if not r.valid} <= {
        ErrorCode.TOKEN_REPLAY,
        ErrorCode.CONCURRENT_VALIDATION_DETECTED,
    }
    assert len(store.documents(COLLECTION_CONSUMED_TOKENS)) == 1
    assert _audit_types(store).count("TOKEN_VALIDATED") == 1

    again = await validator.validate(token, request_context)
    assert not again.valid


async def test_token_usable_again_after_replay_window(
    validator, identity_provider, clock, request_context
) -> None:
    token = identity_provider.mint("u1")
    assert (await validator.validate(token, request_context)).valid
    clock.advance(3601)
    assert (await validator.validate(token, request_context)).valid


async def test_live_lock_reports_concurrent_validation(
    validator, identity_provider, store, clock, request_context
) -> None:
    token = identity_provider.mint("u1", token_id="locked-token")
    token_hash = sha256_hex("locked-token")
    store.put(
        COLLECTION_LOCKS,
        f"validation_{token_hash}",
        {"operationId": "other", "expiresAt": clock() + timedelta(seconds=5)},
    )

    result = await validator.validate(token, request_context)

    assert result.error_code == ErrorCode.CONCURRENT_VALIDATION_DETECTED
    assert store.documents(COLLECTION_CONSUMED_TOKENS) == {}
    assert "CONCURRENT_VALIDATION" in _incident_types(store)


async def test_stale_lock_is_removed_with_the_consumption(
    validator, identity_provider, store, clock, request_context
) -> None:
    token = identity_provider.mint("u1", token_id="stale-lock")
    lock_key = f"validation_{sha256_hex('stale-lock')}"
    store.put(COLLECTION_LOCKS, lock_key, {"operationId": "old", "expiresAt": clock()})

    result = await validator.validate(token, request_context)

    assert result.valid
    assert lock_key not in store.documents(COLLECTION_LOCKS)


@pytest.mark.parametrize(
    "token",
    [None, "", "short.token.value", "not a jwt at all " * 10, "a" * 150],
)
async def test_malformed_tokens_rejected_without_provider_call(
    validator, identity_provider, request_context, token
) -> None:
    result = await validator.validate(token, request_context)
    assert result.error_code == ErrorCode.INVALID_TOKEN_FORMAT
    assert identity_provider.calls == 0


async def test_bearer_prefix_is_tolerated(validator, identity_provider, request_context) -> None:
    token = identity_provider.mint("u1")
    assert (await validator.validate(f"Bearer {token}", request_context)).valid


@pytest.mark.parametrize(
    ("kind", "code"),
    [
        ("expired", ErrorCode.TOKEN_EXPIRED),
        ("revoked", ErrorCode.TOKEN_REVOKED),
        ("invalid", ErrorCode.INVALID_TOKEN),
    ],
)
async def test_provider_rejections_map_to_codes(
    validator, identity_provider, store, request_context, kind, code
) -> None:
    token = identity_provider.mint("u1")
    identity_provider.reject(token, kind)
    result = await validator.validate(token, request_context)
    assert result.error_code == code
    assert store.documents(COLLECTION_CONSUMED_TOKENS) == {}


async def test_provider_outage_fails_closed(
    validator, identity_provider, store, request_context
) -> None:
    token = identity_provider.mint("u1")
    identity_provider.outage = True
    result = await validator.validate(token, request_context)
    assert result.error_code == ErrorCode.SYSTEM_UNAVAILABLE
    assert result.status_code == 500
    assert _incident_types(store) == ["SYSTEM_ERROR"]


async def test_claim_checks(validator, identity_provider, request_context) -> None:
    wrong_audience = identity_provider.mint("u1", audience="other-project")
    unverified = identity_provider.mint("u1", email_verified=False)
    too_old = identity_provider.mint("u1", auth_age_seconds=86401)

    assert (await validator.validate(wrong_audience, request_context)).error_code == (
        ErrorCode.INVALID_TOKEN
    )
    assert (await validator.validate(unverified, request_context)).error_code == (
        ErrorCode.EMAIL_NOT_VERIFIED
    )
    assert (await validator.validate(too_old, request_context)).error_code == (
        ErrorCode.SESSION_TOO_OLD
    )


async def test_commit_fault_leaves_no_consumption_and_no_success_audit(
    validator, identity_provider, store, request_context
) -> None:
    """A store write fault during consumption leaves neither record behind."""
    token = identity_provider.mint("u1")
    store.commit_faults.append(StoreUnavailableException("commit", "injected"))

    result = await validator.validate(token, request_context)

    assert not result.valid
    assert result.error_code == ErrorCode.SYSTEM_UNAVAILABLE
    assert store.documents(COLLECTION_CONSUMED_TOKENS) == {}
    assert "TOKEN_VALIDATED" not in _audit_types(store)
    assert _incident_types(store) == ["SYSTEM_ERROR"]

    # The token was never consumed, so a retry succeeds.
    assert (await validator.validate(token, request_context)).valid


async def test_persistent_contention_is_a_transaction_conflict(
    validator, identity_provider, store, request_context
) -> None:
    token = identity_provider.mint("u1")
    store.commit_faults.extend(TransactionAbortedError("contention") for _ in range(50))

    result = await validator.validate(token, request_context)

    assert result.error_code == ErrorCode.TRANSACTION_CONFLICT
    assert store.documents(COLLECTION_CONSUMED_TOKENS) == {}
    assert "TOKEN_VALIDATED" not in _audit_types(store)
