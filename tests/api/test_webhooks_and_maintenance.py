"""Billing webhooks and the TTL sweep trigger."""

import json
from datetime import timedelta

from gatekeeper.core.config import get_settings
from gatekeeper.core.constants import (
    COLLECTION_CONSUMED_TOKENS,
    COLLECTION_LOCKS,
    COLLECTION_WEBHOOK_EVENTS,
)
from gatekeeper.shared.utils import hmac_sha256_hex

WEBHOOK = "/api/v1/webhooks/stripe"
SWEEP = "/api/v1/maintenance/ttl-sweep"
SECRET = "whsec_test_secret"


def _signed(clock, payload: dict, secret: str = SECRET) -> tuple[bytes, dict[str, str]]:
    body = json.dumps(payload).encode()
    timestamp = int(clock().timestamp())
    signature = hmac_sha256_hex(secret, f"{timestamp}.".encode() + body)
    return body, {
        "Stripe-Signature": f"t={timestamp},v1={signature}",
        "Content-Type": "application/json",
    }


async def test_signed_webhook_is_recorded_once(client, clock, store) -> None:
    body, headers = _signed(clock, {"id": "evt_123", "type": "invoice.paid", "data": {}})

    first = await client.post(WEBHOOK, content=body, headers=headers)
    second = await client.post(WEBHOOK, content=body, headers=headers)

    assert first.status_code == 200
    assert first.json() == {"received": True, "duplicate": False}
    assert second.status_code == 200
    assert second.json() == {"received": True, "duplicate": True}
    assert len(store.documents(COLLECTION_WEBHOOK_EVENTS)) == 1
    assert "access-control-allow-origin" not in first.headers
    assert first.headers["access-control-allow-credentials"] == "false"
    assert first.headers["content-security-policy"].startswith("default-src 'none'")


async def test_bad_signature_is_rejected(client, clock, store) -> None:
    body, headers = _signed(clock, {"id": "evt_1", "type": "invoice.paid"}, secret="whsec_wrong")

    response = await client.post(WEBHOOK, content=body, headers=headers)

    assert response.status_code == 400
    assert response.json() == {"error": "Invalid signature", "code": "INVALID_SIGNATURE"}
    assert store.documents(COLLECTION_WEBHOOK_EVENTS) == {}


async def test_provider_without_secret_is_rejected(client, clock) -> None:
    body, headers = _signed(clock, {"id": "evt_1"})
    response = await client.post("/api/v1/webhooks/paypal", content=body, headers=headers)
    assert response.status_code == 400


async def test_stale_signature_is_rejected(client, clock) -> None:
    body, headers = _signed(clock, {"id": "evt_1"})
    clock.advance(301)
    response = await client.post(WEBHOOK, content=body, headers=headers)
    assert response.status_code == 400


async def test_signed_payload_without_id_is_a_validation_error(client, clock) -> None:
    body, headers = _signed(clock, {"type": "invoice.paid"})
    response = await client.post(WEBHOOK, content=body, headers=headers)
    assert response.status_code == 400
    assert response.json()["code"] == "VALIDATION_ERROR"


async def test_ttl_sweep_requires_secret(client) -> None:
    missing = await client.post(SWEEP)
    wrong = await client.post(SWEEP, headers={"X-Maintenance-Secret": "nope"})

    for response in (missing, wrong):
        assert response.status_code == 403
        assert response.json()["code"] == "MAINTENANCE_FORBIDDEN"


async def test_ttl_sweep_deletes_expired_documents(client, clock, store) -> None:
    store.put(COLLECTION_LOCKS, "old", {"expiresAt": clock() - timedelta(seconds=1)})
    store.put(COLLECTION_CONSUMED_TOKENS, "live", {"expiresAt": clock() + timedelta(hours=1)})

    response = await client.post(SWEEP, headers={"X-Maintenance-Secret": "test-maintenance-secret"})

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["deleted"][COLLECTION_LOCKS] == 1
    assert body["deleted"][COLLECTION_CONSUMED_TOKENS] == 0
    assert list(store.documents(COLLECTION_CONSUMED_TOKENS)) == ["live"]


async def test_ttl_sweep_disabled_without_configured_secret(client, monkeypatch) -> None:
    monkeypatch.setenv("MAINTENANCE_SECRET", "")
    get_settings.cache_clear()

    response = await client.post(SWEEP, headers={"X-Maintenance-Secret": ""})

    assert response.status_code == 403
