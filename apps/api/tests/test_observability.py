from __future__ import annotations

import pytest
from httpx import ASGITransport, AsyncClient

from clubpass_api.app import create_app
from clubpass_api.core.settings import settings
from clubpass_api.observability.nfc import get_nfc_store


def _payload(world, **overrides) -> dict:
    payload = {
        "cardUid": world.card.card_uid,
        "vendorId": str(world.vendor.id),
        "posReaderId": "POS-READER-7",
        "transactionAmount": 80,
    }
    payload.update(overrides)
    return payload


@pytest.mark.asyncio
async def test_nfc_snapshot_counts_taps(app_with_db, nfc_world) -> None:
    app, _ = app_with_db

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        await client.post("/api/v1/nfc/validate", json=_payload(nfc_world))
        await client.post("/api/v1/nfc/validate", json=_payload(nfc_world, cardUid="UNKNOWN"))
        response = await client.get("/api/v1/observability/nfc")

    assert response.status_code == 200
    payload = response.json()
    assert payload["taps"] == {"approved": 1, "offers_applied": 1, "rejected": 1}
    assert payload["rejections"] == {"card_uid_not_found": 1}
    assert payload["fraud_events"] == {"low": 1}
    assert payload["events"]["last_rejection_reason"] == "card_uid_not_found"
    assert payload["events"]["last_approved_at"] is not None


@pytest.mark.asyncio
async def test_prometheus_metrics_render_counters() -> None:
    app = create_app()
    store = get_nfc_store()
    store.record_approval(offer_applied=False)
    store.record_rejection("card_blocked")
    store.record_fraud_event("high")
    store.record_fallback("offer_engine")

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.get("/api/v1/observability/prometheus")

    assert response.status_code == 200
    body = response.text
    assert 'clubpass_nfc_taps{outcome="approved"} 1' in body
    assert 'clubpass_nfc_taps{outcome="rejected"} 1' in body
    assert 'clubpass_nfc_rejections{reason="card_blocked"} 1' in body
    assert 'clubpass_fraud_events{severity="high"} 1' in body
    assert 'clubpass_engine_fallbacks{component="offer_engine"} 1' in body
    assert "# TYPE clubpass_nfc_taps gauge" in body


@pytest.mark.asyncio
async def test_observability_requires_key_when_configured() -> None:
    app = create_app()
    previous_key = settings.pos_api_key
    settings.pos_api_key = "metrics-key"

    try:
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            snapshot = await client.get("/api/v1/observability/nfc")
            metrics = await client.get("/api/v1/observability/prometheus")
            authorised = await client.get("/api/v1/observability/nfc", headers={"X-API-Key": "metrics-key"})
    finally:
        settings.pos_api_key = previous_key

    assert snapshot.status_code == 401
    assert metrics.status_code == 401
    assert authorised.status_code == 200


@pytest.mark.asyncio
async def test_health_endpoints(app_with_db, nfc_world) -> None:
    app, _ = app_with_db

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        health = await client.get("/healthz")
        cold = await client.get("/api/v1/readyz")
        await client.post("/api/v1/nfc/validate", json=_payload(nfc_world))
        warm = await client.get("/api/v1/readyz")

    assert health.json()["status"] == "ok"
    assert health.json()["version"] == "0.1.0"

    assert cold.status_code == 200
    assert cold.json()["status"] == "degraded"
    assert cold.json()["components"]["database"]["status"] == "ready"
    assert cold.json()["components"]["rule_cache"]["status"] == "disabled"

    assert warm.json()["status"] == "ready"
    assert warm.json()["components"]["offer_cache"]["status"] == "ready"
