from __future__ import annotations

from uuid import uuid4

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select

from clubpass_api.core.settings import settings
from clubpass_api.models import AuditLog, FraudEvent, FraudSeverity
from clubpass_api.services.nfc.country_rules import CountryRuleEngine, CountryRuleSnapshot


async def _seed_fraud_events(session_factory, member_id) -> list[FraudEvent]:
    async with session_factory() as session:
        events = [
            FraudEvent(
                member_id=member_id,
                card_uid="CARD123456789",
                event_type="country_mismatch",
                severity=FraudSeverity.LOW,
                fraud_score=10,
                metadata_json={"vendorCountry": None},
                action_taken="none",
            ),
            FraudEvent(
                member_id=member_id,
                card_uid="CARD123456789",
                event_type="cloning_attempt",
                severity=FraudSeverity.HIGH,
                fraud_score=120,
                metadata_json={"vendorCountry": "AE"},
                action_taken="block_card",
            ),
        ]
        session.add_all(events)
        await session.commit()
    return events


@pytest.mark.asyncio
async def test_country_rules_upsert_and_read(app_with_db, nfc_world) -> None:
    app, session_factory = app_with_db

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        before = await client.get("/api/v1/admin/country-rules/ae")
        updated = await client.put(
            "/api/v1/admin/country-rules/ae",
            json={
                "countryName": "United Arab Emirates",
                "allowedMembershipTypes": ["lifetime"],
                "maxDiscountPercentage": 15,
                "currency": "AED",
                "blackoutPeriods": {"days": [5]},
            },
        )
        after = await client.get("/api/v1/admin/country-rules/AE")
        missing = await client.get("/api/v1/admin/country-rules/ZZ")

    assert before.json()["maxDiscountPercentage"] == 25.0
    assert updated.status_code == 200
    assert updated.json()["countryCode"] == "AE"
    # The rule cache lives on the app; the upsert must drop the stale copy.
    assert after.json()["maxDiscountPercentage"] == 15.0
    assert after.json()["allowedMembershipTypes"] == ["lifetime"]
    assert after.json()["blackoutPeriods"] == {"days": [5]}
    assert missing.status_code == 404

    async with session_factory() as session:
        audit = (
            await session.execute(select(AuditLog).where(AuditLog.action == "country_rules_updated"))
        ).scalar_one()
    assert audit.resource_id == "AE"


@pytest.mark.asyncio
async def test_country_rules_upsert_drops_rules_cached_before_commit(app_with_db, nfc_world, monkeypatch) -> None:
    app, _ = app_with_db
    original_upsert = CountryRuleEngine.upsert_country_rules

    async def upsert_then_recache(self, **kwargs):
        rule = await original_upsert(self, **kwargs)
        # A concurrent tap reading the old row before the admin commit lands.
        app.state.rule_cache.set(
            "AE",
            CountryRuleSnapshot(
                country_code="AE",
                country_name="United Arab Emirates",
                allowed_membership_types=["annual", "lifetime"],
                max_discount_percentage=25.0,
                currency="AED",
            ),
        )
        return rule

    monkeypatch.setattr(CountryRuleEngine, "upsert_country_rules", upsert_then_recache)

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        before = await client.get("/api/v1/admin/country-rules/AE")
        updated = await client.put(
            "/api/v1/admin/country-rules/AE",
            json={
                "countryName": "United Arab Emirates",
                "allowedMembershipTypes": ["annual", "lifetime"],
                "maxDiscountPercentage": 15,
                "currency": "AED",
            },
        )
        after = await client.get("/api/v1/admin/country-rules/AE")

    assert before.json()["maxDiscountPercentage"] == 25.0
    assert updated.status_code == 200
    assert after.json()["maxDiscountPercentage"] == 15.0


@pytest.mark.asyncio
async def test_country_rule_payload_validation(app_with_db) -> None:
    app, _ = app_with_db

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        too_generous = await client.put(
            "/api/v1/admin/country-rules/QA",
            json={"allowedMembershipTypes": ["annual"], "maxDiscountPercentage": 120},
        )
        unknown_tier = await client.put(
            "/api/v1/admin/country-rules/QA",
            json={"allowedMembershipTypes": ["platinum"], "maxDiscountPercentage": 10},
        )

    assert too_generous.status_code == 422
    assert unknown_tier.status_code == 422


@pytest.mark.asyncio
async def test_fraud_event_review(app_with_db, nfc_world) -> None:
    app, session_factory = app_with_db
    low, high = await _seed_fraud_events(session_factory, nfc_world.member.id)

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        listed = await client.get("/api/v1/admin/fraud-events", params={"memberId": str(nfc_world.member.id)})
        high_only = await client.get("/api/v1/admin/fraud-events", params={"severity": "high"})
        resolved = await client.post(
            f"/api/v1/admin/fraud-events/{high.id}/resolve",
            json={"resolvedBy": "analyst-1", "notes": "confirmed travel"},
        )
        again = await client.post(
            f"/api/v1/admin/fraud-events/{high.id}/resolve",
            json={"resolvedBy": "analyst-1"},
        )
        missing = await client.post(
            f"/api/v1/admin/fraud-events/{uuid4()}/resolve",
            json={"resolvedBy": "analyst-1"},
        )
        still_open = await client.get("/api/v1/admin/fraud-events", params={"resolved": "false"})

    assert listed.status_code == 200
    assert len(listed.json()) == 2
    assert [event["eventType"] for event in high_only.json()] == ["cloning_attempt"]
    assert high_only.json()[0]["metadata"] == {"vendorCountry": "AE"}

    assert resolved.status_code == 200
    body = resolved.json()
    assert body["resolved"] is True
    assert body["resolvedBy"] == "analyst-1"
    assert body["resolutionNotes"] == "confirmed travel"
    assert body["fraudScore"] == 120

    assert again.status_code == 409
    assert missing.status_code == 404
    assert [event["id"] for event in still_open.json()] == [str(low.id)]


@pytest.mark.asyncio
async def test_card_lifecycle_endpoints(app_with_db, nfc_world) -> None:
    app, _ = app_with_db
    member_id = str(nfc_world.member.id)

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        issued = await client.post(
            "/api/v1/admin/cards",
            json={"memberId": member_id, "cardUid": "SPARE-1", "isPrimary": False},
        )
        duplicate = await client.post("/api/v1/admin/cards", json={"memberId": member_id, "cardUid": "SPARE-1"})
        orphan = await client.post("/api/v1/admin/cards", json={"memberId": str(uuid4()), "cardUid": "SPARE-2"})

        blocked = await client.post("/api/v1/admin/cards/SPARE-1/block", json={"reason": "lost_wallet"})
        blocked_again = await client.post("/api/v1/admin/cards/SPARE-1/block")
        unblocked = await client.post("/api/v1/admin/cards/SPARE-1/unblock")

        reported = await client.post("/api/v1/admin/cards/CARD123456789/report", json={"reportType": "stolen"})
        bad_report = await client.post("/api/v1/admin/cards/SPARE-1/report", json={"reportType": "blocked"})
        reissued = await client.post(
            "/api/v1/admin/cards/CARD123456789/reissue",
            json={"newCardUid": "CARD987654321", "adminUserId": "ops-1"},
        )
        unknown = await client.post("/api/v1/admin/cards/NOPE/block")

        cards = await client.get(f"/api/v1/admin/members/{member_id}/cards")

    assert issued.status_code == 201
    assert issued.json()["cardStatus"] == "active"
    assert issued.json()["isPrimary"] is False
    assert duplicate.status_code == 409
    assert orphan.status_code == 404

    assert blocked.json()["cardStatus"] == "blocked"
    assert blocked.json()["blockedAt"] is not None
    assert blocked_again.status_code == 409
    assert unblocked.json()["cardStatus"] == "active"
    assert unblocked.json()["blockedAt"] is None

    assert reported.json()["cardStatus"] == "stolen"
    assert bad_report.status_code == 422
    assert reissued.status_code == 201
    assert reissued.json()["previousUid"] == "CARD123456789"
    assert reissued.json()["isPrimary"] is True
    assert unknown.status_code == 404

    by_uid = {card["cardUid"]: card for card in cards.json()}
    assert by_uid["CARD123456789"]["cardStatus"] == "blacklisted"
    assert by_uid["CARD987654321"]["cardStatus"] == "active"
    assert by_uid["SPARE-1"]["cardStatus"] == "active"
    assert cards.json()[0]["cardUid"] == "CARD987654321"


@pytest.mark.asyncio
async def test_audit_log_listing(app_with_db, nfc_world) -> None:
    app, _ = app_with_db

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        await client.post("/api/v1/admin/cards/CARD123456789/block", json={"adminUserId": "ops-7"})
        response = await client.get("/api/v1/admin/audit-logs", params={"action": "card_blocked"})

    assert response.status_code == 200
    entries = response.json()
    assert len(entries) == 1
    assert entries[0]["userId"] == "ops-7"
    assert entries[0]["resourceType"] == "nfc_card"


@pytest.mark.asyncio
async def test_admin_routes_share_pos_api_key(app_with_db) -> None:
    app, _ = app_with_db
    previous_key = settings.pos_api_key
    settings.pos_api_key = "admin-secret"

    try:
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            denied = await client.get("/api/v1/admin/fraud-events")
            allowed = await client.get("/api/v1/admin/fraud-events", headers={"X-API-Key": "admin-secret"})
    finally:
        settings.pos_api_key = previous_key

    assert denied.status_code == 401
    assert allowed.status_code == 200
    assert allowed.json() == []
