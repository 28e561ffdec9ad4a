from __future__ import annotations

from datetime import datetime, timezone
from uuid import uuid4

import pytest
from sqlalchemy import select

from clubpass_api.models import AuditLog, CardStatus, Member, MembershipType, NfcCard
from clubpass_api.services.nfc.cards import (
    CardLifecycleService,
    CardMemberNotFoundError,
    CardNotFoundError,
    CardUidInUseError,
    InvalidCardTransitionError,
)


async def _seed_member(session) -> Member:
    member = Member(email=f"{uuid4().hex}@example.com", membership_type=MembershipType.LIFETIME, country="SA")
    session.add(member)
    await session.flush()
    return member


async def _actions(session) -> list[str]:
    rows = (await session.execute(select(AuditLog.action))).scalars().all()
    return sorted(rows)


@pytest.mark.asyncio
async def test_issue_card_demotes_previous_primary(session_factory) -> None:
    async with session_factory() as session:
        member = await _seed_member(session)
        service = CardLifecycleService(session)

        first = await service.issue_card(member.id, "UID-1", admin_user_id="ops-1")
        second = await service.issue_card(
            member.id,
            "UID-2",
            expiry_date=datetime(2028, 1, 1, tzinfo=timezone.utc),
        )

        await session.refresh(first)
        assert first.is_primary is False
        assert second.is_primary is True
        assert second.card_status == CardStatus.ACTIVE

        cards = await service.list_member_cards(member.id)
        assert [card.card_uid for card in cards] == ["UID-2", "UID-1"]
        assert await _actions(session) == ["card_issued", "card_issued"]


@pytest.mark.asyncio
async def test_issue_card_validation(session_factory) -> None:
    async with session_factory() as session:
        member = await _seed_member(session)
        service = CardLifecycleService(session)
        await service.issue_card(member.id, "UID-1")

        with pytest.raises(CardMemberNotFoundError):
            await service.issue_card(uuid4(), "UID-9")
        with pytest.raises(CardUidInUseError):
            await service.issue_card(member.id, "UID-1")


@pytest.mark.asyncio
async def test_block_then_unblock(session_factory) -> None:
    async with session_factory() as session:
        member = await _seed_member(session)
        service = CardLifecycleService(session)
        await service.issue_card(member.id, "UID-1")

        blocked = await service.block_card("UID-1", reason="chargeback", admin_user_id="ops-1")
        assert blocked.card_status == CardStatus.BLOCKED
        assert blocked.blocked_at is not None

        with pytest.raises(InvalidCardTransitionError):
            await service.block_card("UID-1")

        unblocked = await service.unblock_card("UID-1")
        assert unblocked.card_status == CardStatus.ACTIVE
        assert unblocked.blocked_at is None

        with pytest.raises(InvalidCardTransitionError):
            await service.unblock_card("UID-1")

        audit = (
            await session.execute(select(AuditLog).where(AuditLog.action == "card_blocked"))
        ).scalar_one()
        assert audit.user_id == "ops-1"
        assert audit.details == {"cardUid": "UID-1", "reason": "chargeback"}


@pytest.mark.asyncio
async def test_report_card(session_factory) -> None:
    async with session_factory() as session:
        member = await _seed_member(session)
        service = CardLifecycleService(session)
        await service.issue_card(member.id, "UID-1")

        with pytest.raises(InvalidCardTransitionError):
            await service.report_card("UID-1", CardStatus.BLOCKED)

        lost = await service.report_card("UID-1", "lost")
        assert lost.card_status == CardStatus.LOST
        assert lost.blocked_at is not None

        # A lost card cannot be unblocked; it has to be reissued
        with pytest.raises(InvalidCardTransitionError):
            await service.unblock_card("UID-1")

        assert "card_lost" in await _actions(session)


@pytest.mark.asyncio
async def test_reissue_blacklists_old_uid(session_factory) -> None:
    async with session_factory() as session:
        member = await _seed_member(session)
        service = CardLifecycleService(session)
        expiry = datetime(2029, 6, 30, tzinfo=timezone.utc)
        old = await service.issue_card(member.id, "UID-OLD", expiry_date=expiry)
        await service.report_card("UID-OLD", CardStatus.STOLEN)
        reported_at = old.blocked_at

        new = await service.reissue_card("UID-OLD", "UID-NEW", admin_user_id="ops-2")

        assert old.card_status == CardStatus.BLACKLISTED
        assert old.blocked_at == reported_at
        assert old.is_primary is False
        assert new.card_status == CardStatus.ACTIVE
        assert new.is_primary is True
        assert new.previous_uid == "UID-OLD"
        assert new.member_id == member.id
        assert new.expiry_date == expiry

        with pytest.raises(InvalidCardTransitionError):
            await service.report_card("UID-OLD", "lost")
        with pytest.raises(CardUidInUseError):
            await service.reissue_card("UID-NEW", "UID-OLD")


@pytest.mark.asyncio
async def test_unknown_card_raises(session_factory) -> None:
    async with session_factory() as session:
        service = CardLifecycleService(session)

        with pytest.raises(CardNotFoundError):
            await service.block_card("MISSING")
        with pytest.raises(CardNotFoundError):
            await service.reissue_card("MISSING", "UID-NEW")

        assert (await session.execute(select(NfcCard))).scalars().all() == []
