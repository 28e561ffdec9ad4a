"""NFC card issuance, blocking and reissue."""

from __future__ import annotations

from datetime import datetime
from typing import Sequence
from uuid import UUID

from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from clubpass_api.models.member import Member
from clubpass_api.models.nfc_card import CardStatus, NfcCard
from clubpass_api.services.audit import AuditService
from clubpass_api.services.nfc.timing import utcnow


REPORTABLE_STATUSES = (CardStatus.LOST, CardStatus.STOLEN, CardStatus.DAMAGED)


class CardLifecycleError(RuntimeError):
    """Base error for card lifecycle transitions."""


class CardNotFoundError(CardLifecycleError):
    pass


class CardMemberNotFoundError(CardLifecycleError):
    pass


class CardUidInUseError(CardLifecycleError):
    """UIDs are never reused, including blacklisted ones."""


class InvalidCardTransitionError(CardLifecycleError):
    pass


class CardLifecycleService:
    """Admin operations over ``NfcCard`` rows. Every transition is audited."""

    def __init__(self, session: AsyncSession, *, audit_service: AuditService | None = None) -> None:
        self._session = session
        self._audit = audit_service or AuditService(session)

    async def issue_card(
        self,
        member_id: UUID,
        card_uid: str,
        *,
        is_primary: bool = True,
        expiry_date: datetime | None = None,
        admin_user_id: str | None = None,
    ) -> NfcCard:
        if await self._session.get(Member, member_id) is None:
            raise CardMemberNotFoundError(f"Member {member_id} not found")
        await self._ensure_uid_unused(card_uid)

        if is_primary:
            await self._session.execute(
                update(NfcCard).where(NfcCard.member_id == member_id).values(is_primary=False)
            )

        card = NfcCard(
            member_id=member_id,
            card_uid=card_uid,
            card_status=CardStatus.ACTIVE,
            is_primary=is_primary,
            expiry_date=expiry_date,
        )
        self._session.add(card)
        await self._session.flush()

        await self._audit.log_audit(
            user_type="admin" if admin_user_id else "system",
            user_id=admin_user_id,
            action="card_issued",
            resource_type="nfc_card",
            resource_id=card.id,
            details={"memberId": member_id, "cardUid": card_uid, "isPrimary": is_primary},
        )
        logger.info("cards.issued", card_uid=card_uid, member_id=str(member_id))
        return card

    async def block_card(
        self,
        card_uid: str,
        *,
        reason: str = "admin_block",
        admin_user_id: str | None = None,
    ) -> NfcCard:
        card = await self._get_card(card_uid)
        if CardStatus(card.card_status) != CardStatus.ACTIVE:
            raise InvalidCardTransitionError(f"Card {card_uid} is {CardStatus(card.card_status).value}, not active")

        now = utcnow()
        card.card_status = CardStatus.BLOCKED
        card.blocked_at = now
        card.updated_at = now
        await self._session.flush()

        await self._audit.log_audit(
            user_type="admin",
            user_id=admin_user_id,
            action="card_blocked",
            resource_type="nfc_card",
            resource_id=card.id,
            details={"cardUid": card_uid, "reason": reason},
        )
        logger.info("cards.blocked", card_uid=card_uid, reason=reason)
        return card

    async def report_card(
        self,
        card_uid: str,
        report_type: CardStatus | str,
        *,
        admin_user_id: str | None = None,
    ) -> NfcCard:
        status = CardStatus(report_type)
        if status not in REPORTABLE_STATUSES:
            raise InvalidCardTransitionError(f"Cannot report a card as {status.value}")

        card = await self._get_card(card_uid)
        if CardStatus(card.card_status) == CardStatus.BLACKLISTED:
            raise InvalidCardTransitionError(f"Card {card_uid} is blacklisted")

        now = utcnow()
        card.card_status = status
        card.blocked_at = now
        card.updated_at = now
        await self._session.flush()

        await self._audit.log_audit(
            user_type="admin",
            user_id=admin_user_id,
            action=f"card_{status.value}",
            resource_type="nfc_card",
            resource_id=card.id,
            details={"cardUid": card_uid, "reportType": status.value},
        )
        logger.info("cards.reported", card_uid=card_uid, report_type=status.value)
        return card

    async def reissue_card(
        self,
        old_card_uid: str,
        new_card_uid: str,
        *,
        admin_user_id: str | None = None,
    ) -> NfcCard:
        """Blacklist ``old_card_uid`` and issue ``new_card_uid`` to the same member."""

        old_card = await self._get_card(old_card_uid)
        await self._ensure_uid_unused(new_card_uid)

        now = utcnow()
        old_card.card_status = CardStatus.BLACKLISTED
        old_card.updated_at = now
        if old_card.blocked_at is None:
            old_card.blocked_at = now

        new_card = NfcCard(
            member_id=old_card.member_id,
            card_uid=new_card_uid,
            card_status=CardStatus.ACTIVE,
            is_primary=old_card.is_primary,
            expiry_date=old_card.expiry_date,
            previous_uid=old_card_uid,
        )
        if old_card.is_primary:
            old_card.is_primary = False
        self._session.add(new_card)
        await self._session.flush()

        await self._audit.log_audit(
            user_type="admin",
            user_id=admin_user_id,
            action="card_reissued",
            resource_type="nfc_card",
            resource_id=new_card.id,
            details={"oldCardUid": old_card_uid, "newCardUid": new_card_uid, "memberId": old_card.member_id},
        )
        logger.info("cards.reissued", old_card_uid=old_card_uid, new_card_uid=new_card_uid)
        return new_card

    async def unblock_card(self, card_uid: str, *, admin_user_id: str | None = None) -> NfcCard:
        card = await self._get_card(card_uid)
        if CardStatus(card.card_status) != CardStatus.BLOCKED:
            raise InvalidCardTransitionError(
                f"Only blocked cards can be unblocked; {card_uid} is {CardStatus(card.card_status).value}"
            )

        card.card_status = CardStatus.ACTIVE
        card.blocked_at = None
        card.updated_at = utcnow()
        await self._session.flush()

        await self._audit.log_audit(
            user_type="admin",
            user_id=admin_user_id,
            action="card_unblocked",
            resource_type="nfc_card",
            resource_id=card.id,
            details={"cardUid": card_uid},
        )
        logger.info("cards.unblocked", card_uid=card_uid)
        return card

    async def list_member_cards(self, member_id: UUID) -> Sequence[NfcCard]:
        stmt = (
            select(NfcCard)
            .where(NfcCard.member_id == member_id)
            .order_by(NfcCard.is_primary.desc(), NfcCard.issued_at.desc())
        )
        result = await self._session.execute(stmt)
        return result.scalars().all()

    async def _get_card(self, card_uid: str) -> NfcCard:
        stmt = select(NfcCard).where(NfcCard.card_uid == card_uid)
        card = (await self._session.execute(stmt)).scalars().first()
        if card is None:
            raise CardNotFoundError(f"Card {card_uid} not found")
        return card

    async def _ensure_uid_unused(self, card_uid: str) -> None:
        stmt = select(NfcCard.id).where(NfcCard.card_uid == card_uid)
        if (await self._session.execute(stmt)).first() is not None:
            raise CardUidInUseError(f"Card UID {card_uid} is already on record")


__all__ = [
    "CardLifecycleError",
    "CardLifecycleService",
    "CardMemberNotFoundError",
    "CardNotFoundError",
    "CardUidInUseError",
    "InvalidCardTransitionError",
]
