"""Ordered validation pipeline run for every POS tap."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from clubpass_api.core.settings import Settings, settings
from clubpass_api.models.member import FraudStatus, Member
from clubpass_api.models.nfc_card import CardStatus, NfcCard
from clubpass_api.models.nfc_tap_log import NfcTapLog, TapValidationResult
from clubpass_api.models.vendor import Vendor
from clubpass_api.observability.nfc import NfcObservabilityStore, get_nfc_store
from clubpass_api.services.audit import AuditService
from clubpass_api.services.nfc.cache import TTLCache
from clubpass_api.services.nfc.country_rules import CountryRuleEngine
from clubpass_api.services.nfc.fraud_engine import FraudDetectionEngine, TapContext
from clubpass_api.services.nfc.offer_engine import BLOCKING_FRAUD_SCORE, OfferEngine, OfferQuote
from clubpass_api.services.nfc.timing import as_utc, utcnow


@dataclass(slots=True)
class TapRequest:
    card_uid: str
    vendor_id: UUID
    pos_reader_id: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    transaction_amount: float | None = None


@dataclass(slots=True)
class TapDecision:
    approved: bool
    timestamp: datetime
    reason: str | None = None
    member_id: UUID | None = None
    membership_type: str | None = None
    offer: OfferQuote | None = None
    fraud_score: int = 0
    currency: str | None = None
    tap_log_id: UUID | None = None
    error: str | None = None

    def as_response(self) -> dict[str, Any]:
        """POS payload; internal error text never leaves the service."""

        if not self.approved:
            return {"approved": False, "reason": self.reason, "fraudScore": self.fraud_score}
        return {
            "approved": True,
            "memberId": str(self.member_id) if self.member_id else None,
            "membershipType": self.membership_type,
            "offer": self.offer.as_dict() if self.offer else None,
            "fraudScore": self.fraud_score,
            "timestamp": self.timestamp.isoformat(),
            "currency": self.currency,
        }


@dataclass(slots=True)
class _MemberSnapshot:
    id: UUID
    membership_type: str
    fraud_status: str


class NFCValidationPipeline:
    """Runs card, member, fraud, vendor, country and offer stages in strict order.

    The first failing stage ends the run with a rejection. Every run writes
    exactly one ``NfcTapLog`` row. Unexpected errors are reported as a
    ``validation_error`` rejection instead of propagating to the POS.
    """

    def __init__(
        self,
        session: AsyncSession,
        *,
        rule_cache: TTLCache | None = None,
        offer_cache: TTLCache | None = None,
        fraud_engine: FraudDetectionEngine | None = None,
        country_engine: CountryRuleEngine | None = None,
        offer_engine: OfferEngine | None = None,
        audit_service: AuditService | None = None,
        store: NfcObservabilityStore | None = None,
        config: Settings | None = None,
    ) -> None:
        config = config or settings
        self._session = session
        self._audit = audit_service or AuditService(session)
        self._store = store or get_nfc_store()
        self._fraud = fraud_engine or FraudDetectionEngine(
            session,
            audit_service=self._audit,
            store=self._store,
        )
        self._countries = country_engine or CountryRuleEngine(
            session,
            cache=rule_cache or TTLCache(timedelta(seconds=config.country_rule_cache_ttl_seconds)),
            store=self._store,
        )
        self._offers = offer_engine or OfferEngine(
            session,
            cache=offer_cache or TTLCache(timedelta(seconds=config.offer_cache_ttl_seconds)),
            usage_history_limit=config.offer_usage_history_limit,
            store=self._store,
        )

    async def validate_tap(self, request: TapRequest, *, now: datetime | None = None) -> TapDecision:
        timestamp = as_utc(now) or utcnow()
        try:
            return await self._run(request, timestamp)
        except Exception as error:
            logger.exception("nfc.pipeline_failed", card_uid=request.card_uid, vendor_id=str(request.vendor_id))
            await self._session.rollback()
            decision = TapDecision(
                approved=False,
                timestamp=timestamp,
                reason="validation_error",
                error=str(error),
            )
            await self._log_rejection(request, decision)
            return decision

    async def _run(self, request: TapRequest, timestamp: datetime) -> TapDecision:
        # 1. card UID
        stmt = select(NfcCard).where(NfcCard.card_uid == request.card_uid)
        card = (await self._session.execute(stmt)).scalars().first()
        if card is None:
            return await self._reject(request, timestamp, "card_uid_not_found")
        member_id = card.member_id

        # 2. card status, re-read against the owning member
        status_reason = await self._check_card_status(request.card_uid, member_id, timestamp)
        if status_reason:
            return await self._reject(request, timestamp, status_reason, member_id=member_id)

        # 3. member
        member_row = await self._session.get(Member, member_id)
        if member_row is None:
            return await self._reject(request, timestamp, "member_not_found")
        member = _MemberSnapshot(
            id=member_row.id,
            membership_type=_enum_value(member_row.membership_type),
            fraud_status=_enum_value(member_row.fraud_status),
        )

        # 4a. fraud pass without vendor location; informational only
        context = TapContext(
            member_id=member.id,
            card_uid=request.card_uid,
            vendor_id=request.vendor_id,
            pos_reader_id=request.pos_reader_id,
            latitude=request.latitude,
            longitude=request.longitude,
            timestamp=timestamp,
        )
        await self._fraud.detect_fraud(context)

        # 5. vendor
        vendor = await self._session.get(Vendor, request.vendor_id)
        if vendor is None:
            return await self._reject(request, timestamp, "vendor_not_found", member_id=member.id)

        # 4b. fraud pass with vendor location; this one gates
        context.vendor_country = vendor.country
        context.vendor_city = vendor.city
        fraud = await self._fraud.detect_fraud(context)
        if not fraud.valid:
            return await self._reject(
                request,
                timestamp,
                fraud.reason or "fraud_detected",
                member_id=member.id,
                membership_type=member.membership_type,
                fraud_score=fraud.fraud_score,
                fraud_flags=fraud.fraud_flags,
            )

        # 6. country rules
        rules = await self._countries.validate_country_rules(
            request.vendor_id,
            member.id,
            member.membership_type,
            current_time=timestamp,
        )
        if not rules.valid:
            return await self._reject(
                request,
                timestamp,
                rules.reason or "validation_error",
                member_id=member.id,
                membership_type=member.membership_type,
                fraud_score=fraud.fraud_score,
                fraud_flags=fraud.fraud_flags,
            )

        # 7. offer; a missing offer never rejects the tap
        offer: OfferQuote | None = None
        if fraud.fraud_score < BLOCKING_FRAUD_SCORE and member.fraud_status != FraudStatus.BLOCKED.value:
            offer = await self._offers.calculate_best_offer(
                member_id=member.id,
                membership_type=member.membership_type,
                vendor_id=request.vendor_id,
                vendor_category=vendor.category,
                country_code=rules.country_code,
                fraud_score=fraud.fraud_score,
                fraud_status=member.fraud_status,
                max_discount_percentage=rules.max_discount_percentage or 0.0,
                current_time=timestamp,
            )

        tap_log = NfcTapLog(
            member_id=member.id,
            card_uid=request.card_uid,
            vendor_id=request.vendor_id,
            vendor_country=vendor.country,
            vendor_city=vendor.city,
            pos_reader_id=request.pos_reader_id,
            tap_timestamp=timestamp,
            latitude=request.latitude,
            longitude=request.longitude,
            fraud_score=fraud.fraud_score,
            fraud_flags=list(fraud.fraud_flags),
            validation_result=TapValidationResult.APPROVED,
            offer_applied=offer.as_dict() if offer else None,
        )
        self._session.add(tap_log)
        await self._session.flush()

        if offer and request.transaction_amount:
            amount = float(request.transaction_amount)
            discount = offer.discount_amount or amount * (offer.discount_percentage / 100)
            await self._offers.log_offer_usage(
                offer_id=offer.offer_id,
                member_id=member.id,
                vendor_id=request.vendor_id,
                nfc_tap_log_id=tap_log.id,
                discount_amount=discount,
                original_amount=amount,
                final_amount=amount - discount,
            )

        await self._audit.log_audit(
            user_type="system",
            action="nfc_tap_validated",
            resource_type="nfc_tap",
            resource_id=tap_log.id,
            details={
                "memberId": member.id,
                "cardUid": request.card_uid,
                "vendorId": request.vendor_id,
                "approved": True,
                "offerApplied": offer is not None,
            },
        )

        self._store.record_approval(offer_applied=offer is not None)
        logger.info(
            "nfc.tap_approved",
            card_uid=request.card_uid,
            member_id=str(member.id),
            vendor_id=str(request.vendor_id),
            fraud_score=fraud.fraud_score,
            offer_code=offer.offer_code if offer else None,
        )
        return TapDecision(
            approved=True,
            timestamp=timestamp,
            member_id=member.id,
            membership_type=member.membership_type,
            offer=offer,
            fraud_score=fraud.fraud_score,
            currency=rules.currency,
            tap_log_id=tap_log.id,
        )

    async def _check_card_status(self, card_uid: str, member_id: UUID, now: datetime) -> str | None:
        stmt = select(NfcCard).where(NfcCard.card_uid == card_uid, NfcCard.member_id == member_id)
        card = (await self._session.execute(stmt)).scalars().first()
        if card is None:
            return "card_not_linked_to_member"

        status = CardStatus(card.card_status)
        if status != CardStatus.ACTIVE:
            return f"card_{status.value}"
        if card.expiry_date and as_utc(card.expiry_date) < now:
            return "card_expired"
        if card.blocked_at is not None:
            return "card_blocked"
        return None

    async def _reject(
        self,
        request: TapRequest,
        timestamp: datetime,
        reason: str,
        *,
        member_id: UUID | None = None,
        membership_type: str | None = None,
        fraud_score: int = 0,
        fraud_flags: list[str] | None = None,
    ) -> TapDecision:
        decision = TapDecision(
            approved=False,
            timestamp=timestamp,
            reason=reason,
            member_id=member_id,
            membership_type=membership_type,
            fraud_score=fraud_score,
        )
        await self._log_rejection(request, decision, fraud_flags=fraud_flags)
        return decision

    async def _log_rejection(
        self,
        request: TapRequest,
        decision: TapDecision,
        *,
        fraud_flags: list[str] | None = None,
    ) -> None:
        self._store.record_rejection(decision.reason)
        logger.info(
            "nfc.tap_rejected",
            card_uid=request.card_uid,
            vendor_id=str(request.vendor_id),
            reason=decision.reason,
            fraud_score=decision.fraud_score,
        )
        try:
            async with self._session.begin_nested():
                tap_log = NfcTapLog(
                    member_id=decision.member_id,
                    card_uid=request.card_uid,
                    vendor_id=request.vendor_id,
                    pos_reader_id=request.pos_reader_id,
                    tap_timestamp=decision.timestamp,
                    fraud_score=decision.fraud_score,
                    fraud_flags=list(fraud_flags or []),
                    validation_result=TapValidationResult.REJECTED,
                    rejection_reason=decision.reason,
                )
                self._session.add(tap_log)
                await self._session.flush()
            decision.tap_log_id = tap_log.id
        except Exception as error:
            logger.warning("nfc.rejection_log_failed", card_uid=request.card_uid, error=str(error))


def _enum_value(value: Any) -> Any:
    return getattr(value, "value", value)


__all__ = ["NFCValidationPipeline", "TapDecision", "TapRequest"]
