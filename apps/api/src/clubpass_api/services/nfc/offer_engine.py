"""Selects the single best offer for a tap and records redemptions."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any
from uuid import UUID

from loguru import logger
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from clubpass_api.models.member import FraudStatus, MembershipType
from clubpass_api.models.nfc_tap_log import OfferUsageLog
from clubpass_api.models.offer import Offer, OfferType
from clubpass_api.observability.nfc import NfcObservabilityStore, get_nfc_store
from clubpass_api.services.nfc.cache import TTLCache
from clubpass_api.services.nfc.timing import as_utc, hour_in_range, sunday_first_weekday, utcnow


BLOCKING_FRAUD_SCORE = 90
FLASH_PRIORITY_BOOST = 10
VIP_ACCESS_PRIORITY_BOOST = 5


@dataclass(slots=True)
class OfferCandidate:
    """Detached offer snapshot held in the candidate cache."""

    id: UUID
    offer_code: str
    offer_type: OfferType
    priority: int
    created_at: datetime | None
    discount_percentage: float | None = None
    discount_amount: float | None = None
    min_purchase_amount: float | None = None
    max_discount_amount: float | None = None
    usage_limit: int | None = None
    valid_from: datetime | None = None
    valid_until: datetime | None = None
    time_restrictions: dict[str, Any] | None = None
    conditions: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_model(cls, offer: Offer) -> "OfferCandidate":
        return cls(
            id=offer.id,
            offer_code=offer.offer_code,
            offer_type=OfferType(offer.offer_type),
            priority=offer.priority or 0,
            created_at=as_utc(offer.created_at),
            discount_percentage=_as_float(offer.discount_percentage),
            discount_amount=_as_float(offer.discount_amount),
            min_purchase_amount=_as_float(offer.min_purchase_amount),
            max_discount_amount=_as_float(offer.max_discount_amount),
            usage_limit=offer.usage_limit,
            valid_from=as_utc(offer.valid_from),
            valid_until=as_utc(offer.valid_until),
            time_restrictions=dict(offer.time_restrictions) if offer.time_restrictions else None,
            conditions=dict(offer.conditions or {}),
        )

    @property
    def boosted_priority(self) -> int:
        if self.offer_type == OfferType.FLASH:
            return self.priority + FLASH_PRIORITY_BOOST
        if self.offer_type == OfferType.VIP_ACCESS:
            return self.priority + VIP_ACCESS_PRIORITY_BOOST
        return self.priority


@dataclass(slots=True)
class OfferQuote:
    offer_id: UUID
    offer_code: str
    offer_type: OfferType
    discount_percentage: float
    discount_amount: float
    min_purchase_amount: float
    max_discount_amount: float | None
    valid_until: datetime | None
    conditions: dict[str, Any]

    def as_dict(self) -> dict[str, Any]:
        return {
            "offerId": str(self.offer_id),
            "offerCode": self.offer_code,
            "offerType": self.offer_type.value,
            "discountPercentage": self.discount_percentage,
            "discountAmount": self.discount_amount,
            "minPurchaseAmount": self.min_purchase_amount,
            "maxDiscountAmount": self.max_discount_amount,
            "validUntil": self.valid_until.isoformat() if self.valid_until else None,
            "conditions": dict(self.conditions),
        }


class OfferEngine:
    """Ranks eligible offers for a member at a vendor.

    Candidates are loaded per ``(membership_type, vendor_category, country_code)``
    and cached; validity windows and time restrictions are re-evaluated on
    every call. Internal errors resolve to "no offer".
    """

    def __init__(
        self,
        session: AsyncSession,
        *,
        cache: TTLCache[list[OfferCandidate]],
        usage_history_limit: int = 100,
        store: NfcObservabilityStore | None = None,
    ) -> None:
        self._session = session
        self._cache = cache
        self._usage_history_limit = usage_history_limit
        self._store = store or get_nfc_store()

    async def calculate_best_offer(
        self,
        *,
        member_id: UUID,
        membership_type: MembershipType | str | None,
        vendor_id: UUID | None,
        vendor_category: str | None,
        country_code: str | None,
        fraud_score: int,
        fraud_status: FraudStatus | str | None,
        max_discount_percentage: float,
        current_time: datetime | None = None,
    ) -> OfferQuote | None:
        if _enum_value(fraud_status) == FraudStatus.BLOCKED.value or fraud_score >= BLOCKING_FRAUD_SCORE:
            return None

        now = as_utc(current_time) or utcnow()
        try:
            usage_counts = await self._usage_counts(member_id)
            candidates = await self.get_eligible_offers(
                membership_type=membership_type,
                vendor_category=vendor_category,
                country_code=country_code,
                current_time=now,
            )

            eligible = [
                candidate
                for candidate in candidates
                if not candidate.usage_limit or usage_counts[candidate.id] < candidate.usage_limit
            ]
            if not eligible:
                return None

            best = min(eligible, key=_ranking_key)
            quote = _build_quote(best, max_discount_percentage)
            logger.debug(
                "offers.selected",
                member_id=str(member_id),
                vendor_id=str(vendor_id) if vendor_id else None,
                offer_code=quote.offer_code,
                candidates=len(eligible),
            )
            return quote
        except Exception:
            logger.exception("offers.calculation_failed", member_id=str(member_id))
            self._store.record_fallback("offer_engine")
            return None

    async def get_eligible_offers(
        self,
        *,
        membership_type: MembershipType | str | None,
        vendor_category: str | None,
        country_code: str | None,
        current_time: datetime,
    ) -> list[OfferCandidate]:
        key = (_enum_value(membership_type), vendor_category, country_code)
        candidates = self._cache.get(key)
        if candidates is None:
            candidates = await self._load_candidates(
                membership_type=membership_type,
                vendor_category=vendor_category,
                country_code=country_code,
                current_time=current_time,
            )
            self._cache.set(key, candidates)

        return [candidate for candidate in candidates if is_offer_time_valid(candidate, current_time)]

    async def _load_candidates(
        self,
        *,
        membership_type: MembershipType | str | None,
        vendor_category: str | None,
        country_code: str | None,
        current_time: datetime,
    ) -> list[OfferCandidate]:
        stmt = select(Offer).where(
            Offer.is_active.is_(True),
            or_(Offer.valid_from.is_(None), Offer.valid_from <= current_time),
            or_(Offer.valid_until.is_(None), Offer.valid_until >= current_time),
        )
        if membership_type:
            stmt = stmt.where(
                or_(Offer.membership_type.is_(None), Offer.membership_type == MembershipType(_enum_value(membership_type)))
            )
        if vendor_category:
            stmt = stmt.where(or_(Offer.vendor_category.is_(None), Offer.vendor_category == vendor_category))
        if country_code:
            stmt = stmt.where(or_(Offer.country_code.is_(None), Offer.country_code == country_code))

        offers = (await self._session.execute(stmt)).scalars().all()
        return [OfferCandidate.from_model(offer) for offer in offers]

    async def _usage_counts(self, member_id: UUID) -> Counter:
        stmt = (
            select(OfferUsageLog.offer_id)
            .where(OfferUsageLog.member_id == member_id)
            .order_by(OfferUsageLog.used_at.desc())
            .limit(self._usage_history_limit)
        )
        rows = (await self._session.execute(stmt)).scalars().all()
        return Counter(rows)

    async def log_offer_usage(
        self,
        *,
        offer_id: UUID,
        member_id: UUID,
        vendor_id: UUID | None,
        nfc_tap_log_id: UUID | None,
        discount_amount: float | Decimal,
        original_amount: float | Decimal,
        final_amount: float | Decimal,
    ) -> OfferUsageLog:
        usage = OfferUsageLog(
            offer_id=offer_id,
            member_id=member_id,
            vendor_id=vendor_id,
            nfc_tap_log_id=nfc_tap_log_id,
            discount_amount=_as_money(discount_amount),
            original_amount=_as_money(original_amount),
            final_amount=_as_money(final_amount),
        )
        self._session.add(usage)
        await self._session.flush()
        logger.info(
            "offers.usage_logged",
            offer_id=str(offer_id),
            member_id=str(member_id),
            discount_amount=float(usage.discount_amount),
        )
        return usage

    def clear_cache(self) -> None:
        self._cache.invalidate()


def is_offer_time_valid(candidate: OfferCandidate, current_time: datetime) -> bool:
    """Validity window plus optional weekday (Sunday=0) and hour-range restrictions, in UTC."""

    moment = as_utc(current_time)
    if candidate.valid_from is not None and candidate.valid_from > moment:
        return False
    if candidate.valid_until is not None and candidate.valid_until < moment:
        return False

    restrictions = candidate.time_restrictions
    if not restrictions:
        return True

    days = restrictions.get("days")
    if isinstance(days, list) and sunday_first_weekday(moment) not in days:
        return False

    ranges = restrictions.get("timeRanges")
    if isinstance(ranges, list) and not any(hour_in_range(moment.hour, item) for item in ranges):
        return False
    return True


def _ranking_key(candidate: OfferCandidate) -> tuple:
    created_at = candidate.created_at or datetime.max.replace(tzinfo=timezone.utc)
    return (-candidate.boosted_priority, created_at, str(candidate.id))


def _build_quote(candidate: OfferCandidate, max_discount_percentage: float) -> OfferQuote:
    discount_percentage = 0.0
    discount_amount = 0.0
    if candidate.discount_percentage:
        discount_percentage = min(candidate.discount_percentage, float(max_discount_percentage))
    elif candidate.discount_amount:
        discount_amount = candidate.discount_amount
        if candidate.max_discount_amount is not None:
            discount_amount = min(discount_amount, candidate.max_discount_amount)

    return OfferQuote(
        offer_id=candidate.id,
        offer_code=candidate.offer_code,
        offer_type=candidate.offer_type,
        discount_percentage=discount_percentage,
        discount_amount=discount_amount,
        min_purchase_amount=candidate.min_purchase_amount or 0.0,
        max_discount_amount=candidate.max_discount_amount,
        valid_until=candidate.valid_until,
        conditions=dict(candidate.conditions),
    )


def _as_float(value: Decimal | float | None) -> float | None:
    if value is None:
        return None
    return float(value)


def _as_money(value: float | Decimal) -> Decimal:
    return Decimal(str(value)).quantize(Decimal("0.01"))


def _enum_value(value: Any) -> Any:
    return getattr(value, "value", value)


__all__ = [
    "OfferCandidate",
    "OfferEngine",
    "OfferQuote",
    "is_offer_time_valid",
]
