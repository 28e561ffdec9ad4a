"""Per-tap fraud scoring: card sharing, cloning, velocity and geo anomalies."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Sequence
from uuid import UUID

from loguru import logger
from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from clubpass_api.core.settings import Settings, settings
from clubpass_api.models.fraud_event import FraudSeverity
from clubpass_api.models.member import FraudStatus, Member, MembershipStatus
from clubpass_api.models.nfc_card import CardStatus, NfcCard
from clubpass_api.models.nfc_tap_log import NfcTapLog
from clubpass_api.observability.nfc import NfcObservabilityStore, get_nfc_store
from clubpass_api.services.audit import AuditService
from clubpass_api.services.nfc.countries import resolve_country_code
from clubpass_api.services.nfc.timing import as_utc, utcnow


EARTH_RADIUS_KM = 6371.0

GEO_WINDOW = timedelta(hours=1)
GEO_RECENT_TAP_LIMIT = 10
HOURLY_WINDOW = timedelta(hours=1)
DAILY_WINDOW = timedelta(hours=24)
CLONING_WINDOW = timedelta(minutes=5)

GEO_INCONSISTENCY_SCORE = 40
HOURLY_TAPS_SCORE = 30
DAILY_TAPS_SCORE = 20
COUNTRY_MISMATCH_SCORE = 10
EXPIRED_ACCESS_SCORE = 50
CLONING_SCORE = 80
GATE_FAILURE_SCORE = 100

ACTION_REJECTED = "rejected"
ACTION_BLOCK_CARD = "block_card"
ACTION_SOFT_RESTRICTION = "soft_restriction"
ACTION_LOGGED = "logged"
ACTION_NONE = "none"

FLAG_GEO_INCONSISTENCY = "geo_inconsistency"
FLAG_EXCESSIVE_HOURLY_TAPS = "excessive_hourly_taps"
FLAG_EXCESSIVE_DAILY_TAPS = "excessive_daily_taps"
FLAG_COUNTRY_MISMATCH = "country_mismatch"
FLAG_CARD_NOT_LINKED = "card_not_linked_to_member"
FLAG_EXPIRED_CARD_ACCESS = "expired_card_access"
FLAG_BLOCKED_CARD_ACCESS = "blocked_card_access"
FLAG_POSSIBLE_CLONING = "possible_cloning_attempt"

_GATED_CARD_STATUSES = {
    CardStatus.BLACKLISTED,
    CardStatus.BLOCKED,
    CardStatus.LOST,
    CardStatus.STOLEN,
}


@dataclass(slots=True)
class FraudThresholds:
    """Tunable limits, interpreted as-is by the engine."""

    max_distance_km_per_hour: float = 1000
    max_taps_per_hour: int = 10
    max_taps_per_day: int = 50
    fraud_score_low: int = 30
    fraud_score_medium: int = 60
    fraud_score_high: int = 90

    @classmethod
    def from_settings(cls, config: Settings | None = None) -> "FraudThresholds":
        config = config or settings
        return cls(
            max_distance_km_per_hour=config.max_distance_km_per_hour,
            max_taps_per_hour=config.max_taps_per_hour,
            max_taps_per_day=config.max_taps_per_day,
            fraud_score_low=config.fraud_score_low,
            fraud_score_medium=config.fraud_score_medium,
            fraud_score_high=config.fraud_score_high,
        )


@dataclass(slots=True)
class TapContext:
    """Everything the engine knows about a single tap attempt."""

    member_id: UUID
    card_uid: str
    vendor_id: UUID | None = None
    vendor_country: str | None = None
    vendor_city: str | None = None
    pos_reader_id: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    timestamp: datetime | None = None


@dataclass(slots=True)
class FraudResult:
    valid: bool
    fraud_score: int
    fraud_flags: list[str]
    severity: FraudSeverity
    action: str
    reason: str | None = None
    error: str | None = None


@dataclass(slots=True)
class _CheckOutcome:
    score: int = 0
    flags: list[str] = field(default_factory=list)

    @property
    def flagged(self) -> bool:
        return bool(self.flags)


def haversine_km(
    lat1: float | None,
    lon1: float | None,
    lat2: float | None,
    lon2: float | None,
) -> float:
    """Great-circle distance in kilometres; 0 when any coordinate is unknown."""

    if lat1 is None or lon1 is None or lat2 is None or lon2 is None:
        return 0.0

    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lon / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


def determine_event_type(flags: Sequence[str]) -> str:
    """Collapse a flag set into a single fraud event type, most serious first."""

    if FLAG_POSSIBLE_CLONING in flags:
        return "cloning_attempt"
    if FLAG_GEO_INCONSISTENCY in flags:
        return "geo_inconsistency"
    if FLAG_EXCESSIVE_HOURLY_TAPS in flags or FLAG_EXCESSIVE_DAILY_TAPS in flags:
        return "excessive_taps"
    if FLAG_COUNTRY_MISMATCH in flags:
        return "country_mismatch"
    if FLAG_EXPIRED_CARD_ACCESS in flags or FLAG_BLOCKED_CARD_ACCESS in flags:
        return "expired_access"
    return "suspicious_activity"


def fraud_status_for(severity: FraudSeverity, fraud_score: int) -> FraudStatus:
    if severity == FraudSeverity.HIGH:
        return FraudStatus.BLOCKED
    if severity == FraudSeverity.MEDIUM:
        return FraudStatus.RESTRICTED
    if fraud_score > 0:
        return FraudStatus.MONITORED
    return FraudStatus.CLEAN


class FraudDetectionEngine:
    """Scores one tap attempt against card, member, velocity and location signals.

    The two status gates short-circuit with a fixed score of 100. The remaining
    checks always all run and their scores are summed. Any internal error fails
    open: the tap is treated as zero-risk and the error is reported back.
    """

    def __init__(
        self,
        session: AsyncSession,
        *,
        thresholds: FraudThresholds | None = None,
        audit_service: AuditService | None = None,
        store: NfcObservabilityStore | None = None,
    ) -> None:
        self._session = session
        self._thresholds = thresholds or FraudThresholds.from_settings()
        self._audit = audit_service or AuditService(session)
        self._store = store or get_nfc_store()

    @property
    def thresholds(self) -> FraudThresholds:
        return self._thresholds

    async def detect_fraud(self, tap: TapContext) -> FraudResult:
        timestamp = as_utc(tap.timestamp) or utcnow()

        try:
            # Score and its writes share a savepoint; a failure rolls back only this pass.
            async with self._session.begin_nested():
                return await self._score(tap, timestamp)
        except Exception as error:
            logger.exception("fraud.detection_failed", card_uid=tap.card_uid, member_id=str(tap.member_id))
            self._store.record_fallback("fraud_engine")
            return FraudResult(
                valid=True,
                fraud_score=0,
                fraud_flags=[],
                severity=FraudSeverity.LOW,
                action=ACTION_LOGGED,
                error=str(error),
            )

    async def _score(self, tap: TapContext, timestamp: datetime) -> FraudResult:
        card_reason = await self._check_card_status(tap.card_uid, now=timestamp)
        if card_reason:
            return _gate_failure(card_reason)

        member_reason = await self._check_member_status(tap.member_id, now=timestamp)
        if member_reason:
            return _gate_failure(member_reason)

        outcomes = [
            await self._check_geo_inconsistency(tap, timestamp),
            await self._check_tap_frequency(tap.card_uid, timestamp),
            await self._check_country_mismatch(tap.member_id, tap.vendor_country),
            await self._check_expired_access(tap.member_id, tap.card_uid, now=timestamp),
            await self._check_cloning_attempt(tap, timestamp),
        ]
        fraud_score = sum(outcome.score for outcome in outcomes)
        fraud_flags = [flag for outcome in outcomes for flag in outcome.flags]

        severity, action = self._classify(fraud_score)
        if FLAG_POSSIBLE_CLONING in fraud_flags:
            severity = FraudSeverity.HIGH

        await self._update_member_fraud_score(tap.member_id, fraud_score, severity)

        if fraud_score > 0:
            await self._audit.create_fraud_event(
                member_id=tap.member_id,
                card_uid=tap.card_uid,
                vendor_id=tap.vendor_id,
                event_type=determine_event_type(fraud_flags),
                severity=severity,
                fraud_score=fraud_score,
                description=f"Fraud detected: {', '.join(fraud_flags)}",
                metadata={
                    "vendorCountry": tap.vendor_country,
                    "vendorCity": tap.vendor_city,
                    "posReaderId": tap.pos_reader_id,
                    "latitude": tap.latitude,
                    "longitude": tap.longitude,
                },
                action_taken=action,
            )
            self._store.record_fraud_event(severity.value)

        return FraudResult(
            valid=action != ACTION_BLOCK_CARD,
            fraud_score=fraud_score,
            fraud_flags=fraud_flags,
            severity=severity,
            action=action,
            reason=", ".join(fraud_flags) if fraud_flags else None,
        )

    def _classify(self, fraud_score: int) -> tuple[FraudSeverity, str]:
        thresholds = self._thresholds
        if fraud_score >= thresholds.fraud_score_high:
            return FraudSeverity.HIGH, ACTION_BLOCK_CARD
        if fraud_score >= thresholds.fraud_score_medium:
            return FraudSeverity.MEDIUM, ACTION_SOFT_RESTRICTION
        if fraud_score >= thresholds.fraud_score_low:
            return FraudSeverity.LOW, ACTION_LOGGED
        return FraudSeverity.LOW, ACTION_NONE

    async def _check_card_status(self, card_uid: str, *, now: datetime) -> str | None:
        stmt = select(NfcCard).where(NfcCard.card_uid == card_uid)
        card = (await self._session.execute(stmt)).scalars().first()
        if card is None:
            return "card_not_found"

        status = CardStatus(card.card_status)
        if status in _GATED_CARD_STATUSES:
            return f"card_{status.value}"
        if card.expiry_date and as_utc(card.expiry_date) < now:
            return "card_expired"
        return None

    async def _check_member_status(self, member_id: UUID, *, now: datetime) -> str | None:
        member = await self._session.get(Member, member_id)
        if member is None:
            return "member_not_found"

        membership_status = MembershipStatus(member.membership_status)
        if membership_status in (MembershipStatus.SUSPENDED, MembershipStatus.CANCELLED):
            return f"membership_{membership_status.value}"
        if FraudStatus(member.fraud_status) == FraudStatus.BLOCKED:
            return "member_blocked"
        if member.subscription_end_date and as_utc(member.subscription_end_date) < now:
            return "membership_expired"
        return None

    async def _check_geo_inconsistency(self, tap: TapContext, timestamp: datetime) -> _CheckOutcome:
        stmt = (
            select(NfcTapLog)
            .where(NfcTapLog.card_uid == tap.card_uid, NfcTapLog.tap_timestamp > timestamp - GEO_WINDOW)
            .order_by(NfcTapLog.tap_timestamp.desc())
            .limit(GEO_RECENT_TAP_LIMIT)
        )
        recent_taps = (await self._session.execute(stmt)).scalars().all()

        for previous in recent_taps:
            if previous.vendor_country == tap.vendor_country:
                continue
            elapsed = abs(timestamp - as_utc(previous.tap_timestamp))
            if elapsed >= GEO_WINDOW:
                continue
            distance = haversine_km(previous.latitude, previous.longitude, tap.latitude, tap.longitude)
            if distance > self._thresholds.max_distance_km_per_hour:
                return _CheckOutcome(score=GEO_INCONSISTENCY_SCORE, flags=[FLAG_GEO_INCONSISTENCY])
        return _CheckOutcome()

    async def _check_tap_frequency(self, card_uid: str, timestamp: datetime) -> _CheckOutcome:
        # The tap being scored is not logged yet, so it is added to both counts.
        hourly_count = await self._count_taps_since(card_uid, timestamp - HOURLY_WINDOW) + 1
        daily_count = await self._count_taps_since(card_uid, timestamp - DAILY_WINDOW) + 1

        outcome = _CheckOutcome()
        if hourly_count >= self._thresholds.max_taps_per_hour:
            outcome.score += HOURLY_TAPS_SCORE
            outcome.flags.append(FLAG_EXCESSIVE_HOURLY_TAPS)
        if daily_count >= self._thresholds.max_taps_per_day:
            outcome.score += DAILY_TAPS_SCORE
            outcome.flags.append(FLAG_EXCESSIVE_DAILY_TAPS)
        return outcome

    async def _count_taps_since(self, card_uid: str, cutoff: datetime) -> int:
        stmt = select(func.count(NfcTapLog.id)).where(
            NfcTapLog.card_uid == card_uid,
            NfcTapLog.tap_timestamp > cutoff,
        )
        return int((await self._session.execute(stmt)).scalar_one() or 0)

    async def _check_country_mismatch(self, member_id: UUID, vendor_country: str | None) -> _CheckOutcome:
        member = await self._session.get(Member, member_id)
        if member is None or not member.country:
            return _CheckOutcome()
        if vendor_country and resolve_country_code(member.country) == resolve_country_code(vendor_country):
            return _CheckOutcome()
        # Soft signal: travel is common, so this never blocks on its own.
        return _CheckOutcome(score=COUNTRY_MISMATCH_SCORE, flags=[FLAG_COUNTRY_MISMATCH])

    async def _check_expired_access(self, member_id: UUID, card_uid: str, *, now: datetime) -> _CheckOutcome:
        stmt = select(NfcCard).where(NfcCard.card_uid == card_uid, NfcCard.member_id == member_id)
        card = (await self._session.execute(stmt)).scalars().first()
        if card is None:
            return _CheckOutcome(score=EXPIRED_ACCESS_SCORE, flags=[FLAG_CARD_NOT_LINKED])
        if card.expiry_date and as_utc(card.expiry_date) < now:
            return _CheckOutcome(score=EXPIRED_ACCESS_SCORE, flags=[FLAG_EXPIRED_CARD_ACCESS])
        if card.blocked_at is not None:
            return _CheckOutcome(score=EXPIRED_ACCESS_SCORE, flags=[FLAG_BLOCKED_CARD_ACCESS])
        return _CheckOutcome()

    async def _check_cloning_attempt(self, tap: TapContext, timestamp: datetime) -> _CheckOutcome:
        # SQL NULL semantics: an unknown location never counts as "different".
        location_differs = []
        if tap.vendor_country is not None:
            location_differs.append(NfcTapLog.vendor_country != tap.vendor_country)
        if tap.vendor_city is not None:
            location_differs.append(NfcTapLog.vendor_city != tap.vendor_city)
        if not location_differs:
            return _CheckOutcome()

        stmt = select(func.count(NfcTapLog.id)).where(
            NfcTapLog.card_uid == tap.card_uid,
            NfcTapLog.tap_timestamp > timestamp - CLONING_WINDOW,
            or_(*location_differs),
        )
        matches = int((await self._session.execute(stmt)).scalar_one() or 0)
        if matches:
            return _CheckOutcome(score=CLONING_SCORE, flags=[FLAG_POSSIBLE_CLONING])
        return _CheckOutcome()

    async def _update_member_fraud_score(
        self,
        member_id: UUID,
        fraud_score: int,
        severity: FraudSeverity,
    ) -> None:
        # Overwrite, never accumulate: the member reflects the latest tap only.
        fraud_status = fraud_status_for(severity, fraud_score)
        stmt = (
            update(Member)
            .where(Member.id == member_id)
            .values(fraud_score=fraud_score, fraud_status=fraud_status)
        )
        await self._session.execute(stmt)
        logger.debug(
            "fraud.member_score_updated",
            member_id=str(member_id),
            fraud_score=fraud_score,
            fraud_status=fraud_status.value,
        )


def _gate_failure(reason: str) -> FraudResult:
    return FraudResult(
        valid=False,
        fraud_score=GATE_FAILURE_SCORE,
        fraud_flags=[reason],
        severity=FraudSeverity.HIGH,
        action=ACTION_REJECTED,
        reason=reason,
    )


__all__ = [
    "FraudDetectionEngine",
    "FraudResult",
    "FraudThresholds",
    "TapContext",
    "determine_event_type",
    "fraud_status_for",
    "haversine_km",
]
