"""Country and vendor level admission rules for NFC taps."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Mapping, Sequence
from uuid import UUID

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from clubpass_api.models.country_rule import CountryRule
from clubpass_api.models.member import MembershipType
from clubpass_api.models.vendor import Vendor
from clubpass_api.observability.nfc import NfcObservabilityStore, get_nfc_store
from clubpass_api.services.nfc.cache import TTLCache
from clubpass_api.services.nfc.countries import resolve_country_code
from clubpass_api.services.nfc.timing import as_utc, hour_in_range, sunday_first_weekday, utcnow


DEFAULT_VENDOR_MAX_DISCOUNT = 100.0


@dataclass(slots=True)
class CountryRuleSnapshot:
    """Detached copy of an active ``CountryRule`` row, safe to share across sessions."""

    country_code: str
    country_name: str | None
    allowed_membership_types: list[str]
    max_discount_percentage: float
    currency: str | None
    tax_rules: dict[str, Any] = field(default_factory=dict)
    compliance_restrictions: dict[str, Any] = field(default_factory=dict)
    blackout_periods: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_model(cls, rule: CountryRule) -> "CountryRuleSnapshot":
        return cls(
            country_code=rule.country_code,
            country_name=rule.country_name,
            allowed_membership_types=[_enum_value(item) for item in rule.allowed_membership_types or []],
            max_discount_percentage=float(rule.max_discount_percentage),
            currency=rule.currency,
            tax_rules=dict(rule.tax_rules or {}),
            compliance_restrictions=dict(rule.compliance_restrictions or {}),
            blackout_periods=dict(rule.blackout_periods or {}),
        )


@dataclass(slots=True)
class RuleCheck:
    allowed: bool
    reason: str | None = None
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class CountryRuleResult:
    valid: bool
    reason: str | None = None
    country_code: str | None = None
    currency: str | None = None
    max_discount_percentage: float | None = None
    tax_rules: dict[str, Any] = field(default_factory=dict)
    vendor_country: str | None = None
    vendor_city: str | None = None
    vendor_currency: str | None = None
    details: dict[str, Any] = field(default_factory=dict)
    error: str | None = None


class CountryRuleEngine:
    """Checks a member's tier against the rules of the vendor's jurisdiction.

    Any internal error rejects the tap with ``validation_error``.
    """

    def __init__(
        self,
        session: AsyncSession,
        *,
        cache: TTLCache[CountryRuleSnapshot],
        store: NfcObservabilityStore | None = None,
    ) -> None:
        self._session = session
        self._cache = cache
        self._store = store or get_nfc_store()

    async def validate_country_rules(
        self,
        vendor_id: UUID,
        member_id: UUID,
        membership_type: MembershipType | str,
        current_time: datetime | None = None,
    ) -> CountryRuleResult:
        membership = _enum_value(membership_type)
        now = current_time or utcnow()

        try:
            stmt = select(Vendor).where(Vendor.id == vendor_id, Vendor.is_active.is_(True))
            vendor = (await self._session.execute(stmt)).scalars().first()
            if vendor is None:
                return CountryRuleResult(valid=False, reason="vendor_not_found_or_inactive")

            country_code = resolve_country_code(vendor.country)
            rules = await self.get_country_rules(country_code)
            if rules is None:
                return CountryRuleResult(
                    valid=False,
                    reason="country_rules_not_configured",
                    country_code=country_code,
                )

            if membership not in rules.allowed_membership_types:
                return CountryRuleResult(
                    valid=False,
                    reason="membership_type_not_allowed_in_country",
                    country_code=country_code,
                    details={
                        "membershipType": membership,
                        "country": country_code,
                        "allowedTypes": list(rules.allowed_membership_types),
                    },
                )

            vendor_tiers = vendor.allowed_membership_tiers
            if vendor_tiers and membership not in [_enum_value(tier) for tier in vendor_tiers]:
                return CountryRuleResult(
                    valid=False,
                    reason="membership_type_not_allowed_by_vendor",
                    country_code=country_code,
                    details={"membershipType": membership, "vendorAllowedTypes": list(vendor_tiers)},
                )

            blackout = self.check_blackout_periods(rules.blackout_periods, now)
            if not blackout.allowed:
                return CountryRuleResult(
                    valid=False,
                    reason="blackout_period_active",
                    country_code=country_code,
                    details={"reason": blackout.reason, **blackout.details},
                )

            compliance = self.check_compliance_restrictions(rules.compliance_restrictions, membership)
            if not compliance.allowed:
                return CountryRuleResult(
                    valid=False,
                    reason="compliance_restriction",
                    country_code=country_code,
                    details={"reason": compliance.reason, **compliance.details},
                )

            vendor_cap = (
                float(vendor.max_discount_percentage)
                if vendor.max_discount_percentage is not None
                else DEFAULT_VENDOR_MAX_DISCOUNT
            )
            return CountryRuleResult(
                valid=True,
                country_code=country_code,
                currency=rules.currency,
                max_discount_percentage=min(rules.max_discount_percentage, vendor_cap),
                tax_rules=dict(rules.tax_rules),
                vendor_country=vendor.country,
                vendor_city=vendor.city,
                vendor_currency=vendor.currency,
            )
        except Exception as error:
            logger.exception("country_rules.validation_failed", vendor_id=str(vendor_id), member_id=str(member_id))
            self._store.record_fallback("country_rules")
            return CountryRuleResult(valid=False, reason="validation_error", error=str(error))

    async def get_country_rules(self, country_code: str) -> CountryRuleSnapshot | None:
        cached = self._cache.get(country_code)
        if cached is not None:
            return cached

        stmt = select(CountryRule).where(
            CountryRule.country_code == country_code,
            CountryRule.is_active.is_(True),
        )
        rule = (await self._session.execute(stmt)).scalars().first()
        if rule is None:
            return None

        snapshot = CountryRuleSnapshot.from_model(rule)
        self._cache.set(country_code, snapshot)
        return snapshot

    @staticmethod
    def check_blackout_periods(blackout_periods: Mapping[str, Any] | None, current_time: datetime) -> RuleCheck:
        """Evaluate date, weekday (Sunday=0) and hour-range blackouts in UTC."""

        if not blackout_periods:
            return RuleCheck(allowed=True)

        moment = as_utc(current_time)
        date_str = moment.date().isoformat()
        day_of_week = sunday_first_weekday(moment)
        hour = moment.hour

        dates = blackout_periods.get("dates")
        if isinstance(dates, list) and date_str in dates:
            return RuleCheck(allowed=False, reason="date_blackout", details={"blackoutDate": date_str})

        days = blackout_periods.get("days")
        if isinstance(days, list) and day_of_week in days:
            return RuleCheck(allowed=False, reason="day_blackout", details={"dayOfWeek": day_of_week})

        ranges = blackout_periods.get("timeRanges")
        if isinstance(ranges, list):
            for time_range in ranges:
                if hour_in_range(hour, time_range):
                    return RuleCheck(allowed=False, reason="time_blackout", details={"timeRange": time_range})

        return RuleCheck(allowed=True)

    @staticmethod
    def check_compliance_restrictions(restrictions: Mapping[str, Any] | None, membership_type: str) -> RuleCheck:
        if not restrictions:
            return RuleCheck(allowed=True)

        restricted = restrictions.get("restrictedMembershipTypes")
        if isinstance(restricted, list) and membership_type in restricted:
            return RuleCheck(
                allowed=False,
                reason="membership_type_restricted_by_compliance",
                details={"membershipType": membership_type},
            )
        return RuleCheck(allowed=True)

    async def upsert_country_rules(
        self,
        *,
        country_code: str,
        country_name: str | None,
        allowed_membership_types: Sequence[str],
        max_discount_percentage: float | Decimal,
        currency: str | None = None,
        tax_rules: Mapping[str, Any] | None = None,
        compliance_restrictions: Mapping[str, Any] | None = None,
        blackout_periods: Mapping[str, Any] | None = None,
    ) -> CountryRule:
        """Insert or replace the rule set for ``country_code`` and drop its cache entry."""

        stmt = select(CountryRule).where(CountryRule.country_code == country_code)
        rule = (await self._session.execute(stmt)).scalars().first()
        if rule is None:
            rule = CountryRule(country_code=country_code)
            self._session.add(rule)

        rule.country_name = country_name
        rule.allowed_membership_types = [_enum_value(item) for item in allowed_membership_types]
        rule.max_discount_percentage = Decimal(str(max_discount_percentage))
        rule.currency = currency
        rule.tax_rules = dict(tax_rules or {})
        rule.compliance_restrictions = dict(compliance_restrictions or {})
        rule.blackout_periods = dict(blackout_periods or {})
        rule.updated_at = utcnow()
        await self._session.flush()

        self.clear_cache(country_code)
        logger.info("country_rules.upserted", country_code=country_code)
        return rule

    def clear_cache(self, country_code: str | None = None) -> None:
        self._cache.invalidate(country_code)


def _enum_value(value: Any) -> Any:
    return getattr(value, "value", value)


__all__ = [
    "CountryRuleEngine",
    "CountryRuleResult",
    "CountryRuleSnapshot",
    "RuleCheck",
]
