"""NFC tap validation services."""

from .cache import TTLCache
from .cards import (
    CardLifecycleError,
    CardLifecycleService,
    CardMemberNotFoundError,
    CardNotFoundError,
    CardUidInUseError,
    InvalidCardTransitionError,
)
from .countries import COUNTRY_CODES, resolve_country_code
from .country_rules import CountryRuleEngine, CountryRuleResult, CountryRuleSnapshot
from .fraud_engine import FraudDetectionEngine, FraudResult, FraudThresholds, TapContext, haversine_km
from .offer_engine import OfferCandidate, OfferEngine, OfferQuote
from .pipeline import NFCValidationPipeline, TapDecision, TapRequest

__all__ = [
    "COUNTRY_CODES",
    "CardLifecycleError",
    "CardLifecycleService",
    "CardMemberNotFoundError",
    "CardNotFoundError",
    "CardUidInUseError",
    "CountryRuleEngine",
    "CountryRuleResult",
    "CountryRuleSnapshot",
    "FraudDetectionEngine",
    "FraudResult",
    "FraudThresholds",
    "InvalidCardTransitionError",
    "NFCValidationPipeline",
    "OfferCandidate",
    "OfferEngine",
    "OfferQuote",
    "TTLCache",
    "TapContext",
    "TapDecision",
    "TapRequest",
    "haversine_km",
    "resolve_country_code",
]
