"""SQLAlchemy models package."""

from .audit_log import AuditLog  # noqa: F401
from .country_rule import CountryRule  # noqa: F401
from .fraud_event import FraudEvent, FraudSeverity  # noqa: F401
from .member import FraudStatus, Member, MembershipStatus, MembershipType  # noqa: F401
from .nfc_card import CardStatus, NfcCard  # noqa: F401
from .nfc_tap_log import NfcTapLog, OfferUsageLog, TapValidationResult  # noqa: F401
from .offer import Offer, OfferType  # noqa: F401
from .vendor import Vendor  # noqa: F401
