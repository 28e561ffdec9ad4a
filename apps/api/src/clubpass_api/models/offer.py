"""Dynamic offers redeemable at tap time."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum as SqlEnum,
    Integer,
    JSON,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import UUID

from clubpass_api.db.base import Base
from clubpass_api.models.member import MembershipType


class OfferType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED_AMOUNT = "fixed_amount"
    FLASH = "flash"
    VIP_ACCESS = "vip_access"


class Offer(Base):
    __tablename__ = "offers"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    offer_code = Column(String, nullable=False, unique=True)
    title = Column(String, nullable=True)
    description = Column(Text, nullable=True)
    offer_type = Column(SqlEnum(OfferType, name="offer_type"), nullable=False)
    # Applicability filters; NULL applies to everything
    membership_type = Column(SqlEnum(MembershipType, name="offer_membership_type"), nullable=True)
    vendor_category = Column(String, nullable=True)
    country_code = Column(String(8), nullable=True)
    discount_percentage = Column(Numeric(5, 2), nullable=True)
    discount_amount = Column(Numeric(12, 2), nullable=True)
    min_purchase_amount = Column(Numeric(12, 2), nullable=True)
    max_discount_amount = Column(Numeric(12, 2), nullable=True)
    usage_limit = Column(Integer, nullable=True)
    priority = Column(Integer, nullable=False, default=0, server_default="0")
    valid_from = Column(DateTime(timezone=True), nullable=True)
    valid_until = Column(DateTime(timezone=True), nullable=True)
    # {"days": [0-6, Sunday=0], "timeRanges": [{"start": h, "end": h}]}
    time_restrictions = Column(JSON, nullable=True)
    conditions = Column(JSON, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True, server_default="true")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
