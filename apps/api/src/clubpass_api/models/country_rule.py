from uuid import uuid4

from sqlalchemy import Boolean, Column, DateTime, JSON, Numeric, String, func
from sqlalchemy.dialects.postgresql import UUID

from clubpass_api.db.base import Base


class CountryRule(Base):
    """Jurisdiction-level commercial and compliance constraints, keyed by country code."""

    __tablename__ = "country_rules"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    country_code = Column(String(8), nullable=False, unique=True, index=True)
    country_name = Column(String, nullable=True)
    allowed_membership_types = Column(JSON, nullable=False, default=list)
    max_discount_percentage = Column(Numeric(5, 2), nullable=False)
    currency = Column(String, nullable=True)
    tax_rules = Column(JSON, nullable=False, default=dict)
    compliance_restrictions = Column(JSON, nullable=False, default=dict)
    # {"dates": ["YYYY-MM-DD"], "days": [0-6, Sunday=0], "timeRanges": [{"start": h, "end": h}]}
    blackout_periods = Column(JSON, nullable=False, default=dict)
    is_active = Column(Boolean, nullable=False, default=True, server_default="true")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
