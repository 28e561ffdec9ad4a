from uuid import uuid4

from sqlalchemy import Boolean, Column, DateTime, JSON, Numeric, String, func
from sqlalchemy.dialects.postgresql import UUID

from clubpass_api.db.base import Base


class Vendor(Base):
    """Partner merchant operating one or more POS readers."""

    __tablename__ = "vendors"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    name = Column(String, nullable=False)
    country = Column(String, nullable=False)
    city = Column(String, nullable=True)
    category = Column(String, nullable=True)
    currency = Column(String, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True, server_default="true")
    # None means every membership tier is accepted
    allowed_membership_tiers = Column(JSON, nullable=True)
    max_discount_percentage = Column(Numeric(5, 2), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
