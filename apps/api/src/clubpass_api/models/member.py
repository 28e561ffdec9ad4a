"""Club member records consumed by the tap validation pipeline."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import Column, DateTime, Enum as SqlEnum, Integer, String, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from clubpass_api.db.base import Base


class MembershipType(str, Enum):
    ANNUAL = "annual"
    LIFETIME = "lifetime"


class MembershipStatus(str, Enum):
    ACTIVE = "active"
    EXPIRED = "expired"
    SUSPENDED = "suspended"
    CANCELLED = "cancelled"


class FraudStatus(str, Enum):
    """Risk posture written by the fraud engine after every scored tap."""

    CLEAN = "clean"
    MONITORED = "monitored"
    RESTRICTED = "restricted"
    BLOCKED = "blocked"


class Member(Base):
    __tablename__ = "members"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    email = Column(String, nullable=True, unique=True)
    full_name = Column(String, nullable=True)
    membership_type = Column(SqlEnum(MembershipType, name="membership_type"), nullable=False)
    membership_status = Column(
        SqlEnum(MembershipStatus, name="membership_status"),
        nullable=False,
        default=MembershipStatus.ACTIVE,
    )
    fraud_status = Column(
        SqlEnum(FraudStatus, name="member_fraud_status"),
        nullable=False,
        default=FraudStatus.CLEAN,
    )
    fraud_score = Column(Integer, nullable=False, default=0, server_default="0")
    country = Column(String, nullable=True)
    subscription_end_date = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    cards = relationship("NfcCard", back_populates="member")
