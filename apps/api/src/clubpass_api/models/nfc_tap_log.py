"""Append-only NFC tap and offer redemption ledgers."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    Column,
    DateTime,
    Enum as SqlEnum,
    Float,
    ForeignKey,
    Integer,
    JSON,
    Numeric,
    String,
    func,
)
from sqlalchemy.dialects.postgresql import UUID

from clubpass_api.db.base import Base


class TapValidationResult(str, Enum):
    APPROVED = "approved"
    REJECTED = "rejected"


class NfcTapLog(Base):
    """System of record for every tap, approved or not. Rows are never updated."""

    __tablename__ = "nfc_tap_logs"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    member_id = Column(UUID(as_uuid=True), ForeignKey("members.id"), nullable=True)
    card_uid = Column(String, nullable=False, index=True)
    vendor_id = Column(UUID(as_uuid=True), nullable=True)
    vendor_country = Column(String, nullable=True)
    vendor_city = Column(String, nullable=True)
    pos_reader_id = Column(String, nullable=True)
    tap_timestamp = Column(DateTime(timezone=True), nullable=False, index=True)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    fraud_score = Column(Integer, nullable=False, default=0, server_default="0")
    fraud_flags = Column(JSON, nullable=False, default=list)
    validation_result = Column(SqlEnum(TapValidationResult, name="tap_validation_result"), nullable=False)
    rejection_reason = Column(String, nullable=True)
    offer_applied = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class OfferUsageLog(Base):
    __tablename__ = "offer_usage_logs"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    offer_id = Column(UUID(as_uuid=True), ForeignKey("offers.id"), nullable=False, index=True)
    member_id = Column(UUID(as_uuid=True), ForeignKey("members.id"), nullable=False, index=True)
    vendor_id = Column(UUID(as_uuid=True), nullable=True)
    nfc_tap_log_id = Column(UUID(as_uuid=True), ForeignKey("nfc_tap_logs.id"), nullable=True)
    discount_amount = Column(Numeric(12, 2), nullable=False)
    original_amount = Column(Numeric(12, 2), nullable=False)
    final_amount = Column(Numeric(12, 2), nullable=False)
    used_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
