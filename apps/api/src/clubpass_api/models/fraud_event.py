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
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import UUID

from clubpass_api.db.base import Base


class FraudSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class FraudEvent(Base):
    """Scored anomaly raised for a tap; only the resolution fields change after insert."""

    __tablename__ = "fraud_events"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    member_id = Column(UUID(as_uuid=True), nullable=True, index=True)
    card_uid = Column(String, nullable=True, index=True)
    vendor_id = Column(UUID(as_uuid=True), nullable=True)
    event_type = Column(String, nullable=False)
    severity = Column(SqlEnum(FraudSeverity, name="fraud_severity"), nullable=False)
    fraud_score = Column(Integer, nullable=False)
    description = Column(Text, nullable=True)
    metadata_json = Column("metadata", JSON, nullable=True)
    action_taken = Column(String, nullable=True)
    resolved = Column(Boolean, nullable=False, default=False, server_default="false")
    resolved_by = Column(String, nullable=True)
    resolution_notes = Column(Text, nullable=True)
    resolved_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
