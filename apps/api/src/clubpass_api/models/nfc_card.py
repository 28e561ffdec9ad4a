"""Physical NFC cards linked to members."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import Boolean, Column, DateTime, Enum as SqlEnum, ForeignKey, String, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from clubpass_api.db.base import Base


class CardStatus(str, Enum):
    ACTIVE = "active"
    BLOCKED = "blocked"
    BLACKLISTED = "blacklisted"
    LOST = "lost"
    STOLEN = "stolen"
    DAMAGED = "damaged"


class NfcCard(Base):
    """A card UID is never reused; reissues create a new row pointing at the old UID."""

    __tablename__ = "nfc_cards"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    member_id = Column(UUID(as_uuid=True), ForeignKey("members.id", ondelete="CASCADE"), nullable=False)
    card_uid = Column(String, nullable=False, unique=True, index=True)
    card_status = Column(SqlEnum(CardStatus, name="nfc_card_status"), nullable=False, default=CardStatus.ACTIVE)
    is_primary = Column(Boolean, nullable=False, default=True, server_default="true")
    expiry_date = Column(DateTime(timezone=True), nullable=True)
    blocked_at = Column(DateTime(timezone=True), nullable=True)
    previous_uid = Column(String, nullable=True)
    issued_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    member = relationship("Member", back_populates="cards")
