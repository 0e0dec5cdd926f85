import enum
import uuid
from sqlalchemy import Column, String, Text, DateTime, Boolean, Numeric, ForeignKey
from sqlalchemy.orm import relationship
from salescredit.db import Base, utcnow


class EntryType(str, enum.Enum):
    EARNED = "earned"
    BONUS = "bonus"
    ADJUSTMENT = "adjustment"
    REDEMPTION = "redemption"


class LedgerEntry(Base):
    __tablename__ = "ledger_entries"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    member_id = Column(String(64), nullable=False, index=True)
    # Unique: a claim mints at most one entry. NULL for manual bonuses/adjustments.
    claim_id = Column(String(36), ForeignKey("claims.id"), nullable=True, unique=True)

    amount = Column(Numeric(8, 2), nullable=False)
    entry_type = Column(String(20), nullable=False)
    description = Column(Text, nullable=True)
    expires_at = Column(DateTime, nullable=True)
    is_redeemed = Column(Boolean, nullable=False, default=False)
    redeemed_at = Column(DateTime, nullable=True)
    created_by = Column(String(64), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    claim = relationship("Claim", back_populates="ledger_entry")

    def __repr__(self):
        return f"<LedgerEntry(id={self.id}, member='{self.member_id}', amount={self.amount})>"
