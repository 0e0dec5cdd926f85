import enum
import uuid
from sqlalchemy import Column, String, Text, DateTime, Float, Boolean, Numeric, JSON, Index
from sqlalchemy.orm import relationship
from salescredit.db import Base, utcnow


class ClaimStatus(str, enum.Enum):
    RECEIVED = "RECEIVED"
    PENDING = "PENDING"
    UNDER_REVIEW = "UNDER_REVIEW"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


TERMINAL_STATUSES = (ClaimStatus.APPROVED.value, ClaimStatus.REJECTED.value)
REVIEWABLE_STATUSES = (ClaimStatus.PENDING.value, ClaimStatus.UNDER_REVIEW.value)


class Channel(str, enum.Enum):
    VOICE = "voice"
    TEXT = "text"
    MANUAL = "manual"


class Claim(Base):
    __tablename__ = "claims"
    __table_args__ = (
        Index("ix_claims_submitter_status", "submitter_id", "status"),
        Index("ix_claims_submitter_fingerprint", "submitter_id", "fingerprint"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    submitter_id = Column(String(64), nullable=False)
    channel = Column(String(10), nullable=False)

    raw_text = Column(Text, nullable=False)
    conversation_turns = Column(JSON, nullable=False, default=list)  # Bounded, oldest first
    fingerprint = Column(String(64), nullable=False)

    # Filled in by extraction
    category = Column(String(20), nullable=True)
    confidence = Column(Float, nullable=True)
    sale_value = Column(Numeric(10, 2), nullable=True)
    modifiers = Column(JSON, nullable=True)  # {"member_tier": ..., "customer_type": ...}
    extraction = Column(JSON, nullable=True)
    extraction_fallback = Column(Boolean, nullable=False, default=False)
    computed_amount = Column(Numeric(8, 2), nullable=True)

    # Filled in by decision/review
    status = Column(String(20), nullable=False, default=ClaimStatus.RECEIVED.value, index=True)
    decision_rule = Column(String(40), nullable=True)
    approved_amount = Column(Numeric(8, 2), nullable=True)
    reviewer_id = Column(String(64), nullable=True)
    review_notes = Column(Text, nullable=True)

    submitted_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    extracted_at = Column(DateTime, nullable=True)
    decided_at = Column(DateTime, nullable=True)
    reviewed_at = Column(DateTime, nullable=True)

    audit_events = relationship(
        "ClaimAuditEvent", back_populates="claim", order_by="ClaimAuditEvent.id"
    )
    ledger_entry = relationship("LedgerEntry", back_populates="claim", uselist=False)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def __repr__(self):
        return f"<Claim(id={self.id}, submitter='{self.submitter_id}', status={self.status})>"
