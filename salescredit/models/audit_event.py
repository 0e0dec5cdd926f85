from sqlalchemy import Column, Integer, String, DateTime, JSON, ForeignKey
from sqlalchemy.orm import relationship
from salescredit.db import Base, utcnow


class ClaimAuditEvent(Base):
    __tablename__ = "claim_audit_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    claim_id = Column(String(36), ForeignKey("claims.id"), nullable=False, index=True)

    event = Column(String(30), nullable=False)  # received, extracted, decided, review_started, reviewed
    rule = Column(String(40), nullable=True)
    actor_id = Column(String(64), nullable=True)
    detail = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    claim = relationship("Claim", back_populates="audit_events")
