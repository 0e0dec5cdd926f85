import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession
from salescredit.core.config import settings
from salescredit.core.errors import ConflictError
from salescredit.db import commit_or_raise, utcnow
from salescredit.models import Claim, ClaimStatus, EntryType
from salescredit.services import ledger
from salescredit.services.claim_state import record_audit, transition
from salescredit.services.events import EventPublisher

logger = logging.getLogger(__name__)

RULE_AUTO_APPROVE = "auto_approve"
RULE_EXTRACTION_FALLBACK = "extraction_fallback"
RULE_LOW_CONFIDENCE = "confidence_below_threshold"
RULE_ABOVE_CEILING = "amount_above_ceiling"


@dataclass(frozen=True)
class Decision:
    status: ClaimStatus
    rule: str

    @property
    def approved(self) -> bool:
        return self.status == ClaimStatus.APPROVED


def evaluate(
    confidence: float,
    amount: Decimal,
    fallback: bool = False,
    threshold: Optional[float] = None,
    ceiling: Optional[Decimal] = None,
) -> Decision:
    """Pick auto-approval or review. The first matching rule wins."""
    threshold = settings.auto_approve_confidence if threshold is None else threshold
    ceiling = settings.auto_approve_ceiling if ceiling is None else ceiling

    if fallback:
        return Decision(ClaimStatus.PENDING, RULE_EXTRACTION_FALLBACK)
    if confidence is None or confidence < threshold:
        return Decision(ClaimStatus.PENDING, RULE_LOW_CONFIDENCE)
    if amount is None or Decimal(amount) > Decimal(ceiling):
        return Decision(ClaimStatus.PENDING, RULE_ABOVE_CEILING)
    return Decision(ClaimStatus.APPROVED, RULE_AUTO_APPROVE)


async def apply_decision(
    session: AsyncSession,
    claim: Claim,
    publisher: Optional[EventPublisher] = None,
    now: Optional[datetime] = None,
) -> Claim:
    """Move an extracted claim out of RECEIVED and mint credit when auto-approved."""
    if claim.status != ClaimStatus.RECEIVED.value or claim.category is None:
        raise ConflictError("Claim is not awaiting a decision")

    now = now or utcnow()
    decision = evaluate(claim.confidence, claim.computed_amount, claim.extraction_fallback)

    values = {
        "status": decision.status.value,
        "decision_rule": decision.rule,
        "decided_at": now,
    }
    if decision.approved:
        values["approved_amount"] = claim.computed_amount

    await transition(session, claim.id, [ClaimStatus.RECEIVED], values)
    record_audit(
        session,
        claim.id,
        "decided",
        rule=decision.rule,
        detail={
            "status": decision.status.value,
            "confidence": claim.confidence,
            "amount": str(claim.computed_amount),
            "confidence_threshold": settings.auto_approve_confidence,
            "amount_ceiling": str(settings.auto_approve_ceiling),
        },
    )
    if decision.approved:
        ledger.record_entry(
            session,
            member_id=claim.submitter_id,
            amount=claim.computed_amount,
            entry_type=EntryType.EARNED,
            claim_id=claim.id,
            description=f"Credit for {claim.category}",
            expires_at=ledger.credit_expiry(now),
        )
    await commit_or_raise(session, "recording decision")
    await session.refresh(claim)

    logger.info(f"Claim {claim.id} {claim.status} by rule {decision.rule}")
    if decision.approved and publisher is not None:
        publisher.publish(
            "claim.approved",
            {
                "claim_id": claim.id,
                "member_id": claim.submitter_id,
                "amount": str(claim.approved_amount),
                "automatic": True,
            },
        )
    return claim
