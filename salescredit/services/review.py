import logging
from datetime import datetime
from decimal import Decimal
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession
from salescredit.core.errors import AuthorizationError, ValidationError
from salescredit.core.identity import Principal, require_staff
from salescredit.db import commit_or_raise, utcnow
from salescredit.models import Claim, ClaimStatus, EntryType
from salescredit.models.claim import REVIEWABLE_STATUSES
from salescredit.schemas.claim import ReviewDecision
from salescredit.services import ledger
from salescredit.services.claim_state import load_claim, record_audit, transition
from salescredit.services.events import EventPublisher

logger = logging.getLogger(__name__)

MAX_NOTES_LENGTH = 500


def _forbid_self_review(claim: Claim, reviewer: Principal):
    if claim.submitter_id == reviewer.member_id:
        raise AuthorizationError("Reviewers cannot review their own claims")


async def start_review(
    session: AsyncSession,
    claim_id: str,
    reviewer: Principal,
    now: Optional[datetime] = None,
) -> Claim:
    """Take a PENDING claim off the open queue and into UNDER_REVIEW."""
    require_staff(reviewer)
    claim = await load_claim(session, claim_id)
    _forbid_self_review(claim, reviewer)

    await transition(
        session,
        claim.id,
        [ClaimStatus.PENDING],
        {"status": ClaimStatus.UNDER_REVIEW.value, "reviewer_id": reviewer.member_id},
        conflict_message="Claim is not pending review",
    )
    record_audit(session, claim.id, "review_started", actor_id=reviewer.member_id)
    await commit_or_raise(session, "starting review")
    await session.refresh(claim)

    logger.info(f"Claim {claim.id} under review by {reviewer.member_id}")
    return claim


async def review_claim(
    session: AsyncSession,
    claim_id: str,
    reviewer: Principal,
    decision: ReviewDecision,
    override_amount: Optional[Decimal] = None,
    notes: Optional[str] = None,
    publisher: Optional[EventPublisher] = None,
    now: Optional[datetime] = None,
) -> Claim:
    """Approve or reject a claim awaiting review.

    The status guard in the update is what makes a second review, or two
    reviewers racing on one claim, fail with ConflictError instead of minting
    a second ledger entry.
    """
    require_staff(reviewer)
    claim = await load_claim(session, claim_id)
    _forbid_self_review(claim, reviewer)

    decision = ReviewDecision(decision)
    notes = (notes or "").strip() or None
    if notes and len(notes) > MAX_NOTES_LENGTH:
        raise ValidationError(f"Review notes must be at most {MAX_NOTES_LENGTH} characters")

    approved_amount = None
    if decision == ReviewDecision.APPROVED:
        if override_amount is not None:
            if Decimal(str(override_amount)) < 0:
                raise ValidationError("Approved amount cannot be negative")
            approved_amount = ledger.to_cents(override_amount)
        elif claim.computed_amount is not None:
            approved_amount = ledger.to_cents(claim.computed_amount)
        else:
            raise ValidationError("An approved amount is required for this claim")

    now = now or utcnow()
    await transition(
        session,
        claim.id,
        REVIEWABLE_STATUSES,
        {
            "status": decision.value,
            "approved_amount": approved_amount,
            "reviewer_id": reviewer.member_id,
            "review_notes": notes,
            "reviewed_at": now,
        },
        conflict_message="Claim already reviewed",
    )
    record_audit(
        session,
        claim.id,
        "reviewed",
        rule="manual_review",
        actor_id=reviewer.member_id,
        detail={
            "decision": decision.value,
            "computed_amount": str(claim.computed_amount),
            "approved_amount": str(approved_amount) if approved_amount is not None else None,
            "override": override_amount is not None,
        },
    )
    if decision == ReviewDecision.APPROVED:
        ledger.record_entry(
            session,
            member_id=claim.submitter_id,
            amount=approved_amount,
            entry_type=EntryType.EARNED,
            claim_id=claim.id,
            description=f"Credit for {claim.category} (reviewed)",
            expires_at=ledger.credit_expiry(now),
            created_by=reviewer.member_id,
        )
    await commit_or_raise(session, "recording review")
    await session.refresh(claim)

    logger.info(f"Claim {claim.id} {decision.value.lower()} by {reviewer.member_id}")
    if publisher is not None:
        publisher.publish(
            f"claim.{decision.value.lower()}",
            {
                "claim_id": claim.id,
                "member_id": claim.submitter_id,
                "amount": str(claim.approved_amount) if claim.approved_amount is not None else None,
                "automatic": False,
            },
        )
    return claim
