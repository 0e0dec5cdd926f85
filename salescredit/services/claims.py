import logging
import math
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from salescredit.core.config import settings
from salescredit.core.errors import ValidationError
from salescredit.core.identity import Principal, require_owner_or_staff
from salescredit.db import commit_or_raise, utcnow
from salescredit.models import Channel, Claim, ClaimStatus
from salescredit.models.claim import REVIEWABLE_STATUSES
from salescredit.schemas.claim import (
    ClaimPage,
    ClaimSubmitRequest,
    ManualClaimRequest,
    Pagination,
    ProcessedClaimRequest,
    QueuedClaim,
    QueuePage,
    ClaimSummary,
    TurnRequest,
)
from salescredit.schemas.credit import CreditModifiers, CustomerType
from salescredit.schemas.extraction import (
    ExtractionHints,
    ExtractionOutcome,
    ExtractionResult,
    TurnResult,
)
from salescredit.services.calculator import calculate_breakdown
from salescredit.services.claim_state import load_claim, record_audit, transition
from salescredit.services.conversation import (
    ConversationBuffer,
    conversation_locks,
    submission_locks,
)
from salescredit.services.decision import apply_decision
from salescredit.services.events import EventPublisher
from salescredit.services.extraction import ExtractionAdapter
from salescredit.services.ingestion import claim_fingerprint, ingest_claim

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 50


async def _extract_and_decide(
    session: AsyncSession,
    claim: Claim,
    outcome: ExtractionOutcome,
    modifiers: CreditModifiers,
    sale_value: Optional[Decimal] = None,
    publisher: Optional[EventPublisher] = None,
    extra_audit: Optional[Dict[str, Any]] = None,
    now: Optional[datetime] = None,
) -> Claim:
    extraction = outcome.extraction
    if sale_value is None and extraction.hints.estimated_sale_value:
        sale_value = Decimal(str(extraction.hints.estimated_sale_value))

    breakdown = calculate_breakdown(
        extraction.category, modifiers, sale_value, extraction.confidence
    )

    await transition(
        session,
        claim.id,
        [ClaimStatus.RECEIVED],
        {
            "category": extraction.category.value,
            "confidence": extraction.confidence,
            "sale_value": sale_value,
            "modifiers": modifiers.model_dump(mode="json"),
            "extraction": extraction.model_dump(mode="json"),
            "extraction_fallback": outcome.fallback,
            "computed_amount": breakdown.amount,
            "extracted_at": now or utcnow(),
        },
    )
    detail = {
        "fallback": outcome.fallback,
        "fallback_reason": outcome.fallback_reason,
        "credit": breakdown.as_audit_detail(),
    }
    detail.update(extra_audit or {})
    record_audit(session, claim.id, "extracted", detail=detail)
    await commit_or_raise(session, "storing extraction")
    await session.refresh(claim)

    return await apply_decision(session, claim, publisher=publisher, now=now)


def _modifiers(principal: Principal, customer_type: CustomerType) -> CreditModifiers:
    return CreditModifiers(member_tier=principal.tier, customer_type=customer_type)


async def submit_raw_claim(
    session: AsyncSession,
    principal: Principal,
    request: ClaimSubmitRequest,
    adapter: ExtractionAdapter,
    publisher: Optional[EventPublisher] = None,
) -> Claim:
    """Full pipeline for free text or a voice transcript: ingest, extract, price, decide."""
    async with submission_locks.hold(claim_fingerprint(principal.member_id, request.text)):
        claim = await ingest_claim(
            session, principal.member_id, request.channel, request.text, request.prior_turns
        )
        outcome = await adapter.extract(claim.raw_text, claim.conversation_turns)
        return await _extract_and_decide(
            session,
            claim,
            outcome,
            _modifiers(principal, request.customer_type),
            sale_value=request.sale_value,
            publisher=publisher,
        )


async def submit_processed_claim(
    session: AsyncSession,
    principal: Principal,
    request: ProcessedClaimRequest,
    publisher: Optional[EventPublisher] = None,
) -> Claim:
    """Submit an extraction produced by an earlier conversation turn.

    The amount is recomputed here; the client's figure is only kept in the
    audit trail.
    """
    raw_text = request.raw_text or " ".join(request.prior_turns)
    async with submission_locks.hold(claim_fingerprint(principal.member_id, raw_text)):
        claim = await ingest_claim(
            session, principal.member_id, request.channel, raw_text, request.prior_turns
        )
        return await _extract_and_decide(
            session,
            claim,
            ExtractionOutcome(extraction=request.extraction),
            _modifiers(principal, request.customer_type),
            sale_value=request.sale_value,
            publisher=publisher,
            extra_audit={"client_computed_amount": str(request.computed_amount)},
        )


async def submit_manual_claim(
    session: AsyncSession,
    principal: Principal,
    request: ManualClaimRequest,
    publisher: Optional[EventPublisher] = None,
) -> Claim:
    extraction = ExtractionResult(
        details={"category": request.category.value},
        confidence=settings.manual_confidence,
        hints=ExtractionHints(
            products=[request.product_category] if request.product_category else [],
            time_of_sale=request.time_of_sale.isoformat() if request.time_of_sale else None,
            estimated_sale_value=float(request.sale_value),
        ),
        reply_text="Thanks! Your claim has been recorded.",
    )
    async with submission_locks.hold(claim_fingerprint(principal.member_id, request.description)):
        claim = await ingest_claim(
            session, principal.member_id, Channel.MANUAL, request.description
        )
        return await _extract_and_decide(
            session,
            claim,
            ExtractionOutcome(extraction=extraction),
            _modifiers(principal, request.customer_type),
            sale_value=request.sale_value,
            publisher=publisher,
        )


async def process_turn(
    principal: Principal, request: TurnRequest, adapter: ExtractionAdapter
) -> TurnResult:
    """Run one conversation turn through extraction. Nothing is persisted."""
    text = (request.text or "").strip()
    if len(text) < settings.min_turn_length:
        raise ValidationError(
            f"Message must be at least {settings.min_turn_length} characters"
        )

    history = ConversationBuffer(request.prior_turns).turns()
    key = f"{principal.member_id}:{request.conversation_id or 'default'}"
    async with conversation_locks.hold(key):
        outcome = await adapter.extract(text, history)

    extraction = outcome.extraction
    return TurnResult(
        category=extraction.category,
        confidence=extraction.confidence,
        needs_follow_up=extraction.needs_follow_up,
        follow_up_question=extraction.follow_up_question,
        reply_text=extraction.reply_text,
        extraction=extraction,
        fallback=outcome.fallback,
    )


def _page_args(page: int, limit: int):
    if page < 1:
        raise ValidationError("Page must be 1 or greater")
    if limit < 1 or limit > MAX_PAGE_SIZE:
        raise ValidationError(f"Limit must be between 1 and {MAX_PAGE_SIZE}")
    return (page - 1) * limit


def _pagination(page: int, limit: int, total: int) -> Pagination:
    return Pagination(page=page, limit=limit, total=total, pages=math.ceil(total / limit))


async def get_claim(session: AsyncSession, principal: Principal, claim_id: str) -> Claim:
    claim = await load_claim(session, claim_id)
    require_owner_or_staff(principal, claim.submitter_id)
    return claim


async def list_member_claims(
    session: AsyncSession,
    member_id: str,
    status: Optional[ClaimStatus] = None,
    page: int = 1,
    limit: int = 20,
) -> ClaimPage:
    offset = _page_args(page, limit)
    conditions = [Claim.submitter_id == member_id]
    if status is not None:
        conditions.append(Claim.status == ClaimStatus(status).value)

    total = await session.scalar(select(func.count()).select_from(Claim).where(*conditions))
    result = await session.execute(
        select(Claim)
        .where(*conditions)
        .order_by(Claim.submitted_at.desc(), Claim.id)
        .offset(offset)
        .limit(limit)
    )
    return ClaimPage(
        submissions=[ClaimSummary.from_claim(claim) for claim in result.scalars().all()],
        pagination=_pagination(page, limit, total or 0),
    )


async def list_pending_claims(session: AsyncSession, page: int = 1, limit: int = 20) -> QueuePage:
    """Review queue: oldest submission first, ties broken by claim id."""
    offset = _page_args(page, limit)
    condition = Claim.status.in_(REVIEWABLE_STATUSES)

    total = await session.scalar(select(func.count()).select_from(Claim).where(condition))
    result = await session.execute(
        select(Claim)
        .where(condition)
        .order_by(Claim.submitted_at.asc(), Claim.id.asc())
        .offset(offset)
        .limit(limit)
    )
    return QueuePage(
        submissions=[QueuedClaim.from_claim(claim) for claim in result.scalars().all()],
        pagination=_pagination(page, limit, total or 0),
    )
