from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List
import logging
from salescredit.api.deps import get_principal
from salescredit.core.identity import Principal, require_staff
from salescredit.db import get_db
from salescredit.schemas.claim import AuditEventView, QueuePage, QueuedClaim, ReviewRequest
from salescredit.schemas.ledger import AdjustmentRequest, LedgerEntryView
from salescredit.services import claims, ledger, review
from salescredit.services.claim_state import list_audit_events
from salescredit.services.events import EventPublisher, get_event_publisher


logger = logging.getLogger(__name__)
router = APIRouter(
    prefix='/admin/credits',
    tags=["admin"]
)


@router.get("/pending", response_model=QueuePage)
async def list_pending(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=claims.MAX_PAGE_SIZE),
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    require_staff(principal)
    return await claims.list_pending_claims(db, page, limit)


@router.post("/claims/{claim_id}/start-review", response_model=QueuedClaim)
async def start_review(
    claim_id: str,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    claim = await review.start_review(db, claim_id, principal)
    return QueuedClaim.from_claim(claim)


@router.patch("/review/{claim_id}", response_model=QueuedClaim)
async def review_claim(
    claim_id: str,
    payload: ReviewRequest,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_principal),
    publisher: EventPublisher = Depends(get_event_publisher),
):
    logger.info(f"Review of claim {claim_id} by {principal.member_id}: {payload.status.value}")
    claim = await review.review_claim(
        db,
        claim_id,
        principal,
        payload.status,
        override_amount=payload.approved_amount,
        notes=payload.review_notes,
        publisher=publisher,
    )
    return QueuedClaim.from_claim(claim)


@router.get("/claims/{claim_id}/audit", response_model=List[AuditEventView])
async def claim_audit(
    claim_id: str,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    require_staff(principal)
    return await list_audit_events(db, claim_id)


@router.post("/adjustments", status_code=201, response_model=LedgerEntryView)
async def grant_adjustment(
    payload: AdjustmentRequest,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    entry = await ledger.grant_adjustment(
        db,
        principal,
        payload.member_id,
        payload.amount,
        entry_type=payload.entry_type,
        description=payload.description,
        expires_in_days=payload.expires_in_days,
    )
    return LedgerEntryView.model_validate(entry)
