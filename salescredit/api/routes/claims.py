from fastapi import APIRouter, Request, HTTPException, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional
import logging
import asyncio
from slowapi import Limiter
from slowapi.util import get_remote_address
from salescredit.api.deps import get_principal
from salescredit.core.config import settings
from salescredit.core.identity import Principal
from salescredit.db import get_db
from salescredit.models import ClaimStatus
from salescredit.schemas.claim import (
    ClaimPage,
    ClaimSubmitRequest,
    ClaimSummary,
    ManualClaimRequest,
    ProcessedClaimRequest,
    TurnRequest,
)
from salescredit.schemas.extraction import TurnResult
from salescredit.schemas.ledger import BalanceView, LedgerEntryView
from salescredit.services import claims, ledger
from salescredit.services.events import EventPublisher, get_event_publisher
from salescredit.services.extraction import ExtractionAdapter, get_extraction_adapter


logger = logging.getLogger(__name__)
limiter = Limiter(key_func=get_remote_address, enabled=settings.rate_limit_enabled)
router = APIRouter(
    prefix='/credits',
    tags=["credits"]
)


@router.post("/submit", status_code=201, response_model=ClaimSummary)
@limiter.limit(settings.submit_rate_limit)
async def submit_claim(
    request: Request,
    payload: ClaimSubmitRequest,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_principal),
    adapter: ExtractionAdapter = Depends(get_extraction_adapter),
    publisher: EventPublisher = Depends(get_event_publisher),
):
    logger.info(f"Claim submission from {principal.member_id} via {payload.channel.value}")
    claim = await claims.submit_raw_claim(db, principal, payload, adapter, publisher)
    return ClaimSummary.from_claim(claim)


@router.post("/voice-process", response_model=TurnResult)
@limiter.limit(settings.submit_rate_limit)
async def voice_process(
    request: Request,
    payload: TurnRequest,
    principal: Principal = Depends(get_principal),
    adapter: ExtractionAdapter = Depends(get_extraction_adapter),
):
    if await request.is_disconnected():
        logger.info(f"Client disconnected before processing turn for {principal.member_id}")
        raise HTTPException(status_code=499, detail="Client disconnected")

    try:
        task = asyncio.create_task(claims.process_turn(principal, payload, adapter))

        while not task.done():
            if await request.is_disconnected():
                logger.info(f"Client disconnected during turn for {principal.member_id}")
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    logger.info(f"Cancelled turn processing for {principal.member_id}")
                raise HTTPException(status_code=499, detail="Client disconnected")

            await asyncio.sleep(0.05)

        return await task

    except asyncio.CancelledError:
        logger.info(f"Turn processing cancelled for {principal.member_id}")
        raise HTTPException(status_code=499, detail="Request cancelled")


@router.post("/submit-processed", status_code=201, response_model=ClaimSummary)
@limiter.limit(settings.submit_rate_limit)
async def submit_processed(
    request: Request,
    payload: ProcessedClaimRequest,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_principal),
    publisher: EventPublisher = Depends(get_event_publisher),
):
    claim = await claims.submit_processed_claim(db, principal, payload, publisher)
    return ClaimSummary.from_claim(claim)


@router.post("/submit-manual", status_code=201, response_model=ClaimSummary)
@limiter.limit(settings.submit_rate_limit)
async def submit_manual(
    request: Request,
    payload: ManualClaimRequest,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_principal),
    publisher: EventPublisher = Depends(get_event_publisher),
):
    claim = await claims.submit_manual_claim(db, principal, payload, publisher)
    return ClaimSummary.from_claim(claim)


@router.get("/submissions", response_model=ClaimPage)
async def list_submissions(
    status: Optional[ClaimStatus] = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=claims.MAX_PAGE_SIZE),
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    return await claims.list_member_claims(db, principal.member_id, status, page, limit)


@router.get("/submissions/{claim_id}", response_model=ClaimSummary)
async def get_submission(
    claim_id: str,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    claim = await claims.get_claim(db, principal, claim_id)
    return ClaimSummary.from_claim(claim)


@router.get("/balance", response_model=BalanceView)
async def get_balance(
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    return await ledger.get_balance(db, principal.member_id)


@router.post("/entries/{entry_id}/redeem", response_model=LedgerEntryView)
async def redeem_entry(
    entry_id: str,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_principal),
    publisher: EventPublisher = Depends(get_event_publisher),
):
    entry = await ledger.redeem_entry(db, principal, entry_id, publisher)
    return LedgerEntryView.model_validate(entry)
