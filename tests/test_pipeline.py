"""
Tests for the submission pipeline and the decision engine
"""
from decimal import Decimal

import pytest
from sqlalchemy import select

from conftest import FakeProvider, raw_extraction
from salescredit.core.errors import ConflictError, PersistenceError, ValidationError
from salescredit.models import ClaimAuditEvent, ClaimStatus, LedgerEntry
from salescredit.schemas.claim import (
    ClaimSubmitRequest,
    ManualClaimRequest,
    ProcessedClaimRequest,
    TurnRequest,
)
from salescredit.schemas.credit import CustomerType
from salescredit.schemas.extraction import AssistanceCategory, ExtractionResult
from salescredit.services import claims
from salescredit.services.decision import (
    RULE_ABOVE_CEILING,
    RULE_AUTO_APPROVE,
    RULE_EXTRACTION_FALLBACK,
    RULE_LOW_CONFIDENCE,
    apply_decision,
    evaluate,
)
from salescredit.services.extraction import ExtractionAdapter


async def _entries_for(db, claim_id):
    result = await db.execute(select(LedgerEntry).where(LedgerEntry.claim_id == claim_id))
    return result.scalars().all()


def test_threshold_boundary():
    assert evaluate(0.80, Decimal("9.20")).rule == RULE_AUTO_APPROVE
    assert evaluate(0.79, Decimal("9.20")).rule == RULE_LOW_CONFIDENCE


def test_rules_in_order():
    assert evaluate(0.95, Decimal("30.00")).rule == RULE_ABOVE_CEILING
    assert evaluate(0.95, Decimal("25.00")).status == ClaimStatus.APPROVED
    assert evaluate(0.95, Decimal("1.00"), fallback=True).rule == RULE_EXTRACTION_FALLBACK
    assert evaluate(0.5, Decimal("1.00"), threshold=0.4).approved


@pytest.mark.asyncio
async def test_voice_claim_auto_approves(db, member, adapter, publisher, sink):
    request = ClaimSubmitRequest(
        text="I helped sell a yoga mat to Sarah around 2pm", channel="voice"
    )
    claim = await claims.submit_raw_claim(db, member, request, adapter, publisher)
    await publisher.drain()

    assert claim.category == AssistanceCategory.CONSULTATION.value
    assert claim.computed_amount == Decimal("9.20")
    assert claim.status == ClaimStatus.APPROVED.value
    assert claim.decision_rule == RULE_AUTO_APPROVE
    assert claim.approved_amount == Decimal("9.20")

    entries = await _entries_for(db, claim.id)
    assert len(entries) == 1
    assert entries[0].amount == Decimal("9.20")
    assert entries[0].entry_type == "earned"
    assert entries[0].expires_at is not None

    assert sink.events[0][0] == "claim.approved"

    audit = (
        await db.execute(
            select(ClaimAuditEvent).where(ClaimAuditEvent.claim_id == claim.id).order_by(ClaimAuditEvent.id)
        )
    ).scalars().all()
    assert [event.event for event in audit] == ["received", "extracted", "decided"]
    assert audit[-1].rule == RULE_AUTO_APPROVE
    assert audit[1].detail["credit"]["base"] == "10.00"


@pytest.mark.asyncio
async def test_timeout_routes_claim_to_review_queue(db, member, timeout_adapter):
    request = ClaimSubmitRequest(text="I helped sell a yoga mat to Sarah around 2pm")
    claim = await claims.submit_raw_claim(db, member, request, timeout_adapter)

    assert claim.category == AssistanceCategory.RECOMMENDATION.value
    assert claim.confidence == pytest.approx(0.3)
    assert claim.extraction_fallback is True
    assert claim.status == ClaimStatus.PENDING.value
    assert claim.decision_rule == RULE_EXTRACTION_FALLBACK
    assert await _entries_for(db, claim.id) == []

    queue = await claims.list_pending_claims(db)
    assert [queued.id for queued in queue.submissions] == [claim.id]


@pytest.mark.asyncio
async def test_low_confidence_goes_pending(db, member):
    adapter = ExtractionAdapter(FakeProvider(raw=raw_extraction(confidence=0.79)))
    request = ClaimSubmitRequest(text="I think I helped someone with something")
    claim = await claims.submit_raw_claim(db, member, request, adapter)

    assert claim.status == ClaimStatus.PENDING.value
    assert claim.decision_rule == RULE_LOW_CONFIDENCE


@pytest.mark.asyncio
async def test_duplicate_submission_conflicts(db, member, adapter):
    request = ClaimSubmitRequest(text="I helped sell a yoga mat to Sarah around 2pm")
    await claims.submit_raw_claim(db, member, request, adapter)

    with pytest.raises(ConflictError):
        await claims.submit_raw_claim(
            db, member, ClaimSubmitRequest(text="I helped sell a YOGA mat to Sarah around 2pm"), adapter
        )

    page = await claims.list_member_claims(db, member.member_id)
    assert page.pagination.total == 1


@pytest.mark.asyncio
async def test_manual_claim_applies_modifiers(db, premium_member, publisher):
    request = ManualClaimRequest(
        description="Walked a new customer through our crystal collection",
        category=AssistanceCategory.CONSULTATION,
        sale_value=Decimal("45"),
        customer_type=CustomerType.NEW,
    )
    claim = await claims.submit_manual_claim(db, premium_member, request, publisher)

    assert claim.channel == "manual"
    assert claim.confidence == pytest.approx(0.95)
    assert claim.computed_amount == Decimal("8.00")
    assert claim.status == ClaimStatus.APPROVED.value
    assert claim.modifiers == {"member_tier": "premium", "customer_type": "new"}


@pytest.mark.asyncio
async def test_processed_claim_recomputes_amount(db, member):
    extraction = ExtractionResult(
        details={"category": "assistance", "options_compared": ["amethyst", "quartz"]},
        confidence=0.9,
    )
    request = ProcessedClaimRequest(
        extraction=extraction,
        computed_amount=Decimal("40.00"),
        raw_text="I helped him choose between amethyst and quartz",
    )
    claim = await claims.submit_processed_claim(db, member, request)

    # 5.00 default assistance base * 0.9
    assert claim.computed_amount == Decimal("4.50")
    assert claim.status == ClaimStatus.APPROVED.value
    assert claim.extraction["details"]["options_compared"] == ["amethyst", "quartz"]


@pytest.mark.asyncio
async def test_sale_value_above_ceiling_needs_review(db, member, adapter):
    request = ClaimSubmitRequest(
        text="I designed a full meditation corner for a customer",
        sale_value=Decimal("400"),
    )
    claim = await claims.submit_raw_claim(db, member, request, adapter)

    # 400 * 0.12 * 1.4 * 0.92 = 61.824 -> capped at 50.00
    assert claim.computed_amount == Decimal("50.00")
    assert claim.status == ClaimStatus.PENDING.value
    assert claim.decision_rule == RULE_ABOVE_CEILING


@pytest.mark.asyncio
async def test_decision_only_applies_once(db, member, adapter):
    claim = await claims.submit_raw_claim(
        db, member, ClaimSubmitRequest(text="I helped sell a yoga mat to Sarah around 2pm"), adapter
    )

    with pytest.raises(ConflictError):
        await apply_decision(db, claim)
    assert len(await _entries_for(db, claim.id)) == 1


@pytest.mark.asyncio
async def test_process_turn_passes_bounded_history(member, adapter, provider):
    request = TurnRequest(
        text="It was the lavender oil",
        prior_turns=[f"turn {i}" for i in range(10)],
        conversation_id="conv-1",
    )
    result = await claims.process_turn(member, request, adapter)

    assert result.category == AssistanceCategory.CONSULTATION
    assert result.fallback is False
    assert provider.calls[-1][1] == ["turn 6", "turn 7", "turn 8", "turn 9"]


@pytest.mark.asyncio
async def test_process_turn_rejects_empty_text(member, adapter):
    with pytest.raises(ValidationError):
        await claims.process_turn(member, TurnRequest(text="   "), adapter)


@pytest.mark.asyncio
async def test_member_claims_filtered_and_paginated(db, member, adapter):
    for product in ["sage", "candles", "incense"]:
        await claims.submit_raw_claim(
            db, member, ClaimSubmitRequest(text=f"I helped sell some {product} today"), adapter
        )

    page = await claims.list_member_claims(db, member.member_id, page=1, limit=2)
    assert page.pagination.total == 3
    assert page.pagination.pages == 2
    assert len(page.submissions) == 2

    pending = await claims.list_member_claims(db, member.member_id, status=ClaimStatus.PENDING)
    assert pending.pagination.total == 0

    with pytest.raises(ValidationError):
        await claims.list_member_claims(db, member.member_id, limit=500)


@pytest.mark.asyncio
async def test_nan_confidence_is_never_auto_approved(db, member):
    adapter = ExtractionAdapter(FakeProvider(raw=raw_extraction(confidence=float("nan"))))
    request = ClaimSubmitRequest(text="I helped sell a yoga mat to Sarah around 2pm")
    claim = await claims.submit_raw_claim(db, member, request, adapter)

    assert claim.status == ClaimStatus.PENDING.value
    assert claim.decision_rule == RULE_EXTRACTION_FALLBACK
    assert await _entries_for(db, claim.id) == []


@pytest.mark.asyncio
async def test_retry_after_storage_failure_finishes_claim(db, member, adapter, monkeypatch):
    real_commit = claims.commit_or_raise
    failed = []

    async def flaky_commit(session, action):
        if action == "storing extraction" and not failed:
            failed.append(action)
            await session.rollback()
            raise PersistenceError("Storage is temporarily unavailable")
        await real_commit(session, action)

    monkeypatch.setattr(claims, "commit_or_raise", flaky_commit)
    request = ClaimSubmitRequest(text="I helped sell a yoga mat to Sarah around 2pm")

    with pytest.raises(PersistenceError):
        await claims.submit_raw_claim(db, member, request, adapter)

    claim = await claims.submit_raw_claim(db, member, request, adapter)

    assert claim.status == ClaimStatus.APPROVED.value
    assert claim.computed_amount == Decimal("9.20")
    page = await claims.list_member_claims(db, member.member_id)
    assert page.pagination.total == 1
    assert len(await _entries_for(db, claim.id)) == 1

    with pytest.raises(ConflictError):
        await claims.submit_raw_claim(db, member, request, adapter)
