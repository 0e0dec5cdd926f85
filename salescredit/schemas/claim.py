from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Dict, List, Optional
from datetime import datetime
from decimal import Decimal
from enum import Enum
from salescredit.models.claim import Channel, ClaimStatus
from salescredit.schemas.credit import CustomerType
from salescredit.schemas.extraction import AssistanceCategory, ExtractionResult


class ClaimSubmitRequest(BaseModel):
    text: str
    channel: Channel = Channel.TEXT
    prior_turns: List[str] = []
    sale_value: Optional[Decimal] = Field(default=None, ge=0)
    customer_type: CustomerType = CustomerType.MEMBER


class TurnRequest(BaseModel):
    text: str
    prior_turns: List[str] = []
    conversation_id: Optional[str] = None


class ProcessedClaimRequest(BaseModel):
    extraction: ExtractionResult
    computed_amount: Decimal = Field(ge=0)
    raw_text: Optional[str] = None
    channel: Channel = Channel.VOICE
    prior_turns: List[str] = []
    sale_value: Optional[Decimal] = Field(default=None, ge=0)
    customer_type: CustomerType = CustomerType.MEMBER


class ManualClaimRequest(BaseModel):
    description: str
    category: AssistanceCategory
    sale_value: Decimal = Field(gt=0)
    customer_type: CustomerType = CustomerType.MEMBER
    product_category: Optional[str] = None
    time_of_sale: Optional[datetime] = None


class ReviewDecision(str, Enum):
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class ReviewRequest(BaseModel):
    status: ReviewDecision
    approved_amount: Optional[Decimal] = Field(default=None, ge=0)
    review_notes: Optional[str] = Field(default=None, max_length=500)


class ClaimSummary(BaseModel):
    id: str
    category: Optional[AssistanceCategory]
    claimed_amount: Optional[Decimal]
    approved_amount: Optional[Decimal]
    status: ClaimStatus
    confidence: Optional[float]
    decision_rule: Optional[str]
    needs_follow_up: bool = False
    follow_up_question: Optional[str] = None
    review_notes: Optional[str]
    submitted_at: datetime
    reviewed_at: Optional[datetime]

    @classmethod
    def from_claim(cls, claim) -> "ClaimSummary":
        extraction = claim.extraction or {}
        return cls(
            id=claim.id,
            category=claim.category,
            claimed_amount=claim.computed_amount,
            approved_amount=claim.approved_amount,
            status=claim.status,
            confidence=claim.confidence,
            decision_rule=claim.decision_rule,
            needs_follow_up=extraction.get("needs_follow_up", False),
            follow_up_question=extraction.get("follow_up_question"),
            review_notes=claim.review_notes,
            submitted_at=claim.submitted_at,
            reviewed_at=claim.reviewed_at,
        )


class QueuedClaim(ClaimSummary):
    submitter_id: str
    channel: Channel
    raw_text: str
    sale_value: Optional[Decimal]
    extraction_fallback: bool
    reviewer_id: Optional[str]

    @classmethod
    def from_claim(cls, claim) -> "QueuedClaim":
        summary = ClaimSummary.from_claim(claim)
        return cls(
            **summary.model_dump(),
            submitter_id=claim.submitter_id,
            channel=claim.channel,
            raw_text=claim.raw_text,
            sale_value=claim.sale_value,
            extraction_fallback=claim.extraction_fallback,
            reviewer_id=claim.reviewer_id,
        )


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class ClaimPage(BaseModel):
    submissions: List[ClaimSummary]
    pagination: Pagination


class QueuePage(BaseModel):
    submissions: List[QueuedClaim]
    pagination: Pagination


class AuditEventView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    event: str
    rule: Optional[str]
    actor_id: Optional[str]
    detail: Dict[str, Any]
    created_at: datetime
