import math
from enum import Enum
from pydantic import BaseModel, Field, field_validator
from typing import Annotated, Any, Dict, List, Literal, Optional, Union


class AssistanceCategory(str, Enum):
    RECOMMENDATION = "recommendation"
    ASSISTANCE = "assistance"
    CONSULTATION = "consultation"
    PROBLEM_SOLVING = "problem_solving"


def clamp_confidence(value: Optional[float]) -> float:
    """Clamp to [0, 1]; missing or non-finite values count as no confidence."""
    if value is None:
        return 0.0
    value = float(value)
    if not math.isfinite(value):
        return 0.0
    return max(0.0, min(1.0, value))


class RecommendationDetails(BaseModel):
    category: Literal["recommendation"] = "recommendation"
    product_suggested: Optional[str] = None


class AssistanceDetails(BaseModel):
    category: Literal["assistance"] = "assistance"
    options_compared: List[str] = []
    questions_answered: Optional[str] = None


class ConsultationDetails(BaseModel):
    category: Literal["consultation"] = "consultation"
    topics_explained: List[str] = []
    duration_minutes: Optional[int] = None


class ProblemSolvingDetails(BaseModel):
    category: Literal["problem_solving"] = "problem_solving"
    customer_problem: Optional[str] = None
    solution_summary: Optional[str] = None
    products_combined: List[str] = []


ClaimDetails = Annotated[
    Union[RecommendationDetails, AssistanceDetails, ConsultationDetails, ProblemSolvingDetails],
    Field(discriminator="category"),
]


class ExtractionHints(BaseModel):
    products: List[str] = []
    customer_details: Optional[str] = None
    time_of_sale: Optional[str] = None
    estimated_sale_value: Optional[float] = Field(default=None, ge=0)


class RawExtraction(BaseModel):
    """Flat JSON payload requested from the extraction model."""

    assistance_type: str
    confidence: float
    products: List[str] = []
    customer_details: Optional[str] = None
    time_of_sale: Optional[str] = None
    estimated_sale_value: Optional[float] = None
    details: Dict[str, Any] = {}
    needs_follow_up: bool = False
    follow_up_question: Optional[str] = None
    reply_text: str = ""


class ExtractionResult(BaseModel):
    details: ClaimDetails
    confidence: float
    hints: ExtractionHints = ExtractionHints()
    needs_follow_up: bool = False
    follow_up_question: Optional[str] = None
    reply_text: str = ""

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp(cls, value):
        return clamp_confidence(value)

    @property
    def category(self) -> AssistanceCategory:
        return AssistanceCategory(self.details.category)


class ExtractionOutcome(BaseModel):
    """Adapter result: always carries an extraction, `fallback` marks the degraded path."""

    extraction: ExtractionResult
    fallback: bool = False
    fallback_reason: Optional[str] = None


class TurnResult(BaseModel):
    category: AssistanceCategory
    confidence: float
    needs_follow_up: bool
    follow_up_question: Optional[str]
    reply_text: str
    extraction: ExtractionResult
    fallback: bool
