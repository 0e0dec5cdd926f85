import asyncio
import logging
import math
import re
from typing import Any, Dict, List, Optional, Protocol

import ollama
import pydantic
from pydantic import TypeAdapter

from salescredit.core.config import settings
from salescredit.core.errors import ExternalServiceError
from salescredit.core.prompts import ExtractionPrompts
from salescredit.schemas.extraction import (
    AssistanceCategory,
    ClaimDetails,
    ExtractionHints,
    ExtractionOutcome,
    ExtractionResult,
    RawExtraction,
)

logger = logging.getLogger(__name__)

FALLBACK_QUESTION = "Could you tell me more about how you helped with the sale?"
FALLBACK_REPLY = (
    "I didn't quite catch that. Could you tell me more about how you helped with a sale?"
)

_details_adapter = TypeAdapter(ClaimDetails)


class ExtractionProvider(Protocol):
    async def complete(self, text: str, history: List[str]) -> RawExtraction:
        """Return the raw structured guess, or raise ExternalServiceError."""
        ...


class OllamaExtractionProvider:
    def __init__(self, model: Optional[str] = None, host: Optional[str] = None, client=None):
        self.model = model or settings.ollama_model
        self.client = client or ollama.AsyncClient(host=host or settings.ollama_host)

    async def complete(self, text: str, history: List[str]) -> RawExtraction:
        try:
            prompt = ExtractionPrompts.get_prompt(text, history)

            response = await self.client.chat(
                model=self.model,
                messages=[
                    {"role": "system", "content": ExtractionPrompts.GUIDELINES},
                    {"role": "user", "content": prompt},
                ],
                format=RawExtraction.model_json_schema(),
                stream=False,
                options={"temperature": 0.0},
            )

            return RawExtraction.model_validate_json(response.message.content)
        except Exception as e:
            raise ExternalServiceError(f"Extraction provider failed: {e}") from e


def _category_from(value: Optional[str]) -> AssistanceCategory:
    normalized = (value or "").strip().lower().replace("-", "_").replace(" ", "_")
    try:
        return AssistanceCategory(normalized)
    except ValueError:
        return AssistanceCategory.RECOMMENDATION


def _details_for(category: AssistanceCategory, details: Dict[str, Any]):
    try:
        return _details_adapter.validate_python({**details, "category": category.value})
    except pydantic.ValidationError:
        # Malformed detail fields should not cost the member the whole extraction.
        return _details_adapter.validate_python({"category": category.value})


def optimize_for_speech(text: str) -> str:
    text = re.sub(r"\s+", " ", text or "")
    text = re.sub(r"\$(\d+(?:\.\d+)?)", r"\1 dollars", text)
    return text.strip()


def to_extraction_result(raw: RawExtraction) -> ExtractionResult:
    category = _category_from(raw.assistance_type)
    sale_value = raw.estimated_sale_value
    if sale_value is not None:
        sale_value = max(0.0, sale_value) if math.isfinite(sale_value) else None

    follow_up_question = raw.follow_up_question
    if raw.needs_follow_up and not follow_up_question:
        follow_up_question = FALLBACK_QUESTION

    reply_text = optimize_for_speech(raw.reply_text)
    if not reply_text:
        reply_text = follow_up_question or "Thanks! I've noted how you helped with that sale."

    return ExtractionResult(
        details=_details_for(category, raw.details),
        confidence=raw.confidence,
        hints=ExtractionHints(
            products=raw.products,
            customer_details=raw.customer_details,
            time_of_sale=raw.time_of_sale,
            estimated_sale_value=sale_value,
        ),
        needs_follow_up=raw.needs_follow_up,
        follow_up_question=follow_up_question,
        reply_text=reply_text,
    )


class ExtractionAdapter:
    """Stateless boundary around the extraction provider.

    Turn history belongs to the caller; the adapter only trims it to the
    last ``max_turns`` entries. Timeouts and provider failures never escape:
    they produce the fixed fallback outcome so a claim can always be decided.
    """

    def __init__(
        self,
        provider: ExtractionProvider,
        timeout_seconds: Optional[float] = None,
        max_turns: Optional[int] = None,
        fallback_confidence: Optional[float] = None,
    ):
        self.provider = provider
        self.timeout_seconds = timeout_seconds or settings.extraction_timeout_seconds
        self.max_turns = settings.conversation_max_turns if max_turns is None else max_turns
        self.fallback_confidence = (
            settings.fallback_confidence if fallback_confidence is None else fallback_confidence
        )

    def fallback(self, reason: str) -> ExtractionOutcome:
        return ExtractionOutcome(
            extraction=ExtractionResult(
                details={"category": AssistanceCategory.RECOMMENDATION.value},
                confidence=self.fallback_confidence,
                needs_follow_up=True,
                follow_up_question=FALLBACK_QUESTION,
                reply_text=FALLBACK_REPLY,
            ),
            fallback=True,
            fallback_reason=reason,
        )

    async def extract(self, text: str, history: Optional[List[str]] = None) -> ExtractionOutcome:
        history = list(history or [])
        if self.max_turns > 0:
            history = history[-self.max_turns:]
        else:
            history = []

        try:
            raw = await asyncio.wait_for(
                self.provider.complete(text, history), timeout=self.timeout_seconds
            )
        except asyncio.TimeoutError:
            logger.warning(f"Extraction timed out after {self.timeout_seconds}s, using fallback")
            return self.fallback("timeout")
        except Exception as e:
            logger.warning(f"Extraction failed, using fallback: {e}")
            return self.fallback("provider_error")

        if not math.isfinite(raw.confidence):
            logger.warning(f"Extraction returned non-finite confidence {raw.confidence}, using fallback")
            return self.fallback("invalid_payload")

        try:
            result = to_extraction_result(raw)
        except pydantic.ValidationError as e:
            logger.warning(f"Extraction payload rejected, using fallback: {e}")
            return self.fallback("invalid_payload")

        logger.info(
            f"Extraction: {result.category.value} ({result.confidence:.2f}) - {text[:40]}..."
        )
        return ExtractionOutcome(extraction=result)


_default_adapter: Optional[ExtractionAdapter] = None


def get_extraction_adapter() -> ExtractionAdapter:
    global _default_adapter
    if _default_adapter is None:
        _default_adapter = ExtractionAdapter(OllamaExtractionProvider())
    return _default_adapter
