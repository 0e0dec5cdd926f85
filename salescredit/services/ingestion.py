import hashlib
import logging
import re
import uuid
from datetime import datetime, timedelta
from typing import List, Optional
from sqlalchemy import select, text as sql_text
from sqlalchemy.ext.asyncio import AsyncSession
from salescredit.core.config import settings
from salescredit.core.errors import ConflictError, ValidationError
from salescredit.db import commit_or_raise, utcnow
from salescredit.models import Channel, Claim, ClaimStatus
from salescredit.services.claim_state import record_audit
from salescredit.services.conversation import ConversationBuffer

logger = logging.getLogger(__name__)


def normalize_claim_text(text: str) -> str:
    """Normalize claim text for duplicate detection.

    Args:
        text (str): The raw claim text.

    Returns:
        str: Lower-cased text with typographic quotes folded and whitespace collapsed.
    """
    if not text:
        return ""

    text = text.replace("“", '"').replace("”", '"').replace("’", "'").replace("‘", "'")
    return re.sub(r"\s+", " ", text).strip().lower()


def claim_fingerprint(submitter_id: str, text: str) -> str:
    payload = f"{submitter_id}\n{normalize_claim_text(text)}"
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def _validate_text(raw_text: str) -> str:
    text = (raw_text or "").strip()
    if len(text) < settings.min_claim_length:
        raise ValidationError(
            f"Claim description must be at least {settings.min_claim_length} characters"
        )
    if len(text) > settings.max_claim_length:
        raise ValidationError(
            f"Claim description must be at most {settings.max_claim_length} characters"
        )
    return text


async def lock_fingerprint(session: AsyncSession, fingerprint: str):
    """Hold a transaction-scoped advisory lock on the fingerprint (Postgres only).

    Serializes the duplicate check and insert across workers; the lock is
    released when the surrounding transaction commits or rolls back.
    """
    if session.get_bind().dialect.name != "postgresql":
        return
    await session.execute(
        sql_text("SELECT pg_advisory_xact_lock(hashtextextended(:key, 0))"),
        {"key": fingerprint},
    )


async def ingest_claim(
    session: AsyncSession,
    submitter_id: str,
    channel,
    raw_text: str,
    prior_turns: Optional[List[str]] = None,
    now: Optional[datetime] = None,
) -> Claim:
    """Validate, deduplicate and persist a new claim in RECEIVED.

    A claim with the same fingerprint still in RECEIVED was left behind by a
    submission that failed after ingestion; it is returned so the caller can
    finish extracting and deciding it. In-process callers hold
    ``submission_locks`` for the fingerprint around the whole pipeline.

    Raises:
        ValidationError: If the text is too short or too long, or the channel is unknown.
        ConflictError: If the same member submitted the same text inside the dedup window.
    """
    text_value = _validate_text(raw_text)
    try:
        channel = Channel(channel)
    except ValueError:
        raise ValidationError(f"Unknown channel: {channel}")

    fingerprint = claim_fingerprint(submitter_id, text_value)
    turns = ConversationBuffer(prior_turns).turns()
    await lock_fingerprint(session, fingerprint)

    stranded = await session.scalar(
        select(Claim)
        .where(
            Claim.submitter_id == submitter_id,
            Claim.fingerprint == fingerprint,
            Claim.status == ClaimStatus.RECEIVED.value,
        )
        .order_by(Claim.submitted_at)
        .limit(1)
    )
    if stranded is not None:
        logger.warning(f"Resuming claim {stranded.id} left in RECEIVED for {submitter_id}")
        return stranded

    now = now or utcnow()
    window_start = now - timedelta(seconds=settings.dedup_window_seconds)
    duplicate = await session.scalar(
        select(Claim.id)
        .where(
            Claim.submitter_id == submitter_id,
            Claim.fingerprint == fingerprint,
            Claim.submitted_at >= window_start,
        )
        .limit(1)
    )
    if duplicate is not None:
        logger.info(f"Duplicate submission from {submitter_id} matches claim {duplicate}")
        raise ConflictError("An identical claim was just submitted")

    claim = Claim(
        id=str(uuid.uuid4()),
        submitter_id=submitter_id,
        channel=channel.value,
        raw_text=text_value,
        conversation_turns=turns,
        fingerprint=fingerprint,
        status=ClaimStatus.RECEIVED.value,
        extraction_fallback=False,
        submitted_at=now,
    )
    session.add(claim)
    record_audit(
        session,
        claim.id,
        "received",
        actor_id=submitter_id,
        detail={"channel": channel.value, "turns": len(turns)},
    )
    await commit_or_raise(session, "creating claim")

    logger.info(f"Claim {claim.id} received from {submitter_id} via {channel.value}")
    return claim
