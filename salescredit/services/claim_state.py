"""Guarded claim status transitions and the claim audit trail.

Every status change is a single ``UPDATE ... WHERE status IN (...)``: the
caller names the statuses it expects the claim to be in, and a concurrent
writer that got there first turns the update into a no-op that is reported
as a ConflictError. Nothing here commits; callers own the transaction.
"""
import logging
from typing import Any, Dict, Iterable, Optional
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from salescredit.core.errors import ConflictError, NotFoundError
from salescredit.models import Claim, ClaimAuditEvent

logger = logging.getLogger(__name__)


async def load_claim(session: AsyncSession, claim_id: str) -> Claim:
    claim = await session.get(Claim, claim_id)
    if claim is None:
        raise NotFoundError(f"Claim {claim_id} not found")
    return claim


async def transition(
    session: AsyncSession,
    claim_id: str,
    expected: Iterable[str],
    values: Dict[str, Any],
    conflict_message: str = "Claim is no longer in the expected state",
):
    expected = [getattr(status, "value", status) for status in expected]
    result = await session.execute(
        update(Claim)
        .where(Claim.id == claim_id, Claim.status.in_(expected))
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 1:
        return

    exists = await session.scalar(select(Claim.id).where(Claim.id == claim_id))
    if exists is None:
        raise NotFoundError(f"Claim {claim_id} not found")
    logger.info(f"Rejected transition for claim {claim_id}: expected status in {expected}")
    raise ConflictError(conflict_message)


def record_audit(
    session: AsyncSession,
    claim_id: str,
    event: str,
    rule: Optional[str] = None,
    actor_id: Optional[str] = None,
    detail: Optional[Dict[str, Any]] = None,
) -> ClaimAuditEvent:
    audit_event = ClaimAuditEvent(
        claim_id=claim_id,
        event=event,
        rule=rule,
        actor_id=actor_id,
        detail=detail or {},
    )
    session.add(audit_event)
    return audit_event


async def list_audit_events(session: AsyncSession, claim_id: str):
    await load_claim(session, claim_id)
    result = await session.execute(
        select(ClaimAuditEvent)
        .where(ClaimAuditEvent.claim_id == claim_id)
        .order_by(ClaimAuditEvent.id)
    )
    return list(result.scalars().all())
