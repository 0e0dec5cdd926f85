import logging
import uuid
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional
from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from salescredit.core.config import settings
from salescredit.core.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from salescredit.core.identity import Principal, require_staff
from salescredit.db import commit_or_raise, utcnow
from salescredit.models import EntryType, LedgerEntry
from salescredit.schemas.ledger import BalanceStats, BalanceView, LedgerEntryView
from salescredit.services.events import EventPublisher

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


def to_cents(value) -> Decimal:
    if value is None:
        return Decimal("0.00")
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def credit_expiry(now: Optional[datetime] = None) -> datetime:
    return (now or utcnow()) + timedelta(days=settings.credit_expiry_days)


def _is_active(now: datetime):
    return (
        LedgerEntry.is_redeemed == False,  # noqa: E712
        or_(LedgerEntry.expires_at.is_(None), LedgerEntry.expires_at > now),
    )


def record_entry(
    session: AsyncSession,
    member_id: str,
    amount,
    entry_type: EntryType,
    claim_id: Optional[str] = None,
    description: Optional[str] = None,
    expires_at: Optional[datetime] = None,
    created_by: Optional[str] = None,
) -> LedgerEntry:
    """Append a ledger entry to the current transaction. The caller commits."""
    entry = LedgerEntry(
        id=str(uuid.uuid4()),
        member_id=member_id,
        claim_id=claim_id,
        amount=to_cents(amount),
        entry_type=EntryType(entry_type).value,
        description=description,
        expires_at=expires_at,
        is_redeemed=False,
        created_by=created_by,
        created_at=utcnow(),
    )
    session.add(entry)
    return entry


async def get_balance(
    session: AsyncSession, member_id: str, now: Optional[datetime] = None
) -> BalanceView:
    """Derive the member's balance from the ledger on every read."""
    now = now or utcnow()

    result = await session.execute(
        select(LedgerEntry)
        .where(LedgerEntry.member_id == member_id, *_is_active(now))
        .order_by(LedgerEntry.created_at.desc(), LedgerEntry.id)
    )
    credits = list(result.scalars().all())
    available = sum((to_cents(entry.amount) for entry in credits), Decimal("0.00"))

    # Adjustments are corrections, not earnings.
    total_earned = await session.scalar(
        select(func.sum(LedgerEntry.amount)).where(
            LedgerEntry.member_id == member_id,
            LedgerEntry.entry_type.in_([EntryType.EARNED.value, EntryType.BONUS.value]),
        )
    )
    total_redeemed = await session.scalar(
        select(func.sum(LedgerEntry.amount)).where(
            LedgerEntry.member_id == member_id,
            LedgerEntry.is_redeemed == True,  # noqa: E712
        )
    )

    return BalanceView(
        available_balance=available,
        credits=[LedgerEntryView.model_validate(entry) for entry in credits],
        stats=BalanceStats(
            total_earned=to_cents(total_earned),
            total_redeemed=to_cents(total_redeemed),
        ),
    )


async def redeem_entry(
    session: AsyncSession,
    principal: Principal,
    entry_id: str,
    publisher: Optional[EventPublisher] = None,
    now: Optional[datetime] = None,
) -> LedgerEntry:
    now = now or utcnow()
    entry = await session.get(LedgerEntry, entry_id)
    if entry is None:
        raise NotFoundError(f"Credit entry {entry_id} not found")
    if entry.member_id != principal.member_id:
        raise AuthorizationError("Cannot redeem another member's credit")

    # Compare-and-set: only one redemption attempt can flip the flag.
    result = await session.execute(
        update(LedgerEntry)
        .where(LedgerEntry.id == entry_id, *_is_active(now))
        .values(is_redeemed=True, redeemed_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise ConflictError("Credit entry is already redeemed or has expired")

    await commit_or_raise(session, "redeeming credit")
    await session.refresh(entry)

    logger.info(f"Credit entry {entry.id} redeemed by {principal.member_id}")
    if publisher is not None:
        publisher.publish(
            "credit.redeemed",
            {"entry_id": entry.id, "member_id": entry.member_id, "amount": str(entry.amount)},
        )
    return entry


async def grant_adjustment(
    session: AsyncSession,
    principal: Principal,
    member_id: str,
    amount,
    entry_type: EntryType = EntryType.ADJUSTMENT,
    description: Optional[str] = None,
    expires_in_days: Optional[int] = None,
) -> LedgerEntry:
    """Administrative bonus or correction not tied to a claim."""
    require_staff(principal)
    entry_type = EntryType(entry_type)
    if entry_type not in (EntryType.BONUS, EntryType.ADJUSTMENT):
        raise ValidationError("Only bonus and adjustment entries can be granted manually")
    amount = to_cents(amount)
    if entry_type == EntryType.BONUS and amount <= 0:
        raise ValidationError("Bonus amount must be positive")
    if amount == 0:
        raise ValidationError("Adjustment amount cannot be zero")

    now = utcnow()
    expires_at = now + timedelta(days=expires_in_days) if expires_in_days else None
    entry = record_entry(
        session,
        member_id=member_id,
        amount=amount,
        entry_type=entry_type,
        description=description,
        expires_at=expires_at,
        created_by=principal.member_id,
    )
    await commit_or_raise(session, "granting adjustment")

    logger.info(f"{entry_type.value} of {amount} granted to {member_id} by {principal.member_id}")
    return entry
