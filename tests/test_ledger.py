"""
Tests for the credit ledger
"""
import asyncio
from datetime import timedelta
from decimal import Decimal

import pytest

from salescredit.core.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from salescredit.core.identity import Principal
from salescredit.db import utcnow
from salescredit.models import EntryType, LedgerEntry
from salescredit.services import ledger


async def _add_entry(db, member_id, amount, **kwargs):
    entry = ledger.record_entry(db, member_id, Decimal(amount), kwargs.pop("entry_type", EntryType.EARNED), **kwargs)
    await db.commit()
    return entry


@pytest.mark.asyncio
async def test_balance_is_sum_of_active_entries(db, member):
    await _add_entry(db, member.member_id, "9.20", expires_at=ledger.credit_expiry())
    await _add_entry(db, member.member_id, "3.30")
    await _add_entry(db, member.member_id, "5.00", expires_at=utcnow() - timedelta(days=1))
    await _add_entry(db, "someone-else", "100.00")

    balance = await ledger.get_balance(db, member.member_id)

    assert balance.available_balance == Decimal("12.50")
    assert len(balance.credits) == 2
    assert balance.stats.total_earned == Decimal("17.50")
    assert balance.stats.total_redeemed == Decimal("0.00")


@pytest.mark.asyncio
async def test_redeem_flips_flag_once(db, member, publisher, sink):
    entry = await _add_entry(db, member.member_id, "9.20")

    redeemed = await ledger.redeem_entry(db, member, entry.id, publisher)
    await publisher.drain()

    assert redeemed.is_redeemed is True
    assert redeemed.redeemed_at is not None
    assert redeemed.amount == Decimal("9.20")
    assert sink.events == [
        ("credit.redeemed", {"entry_id": entry.id, "member_id": member.member_id, "amount": "9.20"})
    ]

    with pytest.raises(ConflictError):
        await ledger.redeem_entry(db, member, entry.id)

    balance = await ledger.get_balance(db, member.member_id)
    assert balance.available_balance == Decimal("0.00")
    assert balance.stats.total_redeemed == Decimal("9.20")


@pytest.mark.asyncio
async def test_concurrent_redemptions_only_one_succeeds(session_factory, member):
    async with session_factory() as session:
        entry = await _add_entry(session, member.member_id, "4.00")

    async def attempt():
        async with session_factory() as session:
            return await ledger.redeem_entry(session, member, entry.id)

    results = await asyncio.gather(attempt(), attempt(), return_exceptions=True)

    assert len([r for r in results if isinstance(r, LedgerEntry)]) == 1
    assert len([r for r in results if isinstance(r, ConflictError)]) == 1


@pytest.mark.asyncio
async def test_expired_entry_cannot_be_redeemed(db, member):
    entry = await _add_entry(db, member.member_id, "2.00", expires_at=utcnow() - timedelta(hours=1))

    with pytest.raises(ConflictError):
        await ledger.redeem_entry(db, member, entry.id)


@pytest.mark.asyncio
async def test_redeem_requires_owner(db, member):
    entry = await _add_entry(db, member.member_id, "2.00")

    with pytest.raises(AuthorizationError):
        await ledger.redeem_entry(db, Principal(member_id="member-9"), entry.id)
    with pytest.raises(NotFoundError):
        await ledger.redeem_entry(db, member, "missing")


@pytest.mark.asyncio
async def test_grant_adjustment(db, staff, member):
    entry = await ledger.grant_adjustment(
        db, staff, member.member_id, Decimal("5"), EntryType.BONUS, "Holiday bonus", expires_in_days=30
    )

    assert entry.claim_id is None
    assert entry.entry_type == "bonus"
    assert entry.amount == Decimal("5.00")
    assert entry.created_by == staff.member_id

    correction = await ledger.grant_adjustment(db, staff, member.member_id, Decimal("-1.25"))
    assert correction.entry_type == "adjustment"

    balance = await ledger.get_balance(db, member.member_id)
    assert balance.available_balance == Decimal("3.75")
    assert balance.stats.total_earned == Decimal("5.00")


@pytest.mark.asyncio
async def test_grant_adjustment_rules(db, staff, member):
    with pytest.raises(AuthorizationError):
        await ledger.grant_adjustment(db, member, member.member_id, Decimal("5"))
    with pytest.raises(ValidationError):
        await ledger.grant_adjustment(db, staff, member.member_id, Decimal("5"), EntryType.EARNED)
    with pytest.raises(ValidationError):
        await ledger.grant_adjustment(db, staff, member.member_id, Decimal("-5"), EntryType.BONUS)
    with pytest.raises(ValidationError):
        await ledger.grant_adjustment(db, staff, member.member_id, Decimal("0"))
