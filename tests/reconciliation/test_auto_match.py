"""Tests for automatic bank matching.

GIVEN: Bank rows and internal records in a date window
WHEN: Running auto-match
THEN: Only unambiguous exact-amount pairs are linked, one active link per side
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select

from shopledger.config import settings
from shopledger.models import MatchedBy, MatchEntityType, MatchLink, WalletEntryType
from shopledger.services.reconciliation import ReconciliationMatcher
from tests.factories import (
    BankTransactionFactory,
    ExpenseFactory,
    SettlementTransactionFactory,
    WalletLedgerEntryFactory,
)

MARCH_START = date(2024, 3, 1)
MARCH_END = date(2024, 3, 31)


async def active_links(db) -> list[MatchLink]:
    result = await db.execute(select(MatchLink).where(MatchLink.is_active.is_(True)))
    return list(result.scalars().all())


@pytest.mark.asyncio
async def test_deposit_matches_single_exact_settlement(db, user_id):
    """GIVEN: A +1500.00 deposit and one 1500.00 settlement on the same day
    WHEN: Auto-matching March
    THEN: One auto link with score 100 is created"""
    txn = await BankTransactionFactory.create_async(db, user_id=user_id, amount=Decimal("1500.00"))
    settlement = await SettlementTransactionFactory.create_async(db, user_id=user_id, amount=Decimal("1500.00"))
    await db.commit()

    result = await ReconciliationMatcher().auto_match(db, user_id, MARCH_START, MARCH_END)

    assert result.success
    assert result.matched_count == 1
    assert result.total_bank_transactions == 1
    links = await active_links(db)
    assert len(links) == 1
    assert links[0].bank_transaction_id == txn.id
    assert links[0].entity_type == MatchEntityType.SETTLEMENT
    assert links[0].entity_id == settlement.id
    assert links[0].match_score == 100
    assert links[0].matched_by == MatchedBy.AUTO


@pytest.mark.asyncio
async def test_withdrawal_matches_expense_or_wallet_topup(db, user_id):
    await BankTransactionFactory.create_async(db, user_id=user_id, amount=Decimal("-42.50"))
    expense = await ExpenseFactory.create_async(db, user_id=user_id, amount=Decimal("42.50"))
    await BankTransactionFactory.create_async(db, user_id=user_id, amount=Decimal("-300.00"))
    topup = await WalletLedgerEntryFactory.create_async(db, user_id=user_id, amount=Decimal("300.00"))
    await WalletLedgerEntryFactory.create_async(
        db, user_id=user_id, amount=Decimal("300.00"), entry_type=WalletEntryType.SPEND
    )
    await db.commit()

    result = await ReconciliationMatcher().auto_match(db, user_id, MARCH_START, MARCH_END)

    assert result.matched_count == 2
    linked = {(link.entity_type, link.entity_id) for link in await active_links(db)}
    assert linked == {(MatchEntityType.EXPENSE, expense.id), (MatchEntityType.WALLET_TOPUP, topup.id)}


@pytest.mark.asyncio
async def test_direction_is_respected(db, user_id):
    """GIVEN: A deposit whose amount equals an expense
    WHEN: Auto-matching
    THEN: No link is made; deposits only pair with settlements"""
    await BankTransactionFactory.create_async(db, user_id=user_id, amount=Decimal("75.00"))
    await ExpenseFactory.create_async(db, user_id=user_id, amount=Decimal("75.00"))
    await db.commit()

    result = await ReconciliationMatcher().auto_match(db, user_id, MARCH_START, MARCH_END)

    assert result.matched_count == 0
    assert result.details.no_candidate == 1


@pytest.mark.asyncio
async def test_two_candidates_leave_row_unmatched(db, user_id):
    await BankTransactionFactory.create_async(db, user_id=user_id, amount=Decimal("200.00"))
    for _ in range(2):
        await SettlementTransactionFactory.create_async(db, user_id=user_id, amount=Decimal("200.00"))
    await db.commit()

    result = await ReconciliationMatcher().auto_match(db, user_id, MARCH_START, MARCH_END)

    assert result.matched_count == 0
    assert result.details.multiple_candidates == 1
    assert await active_links(db) == []


@pytest.mark.asyncio
async def test_shared_candidate_is_never_given_to_either_row(db, user_id):
    """GIVEN: Two identical +300 deposits and a single 300 settlement
    WHEN: Auto-matching
    THEN: Neither deposit is linked, so the settlement is never claimed twice"""
    for _ in range(2):
        await BankTransactionFactory.create_async(db, user_id=user_id, amount=Decimal("300.00"))
    await SettlementTransactionFactory.create_async(db, user_id=user_id, amount=Decimal("300.00"))
    await db.commit()

    result = await ReconciliationMatcher().auto_match(db, user_id, MARCH_START, MARCH_END)

    assert result.matched_count == 0
    assert result.details.multiple_candidates == 2
    assert result.skipped_count == 2
    assert await active_links(db) == []


@pytest.mark.asyncio
async def test_rerun_skips_already_matched_rows(db, user_id):
    await BankTransactionFactory.create_async(db, user_id=user_id, amount=Decimal("10.00"))
    await SettlementTransactionFactory.create_async(db, user_id=user_id, amount=Decimal("10.00"))
    await db.commit()
    matcher = ReconciliationMatcher()
    await matcher.auto_match(db, user_id, MARCH_START, MARCH_END)

    rerun = await matcher.auto_match(db, user_id, MARCH_START, MARCH_END)

    assert rerun.matched_count == 0
    assert rerun.details.already_matched == 1
    assert rerun.skipped_count == 0
    assert len(await active_links(db)) == 1


@pytest.mark.asyncio
async def test_window_limits_bank_rows_and_candidates(db, user_id):
    await BankTransactionFactory.create_async(
        db, user_id=user_id, amount=Decimal("55.00"), txn_date=date(2024, 3, 31)
    )
    await SettlementTransactionFactory.create_async(
        db, user_id=user_id, amount=Decimal("55.00"), settled_on=date(2024, 4, 1)
    )
    await BankTransactionFactory.create_async(
        db, user_id=user_id, amount=Decimal("55.00"), txn_date=date(2024, 2, 28)
    )
    await db.commit()

    result = await ReconciliationMatcher().auto_match(db, user_id, MARCH_START, MARCH_END)

    assert result.total_bank_transactions == 1
    assert result.details.no_candidate == 1


@pytest.mark.asyncio
async def test_other_users_records_are_invisible(db, user_id):
    await BankTransactionFactory.create_async(db, user_id=user_id, amount=Decimal("20.00"))
    await SettlementTransactionFactory.create_async(db, user_id=uuid4(), amount=Decimal("20.00"))
    await db.commit()

    result = await ReconciliationMatcher().auto_match(db, user_id, MARCH_START, MARCH_END)

    assert result.matched_count == 0
    assert result.details.no_candidate == 1


@pytest.mark.asyncio
async def test_exact_amount_on_another_day_is_not_auto_matched(db, user_id):
    """GIVEN: A +1500.00 deposit on Jan 10 and a 1500.00 settlement on Jan 28
    WHEN: Auto-matching January with the default tolerance
    THEN: Nothing is linked; the pair is left for a human to confirm"""
    await BankTransactionFactory.create_async(
        db, user_id=user_id, amount=Decimal("1500.00"), txn_date=date(2026, 1, 10)
    )
    await SettlementTransactionFactory.create_async(
        db, user_id=user_id, amount=Decimal("1500.00"), settled_on=date(2026, 1, 28)
    )
    await db.commit()

    result = await ReconciliationMatcher().auto_match(db, user_id, date(2026, 1, 1), date(2026, 1, 31))

    assert result.matched_count == 0
    assert result.details.no_candidate == 1
    assert await active_links(db) == []


@pytest.mark.asyncio
async def test_widened_tolerance_links_nearby_day_below_exact_score(db, user_id, monkeypatch):
    """GIVEN: The date tolerance widened to 2 days
    WHEN: A deposit has one exact-amount settlement a day later and another deposit's is 5 days later
    THEN: Only the nearby pair is linked, and it scores below 100"""
    monkeypatch.setattr(settings, "auto_match_date_tolerance_days", 2)
    near = await BankTransactionFactory.create_async(
        db, user_id=user_id, amount=Decimal("80.00"), txn_date=date(2024, 3, 10)
    )
    await SettlementTransactionFactory.create_async(
        db, user_id=user_id, amount=Decimal("80.00"), settled_on=date(2024, 3, 11)
    )
    await BankTransactionFactory.create_async(
        db, user_id=user_id, amount=Decimal("90.00"), txn_date=date(2024, 3, 10)
    )
    await SettlementTransactionFactory.create_async(
        db, user_id=user_id, amount=Decimal("90.00"), settled_on=date(2024, 3, 15)
    )
    await db.commit()

    result = await ReconciliationMatcher().auto_match(db, user_id, MARCH_START, MARCH_END)

    assert result.matched_count == 1
    assert result.details.no_candidate == 1
    links = await active_links(db)
    assert [link.bank_transaction_id for link in links] == [near.id]
    assert links[0].match_score < 100
