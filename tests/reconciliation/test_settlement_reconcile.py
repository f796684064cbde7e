"""Tests for flipping forecasts to settled after a settlement import."""

from uuid import uuid4

import pytest
from sqlalchemy import select

from shopledger.models import ForecastStatus, ReportKind, UnsettledTransaction
from shopledger.services.settlement_reconcile import forecast_key, reconcile_settlements
from tests.factories import ImportBatchFactory, SettlementTransactionFactory, UnsettledTransactionFactory


async def _settlement_batch(db, user_id, *txn_ids, platform="shopee"):
    batch = await ImportBatchFactory.create_async(
        db, user_id=user_id, report_kind=ReportKind.SETTLEMENT, scope_key=""
    )
    for txn_id in txn_ids:
        await SettlementTransactionFactory.create_async(
            db, user_id=user_id, import_batch_id=batch.id, external_txn_id=txn_id, platform=platform
        )
    return batch


async def _statuses(db, user_id):
    result = await db.execute(
        select(UnsettledTransaction.external_txn_id, UnsettledTransaction.status)
        .where(UnsettledTransaction.user_id == user_id)
        .execution_options(populate_existing=True)
    )
    return dict(result.all())


def test_forecast_key_ignores_platform_case():
    assert forecast_key("Shopee", "A1") == forecast_key("shopee", "A1") == "shopee::A1"


@pytest.mark.asyncio
async def test_matching_forecasts_are_settled(db, user_id):
    """GIVEN: Forecasts A1 and A2, and a settlement batch paying A1 and A3
    WHEN: Reconciling the batch
    THEN: A1 flips to settled, A2 stays open and A3 is reported as unforecast"""
    await UnsettledTransactionFactory.create_async(db, user_id=user_id, external_txn_id="A1")
    await UnsettledTransactionFactory.create_async(db, user_id=user_id, external_txn_id="A2")
    batch = await _settlement_batch(db, user_id, "A1", "A3")
    await db.commit()

    result = await reconcile_settlements(db, batch.id, user_id)

    assert result.success
    assert result.reconciled_count == 1
    assert result.not_found_in_forecast_count == 1
    assert await _statuses(db, user_id) == {"A1": ForecastStatus.SETTLED, "A2": ForecastStatus.UNSETTLED}


@pytest.mark.asyncio
async def test_rerun_is_a_no_op(db, user_id):
    await UnsettledTransactionFactory.create_async(db, user_id=user_id, external_txn_id="B1")
    batch = await _settlement_batch(db, user_id, "B1")
    await db.commit()
    await reconcile_settlements(db, batch.id, user_id)

    again = await reconcile_settlements(db, batch.id, user_id)

    assert again.reconciled_count == 0
    assert again.already_settled_count == 1


@pytest.mark.asyncio
async def test_duplicate_forecasts_under_one_key_are_all_settled(db, user_id):
    await UnsettledTransactionFactory.create_async(db, user_id=user_id, external_txn_id="C1")
    await UnsettledTransactionFactory.create_async(db, user_id=user_id, external_txn_id="C1")
    batch = await _settlement_batch(db, user_id, "C1")
    await db.commit()

    result = await reconcile_settlements(db, batch.id, user_id)

    assert result.reconciled_count == 2


@pytest.mark.asyncio
async def test_platform_must_agree(db, user_id):
    await UnsettledTransactionFactory.create_async(db, user_id=user_id, external_txn_id="D1", platform="lazada")
    batch = await _settlement_batch(db, user_id, "D1", platform="shopee")
    await db.commit()

    result = await reconcile_settlements(db, batch.id, user_id)

    assert result.reconciled_count == 0
    assert result.not_found_in_forecast_count == 1


@pytest.mark.asyncio
async def test_other_users_forecasts_untouched(db, user_id):
    other_user = uuid4()
    await UnsettledTransactionFactory.create_async(db, user_id=other_user, external_txn_id="E1")
    batch = await _settlement_batch(db, user_id, "E1")
    await db.commit()

    result = await reconcile_settlements(db, batch.id, user_id)

    assert result.reconciled_count == 0
    assert await _statuses(db, other_user) == {"E1": ForecastStatus.UNSETTLED}


@pytest.mark.asyncio
async def test_empty_batch(db, user_id):
    result = await reconcile_settlements(db, uuid4(), user_id)

    assert result.success
    assert result.reconciled_count == 0


@pytest.mark.asyncio
async def test_repeated_payout_lines_settle_once_without_counting_as_already_settled(db, user_id):
    """GIVEN: One open forecast D1 and a batch carrying two payout lines for D1
    WHEN: Reconciling the batch
    THEN: D1 is settled once and neither line is reported as already settled"""
    await UnsettledTransactionFactory.create_async(db, user_id=user_id, external_txn_id="D1")
    batch = await _settlement_batch(db, user_id, "D1", "D1")
    await db.commit()

    result = await reconcile_settlements(db, batch.id, user_id)

    assert result.success
    assert result.reconciled_count == 1
    assert result.already_settled_count == 0
    assert result.not_found_in_forecast_count == 0
    assert await _statuses(db, user_id) == {"D1": ForecastStatus.SETTLED}
