"""HTTP tests for the reconciliation endpoints."""

from decimal import Decimal
from uuid import uuid4

import pytest
from httpx import AsyncClient
from sqlalchemy.exc import OperationalError

from shopledger.models import ReportKind
from shopledger.services.reconciliation import ReconciliationMatcher
from tests.factories import (
    BankTransactionFactory,
    ExpenseFactory,
    ImportBatchFactory,
    SettlementTransactionFactory,
    UnsettledTransactionFactory,
)

MARCH = {"date_from": "2024-03-01", "date_to": "2024-03-31"}


@pytest.mark.asyncio
async def test_auto_match_endpoint(client: AsyncClient, db, user_id) -> None:
    await BankTransactionFactory.create_async(db, user_id=user_id, amount=Decimal("75.00"))
    await SettlementTransactionFactory.create_async(db, user_id=user_id, amount=Decimal("75.00"))
    await db.commit()

    response = await client.post("/reconciliation/auto-match", params=MARCH)

    assert response.status_code == 200
    body = response.json()
    assert body["matched_count"] == 1
    assert body["total_bank_transactions"] == 1


@pytest.mark.asyncio
async def test_reversed_window_is_rejected(client: AsyncClient) -> None:
    response = await client.post(
        "/reconciliation/auto-match", params={"date_from": "2024-03-31", "date_to": "2024-03-01"}
    )

    assert response.status_code == 400


@pytest.mark.asyncio
async def test_suggest_then_confirm_then_unmatch(client: AsyncClient, db, user_id) -> None:
    """GIVEN: A withdrawal with one plausible expense
    WHEN: Listing suggestions, confirming the top one and later removing it
    THEN: Each step answers with the link state and conflicts are reported as 409"""
    txn = await BankTransactionFactory.create_async(db, user_id=user_id, amount=Decimal("-64.00"))
    expense = await ExpenseFactory.create_async(db, user_id=user_id, amount=Decimal("64.00"))
    await db.commit()

    suggestions = await client.get(f"/reconciliation/bank-transactions/{txn.id}/suggestions")
    assert suggestions.status_code == 200
    top = suggestions.json()["suggestions"][0]
    assert top["entity_id"] == str(expense.id)
    assert top["score"] == 100

    created = await client.post(
        "/reconciliation/matches",
        json={"bank_transaction_id": str(txn.id), "entity_type": top["entity_type"], "entity_id": top["entity_id"]},
    )
    assert created.status_code == 201
    match_id = created.json()["id"]
    assert created.json()["matched_by"] == "manual"

    duplicate = await client.post(
        "/reconciliation/matches",
        json={"bank_transaction_id": str(txn.id), "entity_type": "expense", "entity_id": str(expense.id)},
    )
    assert duplicate.status_code == 409
    assert duplicate.json()["detail"]["error_code"] == "bank_already_matched"

    removed = await client.delete(f"/reconciliation/matches/{match_id}")
    assert removed.status_code == 200
    assert removed.json()["is_active"] is False

    removed_again = await client.delete(f"/reconciliation/matches/{match_id}")
    assert removed_again.status_code == 404


@pytest.mark.asyncio
async def test_match_errors_map_to_status_codes(client: AsyncClient, db, user_id) -> None:
    deposit = await BankTransactionFactory.create_async(db, user_id=user_id, amount=Decimal("10.00"))
    expense = await ExpenseFactory.create_async(db, user_id=user_id, amount=Decimal("10.00"))
    await db.commit()

    unknown_bank = await client.get(f"/reconciliation/bank-transactions/{uuid4()}/suggestions")
    wrong_direction = await client.post(
        "/reconciliation/matches",
        json={"bank_transaction_id": str(deposit.id), "entity_type": "expense", "entity_id": str(expense.id)},
    )
    negative_amount = await client.post(
        "/reconciliation/matches",
        json={
            "bank_transaction_id": str(deposit.id),
            "entity_type": "settlement",
            "entity_id": str(uuid4()),
            "amount": "-5",
        },
    )

    assert unknown_bank.status_code == 404
    assert wrong_direction.status_code == 422
    assert wrong_direction.json()["detail"]["error_code"] == "direction_mismatch"
    assert negative_amount.status_code == 422


@pytest.mark.asyncio
async def test_summary_endpoint(client: AsyncClient, db, user_id) -> None:
    await BankTransactionFactory.create_async(db, user_id=user_id, amount=Decimal("200.00"))
    await SettlementTransactionFactory.create_async(db, user_id=user_id, amount=Decimal("180.00"))
    await db.commit()

    response = await client.get("/reconciliation/summary", params=MARCH)

    assert response.status_code == 200
    body = response.json()
    assert Decimal(body["bank_net"]) == Decimal("200.00")
    assert Decimal(body["internal_net"]) == Decimal("180.00")
    assert Decimal(body["gap"]) == Decimal("20.00")
    assert body["unmatched_count"] == 1


@pytest.mark.asyncio
async def test_summary_store_failure_is_internal_error(client: AsyncClient, monkeypatch) -> None:
    async def failing(self, db, user_id, date_from, date_to):
        raise OperationalError("SELECT", {}, Exception("connection reset"))

    monkeypatch.setattr(ReconciliationMatcher, "_summarize", failing)

    response = await client.get("/reconciliation/summary", params=MARCH)

    assert response.status_code == 500
    assert response.json()["detail"]["error_code"] == "store_error"


@pytest.mark.asyncio
async def test_settlement_reconcile_endpoint(client: AsyncClient, db, user_id) -> None:
    batch = await ImportBatchFactory.create_async(
        db, user_id=user_id, report_kind=ReportKind.SETTLEMENT, scope_key=""
    )
    await SettlementTransactionFactory.create_async(
        db, user_id=user_id, import_batch_id=batch.id, external_txn_id="ORD-1"
    )
    await UnsettledTransactionFactory.create_async(db, user_id=user_id, external_txn_id="ORD-1")
    bank_batch = await ImportBatchFactory.create_async(db, user_id=user_id)
    await db.commit()

    response = await client.post(f"/reconciliation/settlements/{batch.id}")
    wrong_kind = await client.post(f"/reconciliation/settlements/{bank_batch.id}")
    missing = await client.post(f"/reconciliation/settlements/{uuid4()}")

    assert response.status_code == 200
    assert response.json()["reconciled_count"] == 1
    assert wrong_kind.status_code == 400
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_requires_token(anonymous_client: AsyncClient) -> None:
    response = await anonymous_client.get("/reconciliation/summary", params=MARCH)

    assert response.status_code == 401
