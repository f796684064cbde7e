"""Tests for the chunked insert-or-ignore writer.

GIVEN: Rows for an open batch
WHEN: Writing them in chunks
THEN: Collisions are skipped, counts come from the store, failures stop the run
"""

from collections.abc import Sequence
from typing import Any

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from shopledger.models import Expense, ReportKind
from shopledger.services import bulk_writer
from shopledger.services.bulk_writer import IdempotentBulkWriter
from shopledger.services.import_ledger import ImportBatchLedger
from shopledger.services.import_lock import BatchFingerprint
from shopledger.services.record_kinds import get_record_kind, validate_records

EXPENSE = get_record_kind(ReportKind.EXPENSE)


class OverReportingWriter(IdempotentBulkWriter):
    """Driver that claims every submitted row was written."""

    async def _insert_chunk(self, db, kind, chunk: Sequence[dict[str, Any]]) -> int:
        await super()._insert_chunk(db, kind, chunk)
        return len(chunk)


class FailingWriter(IdempotentBulkWriter):
    def __init__(self, fail_on_chunk: int, chunk_size: int):
        super().__init__(chunk_size=chunk_size)
        self.fail_on_chunk = fail_on_chunk
        self.calls = 0

    async def _insert_chunk(self, db, kind, chunk: Sequence[dict[str, Any]]) -> int:
        self.calls += 1
        if self.calls == self.fail_on_chunk:
            raise OperationalError("INSERT INTO expenses", {}, Exception("disk I/O error"))
        return await super()._insert_chunk(db, kind, chunk)


def _expense_rows(count: int, start: int = 0) -> list[dict[str, Any]]:
    return [
        {"date": f"2024-03-{(i % 28) + 1:02d}", "amount": f"{10 + i}.00", "category": "fees", "description": f"fee {i}"}
        for i in range(start, start + count)
    ]


async def _open_batch(db, user_id, file_hash: str, declared: int):
    fingerprint = BatchFingerprint(user_id=user_id, file_hash=file_hash, report_kind=ReportKind.EXPENSE)
    return await ImportBatchLedger().open(db, fingerprint, declared_row_count=declared)


def _table_rows(batch, raw_rows):
    records, _ = validate_records(EXPENSE, raw_rows)
    return [EXPENSE.to_row(r, user_id=batch.user_id, scope_key="", batch_id=batch.id) for r in records]


@pytest.mark.asyncio
async def test_write_inserts_in_chunks(db, user_id):
    batch = await _open_batch(db, user_id, "1" * 64, 5)

    result = await IdempotentBulkWriter(chunk_size=2).write(db, batch, EXPENSE, _table_rows(batch, _expense_rows(5)))

    assert result.chunks_total == 3
    assert result.chunks_committed == 3
    assert result.inserted == 5
    assert result.skipped == 0
    assert not result.failed


def test_chunks_stay_under_the_bind_parameter_limit():
    writer = IdempotentBulkWriter(chunk_size=2500)

    assert writer.rows_per_chunk(13) == 2500
    assert writer.rows_per_chunk(20) == 32767 // 20
    assert IdempotentBulkWriter(chunk_size=1).rows_per_chunk(40000) == 1


@pytest.mark.asyncio
async def test_wide_rows_are_split_by_parameter_budget(db, user_id, monkeypatch):
    """GIVEN: A parameter budget that only fits two expense rows per statement
    WHEN: Writing five rows with a larger configured chunk size
    THEN: The writer splits into chunks of two and still inserts everything"""
    batch = await _open_batch(db, user_id, "7" * 64, 5)
    rows = _table_rows(batch, _expense_rows(5))
    monkeypatch.setattr(bulk_writer, "MAX_BIND_PARAMS", len(rows[0]) * 2)

    result = await IdempotentBulkWriter(chunk_size=500).write(db, batch, EXPENSE, rows)

    assert result.chunks_total == 3
    assert result.inserted == 5


@pytest.mark.asyncio
async def test_colliding_rows_are_skipped_not_overwritten(db, user_id):
    """GIVEN: Rows 0-9 already written by batch A
    WHEN: Batch B writes rows 5-14
    THEN: B inserts 5, skips 5 and A keeps ownership of the overlap"""
    batch_a = await _open_batch(db, user_id, "a" * 64, 10)
    await IdempotentBulkWriter().write(db, batch_a, EXPENSE, _table_rows(batch_a, _expense_rows(10)))
    batch_b = await _open_batch(db, user_id, "b" * 64, 10)

    result = await IdempotentBulkWriter().write(db, batch_b, EXPENSE, _table_rows(batch_b, _expense_rows(10, start=5)))

    assert result.inserted == 5
    assert result.skipped == 5
    owned_by_a = await db.scalar(
        select(func.count()).select_from(Expense).where(Expense.import_batch_id == batch_a.id)
    )
    assert owned_by_a == 10


@pytest.mark.asyncio
async def test_inserted_count_ignores_driver_acknowledgement(db, user_id):
    """GIVEN: A driver that reports every row as inserted
    WHEN: Re-writing rows that already exist
    THEN: inserted is the live count (0), not the acknowledgement"""
    first = await _open_batch(db, user_id, "c" * 64, 4)
    await IdempotentBulkWriter().write(db, first, EXPENSE, _table_rows(first, _expense_rows(4)))
    second = await _open_batch(db, user_id, "d" * 64, 4)

    result = await OverReportingWriter().write(db, second, EXPENSE, _table_rows(second, _expense_rows(4)))

    assert result.acknowledged == 4
    assert result.inserted == 0
    assert result.skipped == 4


@pytest.mark.asyncio
async def test_failing_chunk_stops_run_and_keeps_earlier_chunks(db, user_id):
    batch = await _open_batch(db, user_id, "e" * 64, 6)
    writer = FailingWriter(fail_on_chunk=2, chunk_size=2)

    result = await writer.write(db, batch, EXPENSE, _table_rows(batch, _expense_rows(6)))

    assert result.failed
    assert "disk I/O error" in result.error
    assert result.chunks_committed == 1
    assert writer.calls == 2
    assert result.inserted == 2
    assert result.skipped == 4
