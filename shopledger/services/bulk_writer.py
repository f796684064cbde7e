"""Chunked insert-or-ignore writer for imported records."""

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from shopledger.config import settings
from shopledger.database import insert_ignoring_conflicts
from shopledger.logger import async_log_timing, get_logger, log_exception
from shopledger.models import ImportBatch
from shopledger.services.record_kinds import RecordKind
from shopledger.services.record_store import count_batch_rows

logger = get_logger(__name__)

CONFLICT_COLUMNS = ["user_id", "content_hash"]
# asyncpg sends at most 32767 bind parameters per statement
MAX_BIND_PARAMS = 32767


@dataclass
class WriteResult:
    declared: int
    inserted: int
    skipped: int
    acknowledged: int
    chunks_committed: int
    chunks_total: int
    error: str | None = None

    @property
    def failed(self) -> bool:
        return self.error is not None


class IdempotentBulkWriter:
    """Write rows in sequential chunks, each committed on its own.

    A colliding content hash is dropped, never overwritten. A failing chunk
    stops the run; earlier chunks stay committed. The inserted count comes
    from a live count of rows carrying the batch id, not from the driver's
    rowcount.
    """

    def __init__(self, chunk_size: int | None = None):
        self.chunk_size = chunk_size or settings.import_chunk_size

    def rows_per_chunk(self, column_count: int) -> int:
        return max(1, min(self.chunk_size, MAX_BIND_PARAMS // max(column_count, 1)))

    async def write(
        self,
        db: AsyncSession,
        batch: ImportBatch,
        kind: RecordKind,
        rows: Sequence[dict[str, Any]],
    ) -> WriteResult:
        batch_id = batch.id
        user_id = batch.user_id
        size = self.rows_per_chunk(len(rows[0])) if rows else self.chunk_size
        chunks = [rows[i : i + size] for i in range(0, len(rows), size)]
        acknowledged = 0
        committed = 0
        error: str | None = None

        async with async_log_timing(
            "bulk_write",
            logger=logger,
            batch_id=str(batch_id),
            report_kind=kind.report_kind.value,
        ) as timing:
            for index, chunk in enumerate(chunks):
                try:
                    acknowledged += await self._insert_chunk(db, kind, chunk)
                    await db.commit()
                except SQLAlchemyError as exc:
                    await db.rollback()
                    error = str(getattr(exc, "orig", None) or exc)
                    log_exception(
                        logger,
                        exc,
                        "Chunk write failed",
                        batch_id=str(batch_id),
                        chunk_index=index,
                        chunk_size=len(chunk),
                        chunks_committed=committed,
                    )
                    break
                committed += 1

            inserted = await count_batch_rows(db, kind, batch_id, user_id)
            skipped = max(len(rows) - inserted, 0)
            timing.update(
                chunks_total=len(chunks),
                chunks_committed=committed,
                inserted_count=inserted,
                skipped_count=skipped,
            )

        if acknowledged != inserted:
            logger.warning(
                "Write acknowledgement differs from persisted row count",
                batch_id=str(batch_id),
                acknowledged=acknowledged,
                persisted=inserted,
            )

        return WriteResult(
            declared=len(rows),
            inserted=inserted,
            skipped=skipped,
            acknowledged=acknowledged,
            chunks_committed=committed,
            chunks_total=len(chunks),
            error=error,
        )

    async def _insert_chunk(
        self,
        db: AsyncSession,
        kind: RecordKind,
        chunk: Sequence[dict[str, Any]],
    ) -> int:
        """Submit one chunk; returns the driver's rowcount, which is advisory only."""
        stmt = insert_ignoring_conflicts(db, kind.model, list(chunk), CONFLICT_COLUMNS)
        result = await db.execute(stmt)
        return max(result.rowcount or 0, 0)
