"""Import batch ledger: the single source of truth for "has this file been processed".

Every import attempt owns one ``ImportBatch`` row. The ledger decides
whether a new attempt is a duplicate (verified against live record counts,
never the cached counters), opens the batch under the advisory lock and
always finalizes it, even from a failure path.
"""

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from shopledger.config import settings
from shopledger.logger import get_logger, log_exception
from shopledger.models import ImportBatch, ImportBatchStatus, ImportMode, ReportKind
from shopledger.models.base import utcnow
from shopledger.schemas.imports import DuplicateCheckStatus, RollbackOutcome
from shopledger.services.import_lock import BatchFingerprint, ImportLock, ProcessingWindowLock
from shopledger.services.record_kinds import get_record_kind
from shopledger.services.record_store import count_batch_rows, purge_records

logger = get_logger(__name__)

# Statuses whose rows may still be live and therefore count for duplicate checks
_LIVE_STATUSES = (
    ImportBatchStatus.PENDING,
    ImportBatchStatus.PROCESSING,
    ImportBatchStatus.COMPLETED,
    ImportBatchStatus.FAILED,
)


@dataclass
class DuplicateCheck:
    status: DuplicateCheckStatus
    batch: ImportBatch | None = None
    live_row_count: int = 0

    @property
    def blocked(self) -> bool:
        return self.status == DuplicateCheckStatus.BLOCKED

    @property
    def stale_batch(self) -> ImportBatch | None:
        return self.batch if self.status == DuplicateCheckStatus.STALE else None


class ImportBatchLedger:
    """Tracks every import attempt with status, counts and mode."""

    def __init__(self, lock: ImportLock | None = None):
        self.lock: ImportLock = lock or ProcessingWindowLock()

    async def count_live_rows(self, db: AsyncSession, batch: ImportBatch) -> int:
        return await count_batch_rows(db, get_record_kind(batch.report_kind), batch.id, batch.user_id)

    async def check_duplicate(self, db: AsyncSession, fingerprint: BatchFingerprint) -> DuplicateCheck:
        """Classify the fingerprint tuple as none, blocked or stale.

        Blocked: a completed batch still owns live rows.
        Stale: a prior batch exists but owns zero live rows (crashed between
        open and write, or its rows were purged); it can be reopened.
        """
        result = await db.execute(
            select(ImportBatch)
            .where(
                ImportBatch.user_id == fingerprint.user_id,
                ImportBatch.file_hash == fingerprint.file_hash,
                ImportBatch.report_kind == fingerprint.report_kind,
                ImportBatch.scope_key == fingerprint.scope_key,
                ImportBatch.status.in_(_LIVE_STATUSES),
            )
            .order_by(ImportBatch.created_at.desc())
        )
        batches = list(result.scalars().all())

        stale: ImportBatch | None = None
        for batch in batches:
            live = await self.count_live_rows(db, batch)
            if batch.status == ImportBatchStatus.COMPLETED and live > 0:
                logger.info(
                    "Duplicate import detected",
                    existing_batch_id=str(batch.id),
                    live_row_count=live,
                    stored_inserted_count=batch.inserted_count,
                    **fingerprint.log_context(),
                )
                return DuplicateCheck(DuplicateCheckStatus.BLOCKED, batch, live)
            if live == 0 and stale is None:
                stale = batch

        if stale is not None:
            logger.info(
                "Stale import batch found",
                stale_batch_id=str(stale.id),
                stale_status=stale.status.value,
                **fingerprint.log_context(),
            )
            return DuplicateCheck(DuplicateCheckStatus.STALE, stale, 0)
        return DuplicateCheck(DuplicateCheckStatus.NONE)

    async def open(
        self,
        db: AsyncSession,
        fingerprint: BatchFingerprint,
        *,
        declared_row_count: int,
        mode: ImportMode = ImportMode.APPEND,
        file_name: str | None = None,
        date_range: tuple[date, date] | None = None,
        reuse: ImportBatch | None = None,
    ) -> ImportBatch:
        """Create (or reopen a stale) batch in ``processing`` and commit it.

        Raises ImportInProgressError when the advisory lock is held.
        """
        await self.lock.acquire(db, fingerprint)

        now = utcnow()
        if reuse is not None:
            batch = reuse
            metadata = dict(batch.batch_metadata or {})
            metadata["previous_status"] = batch.status.value
            metadata["attempt"] = int(metadata.get("attempt", 1)) + 1
            batch.batch_metadata = metadata
            batch.inserted_count = 0
            batch.skipped_count = 0
            batch.error_count = 0
            batch.deleted_count = 0
            batch.error_message = None
            batch.finished_at = None
        else:
            batch = ImportBatch(
                user_id=fingerprint.user_id,
                file_hash=fingerprint.file_hash,
                report_kind=fingerprint.report_kind,
                scope_key=fingerprint.scope_key,
                batch_metadata={"attempt": 1},
            )
            db.add(batch)

        batch.file_name = file_name or batch.file_name
        batch.row_count = declared_row_count
        batch.import_mode = mode
        batch.status = ImportBatchStatus.PROCESSING
        batch.started_at = now
        if date_range is not None:
            batch.date_min, batch.date_max = date_range

        await db.commit()
        logger.info(
            "Import batch opened",
            batch_id=str(batch.id),
            reused=reuse is not None,
            declared_row_count=declared_row_count,
            import_mode=mode.value,
            **fingerprint.log_context(),
        )
        return batch

    async def finalize(
        self,
        db: AsyncSession,
        batch_id: UUID,
        *,
        succeeded: bool,
        inserted: int | None = None,
        skipped: int | None = None,
        error_count: int = 0,
        deleted: int = 0,
        error_message: str | None = None,
        superseded_batch_ids: Sequence[UUID] = (),
        extra_metadata: dict[str, Any] | None = None,
    ) -> ImportBatch:
        """Set terminal status and counts. Called on every path out of a write.

        ``inserted=None`` means the caller never reached the writer; the live
        count is taken here instead.
        """
        batch = await db.get(ImportBatch, batch_id, populate_existing=True)
        if batch is None:
            raise LookupError(f"Import batch {batch_id} disappeared before finalization")

        if inserted is None:
            inserted = await self.count_live_rows(db, batch)
        if skipped is None:
            skipped = max(batch.row_count - error_count - inserted, 0)

        now = utcnow()
        batch.status = ImportBatchStatus.COMPLETED if succeeded else ImportBatchStatus.FAILED
        batch.inserted_count = inserted
        batch.skipped_count = skipped
        batch.error_count = error_count
        batch.deleted_count = deleted
        batch.error_message = error_message
        batch.finished_at = now

        metadata = dict(batch.batch_metadata or {})
        metadata.update(extra_metadata or {})
        if deleted:
            metadata["deleted_before_import"] = deleted

        if succeeded and superseded_batch_ids:
            metadata["superseded_batch_ids"] = [str(prior_id) for prior_id in superseded_batch_ids]
            await self._mark_replaced(db, batch, superseded_batch_ids)
        batch.batch_metadata = metadata

        await self.lock.release(db, batch)
        await db.commit()

        logger.info(
            "Import batch finalized",
            batch_id=str(batch.id),
            status=batch.status.value,
            inserted_count=inserted,
            skipped_count=skipped,
            error_count=error_count,
            deleted_count=deleted,
            error=error_message,
        )
        return batch

    async def _mark_replaced(
        self,
        db: AsyncSession,
        replacement: ImportBatch,
        prior_ids: Sequence[UUID],
    ) -> None:
        result = await db.execute(
            select(ImportBatch).where(
                ImportBatch.id.in_(prior_ids),
                ImportBatch.user_id == replacement.user_id,
                ImportBatch.id != replacement.id,
            )
        )
        for prior in result.scalars().all():
            prior.status = ImportBatchStatus.REPLACED
            prior.batch_metadata = {
                **(prior.batch_metadata or {}),
                "replaced_by_batch_id": str(replacement.id),
            }

    async def get_batch(self, db: AsyncSession, user_id: UUID, batch_id: UUID) -> ImportBatch | None:
        result = await db.execute(
            select(ImportBatch).where(ImportBatch.id == batch_id, ImportBatch.user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def list_batches(
        self,
        db: AsyncSession,
        user_id: UUID,
        *,
        report_kind: ReportKind | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[ImportBatch], int]:
        filters = [ImportBatch.user_id == user_id]
        if report_kind is not None:
            filters.append(ImportBatch.report_kind == report_kind)

        total = await db.scalar(select(func.count()).select_from(ImportBatch).where(*filters))
        result = await db.execute(
            select(ImportBatch)
            .where(*filters)
            .order_by(ImportBatch.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all()), int(total or 0)

    async def rollback_batch(self, db: AsyncSession, batch_id: UUID, user_id: UUID) -> RollbackOutcome:
        """Delete every record a batch wrote and mark it ``rolled_back``."""
        batch = await self.get_batch(db, user_id, batch_id)
        if batch is None:
            return RollbackOutcome(success=False, batch_id=batch_id, error="Batch not found or access denied")
        if batch.status == ImportBatchStatus.ROLLED_BACK:
            return RollbackOutcome(success=False, batch_id=batch_id, error="Batch already rolled back")
        if batch.status == ImportBatchStatus.PROCESSING:
            return RollbackOutcome(success=False, batch_id=batch_id, error="Batch is still processing")

        kind = get_record_kind(batch.report_kind)
        try:
            deleted = await purge_records(db, kind, user_id, kind.model.import_batch_id == batch.id)
            batch.status = ImportBatchStatus.ROLLED_BACK
            batch.batch_metadata = {
                **(batch.batch_metadata or {}),
                "rolled_back_at": utcnow().isoformat(),
                "rolled_back_rows": deleted,
            }
            batch.error_message = f"Rolled back: {deleted} rows deleted"
            await db.commit()
        except SQLAlchemyError as exc:
            await db.rollback()
            log_exception(logger, exc, "Import batch rollback failed", batch_id=str(batch_id))
            return RollbackOutcome(success=False, batch_id=batch_id, error=str(exc))

        logger.info("Import batch rolled back", batch_id=str(batch_id), deleted_count=deleted)
        return RollbackOutcome(success=True, batch_id=batch_id, deleted_count=deleted)

    async def cleanup_stale_batches(self, db: AsyncSession, user_id: UUID | None = None) -> int:
        """Fail batches stuck in ``processing`` past the stale timeout."""
        timeout = settings.stale_batch_timeout_minutes
        now = utcnow()
        stmt = (
            update(ImportBatch)
            .where(
                ImportBatch.status == ImportBatchStatus.PROCESSING,
                ImportBatch.started_at < now - timedelta(minutes=timeout),
            )
            .values(
                status=ImportBatchStatus.FAILED,
                finished_at=now,
                error_message=f"Import timed out: still processing after {timeout} minutes",
            )
            .execution_options(synchronize_session=False)
        )
        if user_id is not None:
            stmt = stmt.where(ImportBatch.user_id == user_id)

        result = await db.execute(stmt)
        await db.commit()
        failed = int(result.rowcount or 0)
        if failed:
            logger.warning("Stale import batches failed", count=failed, timeout_minutes=timeout)
        return failed
