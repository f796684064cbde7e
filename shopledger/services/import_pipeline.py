"""Import pipeline: checkDuplicate -> resolveDeletion -> open -> write -> finalize.

``ImportPipeline.run`` never raises for data or store problems. Every exit
is an ``ImportOutcome`` with exact inserted/skipped/error counts, and once a
batch is opened it is always finalized.
"""

from collections.abc import Mapping, Sequence
from typing import Any
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from shopledger.config import settings
from shopledger.logger import async_log_timing, get_logger, log_exception
from shopledger.models import ImportBatch, ImportBatchStatus, ImportMode, ReportKind
from shopledger.schemas.imports import ExistingImport, ImportOutcome, NormalizedRecord, RowError
from shopledger.services.bulk_writer import IdempotentBulkWriter, WriteResult
from shopledger.services.deletion_policy import DeletionPolicyResolver, DeletionSpec
from shopledger.services.errors import (
    DeletionFailedError,
    DuplicateImportError,
    ImportErrorCode,
    ImportInProgressError,
    ImportPipelineError,
)
from shopledger.services.fingerprint import file_hash
from shopledger.services.import_ledger import ImportBatchLedger
from shopledger.services.import_lock import BatchFingerprint
from shopledger.services.record_kinds import RecordKind, date_span, get_record_kind, validate_records
from shopledger.services.settlement_reconcile import reconcile_settlements

logger = get_logger(__name__)

# Width of import_batches.scope_key and the account/wallet id columns
SCOPE_KEY_MAX = 100


class ImportPipeline:
    def __init__(
        self,
        ledger: ImportBatchLedger | None = None,
        resolver: DeletionPolicyResolver | None = None,
        writer: IdempotentBulkWriter | None = None,
        reconcile_after_import: bool | None = None,
    ):
        self.ledger = ledger or ImportBatchLedger()
        self.resolver = resolver or DeletionPolicyResolver()
        self.writer = writer or IdempotentBulkWriter()
        self.reconcile_after_import = (
            settings.reconcile_settlements_after_import
            if reconcile_after_import is None
            else reconcile_after_import
        )

    async def run(
        self,
        db: AsyncSession,
        *,
        user_id: UUID,
        report_kind: ReportKind,
        payload: bytes,
        rows: Sequence[Mapping[str, Any]],
        scope_key: str = "",
        mode: ImportMode = ImportMode.APPEND,
        allow_reimport: bool = False,
        file_name: str | None = None,
    ) -> ImportOutcome:
        kind = get_record_kind(report_kind)
        fingerprint = BatchFingerprint(
            user_id=user_id,
            file_hash=file_hash(payload),
            report_kind=report_kind,
            scope_key=scope_key.strip(),
        )
        outcome = ImportOutcome(
            success=False,
            file_hash=fingerprint.file_hash,
            report_kind=report_kind,
            row_count=len(rows),
        )

        if kind.requires_scope and not fingerprint.scope_key:
            return self._reject(
                outcome,
                ImportErrorCode.VALIDATION_FAILURE,
                f"scope_key is required for {report_kind.value} imports",
            )
        if len(fingerprint.scope_key) > SCOPE_KEY_MAX:
            return self._reject(
                outcome,
                ImportErrorCode.VALIDATION_FAILURE,
                f"scope_key is longer than {SCOPE_KEY_MAX} characters",
            )

        records, row_errors = validate_records(kind, rows)
        outcome.row_errors = row_errors
        outcome.error_count = len(row_errors)
        if not records:
            return self._reject(outcome, ImportErrorCode.VALIDATION_FAILURE, "No valid records to import")

        async with async_log_timing(
            "import_pipeline",
            logger=logger,
            import_mode=mode.value,
            **fingerprint.log_context(),
        ) as timing:
            try:
                batch, spec = await self._prepare(
                    db, kind, fingerprint, records, mode, allow_reimport, len(rows), file_name
                )
            except DuplicateImportError as exc:
                outcome.existing_batch = ExistingImport(
                    batch_id=exc.batch.id,
                    imported_at=exc.batch.created_at,
                    status=exc.batch.status,
                    inserted_count=exc.batch.inserted_count,
                    live_row_count=exc.live_row_count,
                )
                return self._reject(outcome, exc.code, str(exc))
            except ImportInProgressError as exc:
                outcome.batch_id = exc.batch.id
                return self._reject(outcome, exc.code, str(exc))
            except ImportPipelineError as exc:
                return self._reject(outcome, exc.code, str(exc))
            except SQLAlchemyError as exc:
                await db.rollback()
                log_exception(logger, exc, "Import could not be opened", **fingerprint.log_context())
                return self._reject(outcome, ImportErrorCode.UNEXPECTED_ERROR, f"Import could not start: {exc}")

            try:
                await self._execute(db, kind, batch, spec, records, row_errors, outcome)
            except Exception as exc:
                # Finalization itself failed; stale-batch cleanup will fail the batch later
                log_exception(logger, exc, "Import finalization failed", batch_id=str(batch.id))
                return self._reject(outcome, ImportErrorCode.UNEXPECTED_ERROR, f"Import failed: {exc}")

            timing.update(
                batch_id=str(outcome.batch_id),
                status=outcome.status.value if outcome.status else None,
                inserted_count=outcome.inserted_count,
                skipped_count=outcome.skipped_count,
                error_count=outcome.error_count,
            )

        if outcome.success and report_kind == ReportKind.SETTLEMENT and self.reconcile_after_import:
            outcome.settlement_reconciliation = await reconcile_settlements(db, outcome.batch_id, user_id)

        return outcome

    async def _prepare(
        self,
        db: AsyncSession,
        kind: RecordKind,
        fingerprint: BatchFingerprint,
        records: list[NormalizedRecord],
        mode: ImportMode,
        allow_reimport: bool,
        declared_row_count: int,
        file_name: str | None,
    ) -> tuple[ImportBatch, DeletionSpec]:
        span = date_span(records)
        duplicate = await self.ledger.check_duplicate(db, fingerprint)
        spec = self.resolver.resolve(
            kind,
            mode,
            fingerprint.scope_key,
            span,
            duplicate,
            allow_reimport=allow_reimport,
        )
        batch = await self.ledger.open(
            db,
            fingerprint,
            declared_row_count=declared_row_count,
            mode=mode,
            file_name=file_name,
            date_range=span,
            reuse=duplicate.stale_batch,
        )
        return batch, spec

    async def _execute(
        self,
        db: AsyncSession,
        kind: RecordKind,
        batch: ImportBatch,
        spec: DeletionSpec,
        records: list[NormalizedRecord],
        row_errors: list[RowError],
        outcome: ImportOutcome,
    ) -> None:
        batch_id = batch.id
        user_id = batch.user_id
        scope_key = batch.scope_key
        write: WriteResult | None = None
        deleted = 0
        error_message: str | None = None
        error_code: ImportErrorCode | None = None

        try:
            deleted = await self.resolver.execute(db, kind, user_id, spec)
            rows = [
                kind.to_row(record, user_id=user_id, scope_key=scope_key, batch_id=batch_id)
                for record in records
            ]
            write = await self.writer.write(db, batch, kind, rows)
            if write.failed:
                error_code = ImportErrorCode.WRITE_FAILURE
                error_message = write.error
        except DeletionFailedError as exc:
            error_code = exc.code
            error_message = str(exc)
        except Exception as exc:
            await db.rollback()
            log_exception(logger, exc, "Import write aborted", batch_id=str(batch_id))
            error_code = ImportErrorCode.UNEXPECTED_ERROR
            error_message = str(exc)
        finally:
            finalized = await self.ledger.finalize(
                db,
                batch_id,
                succeeded=error_code is None,
                inserted=write.inserted if write else None,
                skipped=write.skipped if write else None,
                error_count=len(row_errors),
                deleted=deleted,
                error_message=error_message,
                superseded_batch_ids=spec.superseded_batch_ids,
                extra_metadata=spec.audit() if spec.deletes_anything else None,
            )

        outcome.batch_id = finalized.id
        outcome.status = finalized.status
        outcome.inserted_count = finalized.inserted_count
        outcome.skipped_count = finalized.skipped_count
        outcome.deleted_count = finalized.deleted_count
        outcome.success = finalized.status == ImportBatchStatus.COMPLETED
        outcome.error_code = error_code

        if outcome.success:
            outcome.message = (
                f"Imported {outcome.inserted_count} rows, skipped {outcome.skipped_count} duplicates"
                f", {outcome.error_count} invalid"
            )
        else:
            outcome.message = (
                f"Import failed after {outcome.inserted_count} rows were saved "
                f"({outcome.skipped_count} not saved, {outcome.error_count} invalid): {error_message}"
            )

    @staticmethod
    def _reject(outcome: ImportOutcome, code: ImportErrorCode, message: str) -> ImportOutcome:
        outcome.success = False
        outcome.error_code = code
        outcome.message = message
        logger.info(
            "Import rejected",
            report_kind=outcome.report_kind.value,
            error_code=code.value,
            reason=message,
        )
        return outcome


async def run_import(db: AsyncSession, **kwargs: Any) -> ImportOutcome:
    """Convenience wrapper using the default pipeline components."""
    return await ImportPipeline().run(db, **kwargs)
