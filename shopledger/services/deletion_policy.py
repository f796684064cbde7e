"""Decide and execute the purge that precedes an import write.

Bank statements choose a mode per upload:

- append: nothing is deleted; an already-imported file is rejected.
- replace_range: rows in the account dated within the new file's span go first.
- replace_all: every row in the account goes first.

Other report kinds only append. An explicit reimport of one of their files
purges the superseded batch's rows instead.
"""

from dataclasses import dataclass
from datetime import date
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from shopledger.logger import get_logger, log_exception
from shopledger.models import ImportMode
from shopledger.services.errors import DeletionFailedError, DuplicateImportError, RecordValidationError
from shopledger.services.import_ledger import DuplicateCheck
from shopledger.services.record_kinds import RecordKind
from shopledger.services.record_store import purge_records

logger = get_logger(__name__)


@dataclass(frozen=True)
class DeletionSpec:
    mode: ImportMode
    scope_key: str
    date_from: date | None = None
    date_to: date | None = None
    purge_scope: bool = False
    # Rows owned by these batches are purged (explicit reimport)
    purge_batch_ids: tuple[UUID, ...] = ()
    # Batches flipped to "replaced" once the new batch completes
    superseded_batch_ids: tuple[UUID, ...] = ()

    @property
    def deletes_anything(self) -> bool:
        return self.purge_scope or bool(self.purge_batch_ids) or self.date_from is not None

    def audit(self) -> dict[str, object]:
        audit: dict[str, object] = {"mode": self.mode.value}
        if self.date_from is not None:
            audit["date_range"] = {"from": self.date_from.isoformat(), "to": self.date_to.isoformat()}
        return audit


class DeletionPolicyResolver:
    """Turn (mode, scope, date span, duplicate status) into a DeletionSpec and run it."""

    def resolve(
        self,
        kind: RecordKind,
        mode: ImportMode,
        scope_key: str,
        date_range: tuple[date, date] | None,
        duplicate: DuplicateCheck,
        *,
        allow_reimport: bool = False,
    ) -> DeletionSpec:
        prior_ids: tuple[UUID, ...] = (duplicate.batch.id,) if duplicate.blocked else ()

        if not kind.supports_import_modes:
            if mode != ImportMode.APPEND:
                raise RecordValidationError(
                    f"Import mode {mode.value} is only available for bank statements"
                )
            if duplicate.blocked and not allow_reimport:
                raise DuplicateImportError(duplicate.batch, duplicate.live_row_count)
            return DeletionSpec(
                mode=mode,
                scope_key=scope_key,
                purge_batch_ids=prior_ids,
                superseded_batch_ids=prior_ids,
            )

        if mode == ImportMode.APPEND:
            if duplicate.blocked:
                raise DuplicateImportError(duplicate.batch, duplicate.live_row_count)
            return DeletionSpec(mode=mode, scope_key=scope_key)

        if mode == ImportMode.REPLACE_RANGE:
            if date_range is None:
                raise RecordValidationError("replace_range needs at least one dated record")
            date_from, date_to = date_range
            return DeletionSpec(
                mode=mode,
                scope_key=scope_key,
                date_from=date_from,
                date_to=date_to,
                superseded_batch_ids=prior_ids,
            )

        return DeletionSpec(
            mode=mode,
            scope_key=scope_key,
            purge_scope=True,
            superseded_batch_ids=prior_ids,
        )

    async def execute(
        self,
        db: AsyncSession,
        kind: RecordKind,
        user_id: UUID,
        spec: DeletionSpec,
    ) -> int:
        """Purge and commit before any write; returns the deleted row count.

        Raises DeletionFailedError, after rolling back, when the purge fails.
        """
        if not spec.deletes_anything:
            return 0

        if spec.purge_batch_ids:
            criteria = [kind.model.import_batch_id.in_(spec.purge_batch_ids)]
        else:
            criteria = [kind.scope_attr == spec.scope_key]
            if not spec.purge_scope:
                criteria += [kind.date_attr >= spec.date_from, kind.date_attr <= spec.date_to]

        try:
            deleted = await purge_records(db, kind, user_id, *criteria)
            await db.commit()
        except SQLAlchemyError as exc:
            await db.rollback()
            log_exception(
                logger,
                exc,
                "Deletion before import failed",
                report_kind=kind.report_kind.value,
                scope_key=spec.scope_key,
                mode=spec.mode.value,
            )
            raise DeletionFailedError(f"Could not remove previous rows: {exc}") from exc

        logger.info(
            "Rows deleted before import",
            report_kind=kind.report_kind.value,
            scope_key=spec.scope_key,
            deleted_count=deleted,
            **spec.audit(),
        )
        return deleted
