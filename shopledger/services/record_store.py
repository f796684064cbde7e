"""Count and purge helpers over the imported record tables."""

from typing import Any
from uuid import UUID

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from shopledger.models import MatchLink, ReportKind
from shopledger.services.record_kinds import RecordKind


async def count_batch_rows(db: AsyncSession, kind: RecordKind, batch_id: UUID, user_id: UUID) -> int:
    """Live count of rows owned by a batch; the only trusted inserted count."""
    model = kind.model
    result = await db.execute(
        select(func.count())
        .select_from(model)
        .where(model.import_batch_id == batch_id, model.user_id == user_id)
    )
    return int(result.scalar_one())


async def purge_records(db: AsyncSession, kind: RecordKind, user_id: UUID, *criteria: Any) -> int:
    """Delete matching records (and match links pointing at them), returning the row count.

    Does not commit; callers decide the transaction boundary.
    """
    model = kind.model
    doomed_ids = select(model.id).where(model.user_id == user_id, *criteria)

    if kind.report_kind == ReportKind.BANK_STATEMENT:
        link_filter = MatchLink.bank_transaction_id.in_(doomed_ids)
    elif kind.match_entity_type is not None:
        link_filter = (MatchLink.entity_type == kind.match_entity_type) & MatchLink.entity_id.in_(doomed_ids)
    else:
        link_filter = None

    if link_filter is not None:
        await db.execute(
            delete(MatchLink)
            .where(MatchLink.user_id == user_id, link_filter)
            .execution_options(synchronize_session=False)
        )

    result = await db.execute(
        delete(model)
        .where(model.user_id == user_id, *criteria)
        .execution_options(synchronize_session=False)
    )
    return int(result.rowcount or 0)
