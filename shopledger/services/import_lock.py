"""Advisory exclusivity for imports of the same fingerprint tuple.

The default lock treats a batch still ``processing`` and started within the
configured window as the held token. It guards against double submission
from one user, not against two processes racing; content-hash
insert-or-ignore keeps racing writers from duplicating rows either way.
"""

from dataclasses import dataclass
from datetime import timedelta
from typing import Protocol
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from shopledger.config import settings
from shopledger.logger import get_logger
from shopledger.models import ImportBatch, ImportBatchStatus, ReportKind
from shopledger.models.base import utcnow
from shopledger.services.errors import ImportInProgressError

logger = get_logger(__name__)


@dataclass(frozen=True)
class BatchFingerprint:
    """Identity of "the same import": same bytes, same kind, same scope, same owner."""

    user_id: UUID
    file_hash: str
    report_kind: ReportKind
    scope_key: str = ""

    def log_context(self) -> dict[str, str]:
        return {
            "user_id": str(self.user_id),
            "file_hash": self.file_hash[:12],
            "report_kind": self.report_kind.value,
            "scope_key": self.scope_key,
        }


class ImportLock(Protocol):
    """Scoped, time-bounded exclusivity token keyed by fingerprint tuple."""

    async def acquire(self, db: AsyncSession, fingerprint: BatchFingerprint) -> None:
        """Raise ImportInProgressError when another holder is active."""
        ...

    async def release(self, db: AsyncSession, batch: ImportBatch) -> None: ...


class ProcessingWindowLock:
    """Lock held by any ``processing`` batch younger than the window."""

    def __init__(self, window_minutes: int | None = None):
        self.window = timedelta(minutes=window_minutes or settings.import_lock_window_minutes)

    async def acquire(self, db: AsyncSession, fingerprint: BatchFingerprint) -> None:
        cutoff = utcnow() - self.window
        result = await db.execute(
            select(ImportBatch)
            .where(
                ImportBatch.user_id == fingerprint.user_id,
                ImportBatch.file_hash == fingerprint.file_hash,
                ImportBatch.report_kind == fingerprint.report_kind,
                ImportBatch.scope_key == fingerprint.scope_key,
                ImportBatch.status == ImportBatchStatus.PROCESSING,
                ImportBatch.started_at >= cutoff,
            )
            .order_by(ImportBatch.started_at.desc())
            .limit(1)
        )
        holder = result.scalar_one_or_none()
        if holder is not None:
            logger.info(
                "Import already in progress",
                blocking_batch_id=str(holder.id),
                **fingerprint.log_context(),
            )
            raise ImportInProgressError(holder)

    async def release(self, db: AsyncSession, batch: ImportBatch) -> None:
        # Finalization moves the batch out of "processing", which frees the token
        return None
