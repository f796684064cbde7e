"""Import batch ledger model."""

from datetime import date, datetime
from enum import Enum
from typing import Any

from sqlalchemy import Date, DateTime, Index, Integer, String, Text
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column

from shopledger.database import Base
from shopledger.models.base import JSONType, TimestampMixin, UserOwnedMixin, UUIDMixin


class ReportKind(str, Enum):
    """Record type an import batch writes."""

    BANK_STATEMENT = "bank_statement"
    SETTLEMENT = "settlement"
    FORECAST = "forecast"
    EXPENSE = "expense"
    WALLET = "wallet"
    ADS = "ads"


class ImportBatchStatus(str, Enum):
    """Lifecycle of one import attempt."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    REPLACED = "replaced"
    ROLLED_BACK = "rolled_back"


class ImportMode(str, Enum):
    """Deletion policy applied before a bank statement write."""

    APPEND = "append"
    REPLACE_RANGE = "replace_range"
    REPLACE_ALL = "replace_all"


TERMINAL_STATUSES = frozenset(
    {
        ImportBatchStatus.COMPLETED,
        ImportBatchStatus.FAILED,
        ImportBatchStatus.REPLACED,
        ImportBatchStatus.ROLLED_BACK,
    }
)


class ImportBatch(Base, UUIDMixin, UserOwnedMixin, TimestampMixin):
    """One row per import attempt.

    ``inserted_count`` is always measured by a live count of rows carrying
    this batch id, never taken from the write acknowledgement.
    """

    __tablename__ = "import_batches"
    __table_args__ = (
        Index(
            "ix_import_batches_fingerprint",
            "user_id",
            "file_hash",
            "report_kind",
            "scope_key",
        ),
        Index("ix_import_batches_status_started", "status", "started_at"),
    )

    file_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    report_kind: Mapped[ReportKind] = mapped_column(
        SQLEnum(ReportKind, name="report_kind_enum"), nullable=False
    )
    # Entity the import is scoped to (bank account, wallet); empty when unscoped
    scope_key: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    file_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    row_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    inserted_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    skipped_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    deleted_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    status: Mapped[ImportBatchStatus] = mapped_column(
        SQLEnum(ImportBatchStatus, name="import_batch_status_enum"),
        nullable=False,
        default=ImportBatchStatus.PENDING,
    )
    import_mode: Mapped[ImportMode] = mapped_column(
        SQLEnum(ImportMode, name="import_mode_enum"),
        nullable=False,
        default=ImportMode.APPEND,
    )

    date_min: Mapped[date | None] = mapped_column(Date, nullable=True)
    date_max: Mapped[date | None] = mapped_column(Date, nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    batch_metadata: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)

    @property
    def fingerprint(self) -> tuple[str, ReportKind, str]:
        return (self.file_hash, self.report_kind, self.scope_key)
