"""SQLAlchemy models."""

from shopledger.models.base import TimestampMixin, UserOwnedMixin, UUIDMixin
from shopledger.models.import_batch import (
    TERMINAL_STATUSES,
    ImportBatch,
    ImportBatchStatus,
    ImportMode,
    ReportKind,
)
from shopledger.models.reconciliation import MatchedBy, MatchEntityType, MatchLink
from shopledger.models.records import (
    AdDailyPerformance,
    BankTransaction,
    Expense,
    ForecastStatus,
    SettlementTransaction,
    UnsettledTransaction,
    WalletEntryType,
    WalletLedgerEntry,
)

__all__ = [
    "AdDailyPerformance",
    "BankTransaction",
    "Expense",
    "ForecastStatus",
    "ImportBatch",
    "ImportBatchStatus",
    "ImportMode",
    "MatchEntityType",
    "MatchLink",
    "MatchedBy",
    "ReportKind",
    "SettlementTransaction",
    "TERMINAL_STATUSES",
    "TimestampMixin",
    "UUIDMixin",
    "UnsettledTransaction",
    "UserOwnedMixin",
    "WalletEntryType",
    "WalletLedgerEntry",
]
