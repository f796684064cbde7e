"""Imported financial record tables.

Every table carries ``content_hash`` unique per owner; that pair is the
conflict key for insert-or-ignore writes. ``import_batch_id`` is a
back-reference only: purging a batch row leaves its records in place.
"""

from datetime import date
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import Date, ForeignKey, Index, Integer, Numeric, String, Text, UniqueConstraint, Uuid
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import Mapped, declared_attr, mapped_column

from shopledger.database import Base
from shopledger.models.base import TimestampMixin, UserOwnedMixin, UUIDMixin


class ImportedRecordMixin(UUIDMixin, UserOwnedMixin, TimestampMixin):
    """Columns shared by every imported record table."""

    content_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    @declared_attr
    def import_batch_id(cls) -> Mapped[UUID | None]:
        return mapped_column(
            Uuid(as_uuid=True),
            ForeignKey("import_batches.id", ondelete="SET NULL"),
            nullable=True,
            index=True,
        )


def _dedup_constraint(table: str) -> UniqueConstraint:
    return UniqueConstraint("user_id", "content_hash", name=f"uq_{table}_user_content_hash")


class BankTransaction(Base, ImportedRecordMixin):
    """Bank statement line. ``amount`` is signed: deposits positive, withdrawals negative."""

    __tablename__ = "bank_transactions"
    __table_args__ = (
        _dedup_constraint("bank_transactions"),
        Index("ix_bank_transactions_account_date", "user_id", "bank_account_id", "txn_date"),
    )

    bank_account_id: Mapped[str] = mapped_column(String(100), nullable=False)
    txn_date: Mapped[date] = mapped_column(Date, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    reference: Mapped[str | None] = mapped_column(String(100), nullable=True)
    balance: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)

    @property
    def is_deposit(self) -> bool:
        return self.amount > 0


class SettlementTransaction(Base, ImportedRecordMixin):
    """Marketplace payout that has actually settled."""

    __tablename__ = "settlement_transactions"
    __table_args__ = (
        _dedup_constraint("settlement_transactions"),
        Index("ix_settlement_transactions_date", "user_id", "settled_on"),
        Index("ix_settlement_transactions_txn", "user_id", "platform", "external_txn_id"),
    )

    platform: Mapped[str] = mapped_column(String(50), nullable=False)
    external_txn_id: Mapped[str] = mapped_column(String(100), nullable=False)
    settled_on: Mapped[date] = mapped_column(Date, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)


class ForecastStatus(str, Enum):
    UNSETTLED = "unsettled"
    SETTLED = "settled"


class UnsettledTransaction(Base, ImportedRecordMixin):
    """Forecast ("on hold") marketplace payout awaiting settlement."""

    __tablename__ = "unsettled_transactions"
    __table_args__ = (
        _dedup_constraint("unsettled_transactions"),
        Index("ix_unsettled_transactions_txn", "user_id", "platform", "external_txn_id"),
    )

    platform: Mapped[str] = mapped_column(String(50), nullable=False)
    external_txn_id: Mapped[str] = mapped_column(String(100), nullable=False)
    expected_settle_on: Mapped[date] = mapped_column(Date, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    status: Mapped[ForecastStatus] = mapped_column(
        SQLEnum(ForecastStatus, name="forecast_status_enum"),
        nullable=False,
        default=ForecastStatus.UNSETTLED,
    )


class Expense(Base, ImportedRecordMixin):
    """Business expense. ``amount`` is positive."""

    __tablename__ = "expenses"
    __table_args__ = (
        _dedup_constraint("expenses"),
        Index("ix_expenses_date", "user_id", "expense_date"),
    )

    expense_date: Mapped[date] = mapped_column(Date, nullable=False)
    category: Mapped[str] = mapped_column(String(50), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)


class WalletEntryType(str, Enum):
    TOP_UP = "TOP_UP"
    SPEND = "SPEND"
    REFUND = "REFUND"
    ADJUSTMENT = "ADJUSTMENT"


class WalletLedgerEntry(Base, ImportedRecordMixin):
    """Ad wallet movement. Only TOP_UP entries leave the bank account."""

    __tablename__ = "wallet_ledger"
    __table_args__ = (
        _dedup_constraint("wallet_ledger"),
        Index("ix_wallet_ledger_wallet_date", "user_id", "wallet_id", "entry_date"),
    )

    wallet_id: Mapped[str] = mapped_column(String(100), nullable=False)
    entry_date: Mapped[date] = mapped_column(Date, nullable=False)
    entry_type: Mapped[WalletEntryType] = mapped_column(
        SQLEnum(WalletEntryType, name="wallet_entry_type_enum"), nullable=False
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    reference: Mapped[str | None] = mapped_column(String(100), nullable=True)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)


class AdDailyPerformance(Base, ImportedRecordMixin):
    """Daily ads spend per campaign."""

    __tablename__ = "ad_daily_performance"
    __table_args__ = (
        _dedup_constraint("ad_daily_performance"),
        Index("ix_ad_daily_performance_date", "user_id", "platform", "ad_date"),
    )

    platform: Mapped[str] = mapped_column(String(50), nullable=False)
    campaign_id: Mapped[str] = mapped_column(String(100), nullable=False)
    campaign_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    ad_date: Mapped[date] = mapped_column(Date, nullable=False)
    spend: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    orders: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    revenue: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False, default=Decimal("0"))
