"""Per-report-kind mapping from normalized rows to record tables.

Each ``RecordKind`` knows its ORM model, the business date column used for
range deletion, the scope column (bank account, wallet) and which fields feed
the line-level content hash.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from pydantic import ValidationError
from sqlalchemy.orm import InstrumentedAttribute

from shopledger.database import Base
from shopledger.models import (
    AdDailyPerformance,
    BankTransaction,
    Expense,
    ForecastStatus,
    MatchEntityType,
    ReportKind,
    SettlementTransaction,
    UnsettledTransaction,
    WalletEntryType,
    WalletLedgerEntry,
)
from shopledger.models.base import utcnow
from shopledger.schemas.imports import NormalizedRecord, RowError
from shopledger.services.fingerprint import record_hash

_CENT = Decimal("0.01")

# (platform, external_id, descriptor, quantity, total)
HashFields = tuple[str | None, str | None, str | None, int | None, Decimal | None]


def _money(value: Decimal | None) -> Decimal | None:
    return value.quantize(_CENT) if value is not None else None


@dataclass(frozen=True)
class RecordKind:
    report_kind: ReportKind
    model: type[Base]
    date_column: str
    scope_column: str | None
    required_fields: tuple[str, ...]
    build_row: Callable[[NormalizedRecord, str], dict[str, Any]]
    hash_fields: Callable[[NormalizedRecord, str], HashFields]
    # Returns (field, reason) when a row is unusable
    check: Callable[[NormalizedRecord], tuple[str, str] | None] | None = None
    # Internal entity type whose match links must go when rows are purged
    match_entity_type: MatchEntityType | None = None

    @property
    def supports_import_modes(self) -> bool:
        return self.report_kind == ReportKind.BANK_STATEMENT

    @property
    def requires_scope(self) -> bool:
        return self.scope_column is not None

    @property
    def date_attr(self) -> InstrumentedAttribute:
        return getattr(self.model, self.date_column)

    @property
    def scope_attr(self) -> InstrumentedAttribute | None:
        return getattr(self.model, self.scope_column) if self.scope_column else None

    def to_row(
        self,
        record: NormalizedRecord,
        *,
        user_id: UUID,
        scope_key: str,
        batch_id: UUID,
    ) -> dict[str, Any]:
        now = utcnow()
        row = self.build_row(record, scope_key)
        row.update(
            id=uuid4(),
            user_id=user_id,
            import_batch_id=batch_id,
            content_hash=record_hash(user_id, *self.hash_fields(record, scope_key)),
            created_at=now,
            updated_at=now,
        )
        return row


# =============================================================================
# Kind definitions
# =============================================================================


def _bank_row(record: NormalizedRecord, scope_key: str) -> dict[str, Any]:
    return {
        "bank_account_id": scope_key,
        "txn_date": record.occurred_on,
        "description": record.description or "",
        "amount": _money(record.amount),
        "reference": record.reference,
        "balance": _money(record.balance),
    }


def _bank_hash(record: NormalizedRecord, scope_key: str) -> HashFields:
    # Date, reference and running balance form the natural key of a statement line
    natural_key = ":".join(
        [
            record.occurred_on.isoformat(),
            record.reference or "",
            str(_money(record.balance)) if record.balance is not None else "",
        ]
    )
    return (scope_key, natural_key, record.description, 1, record.amount)


def _settlement_row(record: NormalizedRecord, scope_key: str) -> dict[str, Any]:
    return {
        "platform": (record.platform or "").lower(),
        "external_txn_id": record.external_id,
        "settled_on": record.occurred_on,
        "amount": _money(record.amount),
        "description": record.description,
    }


def _forecast_row(record: NormalizedRecord, scope_key: str) -> dict[str, Any]:
    return {
        "platform": (record.platform or "").lower(),
        "external_txn_id": record.external_id,
        "expected_settle_on": record.occurred_on,
        "amount": _money(record.amount),
        "status": ForecastStatus.UNSETTLED,
    }


def _marketplace_hash(record: NormalizedRecord, scope_key: str) -> HashFields:
    return (record.platform, record.external_id, record.occurred_on.isoformat(), 1, record.amount)


def _expense_row(record: NormalizedRecord, scope_key: str) -> dict[str, Any]:
    return {
        "expense_date": record.occurred_on,
        "category": record.category,
        "description": record.description,
        "amount": _money(record.amount),
    }


def _expense_hash(record: NormalizedRecord, scope_key: str) -> HashFields:
    descriptor = f"{record.category}:{record.description or ''}"
    return ("expense", record.occurred_on.isoformat(), descriptor, 1, record.amount)


def _wallet_row(record: NormalizedRecord, scope_key: str) -> dict[str, Any]:
    return {
        "wallet_id": scope_key,
        "entry_date": record.occurred_on,
        "entry_type": WalletEntryType(record.entry_type.upper()),
        "amount": _money(record.amount),
        "reference": record.reference,
        "note": record.description,
    }


def _wallet_hash(record: NormalizedRecord, scope_key: str) -> HashFields:
    external_id = f"{record.occurred_on.isoformat()}:{record.reference or ''}"
    descriptor = f"{record.entry_type.upper()}:{record.description or ''}"
    return (scope_key, external_id, descriptor, 1, record.amount)


def _ads_row(record: NormalizedRecord, scope_key: str) -> dict[str, Any]:
    return {
        "platform": (record.platform or "").lower(),
        "campaign_id": record.external_id,
        "campaign_name": record.description,
        "ad_date": record.occurred_on,
        "spend": _money(record.amount),
        "orders": record.quantity,
        "revenue": _money(record.revenue) or Decimal("0.00"),
    }


def _ads_hash(record: NormalizedRecord, scope_key: str) -> HashFields:
    external_id = f"{record.occurred_on.isoformat()}:{record.external_id}"
    return (record.platform, external_id, record.description, record.quantity, record.amount)


def _positive_amount(record: NormalizedRecord) -> tuple[str, str] | None:
    if record.amount <= 0:
        return ("amount", "amount must be greater than zero")
    return None


def _check_wallet(record: NormalizedRecord) -> tuple[str, str] | None:
    if record.entry_type.upper() not in WalletEntryType.__members__:
        return ("entry_type", f"unknown wallet entry type {record.entry_type!r}")
    return _positive_amount(record)


CAMPAIGN_NAME_MAX = 255


def _check_ads(record: NormalizedRecord) -> tuple[str, str] | None:
    if record.amount < 0:
        return ("amount", "spend cannot be negative")
    if record.description and len(record.description) > CAMPAIGN_NAME_MAX:
        return ("description", f"campaign name is longer than {CAMPAIGN_NAME_MAX} characters")
    return None


RECORD_KINDS: dict[ReportKind, RecordKind] = {
    ReportKind.BANK_STATEMENT: RecordKind(
        report_kind=ReportKind.BANK_STATEMENT,
        model=BankTransaction,
        date_column="txn_date",
        scope_column="bank_account_id",
        required_fields=(),
        build_row=_bank_row,
        hash_fields=_bank_hash,
    ),
    ReportKind.SETTLEMENT: RecordKind(
        report_kind=ReportKind.SETTLEMENT,
        model=SettlementTransaction,
        date_column="settled_on",
        scope_column=None,
        required_fields=("platform", "external_id"),
        build_row=_settlement_row,
        hash_fields=_marketplace_hash,
        match_entity_type=MatchEntityType.SETTLEMENT,
    ),
    ReportKind.FORECAST: RecordKind(
        report_kind=ReportKind.FORECAST,
        model=UnsettledTransaction,
        date_column="expected_settle_on",
        scope_column=None,
        required_fields=("platform", "external_id"),
        build_row=_forecast_row,
        hash_fields=_marketplace_hash,
    ),
    ReportKind.EXPENSE: RecordKind(
        report_kind=ReportKind.EXPENSE,
        model=Expense,
        date_column="expense_date",
        scope_column=None,
        required_fields=("category",),
        build_row=_expense_row,
        hash_fields=_expense_hash,
        check=_positive_amount,
        match_entity_type=MatchEntityType.EXPENSE,
    ),
    ReportKind.WALLET: RecordKind(
        report_kind=ReportKind.WALLET,
        model=WalletLedgerEntry,
        date_column="entry_date",
        scope_column="wallet_id",
        required_fields=("entry_type",),
        build_row=_wallet_row,
        hash_fields=_wallet_hash,
        check=_check_wallet,
        match_entity_type=MatchEntityType.WALLET_TOPUP,
    ),
    ReportKind.ADS: RecordKind(
        report_kind=ReportKind.ADS,
        model=AdDailyPerformance,
        date_column="ad_date",
        scope_column=None,
        required_fields=("platform", "external_id"),
        build_row=_ads_row,
        hash_fields=_ads_hash,
        check=_check_ads,
    ),
}


def get_record_kind(report_kind: ReportKind) -> RecordKind:
    return RECORD_KINDS[report_kind]


def validate_records(
    kind: RecordKind,
    rows: Sequence[Mapping[str, Any]],
) -> tuple[list[NormalizedRecord], list[RowError]]:
    """Validate raw rows, collecting one RowError per rejected row.

    Rejected rows never reach hashing or the writer; valid rows keep going.
    """
    records: list[NormalizedRecord] = []
    errors: list[RowError] = []

    for index, raw in enumerate(rows):
        try:
            record = NormalizedRecord.model_validate(dict(raw))
        except ValidationError as exc:
            first = exc.errors()[0]
            field = str(first["loc"][0]) if first.get("loc") else None
            errors.append(RowError(row_index=index, field=field, reason=first["msg"]))
            continue

        missing = [name for name in kind.required_fields if not getattr(record, name)]
        if missing:
            errors.append(
                RowError(row_index=index, field=missing[0], reason=f"{missing[0]} is required")
            )
            continue

        if kind.check is not None:
            problem = kind.check(record)
            if problem:
                field, reason = problem
                errors.append(RowError(row_index=index, field=field, reason=reason))
                continue

        records.append(record)

    return records, errors


def date_span(records: Sequence[NormalizedRecord]) -> tuple[date, date] | None:
    if not records:
        return None
    dates = [record.occurred_on for record in records]
    return min(dates), max(dates)
