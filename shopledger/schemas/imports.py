"""Pydantic schemas for the import pipeline."""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator

from shopledger.models import ImportBatchStatus, ImportMode, ReportKind
from shopledger.schemas.base import BaseResponse, ListResponse
from shopledger.schemas.reconciliation import SettlementReconcileResult
from shopledger.services.errors import ImportErrorCode


# NUMERIC(18, 2): anything that rounds to 16 integer digits or more overflows the column
MONEY_LIMIT = Decimal("9999999999999999.995")
MAX_INT4 = 2_147_483_647

Money = Annotated[Decimal, Field(allow_inf_nan=False, gt=-MONEY_LIMIT, lt=MONEY_LIMIT)]


class NormalizedRecord(BaseModel):
    """One already-parsed row of a vendor report.

    Bank rows may carry ``deposit``/``withdrawal`` instead of a signed
    ``amount``; the signed amount is derived as deposit - withdrawal.
    """

    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")

    occurred_on: date = Field(validation_alias=AliasChoices("occurred_on", "date"))
    amount: Money
    platform: str | None = Field(default=None, max_length=50)
    external_id: str | None = Field(
        default=None, max_length=100, validation_alias=AliasChoices("external_id", "txn_id")
    )
    description: str | None = None
    reference: str | None = Field(default=None, max_length=100)
    category: str | None = Field(default=None, max_length=50)
    entry_type: str | None = Field(default=None, max_length=20)
    balance: Money | None = None
    quantity: int = Field(default=1, ge=0, le=MAX_INT4)
    revenue: Money | None = None

    @model_validator(mode="before")
    @classmethod
    def derive_signed_amount(cls, data: Any) -> Any:
        if not isinstance(data, dict) or data.get("amount") not in (None, ""):
            return data
        deposit = data.get("deposit")
        withdrawal = data.get("withdrawal")
        if deposit in (None, "") and withdrawal in (None, ""):
            return data
        try:
            signed = Decimal(str(deposit or 0)) - Decimal(str(withdrawal or 0))
        except ArithmeticError:
            # leave "amount" unset so field validation reports the row
            return data
        return {**data, "amount": signed}


class RowError(BaseModel):
    """Per-row validation failure; the rest of the batch continues."""

    row_index: int
    field: str | None = None
    reason: str


class DuplicateCheckStatus(str, Enum):
    NONE = "none"
    BLOCKED = "blocked"
    STALE = "stale"


class ImportBatchResponse(BaseResponse):
    id: UUID
    file_hash: str
    file_name: str | None
    report_kind: ReportKind
    scope_key: str
    row_count: int
    inserted_count: int
    skipped_count: int
    error_count: int
    deleted_count: int
    status: ImportBatchStatus
    import_mode: ImportMode
    date_min: date | None
    date_max: date | None
    error_message: str | None
    batch_metadata: dict[str, Any]
    created_at: datetime
    updated_at: datetime


class ImportBatchListResponse(ListResponse[ImportBatchResponse]):
    pass


class ExistingImport(BaseModel):
    """Prior import shown to the user alongside a duplicate rejection."""

    batch_id: UUID
    imported_at: datetime
    status: ImportBatchStatus
    inserted_count: int
    live_row_count: int


class ImportOutcome(BaseModel):
    """Structured result of one pipeline run; never raised."""

    success: bool
    status: ImportBatchStatus | None = None
    batch_id: UUID | None = None
    file_hash: str
    report_kind: ReportKind
    row_count: int = 0
    inserted_count: int = 0
    skipped_count: int = 0
    error_count: int = 0
    deleted_count: int = 0
    row_errors: list[RowError] = Field(default_factory=list)
    error_code: ImportErrorCode | None = None
    message: str | None = None
    existing_batch: ExistingImport | None = None
    settlement_reconciliation: SettlementReconcileResult | None = None


class RollbackOutcome(BaseModel):
    success: bool
    batch_id: UUID
    deleted_count: int = 0
    error: str | None = None


class StaleCleanupResponse(BaseModel):
    failed_count: int
