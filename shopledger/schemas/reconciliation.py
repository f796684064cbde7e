"""Pydantic schemas for bank reconciliation."""

from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from shopledger.models import MatchedBy, MatchEntityType
from shopledger.schemas.base import BaseResponse
from shopledger.services.errors import MatchErrorCode

ZERO = Decimal("0.00")


class DateRange(BaseModel):
    date_from: date
    date_to: date

    @model_validator(mode="after")
    def check_order(self) -> "DateRange":
        if self.date_from > self.date_to:
            raise ValueError("date_from must be on or before date_to")
        return self


class AutoMatchDetails(BaseModel):
    no_candidate: int = 0
    multiple_candidates: int = 0
    already_matched: int = 0
    not_exact: int = 0


class AutoMatchResult(BaseModel):
    success: bool = True
    matched_count: int = 0
    skipped_count: int = 0
    total_bank_transactions: int = 0
    details: AutoMatchDetails = Field(default_factory=AutoMatchDetails)
    error_code: MatchErrorCode | None = None
    error: str | None = None


class MatchSuggestion(BaseModel):
    """Candidate internal record for a manual match, best first."""

    entity_type: MatchEntityType
    entity_id: UUID
    record_date: date
    amount: Decimal
    description: str
    score: int
    label: str
    breakdown: dict[str, float]


class SuggestionResult(BaseModel):
    success: bool
    bank_transaction_id: UUID
    suggestions: list[MatchSuggestion] = Field(default_factory=list)
    error_code: MatchErrorCode | None = None
    error: str | None = None


class ManualMatchRequest(BaseModel):
    bank_transaction_id: UUID
    entity_type: MatchEntityType
    entity_id: UUID
    amount: Decimal | None = Field(default=None, gt=0)
    notes: str | None = Field(default=None, max_length=1000)


class MatchLinkResponse(BaseResponse):
    id: UUID
    bank_transaction_id: UUID
    entity_type: MatchEntityType
    entity_id: UUID
    matched_amount: Decimal
    match_score: int
    matched_by: MatchedBy
    notes: str | None
    is_active: bool
    match_metadata: dict[str, Any]
    created_at: datetime


class MatchOutcome(BaseModel):
    success: bool
    link: MatchLinkResponse | None = None
    error_code: MatchErrorCode | None = None
    error: str | None = None


class SettlementReconcileResult(BaseModel):
    success: bool = True
    reconciled_count: int = 0
    not_found_in_forecast_count: int = 0
    already_settled_count: int = 0
    errors: list[str] = Field(default_factory=list)


class ReconciliationSummary(BaseModel):
    success: bool = True
    date_from: date
    date_to: date
    bank_inflow: Decimal = ZERO
    bank_outflow: Decimal = ZERO
    bank_net: Decimal = ZERO
    settlement_total: Decimal = ZERO
    expense_total: Decimal = ZERO
    wallet_topup_total: Decimal = ZERO
    internal_net: Decimal = ZERO
    matched_count: int = 0
    matched_amount: Decimal = ZERO
    unmatched_count: int = 0
    unmatched_amount: Decimal = ZERO
    gap: Decimal = ZERO
    error_code: MatchErrorCode | None = None
    error: str | None = None
