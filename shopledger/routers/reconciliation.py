"""Reconciliation API router."""

from datetime import date
from uuid import UUID

from fastapi import APIRouter, Query, status
from pydantic import ValidationError

from shopledger.deps import CurrentUserId, DbSession
from shopledger.models import ReportKind
from shopledger.schemas.reconciliation import (
    AutoMatchResult,
    DateRange,
    ManualMatchRequest,
    MatchLinkResponse,
    MatchOutcome,
    ReconciliationSummary,
    SettlementReconcileResult,
    SuggestionResult,
)
from shopledger.services.errors import MatchErrorCode
from shopledger.services.import_ledger import ImportBatchLedger
from shopledger.services.reconciliation import ReconciliationMatcher
from shopledger.services.settlement_reconcile import reconcile_settlements
from shopledger.utils.exceptions import (
    raise_bad_request,
    raise_conflict,
    raise_internal_error,
    raise_not_found,
    raise_unprocessable,
)

router = APIRouter(prefix="/reconciliation", tags=["reconciliation"])

_NOT_FOUND_CODES = {
    MatchErrorCode.BANK_TRANSACTION_NOT_FOUND,
    MatchErrorCode.ENTITY_NOT_FOUND,
    MatchErrorCode.MATCH_NOT_FOUND,
}
_CONFLICT_CODES = {MatchErrorCode.BANK_ALREADY_MATCHED, MatchErrorCode.ENTITY_ALREADY_MATCHED}


def _date_range(date_from: date, date_to: date) -> DateRange:
    try:
        return DateRange(date_from=date_from, date_to=date_to)
    except ValidationError as exc:
        raise_bad_request("date_from must be on or before date_to", cause=exc)


def _raise_for_match_error(code: MatchErrorCode | None, error: str | None) -> None:
    detail = {"error_code": code.value if code else None, "message": error}
    if code == MatchErrorCode.STORE_ERROR:
        raise_internal_error(detail)
    if code in _NOT_FOUND_CODES:
        raise_not_found(error.removesuffix(" not found") if error else "Resource")
    if code in _CONFLICT_CODES:
        raise_conflict(detail)
    raise_unprocessable(detail)


@router.post("/auto-match", response_model=AutoMatchResult)
async def auto_match(
    db: DbSession,
    user_id: CurrentUserId,
    date_from: date = Query(...),
    date_to: date = Query(...),
) -> AutoMatchResult:
    window = _date_range(date_from, date_to)
    result = await ReconciliationMatcher().auto_match(db, user_id, window.date_from, window.date_to)
    if not result.success:
        raise_internal_error(result.error or "Auto-match failed")
    return result


@router.get("/bank-transactions/{bank_transaction_id}/suggestions", response_model=SuggestionResult)
async def suggest_matches(
    bank_transaction_id: UUID,
    db: DbSession,
    user_id: CurrentUserId,
    limit: int = Query(default=20, ge=1, le=100),
) -> SuggestionResult:
    result = await ReconciliationMatcher().suggest(db, user_id, bank_transaction_id, limit=limit)
    if not result.success:
        _raise_for_match_error(result.error_code, result.error)
    return result


@router.post("/matches", response_model=MatchLinkResponse, status_code=status.HTTP_201_CREATED)
async def create_match(
    payload: ManualMatchRequest,
    db: DbSession,
    user_id: CurrentUserId,
) -> MatchLinkResponse:
    outcome: MatchOutcome = await ReconciliationMatcher().create_manual_match(
        db,
        user_id,
        payload.bank_transaction_id,
        payload.entity_type,
        payload.entity_id,
        amount=payload.amount,
        notes=payload.notes,
    )
    if not outcome.success or outcome.link is None:
        _raise_for_match_error(outcome.error_code, outcome.error)
    return outcome.link


@router.delete("/matches/{match_id}", response_model=MatchLinkResponse)
async def delete_match(match_id: UUID, db: DbSession, user_id: CurrentUserId) -> MatchLinkResponse:
    outcome = await ReconciliationMatcher().unmatch(db, user_id, match_id)
    if not outcome.success or outcome.link is None:
        _raise_for_match_error(outcome.error_code, outcome.error)
    return outcome.link


@router.get("/summary", response_model=ReconciliationSummary)
async def get_summary(
    db: DbSession,
    user_id: CurrentUserId,
    date_from: date = Query(...),
    date_to: date = Query(...),
) -> ReconciliationSummary:
    window = _date_range(date_from, date_to)
    summary = await ReconciliationMatcher().summarize(db, user_id, window.date_from, window.date_to)
    if not summary.success:
        _raise_for_match_error(summary.error_code, summary.error)
    return summary


@router.post("/settlements/{batch_id}", response_model=SettlementReconcileResult)
async def reconcile_settlement_batch(
    batch_id: UUID,
    db: DbSession,
    user_id: CurrentUserId,
) -> SettlementReconcileResult:
    batch = await ImportBatchLedger().get_batch(db, user_id, batch_id)
    if batch is None:
        raise_not_found("Import batch")
    if batch.report_kind != ReportKind.SETTLEMENT:
        raise_bad_request(f"Batch {batch_id} is not a settlement import")
    result = await reconcile_settlements(db, batch_id, user_id)
    if not result.success:
        raise_internal_error("; ".join(result.errors) or "Settlement reconciliation failed")
    return result
