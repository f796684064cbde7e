"""Report import API router."""

import json
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, File, Form, Query, UploadFile, status
from fastapi.responses import JSONResponse

from shopledger.deps import CurrentUserId, DbSession
from shopledger.logger import get_logger
from shopledger.models import ImportMode, ReportKind
from shopledger.schemas.imports import (
    ImportBatchListResponse,
    ImportBatchResponse,
    ImportOutcome,
    RollbackOutcome,
    StaleCleanupResponse,
)
from shopledger.services.errors import ImportErrorCode
from shopledger.services.import_ledger import ImportBatchLedger
from shopledger.services.import_pipeline import ImportPipeline
from shopledger.utils.exceptions import raise_bad_request, raise_conflict, raise_not_found

router = APIRouter(prefix="/imports", tags=["imports"])
logger = get_logger(__name__)

MAX_UPLOAD_BYTES = 20 * 1024 * 1024

_FAILURE_STATUS = {
    ImportErrorCode.DUPLICATE_IMPORT: status.HTTP_409_CONFLICT,
    ImportErrorCode.IMPORT_IN_PROGRESS: status.HTTP_409_CONFLICT,
    ImportErrorCode.VALIDATION_FAILURE: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ImportErrorCode.DELETION_FAILURE: status.HTTP_500_INTERNAL_SERVER_ERROR,
    ImportErrorCode.WRITE_FAILURE: status.HTTP_500_INTERNAL_SERVER_ERROR,
    ImportErrorCode.UNEXPECTED_ERROR: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def _parse_records(raw: str) -> list[dict]:
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise_bad_request(f"records is not valid JSON: {exc.msg}", cause=exc)
    if not isinstance(parsed, list) or not all(isinstance(item, dict) for item in parsed):
        raise_bad_request("records must be a JSON array of objects")
    return parsed


@router.get("/batches", response_model=ImportBatchListResponse)
async def list_batches(
    db: DbSession,
    user_id: CurrentUserId,
    report_kind: ReportKind | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
) -> ImportBatchListResponse:
    batches, total = await ImportBatchLedger().list_batches(
        db, user_id, report_kind=report_kind, limit=limit, offset=offset
    )
    return ImportBatchListResponse(
        items=[ImportBatchResponse.model_validate(batch) for batch in batches],
        total=total,
    )


@router.get("/batches/{batch_id}", response_model=ImportBatchResponse)
async def get_batch(batch_id: UUID, db: DbSession, user_id: CurrentUserId) -> ImportBatchResponse:
    batch = await ImportBatchLedger().get_batch(db, user_id, batch_id)
    if batch is None:
        raise_not_found("Import batch")
    return ImportBatchResponse.model_validate(batch)


@router.post("/batches/{batch_id}/rollback", response_model=RollbackOutcome)
async def rollback_batch(batch_id: UUID, db: DbSession, user_id: CurrentUserId) -> RollbackOutcome:
    outcome = await ImportBatchLedger().rollback_batch(db, batch_id, user_id)
    if not outcome.success:
        if outcome.error and "not found" in outcome.error:
            raise_not_found("Import batch")
        raise_conflict(outcome.error or "Rollback failed")
    return outcome


@router.post("/batches/cleanup-stale", response_model=StaleCleanupResponse)
async def cleanup_stale_batches(db: DbSession, user_id: CurrentUserId) -> StaleCleanupResponse:
    failed = await ImportBatchLedger().cleanup_stale_batches(db, user_id)
    return StaleCleanupResponse(failed_count=failed)


@router.post(
    "/{report_kind}",
    response_model=ImportOutcome,
    status_code=status.HTTP_201_CREATED,
    responses={409: {"model": ImportOutcome}, 422: {"model": ImportOutcome}},
)
async def import_report(
    report_kind: ReportKind,
    db: DbSession,
    user_id: CurrentUserId,
    file: UploadFile = File(...),
    records: Annotated[str, Form()] = "[]",
    scope_key: Annotated[str, Form()] = "",
    mode: Annotated[ImportMode, Form()] = ImportMode.APPEND,
    allow_reimport: Annotated[bool, Form()] = False,
):
    """Import one parsed report file.

    ``file`` is the raw upload and is only hashed; ``records`` carries the
    rows already normalized by the caller's parser.
    """
    payload = await file.read()
    if not payload:
        raise_bad_request("Uploaded file is empty")
    if len(payload) > MAX_UPLOAD_BYTES:
        raise_bad_request("File exceeds 20MB limit")

    outcome = await ImportPipeline().run(
        db,
        user_id=user_id,
        report_kind=report_kind,
        payload=payload,
        rows=_parse_records(records),
        scope_key=scope_key,
        mode=mode,
        allow_reimport=allow_reimport,
        file_name=file.filename,
    )
    if outcome.success:
        return outcome

    return JSONResponse(
        status_code=_FAILURE_STATUS.get(outcome.error_code, status.HTTP_500_INTERNAL_SERVER_ERROR),
        content=outcome.model_dump(mode="json"),
    )
