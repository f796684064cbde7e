"""Domain exceptions for the import and reconciliation services.

These are raised inside the service layer and converted into structured
outcomes (``ImportOutcome``, ``MatchOutcome``) before leaving it.
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from shopledger.models import ImportBatch, MatchEntityType


class ImportErrorCode(str, Enum):
    DUPLICATE_IMPORT = "duplicate_import"
    IMPORT_IN_PROGRESS = "import_in_progress"
    WRITE_FAILURE = "write_failure"
    DELETION_FAILURE = "deletion_failure"
    VALIDATION_FAILURE = "validation_failure"
    UNEXPECTED_ERROR = "unexpected_error"


class MatchErrorCode(str, Enum):
    BANK_TRANSACTION_NOT_FOUND = "bank_transaction_not_found"
    ENTITY_NOT_FOUND = "entity_not_found"
    BANK_ALREADY_MATCHED = "bank_already_matched"
    ENTITY_ALREADY_MATCHED = "entity_already_matched"
    DIRECTION_MISMATCH = "direction_mismatch"
    INVALID_AMOUNT = "invalid_amount"
    MATCH_NOT_FOUND = "match_not_found"
    STORE_ERROR = "store_error"


class ImportPipelineError(Exception):
    """Base exception for import pipeline errors."""

    code: ImportErrorCode = ImportErrorCode.UNEXPECTED_ERROR


class DuplicateImportError(ImportPipelineError):
    """Fingerprint tuple already has a completed, non-empty batch."""

    code = ImportErrorCode.DUPLICATE_IMPORT

    def __init__(self, batch: ImportBatch, live_row_count: int):
        self.batch = batch
        self.live_row_count = live_row_count
        super().__init__(
            f"File already imported on {batch.created_at:%Y-%m-%d %H:%M} "
            f"({live_row_count} rows). Choose replace to import it again."
        )


class ImportInProgressError(ImportPipelineError):
    """Another attempt for the same fingerprint tuple is still processing."""

    code = ImportErrorCode.IMPORT_IN_PROGRESS

    def __init__(self, batch: ImportBatch):
        self.batch = batch
        super().__init__("This file is already being imported. Wait a moment and retry.")


class DeletionFailedError(ImportPipelineError):
    """Purge before write failed; nothing new was written."""

    code = ImportErrorCode.DELETION_FAILURE


class RecordValidationError(ImportPipelineError):
    """No usable records in the incoming stream."""

    code = ImportErrorCode.VALIDATION_FAILURE


class ReconciliationError(Exception):
    """Base exception for reconciliation errors."""

    code: MatchErrorCode


class BankTransactionNotFoundError(ReconciliationError):
    code = MatchErrorCode.BANK_TRANSACTION_NOT_FOUND


class MatchTargetNotFoundError(ReconciliationError):
    code = MatchErrorCode.ENTITY_NOT_FOUND

    def __init__(self, entity_type: MatchEntityType):
        super().__init__(f"{entity_type.value.replace('_', ' ').capitalize()} not found")


class AlreadyMatchedError(ReconciliationError):
    """One side of a requested pairing already carries an active link."""

    def __init__(self, side: str, message: str):
        self.side = side
        self.code = (
            MatchErrorCode.BANK_ALREADY_MATCHED if side == "bank" else MatchErrorCode.ENTITY_ALREADY_MATCHED
        )
        super().__init__(message)


class DirectionMismatchError(ReconciliationError):
    code = MatchErrorCode.DIRECTION_MISMATCH


class InvalidMatchAmountError(ReconciliationError):
    code = MatchErrorCode.INVALID_AMOUNT


class MatchNotFoundError(ReconciliationError):
    code = MatchErrorCode.MATCH_NOT_FOUND
