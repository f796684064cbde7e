"""Link settled marketplace payouts back to their forecast rows."""

from collections import defaultdict
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from shopledger.logger import get_logger, log_exception
from shopledger.models import ForecastStatus, SettlementTransaction, UnsettledTransaction
from shopledger.schemas.reconciliation import SettlementReconcileResult

logger = get_logger(__name__)


def forecast_key(platform: str, external_txn_id: str) -> str:
    return f"{platform.lower()}::{external_txn_id}"


async def reconcile_settlements(
    db: AsyncSession,
    batch_id: UUID,
    user_id: UUID,
) -> SettlementReconcileResult:
    """Flip forecasts to ``settled`` for every settlement in a batch.

    Forecasts are fetched in one query keyed by transaction id, matched in
    memory on ``platform::txn_id`` and updated with a single bulk statement.
    Only the status changes; no per-row settlement timestamp is written.
    Re-running over the same batch is a no-op.
    """
    result = SettlementReconcileResult()

    try:
        settlements = (
            await db.execute(
                select(SettlementTransaction.platform, SettlementTransaction.external_txn_id).where(
                    SettlementTransaction.import_batch_id == batch_id,
                    SettlementTransaction.user_id == user_id,
                )
            )
        ).all()
        if not settlements:
            logger.info("No settlements in batch", batch_id=str(batch_id))
            return result

        txn_ids = {row.external_txn_id for row in settlements}
        forecasts = (
            await db.execute(
                select(
                    UnsettledTransaction.id,
                    UnsettledTransaction.platform,
                    UnsettledTransaction.external_txn_id,
                    UnsettledTransaction.status,
                ).where(
                    UnsettledTransaction.user_id == user_id,
                    UnsettledTransaction.external_txn_id.in_(txn_ids),
                )
            )
        ).all()
    except SQLAlchemyError as exc:
        await db.rollback()
        log_exception(logger, exc, "Failed to load settlements for reconciliation", batch_id=str(batch_id))
        result.success = False
        result.errors.append(f"Failed to load settlement data: {exc}")
        return result

    lookup: dict[str, list] = defaultdict(list)
    for forecast in forecasts:
        lookup[forecast_key(forecast.platform, forecast.external_txn_id)].append(forecast)

    queued: set[UUID] = set()
    queued_keys: set[str] = set()
    for settlement in settlements:
        key = forecast_key(settlement.platform, settlement.external_txn_id)
        matches = lookup.get(key)
        if not matches:
            result.not_found_in_forecast_count += 1
            continue
        if key in queued_keys:
            # Repeated payout line for a forecast this run already settles
            continue
        pending = [f.id for f in matches if f.status != ForecastStatus.SETTLED]
        if not pending:
            result.already_settled_count += 1
            continue
        queued_keys.add(key)
        queued.update(pending)

    if queued:
        try:
            await db.execute(
                update(UnsettledTransaction)
                .where(UnsettledTransaction.id.in_(queued), UnsettledTransaction.user_id == user_id)
                .values(status=ForecastStatus.SETTLED)
                .execution_options(synchronize_session=False)
            )
            await db.commit()
            result.reconciled_count = len(queued)
        except SQLAlchemyError as exc:
            await db.rollback()
            log_exception(logger, exc, "Failed to update forecast status", batch_id=str(batch_id))
            result.success = False
            result.errors.append(f"Failed to update forecast status: {exc}")

    logger.info(
        "Settlements reconciled",
        batch_id=str(batch_id),
        settlements=len(settlements),
        reconciled_count=result.reconciled_count,
        not_found_in_forecast=result.not_found_in_forecast_count,
        already_settled=result.already_settled_count,
    )
    return result
