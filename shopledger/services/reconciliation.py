"""Bank reconciliation matching engine."""

from __future__ import annotations

import os
import re
from collections import Counter
from dataclasses import dataclass, replace
from datetime import date, timedelta
from decimal import Decimal
from difflib import SequenceMatcher
from pathlib import Path
from typing import Any
from uuid import UUID

import yaml
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from shopledger.config import settings
from shopledger.logger import get_logger, log_exception, log_timing
from shopledger.models import (
    BankTransaction,
    Expense,
    MatchedBy,
    MatchEntityType,
    MatchLink,
    SettlementTransaction,
    WalletEntryType,
    WalletLedgerEntry,
)
from shopledger.models.base import utcnow
from shopledger.schemas.reconciliation import (
    AutoMatchDetails,
    AutoMatchResult,
    MatchLinkResponse,
    MatchOutcome,
    MatchSuggestion,
    ReconciliationSummary,
    SuggestionResult,
)
from shopledger.services.errors import (
    AlreadyMatchedError,
    BankTransactionNotFoundError,
    DirectionMismatchError,
    InvalidMatchAmountError,
    MatchErrorCode,
    MatchNotFoundError,
    MatchTargetNotFoundError,
    ReconciliationError,
)

logger = get_logger(__name__)

CENT = Decimal("0.01")
EXACT_SCORE = 100
MAX_INEXACT_SCORE = 99


@dataclass(frozen=True)
class MatchScoringConfig:
    """Tunable weights for suggested-match ranking."""

    weight_amount: Decimal
    weight_date: Decimal
    weight_description: Decimal
    amount_percent: Decimal
    amount_absolute: Decimal
    date_days: int


DEFAULT_SCORING_CONFIG = MatchScoringConfig(
    weight_amount=Decimal("0.55"),
    weight_date=Decimal("0.30"),
    weight_description=Decimal("0.15"),
    amount_percent=Decimal("0.005"),
    amount_absolute=Decimal("0.10"),
    date_days=7,
)

_config_cache: MatchScoringConfig | None = None


def _config_path() -> Path:
    if settings.reconciliation_config_path:
        return Path(settings.reconciliation_config_path)
    return Path(__file__).resolve().parents[2] / "config" / "reconciliation.yaml"


def load_scoring_config(force_reload: bool = False) -> MatchScoringConfig:
    """Load scoring weights from YAML if available.

    Caches the result to avoid repeated disk I/O.
    """
    global _config_cache
    if _config_cache is not None and not force_reload:
        return _config_cache

    config = DEFAULT_SCORING_CONFIG
    config_path = _config_path()

    if config_path.exists():
        try:
            raw = yaml.safe_load(config_path.read_text()) or {}
            scoring = raw.get("scoring", {})
            weights = scoring.get("weights", {})
            tolerances = scoring.get("tolerances", {})

            config = MatchScoringConfig(
                weight_amount=Decimal(str(weights.get("amount", config.weight_amount))),
                weight_date=Decimal(str(weights.get("date", config.weight_date))),
                weight_description=Decimal(str(weights.get("description", config.weight_description))),
                amount_percent=Decimal(str(tolerances.get("amount_percent", config.amount_percent))),
                amount_absolute=Decimal(str(tolerances.get("amount_absolute", config.amount_absolute))),
                date_days=int(tolerances.get("date_days", config.date_days)),
            )
        except (OSError, yaml.YAMLError, ArithmeticError, ValueError, AttributeError) as e:
            logger.warning(
                "Failed to load reconciliation config - using defaults",
                config_path=str(config_path),
                error=str(e),
                error_type=type(e).__name__,
            )

    date_days_env = os.getenv("RECONCILIATION_DATE_DAYS")
    if date_days_env:
        config = replace(config, date_days=int(date_days_env))

    _config_cache = config
    return config


# =============================================================================
# Scoring
# =============================================================================


def is_exact_amount(a: Decimal, b: Decimal) -> bool:
    return abs(a - b) < CENT


def normalize_text(value: str) -> str:
    """Normalize text for similarity comparison."""
    cleaned = re.sub(r"[^a-z0-9]+", " ", value.lower()).strip()
    return re.sub(r"\s+", " ", cleaned)


def score_description(a: str | None, b: str | None) -> float:
    """Score description similarity (0-100)."""
    if not a or not b:
        return 0.0
    norm_a = normalize_text(a)
    norm_b = normalize_text(b)
    if not norm_a or not norm_b:
        return 0.0
    ratio = SequenceMatcher(None, norm_a, norm_b).ratio()
    tokens_a = set(norm_a.split())
    tokens_b = set(norm_b.split())
    token_score = len(tokens_a & tokens_b) / len(tokens_a | tokens_b) if tokens_a | tokens_b else 0
    return round(100 * (0.6 * ratio + 0.4 * token_score), 2)


def score_amount(bank_amount: Decimal, candidate_amount: Decimal, config: MatchScoringConfig) -> float:
    """Score amount closeness (0-100). Both amounts are magnitudes."""
    if is_exact_amount(bank_amount, candidate_amount):
        return 100.0

    diff = abs(bank_amount - candidate_amount)
    tolerance = max(bank_amount * config.amount_percent, config.amount_absolute)
    if diff <= tolerance:
        return 90.0
    if diff <= Decimal("5.00"):
        return 70.0
    if bank_amount == Decimal("0"):
        return 0.0

    ratio = max(Decimal("0"), Decimal("100") - (diff / bank_amount) * Decimal("100"))
    return float(round(ratio, 2))


def score_date(bank_date: date, candidate_date: date, config: MatchScoringConfig) -> float:
    """Score date proximity (0-100)."""
    diff_days = abs((bank_date - candidate_date).days)
    if diff_days == 0:
        return 100.0
    if diff_days <= 3:
        return 90.0
    if diff_days <= config.date_days:
        return 70.0
    return float(max(0, 100 - diff_days * 10))


def score_candidate(
    bank_amount: Decimal,
    bank_date: date,
    bank_description: str | None,
    candidate: Candidate,
    config: MatchScoringConfig,
) -> tuple[int, dict[str, float]]:
    """Weighted score; only exact amount on the same day reaches 100."""
    breakdown = {
        "amount": score_amount(bank_amount, candidate.amount, config),
        "date": score_date(bank_date, candidate.record_date, config),
        "description": score_description(bank_description, candidate.description),
    }
    if is_exact_amount(bank_amount, candidate.amount) and bank_date == candidate.record_date:
        return EXACT_SCORE, breakdown

    total = (
        Decimal(str(breakdown["amount"])) * config.weight_amount
        + Decimal(str(breakdown["date"])) * config.weight_date
        + Decimal(str(breakdown["description"])) * config.weight_description
    )
    return min(int(total.to_integral_value()), MAX_INEXACT_SCORE), breakdown


def score_label(score: int) -> str:
    if score >= EXACT_SCORE:
        return "Exact Match"
    if score >= 85:
        return "Strong Match"
    if score >= 60:
        return "Possible Match"
    return "Weak Match"


# =============================================================================
# Candidate loading
# =============================================================================


@dataclass(frozen=True)
class Candidate:
    entity_type: MatchEntityType
    entity_id: UUID
    record_date: date
    amount: Decimal
    description: str

    @property
    def key(self) -> tuple[MatchEntityType, UUID]:
        return (self.entity_type, self.entity_id)


@dataclass(frozen=True)
class BankRow:
    id: UUID
    txn_date: date
    amount: Decimal
    description: str

    @property
    def magnitude(self) -> Decimal:
        return abs(self.amount)


def _unlinked(entity_type: MatchEntityType, entity_id_column: Any) -> Any:
    return ~(
        select(MatchLink.id)
        .where(
            MatchLink.entity_type == entity_type,
            MatchLink.entity_id == entity_id_column,
            MatchLink.is_active.is_(True),
        )
        .exists()
    )


async def load_candidates(
    db: AsyncSession,
    user_id: UUID,
    *,
    inflow: bool,
    date_from: date,
    date_to: date,
) -> list[Candidate]:
    """Unmatched internal records whose direction fits the bank row.

    Deposits pair with settlements; withdrawals with expenses and wallet top-ups.
    """
    candidates: list[Candidate] = []
    if inflow:
        rows = await db.execute(
            select(
                SettlementTransaction.id,
                SettlementTransaction.settled_on,
                SettlementTransaction.amount,
                SettlementTransaction.platform,
                SettlementTransaction.external_txn_id,
                SettlementTransaction.description,
            ).where(
                SettlementTransaction.user_id == user_id,
                SettlementTransaction.settled_on.between(date_from, date_to),
                _unlinked(MatchEntityType.SETTLEMENT, SettlementTransaction.id),
            )
        )
        for row in rows:
            candidates.append(
                Candidate(
                    MatchEntityType.SETTLEMENT,
                    row.id,
                    row.settled_on,
                    Decimal(row.amount),
                    row.description or f"{row.platform} settlement {row.external_txn_id}",
                )
            )
        return candidates

    rows = await db.execute(
        select(Expense.id, Expense.expense_date, Expense.amount, Expense.category, Expense.description).where(
            Expense.user_id == user_id,
            Expense.expense_date.between(date_from, date_to),
            _unlinked(MatchEntityType.EXPENSE, Expense.id),
        )
    )
    for row in rows:
        label = f"{row.category}: {row.description}" if row.description else row.category
        candidates.append(Candidate(MatchEntityType.EXPENSE, row.id, row.expense_date, Decimal(row.amount), label))

    rows = await db.execute(
        select(
            WalletLedgerEntry.id,
            WalletLedgerEntry.entry_date,
            WalletLedgerEntry.amount,
            WalletLedgerEntry.wallet_id,
            WalletLedgerEntry.note,
        ).where(
            WalletLedgerEntry.user_id == user_id,
            WalletLedgerEntry.entry_type == WalletEntryType.TOP_UP,
            WalletLedgerEntry.entry_date.between(date_from, date_to),
            _unlinked(MatchEntityType.WALLET_TOPUP, WalletLedgerEntry.id),
        )
    )
    for row in rows:
        candidates.append(
            Candidate(
                MatchEntityType.WALLET_TOPUP,
                row.id,
                row.entry_date,
                Decimal(row.amount),
                row.note or f"Wallet top-up {row.wallet_id}",
            )
        )
    return candidates


_ENTITY_MODELS = {
    MatchEntityType.SETTLEMENT: SettlementTransaction,
    MatchEntityType.EXPENSE: Expense,
    MatchEntityType.WALLET_TOPUP: WalletLedgerEntry,
}


# =============================================================================
# Matcher
# =============================================================================


class ReconciliationMatcher:
    """Pairs bank rows with internal records, one active link per side."""

    def __init__(self, config: MatchScoringConfig | None = None):
        self.config = config or load_scoring_config()

    async def _active_bank_link(self, db: AsyncSession, bank_transaction_id: UUID) -> MatchLink | None:
        result = await db.execute(
            select(MatchLink).where(
                MatchLink.bank_transaction_id == bank_transaction_id,
                MatchLink.is_active.is_(True),
            )
        )
        return result.scalar_one_or_none()

    async def _active_entity_link(
        self, db: AsyncSession, entity_type: MatchEntityType, entity_id: UUID
    ) -> MatchLink | None:
        result = await db.execute(
            select(MatchLink).where(
                MatchLink.entity_type == entity_type,
                MatchLink.entity_id == entity_id,
                MatchLink.is_active.is_(True),
            )
        )
        return result.scalar_one_or_none()

    async def _get_bank_row(self, db: AsyncSession, user_id: UUID, bank_transaction_id: UUID) -> BankRow:
        result = await db.execute(
            select(BankTransaction).where(
                BankTransaction.id == bank_transaction_id,
                BankTransaction.user_id == user_id,
            )
        )
        txn = result.scalar_one_or_none()
        if txn is None:
            raise BankTransactionNotFoundError("Bank transaction not found")
        return BankRow(txn.id, txn.txn_date, txn.amount, txn.description)

    # -------------------------------------------------------------------------
    # autoMatch
    # -------------------------------------------------------------------------

    async def auto_match(
        self,
        db: AsyncSession,
        user_id: UUID,
        date_from: date,
        date_to: date,
    ) -> AutoMatchResult:
        """Create links for bank rows with exactly one exact-amount candidate.

        A row is left unmatched when it has several candidates, or when its
        only candidate is also the only plausible pairing for another row in
        the same run. Ties are never broken heuristically.
        """
        result = AutoMatchResult()
        details = result.details
        tolerance = settings.auto_match_date_tolerance_days

        try:
            bank_rows = await self._load_bank_rows(db, user_id, date_from, date_to)
            linked = await self._linked_bank_ids(db, user_id, [row.id for row in bank_rows])
            pools = {
                True: await load_candidates(db, user_id, inflow=True, date_from=date_from, date_to=date_to),
                False: await load_candidates(db, user_id, inflow=False, date_from=date_from, date_to=date_to),
            }
        except SQLAlchemyError as exc:
            await db.rollback()
            log_exception(logger, exc, "Auto-match could not load data", user_id=str(user_id))
            return AutoMatchResult(success=False, error_code=MatchErrorCode.STORE_ERROR, error=str(exc))

        result.total_bank_transactions = len(bank_rows)
        proposals: dict[UUID, list[Candidate]] = {}
        with log_timing("auto_match_candidates", logger=logger, bank_rows=len(bank_rows)):
            for row in bank_rows:
                if row.id in linked:
                    details.already_matched += 1
                    continue
                if row.amount == 0:
                    details.no_candidate += 1
                    continue
                proposals[row.id] = [
                    candidate
                    for candidate in pools[row.amount > 0]
                    if is_exact_amount(candidate.amount, row.magnitude)
                    and abs((candidate.record_date - row.txn_date).days) <= tolerance
                ]

        claims = Counter(candidate.key for options in proposals.values() for candidate in options)
        rows_by_id = {row.id: row for row in bank_rows}

        for bank_id, options in proposals.items():
            if not options:
                details.no_candidate += 1
                continue
            if len(options) > 1 or claims[options[0].key] > 1:
                details.multiple_candidates += 1
                logger.debug(
                    "Ambiguous auto-match deferred",
                    bank_transaction_id=str(bank_id),
                    candidates=len(options),
                )
                continue

            candidate = options[0]
            row = rows_by_id[bank_id]
            score = EXACT_SCORE
            if candidate.record_date != row.txn_date:
                # Only reachable with a widened date tolerance
                score, _ = score_candidate(row.magnitude, row.txn_date, row.description, candidate, self.config)
            link = MatchLink(
                user_id=user_id,
                bank_transaction_id=bank_id,
                entity_type=candidate.entity_type,
                entity_id=candidate.entity_id,
                matched_amount=candidate.amount,
                match_score=score,
                matched_by=MatchedBy.AUTO,
                notes="Auto-matched (exact)",
                match_metadata={
                    "matching_rule": "auto_exact",
                    "bank_date": row.txn_date.isoformat(),
                    "entity_date": candidate.record_date.isoformat(),
                },
            )
            db.add(link)
            try:
                await db.commit()
            except IntegrityError as exc:
                # Lost a race against a concurrent match of either side
                await db.rollback()
                details.not_exact += 1
                logger.warning(
                    "Auto-match link rejected by store",
                    bank_transaction_id=str(bank_id),
                    entity_id=str(candidate.entity_id),
                    error=str(exc.orig),
                    error_type=type(exc).__name__,
                )
                continue
            except SQLAlchemyError as exc:
                await self._store_failed(
                    db, exc, "Auto-match link could not be saved", bank_transaction_id=str(bank_id)
                )
                result.success = False
                result.error_code = MatchErrorCode.STORE_ERROR
                result.error = f"Auto-match stopped after {result.matched_count} links: {exc}"
                break
            result.matched_count += 1

        result.skipped_count = result.total_bank_transactions - result.matched_count - details.already_matched
        logger.info(
            "Auto-match completed",
            user_id=str(user_id),
            date_from=date_from.isoformat(),
            date_to=date_to.isoformat(),
            matched_count=result.matched_count,
            skipped_count=result.skipped_count,
            **details.model_dump(),
        )
        return result

    async def _load_bank_rows(
        self, db: AsyncSession, user_id: UUID, date_from: date, date_to: date
    ) -> list[BankRow]:
        rows = await db.execute(
            select(
                BankTransaction.id,
                BankTransaction.txn_date,
                BankTransaction.amount,
                BankTransaction.description,
            )
            .where(
                BankTransaction.user_id == user_id,
                BankTransaction.txn_date.between(date_from, date_to),
            )
            .order_by(BankTransaction.txn_date, BankTransaction.id)
        )
        return [BankRow(row.id, row.txn_date, Decimal(row.amount), row.description) for row in rows]

    async def _linked_bank_ids(self, db: AsyncSession, user_id: UUID, bank_ids: list[UUID]) -> set[UUID]:
        if not bank_ids:
            return set()
        rows = await db.execute(
            select(MatchLink.bank_transaction_id).where(
                MatchLink.user_id == user_id,
                MatchLink.is_active.is_(True),
                MatchLink.bank_transaction_id.in_(bank_ids),
            )
        )
        return set(rows.scalars().all())

    # -------------------------------------------------------------------------
    # suggest
    # -------------------------------------------------------------------------

    async def suggest(
        self,
        db: AsyncSession,
        user_id: UUID,
        bank_transaction_id: UUID,
        limit: int = 20,
    ) -> SuggestionResult:
        """Rank unmatched internal records for a human to confirm."""
        try:
            row = await self._get_bank_row(db, user_id, bank_transaction_id)
            if await self._active_bank_link(db, bank_transaction_id) is not None:
                raise AlreadyMatchedError("bank", "Transaction already matched")
            if row.amount == 0:
                return SuggestionResult(success=True, bank_transaction_id=bank_transaction_id)

            window = timedelta(days=settings.suggestion_window_days)
            candidates = await load_candidates(
                db,
                user_id,
                inflow=row.amount > 0,
                date_from=row.txn_date - window,
                date_to=row.txn_date + window,
            )
        except ReconciliationError as exc:
            return SuggestionResult(
                success=False,
                bank_transaction_id=bank_transaction_id,
                error_code=exc.code,
                error=str(exc),
            )
        except SQLAlchemyError as exc:
            await self._store_failed(
                db, exc, "Match suggestions could not be loaded", bank_transaction_id=str(bank_transaction_id)
            )
            return SuggestionResult(
                success=False,
                bank_transaction_id=bank_transaction_id,
                error_code=MatchErrorCode.STORE_ERROR,
                error="Match suggestions could not be loaded",
            )

        suggestions = []
        for candidate in candidates:
            score, breakdown = score_candidate(row.magnitude, row.txn_date, row.description, candidate, self.config)
            suggestions.append(
                MatchSuggestion(
                    entity_type=candidate.entity_type,
                    entity_id=candidate.entity_id,
                    record_date=candidate.record_date,
                    amount=candidate.amount,
                    description=candidate.description,
                    score=score,
                    label=score_label(score),
                    breakdown=breakdown,
                )
            )
        suggestions.sort(key=lambda s: (s.score, s.record_date), reverse=True)

        logger.info(
            "Match suggestions ranked",
            bank_transaction_id=str(bank_transaction_id),
            candidates=len(suggestions),
            top_score=suggestions[0].score if suggestions else None,
        )
        return SuggestionResult(
            success=True,
            bank_transaction_id=bank_transaction_id,
            suggestions=suggestions[:limit],
        )

    # -------------------------------------------------------------------------
    # createManualMatch / unmatch
    # -------------------------------------------------------------------------

    async def create_manual_match(
        self,
        db: AsyncSession,
        user_id: UUID,
        bank_transaction_id: UUID,
        entity_type: MatchEntityType,
        entity_id: UUID,
        amount: Decimal | None = None,
        notes: str | None = None,
    ) -> MatchOutcome:
        """Link a bank row to an internal record after human confirmation."""
        try:
            link = await self._create_manual_match(
                db, user_id, bank_transaction_id, entity_type, entity_id, amount, notes
            )
        except ReconciliationError as exc:
            logger.info(
                "Manual match rejected",
                bank_transaction_id=str(bank_transaction_id),
                entity_type=entity_type.value,
                entity_id=str(entity_id),
                error_code=exc.code.value,
            )
            return MatchOutcome(success=False, error_code=exc.code, error=str(exc))
        except IntegrityError as exc:
            await db.rollback()
            logger.warning(
                "Manual match lost a concurrent race",
                bank_transaction_id=str(bank_transaction_id),
                error=str(exc.orig),
                error_type=type(exc).__name__,
            )
            return MatchOutcome(
                success=False,
                error_code=MatchErrorCode.BANK_ALREADY_MATCHED,
                error="Transaction or record was matched concurrently",
            )
        except SQLAlchemyError as exc:
            await self._store_failed(
                db, exc, "Manual match could not be saved", bank_transaction_id=str(bank_transaction_id)
            )
            return MatchOutcome(
                success=False,
                error_code=MatchErrorCode.STORE_ERROR,
                error="Match could not be saved",
            )

        logger.info(
            "Manual match created",
            match_id=str(link.id),
            bank_transaction_id=str(bank_transaction_id),
            entity_type=entity_type.value,
            entity_id=str(entity_id),
            match_score=link.match_score,
        )
        return MatchOutcome(success=True, link=MatchLinkResponse.model_validate(link))

    async def _create_manual_match(
        self,
        db: AsyncSession,
        user_id: UUID,
        bank_transaction_id: UUID,
        entity_type: MatchEntityType,
        entity_id: UUID,
        amount: Decimal | None,
        notes: str | None,
    ) -> MatchLink:
        row = await self._get_bank_row(db, user_id, bank_transaction_id)
        if await self._active_bank_link(db, bank_transaction_id) is not None:
            raise AlreadyMatchedError("bank", "Transaction already matched")

        candidate = await self._load_entity(db, user_id, entity_type, entity_id)
        if await self._active_entity_link(db, entity_type, entity_id) is not None:
            label = entity_type.value.replace("_", " ").capitalize()
            raise AlreadyMatchedError("entity", f"{label} already matched")

        inflow = entity_type == MatchEntityType.SETTLEMENT
        if row.amount == 0 or (row.amount > 0) != inflow:
            direction = "deposit" if inflow else "withdrawal"
            raise DirectionMismatchError(f"A {entity_type.value} can only be matched to a {direction}")

        matched_amount = amount if amount is not None else row.magnitude
        if matched_amount <= 0:
            raise InvalidMatchAmountError("Matched amount must be greater than zero")

        score, breakdown = score_candidate(row.magnitude, row.txn_date, row.description, candidate, self.config)
        link = MatchLink(
            user_id=user_id,
            bank_transaction_id=bank_transaction_id,
            entity_type=entity_type,
            entity_id=entity_id,
            matched_amount=matched_amount.quantize(CENT),
            match_score=score,
            matched_by=MatchedBy.MANUAL,
            notes=notes,
            match_metadata={"matching_rule": "manual", "score_breakdown": breakdown},
        )
        db.add(link)
        await db.commit()
        return link

    async def _load_entity(
        self,
        db: AsyncSession,
        user_id: UUID,
        entity_type: MatchEntityType,
        entity_id: UUID,
    ) -> Candidate:
        model = _ENTITY_MODELS[entity_type]
        filters = [model.id == entity_id, model.user_id == user_id]
        if entity_type == MatchEntityType.WALLET_TOPUP:
            filters.append(WalletLedgerEntry.entry_type == WalletEntryType.TOP_UP)
        record = (await db.execute(select(model).where(*filters))).scalar_one_or_none()
        if record is None:
            raise MatchTargetNotFoundError(entity_type)

        if isinstance(record, SettlementTransaction):
            return Candidate(entity_type, record.id, record.settled_on, record.amount, record.description or "")
        if isinstance(record, Expense):
            return Candidate(entity_type, record.id, record.expense_date, record.amount, record.description or "")
        return Candidate(entity_type, record.id, record.entry_date, record.amount, record.note or "")

    async def unmatch(self, db: AsyncSession, user_id: UUID, match_id: UUID) -> MatchOutcome:
        """Deactivate a link; both sides become matchable again."""
        try:
            result = await db.execute(
                select(MatchLink).where(
                    MatchLink.id == match_id,
                    MatchLink.user_id == user_id,
                    MatchLink.is_active.is_(True),
                )
            )
            link = result.scalar_one_or_none()
            if link is None:
                raise MatchNotFoundError("Match not found")

            link.is_active = False
            link.unmatched_at = utcnow()
            await db.commit()
        except MatchNotFoundError as exc:
            return MatchOutcome(success=False, error_code=exc.code, error=str(exc))
        except SQLAlchemyError as exc:
            await self._store_failed(db, exc, "Match could not be removed", match_id=str(match_id))
            return MatchOutcome(
                success=False,
                error_code=MatchErrorCode.STORE_ERROR,
                error="Match could not be removed",
            )
        logger.info("Match removed", match_id=str(match_id), bank_transaction_id=str(link.bank_transaction_id))
        return MatchOutcome(success=True, link=MatchLinkResponse.model_validate(link))

    # -------------------------------------------------------------------------
    # Summary
    # -------------------------------------------------------------------------

    async def summarize(
        self,
        db: AsyncSession,
        user_id: UUID,
        date_from: date,
        date_to: date,
    ) -> ReconciliationSummary:
        """Bank totals against internal totals for a period, with the gap."""
        try:
            return await self._summarize(db, user_id, date_from, date_to)
        except SQLAlchemyError as exc:
            await self._store_failed(db, exc, "Reconciliation summary failed", user_id=str(user_id))
            return ReconciliationSummary(
                success=False,
                date_from=date_from,
                date_to=date_to,
                error_code=MatchErrorCode.STORE_ERROR,
                error="Reconciliation summary could not be computed",
            )

    async def _summarize(
        self,
        db: AsyncSession,
        user_id: UUID,
        date_from: date,
        date_to: date,
    ) -> ReconciliationSummary:
        bank_rows = await self._load_bank_rows(db, user_id, date_from, date_to)
        linked = await self._linked_bank_ids(db, user_id, [row.id for row in bank_rows])

        inflow = sum((row.amount for row in bank_rows if row.amount > 0), Decimal("0"))
        outflow = sum((-row.amount for row in bank_rows if row.amount < 0), Decimal("0"))
        matched = [row for row in bank_rows if row.id in linked]
        unmatched = [row for row in bank_rows if row.id not in linked]

        settlement_total = await self._sum(
            db,
            SettlementTransaction.amount,
            SettlementTransaction.user_id == user_id,
            SettlementTransaction.settled_on.between(date_from, date_to),
        )
        expense_total = await self._sum(
            db,
            Expense.amount,
            Expense.user_id == user_id,
            Expense.expense_date.between(date_from, date_to),
        )
        topup_total = await self._sum(
            db,
            WalletLedgerEntry.amount,
            WalletLedgerEntry.user_id == user_id,
            WalletLedgerEntry.entry_type == WalletEntryType.TOP_UP,
            WalletLedgerEntry.entry_date.between(date_from, date_to),
        )

        bank_net = inflow - outflow
        internal_net = settlement_total - expense_total - topup_total
        return ReconciliationSummary(
            date_from=date_from,
            date_to=date_to,
            bank_inflow=inflow,
            bank_outflow=outflow,
            bank_net=bank_net,
            settlement_total=settlement_total,
            expense_total=expense_total,
            wallet_topup_total=topup_total,
            internal_net=internal_net,
            matched_count=len(matched),
            matched_amount=sum((row.magnitude for row in matched), Decimal("0")),
            unmatched_count=len(unmatched),
            unmatched_amount=sum((row.magnitude for row in unmatched), Decimal("0")),
            gap=bank_net - internal_net,
        )

    @staticmethod
    async def _store_failed(db: AsyncSession, exc: SQLAlchemyError, context: str, **extra: Any) -> None:
        await db.rollback()
        log_exception(logger, exc, context, **extra)

    @staticmethod
    async def _sum(db: AsyncSession, column: Any, *filters: Any) -> Decimal:
        value = await db.scalar(select(func.coalesce(func.sum(column), 0)).where(*filters))
        return Decimal(str(value)).quantize(CENT)
