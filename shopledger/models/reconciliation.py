"""Bank reconciliation match links."""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, Numeric, Text, Uuid, text
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column

from shopledger.database import Base
from shopledger.models.base import JSONType, TimestampMixin, UserOwnedMixin, UUIDMixin


class MatchEntityType(str, Enum):
    """Internal record type a bank transaction can be paired with."""

    SETTLEMENT = "settlement"
    EXPENSE = "expense"
    WALLET_TOPUP = "wallet_topup"


class MatchedBy(str, Enum):
    AUTO = "auto"
    MANUAL = "manual"


class MatchLink(Base, UUIDMixin, UserOwnedMixin, TimestampMixin):
    """Active 1:1 pairing between a bank transaction and an internal record.

    Unmatching flips ``is_active``; the partial unique indexes only cover
    active links, so a pair can be re-linked after an unmatch.
    """

    __tablename__ = "match_links"
    __table_args__ = (
        Index(
            "uq_match_links_active_bank_txn",
            "bank_transaction_id",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active = 1"),
        ),
        Index(
            "uq_match_links_active_entity",
            "entity_type",
            "entity_id",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active = 1"),
        ),
    )

    bank_transaction_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("bank_transactions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    entity_type: Mapped[MatchEntityType] = mapped_column(
        SQLEnum(MatchEntityType, name="match_entity_type_enum"), nullable=False
    )
    entity_id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    matched_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    match_score: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    matched_by: Mapped[MatchedBy] = mapped_column(
        SQLEnum(MatchedBy, name="matched_by_enum"), nullable=False
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    unmatched_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    match_metadata: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
