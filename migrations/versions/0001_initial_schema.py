"""Initial schema: import batch ledger, imported record tables, match links."""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "0001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None

# Enum labels are member names, matching SQLAlchemy's default Enum storage
report_kind_enum = sa.Enum(
    "BANK_STATEMENT",
    "SETTLEMENT",
    "FORECAST",
    "EXPENSE",
    "WALLET",
    "ADS",
    name="report_kind_enum",
)
import_batch_status_enum = sa.Enum(
    "PENDING",
    "PROCESSING",
    "COMPLETED",
    "FAILED",
    "REPLACED",
    "ROLLED_BACK",
    name="import_batch_status_enum",
)
import_mode_enum = sa.Enum("APPEND", "REPLACE_RANGE", "REPLACE_ALL", name="import_mode_enum")
forecast_status_enum = sa.Enum("UNSETTLED", "SETTLED", name="forecast_status_enum")
wallet_entry_type_enum = sa.Enum("TOP_UP", "SPEND", "REFUND", "ADJUSTMENT", name="wallet_entry_type_enum")
match_entity_type_enum = sa.Enum("SETTLEMENT", "EXPENSE", "WALLET_TOPUP", name="match_entity_type_enum")
matched_by_enum = sa.Enum("AUTO", "MANUAL", name="matched_by_enum")


def _record_columns() -> list[sa.Column]:
    return [
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("content_hash", sa.String(length=64), nullable=False),
        sa.Column(
            "import_batch_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("import_batches.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def _record_indexes(table: str) -> None:
    op.create_unique_constraint(f"uq_{table}_user_content_hash", table, ["user_id", "content_hash"])
    op.create_index(f"ix_{table}_user_id", table, ["user_id"])
    op.create_index(f"ix_{table}_import_batch_id", table, ["import_batch_id"])


def upgrade() -> None:
    op.create_table(
        "import_batches",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("file_hash", sa.String(length=64), nullable=False),
        sa.Column("report_kind", report_kind_enum, nullable=False),
        sa.Column("scope_key", sa.String(length=100), nullable=False, server_default=""),
        sa.Column("file_name", sa.String(length=255), nullable=True),
        sa.Column("row_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("inserted_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("skipped_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("error_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("deleted_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("status", import_batch_status_enum, nullable=False),
        sa.Column("import_mode", import_mode_enum, nullable=False),
        sa.Column("date_min", sa.Date(), nullable=True),
        sa.Column("date_max", sa.Date(), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("batch_metadata", postgresql.JSONB(), nullable=False, server_default="{}"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_import_batches_user_id", "import_batches", ["user_id"])
    op.create_index(
        "ix_import_batches_fingerprint",
        "import_batches",
        ["user_id", "file_hash", "report_kind", "scope_key"],
    )
    op.create_index("ix_import_batches_status_started", "import_batches", ["status", "started_at"])

    op.create_table(
        "bank_transactions",
        *_record_columns(),
        sa.Column("bank_account_id", sa.String(length=100), nullable=False),
        sa.Column("txn_date", sa.Date(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("reference", sa.String(length=100), nullable=True),
        sa.Column("balance", sa.Numeric(18, 2), nullable=True),
    )
    _record_indexes("bank_transactions")
    op.create_index(
        "ix_bank_transactions_account_date",
        "bank_transactions",
        ["user_id", "bank_account_id", "txn_date"],
    )

    op.create_table(
        "settlement_transactions",
        *_record_columns(),
        sa.Column("platform", sa.String(length=50), nullable=False),
        sa.Column("external_txn_id", sa.String(length=100), nullable=False),
        sa.Column("settled_on", sa.Date(), nullable=False),
        sa.Column("amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
    )
    _record_indexes("settlement_transactions")
    op.create_index("ix_settlement_transactions_date", "settlement_transactions", ["user_id", "settled_on"])
    op.create_index(
        "ix_settlement_transactions_txn",
        "settlement_transactions",
        ["user_id", "platform", "external_txn_id"],
    )

    op.create_table(
        "unsettled_transactions",
        *_record_columns(),
        sa.Column("platform", sa.String(length=50), nullable=False),
        sa.Column("external_txn_id", sa.String(length=100), nullable=False),
        sa.Column("expected_settle_on", sa.Date(), nullable=False),
        sa.Column("amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("status", forecast_status_enum, nullable=False),
    )
    _record_indexes("unsettled_transactions")
    op.create_index(
        "ix_unsettled_transactions_txn",
        "unsettled_transactions",
        ["user_id", "platform", "external_txn_id"],
    )

    op.create_table(
        "expenses",
        *_record_columns(),
        sa.Column("expense_date", sa.Date(), nullable=False),
        sa.Column("category", sa.String(length=50), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("amount", sa.Numeric(18, 2), nullable=False),
    )
    _record_indexes("expenses")
    op.create_index("ix_expenses_date", "expenses", ["user_id", "expense_date"])

    op.create_table(
        "wallet_ledger",
        *_record_columns(),
        sa.Column("wallet_id", sa.String(length=100), nullable=False),
        sa.Column("entry_date", sa.Date(), nullable=False),
        sa.Column("entry_type", wallet_entry_type_enum, nullable=False),
        sa.Column("amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("reference", sa.String(length=100), nullable=True),
        sa.Column("note", sa.Text(), nullable=True),
    )
    _record_indexes("wallet_ledger")
    op.create_index("ix_wallet_ledger_wallet_date", "wallet_ledger", ["user_id", "wallet_id", "entry_date"])

    op.create_table(
        "ad_daily_performance",
        *_record_columns(),
        sa.Column("platform", sa.String(length=50), nullable=False),
        sa.Column("campaign_id", sa.String(length=100), nullable=False),
        sa.Column("campaign_name", sa.String(length=255), nullable=True),
        sa.Column("ad_date", sa.Date(), nullable=False),
        sa.Column("spend", sa.Numeric(18, 2), nullable=False),
        sa.Column("orders", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("revenue", sa.Numeric(18, 2), nullable=False, server_default="0"),
    )
    _record_indexes("ad_daily_performance")
    op.create_index(
        "ix_ad_daily_performance_date",
        "ad_daily_performance",
        ["user_id", "platform", "ad_date"],
    )

    op.create_table(
        "match_links",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column(
            "bank_transaction_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("bank_transactions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("entity_type", match_entity_type_enum, nullable=False),
        sa.Column("entity_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("matched_amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("match_score", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("matched_by", matched_by_enum, nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("unmatched_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("match_metadata", postgresql.JSONB(), nullable=False, server_default="{}"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_match_links_user_id", "match_links", ["user_id"])
    op.create_index("ix_match_links_bank_transaction_id", "match_links", ["bank_transaction_id"])
    op.create_index(
        "uq_match_links_active_bank_txn",
        "match_links",
        ["bank_transaction_id"],
        unique=True,
        postgresql_where=sa.text("is_active"),
    )
    op.create_index(
        "uq_match_links_active_entity",
        "match_links",
        ["entity_type", "entity_id"],
        unique=True,
        postgresql_where=sa.text("is_active"),
    )


def downgrade() -> None:
    op.drop_table("match_links")
    op.drop_table("ad_daily_performance")
    op.drop_table("wallet_ledger")
    op.drop_table("expenses")
    op.drop_table("unsettled_transactions")
    op.drop_table("settlement_transactions")
    op.drop_table("bank_transactions")
    op.drop_table("import_batches")

    for enum_name in (
        "matched_by_enum",
        "match_entity_type_enum",
        "wallet_entry_type_enum",
        "forecast_status_enum",
        "import_mode_enum",
        "import_batch_status_enum",
        "report_kind_enum",
    ):
        op.execute(f"DROP TYPE IF EXISTS {enum_name}")
