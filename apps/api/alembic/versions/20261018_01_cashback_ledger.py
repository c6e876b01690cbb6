"""Create orders, return requests and the cashback ledger tables."""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision: str = "20261018_01"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


payment_status = sa.Enum("pending", "completed", "failed", "refunded", name="order_payment_status_enum")
return_status = sa.Enum("pending", "approved", "rejected", "completed", name="return_request_status_enum")
program_type = sa.Enum("cashback", name="loyalty_program_type")
program_status = sa.Enum("active", "paused", name="loyalty_program_status")
account_status = sa.Enum("active", "suspended", name="loyalty_account_status")
entry_type = sa.Enum("credit", "reversal", name="cashback_ledger_entry_type")


def upgrade() -> None:
    op.create_table(
        "orders",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("company_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("customer_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("order_number", sa.String(), nullable=True, unique=True),
        sa.Column("payment_status", payment_status, nullable=False, server_default="pending"),
        sa.Column("subtotal", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("tax", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("shipping", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("discount", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("total", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_orders_company_id", "orders", ["company_id"])
    op.create_index("ix_orders_customer_id", "orders", ["customer_id"])

    op.create_table(
        "return_requests",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("company_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column(
            "order_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("orders.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("refund_amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("status", return_status, nullable=False, server_default="pending"),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_return_requests_company_id", "return_requests", ["company_id"])

    op.create_table(
        "loyalty_programs",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("company_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("program_type", program_type, nullable=False, server_default="cashback"),
        sa.Column("status", program_status, nullable=False, server_default="active"),
        sa.Column("rules", sa.JSON(), nullable=False),
        sa.Column("created_by", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("company_id", "program_type", name="uq_loyalty_programs_company_type"),
    )
    op.create_index("ix_loyalty_programs_company_id", "loyalty_programs", ["company_id"])

    op.create_table(
        "loyalty_accounts",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("company_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("customer_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column(
            "program_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("loyalty_programs.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("current_points", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("total_earned", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("total_redeemed", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("status", account_status, nullable=False, server_default="active"),
        sa.Column("join_date", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("last_activity", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_points_earned", sa.Numeric(14, 2), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("customer_id", "program_id", name="uq_loyalty_accounts_customer_program"),
        sa.CheckConstraint("current_points >= 0", name="ck_loyalty_accounts_current_points_non_negative"),
        sa.CheckConstraint("total_earned >= 0", name="ck_loyalty_accounts_total_earned_non_negative"),
    )
    op.create_index("ix_loyalty_accounts_company_id", "loyalty_accounts", ["company_id"])

    op.create_table(
        "cashback_ledger_entries",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("company_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("program_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column(
            "account_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("loyalty_accounts.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("customer_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("order_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("return_request_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("entry_type", entry_type, nullable=False),
        sa.Column("amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("requested_amount", sa.Numeric(14, 2), nullable=True),
        sa.Column("ratio", sa.Numeric(9, 6), nullable=True),
        sa.Column("dedupe_key", sa.String(255), nullable=False),
        sa.Column("changed_by", sa.String(255), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("dedupe_key", name="uq_cashback_ledger_entries_dedupe_key"),
    )
    op.create_index("ix_cashback_ledger_entries_company_id", "cashback_ledger_entries", ["company_id"])
    op.create_index("ix_cashback_ledger_entries_order_id", "cashback_ledger_entries", ["order_id"])


def downgrade() -> None:
    op.drop_index("ix_cashback_ledger_entries_order_id", table_name="cashback_ledger_entries")
    op.drop_index("ix_cashback_ledger_entries_company_id", table_name="cashback_ledger_entries")
    op.drop_table("cashback_ledger_entries")
    op.drop_index("ix_loyalty_accounts_company_id", table_name="loyalty_accounts")
    op.drop_table("loyalty_accounts")
    op.drop_index("ix_loyalty_programs_company_id", table_name="loyalty_programs")
    op.drop_table("loyalty_programs")
    op.drop_index("ix_return_requests_company_id", table_name="return_requests")
    op.drop_table("return_requests")
    op.drop_index("ix_orders_customer_id", table_name="orders")
    op.drop_index("ix_orders_company_id", table_name="orders")
    op.drop_table("orders")

    bind = op.get_bind()
    for enum_type in (entry_type, account_status, program_status, program_type, return_status, payment_status):
        enum_type.drop(bind, checkfirst=True)
