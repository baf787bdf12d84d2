"""ledger baseline

Revision ID: 202610010900
Revises:
Create Date: 2026-10-01 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202610010900"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade():
    op.create_table(
        "accounts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("current_balance", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
    )
    op.create_index("ix_accounts_user_sort", "accounts", ["user_id", "sort_order"])

    op.create_table(
        "one_time_transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column(
            "account_id",
            sa.Integer(),
            sa.ForeignKey("accounts.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column(
            "type", sa.Enum("income", "expense", name="transactiontype"), nullable=False
        ),
        sa.Column("transaction_date", sa.Date(), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("transfer_pair_id", sa.String(length=32)),
        *_timestamps(),
        sa.CheckConstraint("amount >= 0", name="ck_one_time_amount_positive"),
    )
    op.create_index(
        "ix_one_time_account_date",
        "one_time_transactions",
        ["account_id", "transaction_date"],
    )
    op.create_index(
        "ix_one_time_user_date", "one_time_transactions", ["user_id", "transaction_date"]
    )
    op.create_index(
        "ix_one_time_transfer_pair", "one_time_transactions", ["transfer_pair_id"]
    )

    op.create_table(
        "recurring_transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column(
            "account_id",
            sa.Integer(),
            sa.ForeignKey("accounts.id", ondelete="CASCADE"),
        ),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("default_amount", sa.Integer(), nullable=False),
        sa.Column(
            "type", sa.Enum("income", "expense", name="transactiontype"), nullable=False
        ),
        sa.Column("day_of_month", sa.Integer(), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("transfer_pair_id", sa.String(length=32)),
        *_timestamps(),
        sa.CheckConstraint("default_amount >= 0", name="ck_recurring_amount_positive"),
        sa.CheckConstraint(
            "day_of_month BETWEEN 1 AND 31", name="ck_recurring_day_of_month"
        ),
    )
    op.create_index(
        "ix_recurring_account_day",
        "recurring_transactions",
        ["account_id", "day_of_month"],
    )

    op.create_table(
        "recurring_transaction_amounts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "recurring_transaction_id",
            sa.Integer(),
            sa.ForeignKey("recurring_transactions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("month", sa.Integer(), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint(
            "recurring_transaction_id", "year", "month", name="uq_recurring_amount_month"
        ),
        sa.CheckConstraint("amount >= 0", name="ck_recurring_override_positive"),
        sa.CheckConstraint("month BETWEEN 1 AND 12", name="ck_recurring_override_month"),
    )

    op.create_table(
        "monthly_account_balances",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column(
            "account_id",
            sa.Integer(),
            sa.ForeignKey("accounts.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("month", sa.Integer(), nullable=False),
        sa.Column("balance", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint(
            "account_id", "year", "month", name="uq_monthly_balance_account_month"
        ),
        sa.CheckConstraint("month BETWEEN 1 AND 12", name="ck_monthly_balance_month"),
    )
    op.create_index(
        "ix_monthly_balance_user_month",
        "monthly_account_balances",
        ["user_id", "year", "month"],
    )

    op.create_table(
        "processed_transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column(
            "account_id",
            sa.Integer(),
            sa.ForeignKey("accounts.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "transaction_kind",
            sa.Enum("one_time", "recurring", name="transactionkind"),
            nullable=False,
        ),
        sa.Column("transaction_id", sa.Integer(), nullable=False),
        sa.Column("year", sa.Integer()),
        sa.Column("month", sa.Integer()),
        *_timestamps(),
        sa.UniqueConstraint(
            "account_id",
            "transaction_kind",
            "transaction_id",
            "year",
            "month",
            name="uq_processed_txn",
        ),
    )


def downgrade():
    op.drop_table("processed_transactions")
    op.drop_index("ix_monthly_balance_user_month", table_name="monthly_account_balances")
    op.drop_table("monthly_account_balances")
    op.drop_table("recurring_transaction_amounts")
    op.drop_index("ix_recurring_account_day", table_name="recurring_transactions")
    op.drop_table("recurring_transactions")
    op.drop_index("ix_one_time_transfer_pair", table_name="one_time_transactions")
    op.drop_index("ix_one_time_user_date", table_name="one_time_transactions")
    op.drop_index("ix_one_time_account_date", table_name="one_time_transactions")
    op.drop_table("one_time_transactions")
    op.drop_index("ix_accounts_user_sort", table_name="accounts")
    op.drop_table("accounts")
