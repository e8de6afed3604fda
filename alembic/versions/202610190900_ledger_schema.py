"""ledger schema

Revision ID: 202610190900
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202610190900"
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
        sa.Column("owner_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=64), nullable=False),
        sa.Column("balance", sa.Float(), nullable=False, server_default="0"),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="INR"),
        sa.Column("is_default", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
        sa.UniqueConstraint("owner_id", "name", name="uq_account_owner_name"),
        sa.CheckConstraint("length(currency) = 3", name="ck_account_currency_len"),
    )
    op.create_index("ix_accounts_owner", "accounts", ["owner_id"])

    op.create_table(
        "user_accounts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column(
            "account_id", sa.Integer(), sa.ForeignKey("accounts.id"), nullable=False
        ),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "account_id", name="uq_user_account"),
    )

    op.create_table(
        "categories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("owner_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=64), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("owner_id", "name", name="uq_category_owner_name"),
    )

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "account_id", sa.Integer(), sa.ForeignKey("accounts.id"), nullable=False
        ),
        sa.Column("owner_id", sa.Integer(), nullable=False),
        sa.Column("created_by", sa.Integer(), nullable=False),
        sa.Column("updated_by", sa.Integer()),
        sa.Column("text", sa.String(length=255), nullable=False),
        sa.Column("amount", sa.Float(), nullable=False),
        sa.Column("is_income", sa.Boolean(), nullable=False),
        sa.Column(
            "category_id",
            sa.Integer(),
            sa.ForeignKey("categories.id", ondelete="SET NULL"),
        ),
        sa.Column("transfer", sa.String(length=64)),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="INR"),
        sa.Column("recurring", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column(
            "recurrence_type",
            sa.Enum("daily", "weekly", "monthly", "yearly", name="recurrencetype"),
        ),
        sa.Column("recurrence_end_date", sa.DateTime()),
        *_timestamps(),
        sa.CheckConstraint("amount >= 0", name="ck_transactions_amount_positive"),
    )
    op.create_index(
        "ix_transactions_owner_created", "transactions", ["owner_id", "created_at"]
    )
    op.create_index(
        "ix_transactions_account_created", "transactions", ["account_id", "created_at"]
    )

    op.create_table(
        "analytics",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "account_id",
            sa.Integer(),
            sa.ForeignKey("accounts.id"),
            nullable=False,
            unique=True,
        ),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("income", sa.Float(), nullable=False, server_default="0"),
        sa.Column("expense", sa.Float(), nullable=False, server_default="0"),
        sa.Column("balance", sa.Float(), nullable=False, server_default="0"),
        sa.Column("previous_income", sa.Float(), nullable=False, server_default="0"),
        sa.Column("previous_expenses", sa.Float(), nullable=False, server_default="0"),
        sa.Column("previous_balance", sa.Float(), nullable=False, server_default="0"),
        sa.Column(
            "income_percentage_change", sa.Float(), nullable=False, server_default="0"
        ),
        sa.Column(
            "expenses_percentage_change", sa.Float(), nullable=False, server_default="0"
        ),
        *_timestamps(),
    )

    op.create_table(
        "import_data",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "account_id", sa.Integer(), sa.ForeignKey("accounts.id"), nullable=False
        ),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("data", sa.Text(), nullable=False),
        sa.Column("total_records", sa.Integer(), nullable=False),
        sa.Column("error_records", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_imported", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
    )

    op.create_table(
        "debts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("account_id", sa.Integer(), sa.ForeignKey("accounts.id")),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("amount", sa.Float(), nullable=False),
        sa.Column("description", sa.String(length=255)),
        sa.Column("due_date", sa.Date()),
        sa.Column("is_paid", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
        sa.CheckConstraint("amount >= 0", name="ck_debts_amount_positive"),
    )


def downgrade():
    op.drop_table("debts")
    op.drop_table("import_data")
    op.drop_table("analytics")
    op.drop_index("ix_transactions_account_created", table_name="transactions")
    op.drop_index("ix_transactions_owner_created", table_name="transactions")
    op.drop_table("transactions")
    op.drop_table("categories")
    op.drop_table("user_accounts")
    op.drop_index("ix_accounts_owner", table_name="accounts")
    op.drop_table("accounts")
    sa.Enum(name="recurrencetype").drop(op.get_bind(), checkfirst=True)
