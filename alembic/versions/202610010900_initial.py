"""initial ledger schema

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


TRANSACTION_TYPE_NAMES = (
    "INCOME",
    "EXPENSE",
    "TRANSFER",
    "REIMBURSEMENT",
    "ACCOUNT_TRANSFER_IN",
)


def upgrade():
    op.create_table(
        "currencies",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("code", sa.String(length=3), nullable=False, unique=True),
        sa.Column("name", sa.String(length=60), nullable=False),
        sa.Column("symbol", sa.String(length=8), nullable=False),
        sa.Column(
            "rate_micros", sa.Integer(), nullable=False, server_default="1000000"
        ),
        sa.Column("is_base", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("rate_micros > 0", name="ck_currency_rate_positive"),
    )

    op.create_table(
        "transaction_types",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "name",
            sa.Enum(*TRANSACTION_TYPE_NAMES, name="transactiontypename"),
            nullable=False,
            unique=True,
        ),
        sa.Column("description", sa.String(length=200)),
    )

    op.create_table(
        "expense_types",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=100), nullable=False, unique=True),
        sa.Column("color", sa.String(length=9)),
    )

    op.create_table(
        "budget_categories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=100), nullable=False, unique=True),
        sa.Column("percentage", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("description", sa.String(length=200)),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint(
            "percentage >= 0 AND percentage <= 100",
            name="ck_budget_category_percentage_range",
        ),
    )

    op.create_table(
        "accounts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("type", sa.String(length=40), nullable=False, server_default="checking"),
        sa.Column("balance_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "currency_id", sa.Integer(), sa.ForeignKey("currencies.id"), nullable=False
        ),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_accounts_user_name", "accounts", ["user_id", "name"])

    op.create_table(
        "budgets",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column(
            "category_id",
            sa.Integer(),
            sa.ForeignKey("budget_categories.id"),
            nullable=False,
        ),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column(
            "starting_balance_cents", sa.Integer(), nullable=False, server_default="0"
        ),
        sa.Column(
            "allocated_amount_cents", sa.Integer(), nullable=False, server_default="0"
        ),
        sa.Column(
            "current_balance_cents", sa.Integer(), nullable=False, server_default="0"
        ),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint(
            "user_id", "category_id", "year", name="uq_budget_user_category_year"
        ),
    )

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column(
            "account_id", sa.Integer(), sa.ForeignKey("accounts.id"), nullable=False
        ),
        sa.Column(
            "currency_id", sa.Integer(), sa.ForeignKey("currencies.id"), nullable=False
        ),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column(
            "transaction_type_id",
            sa.Integer(),
            sa.ForeignKey("transaction_types.id"),
            nullable=False,
        ),
        sa.Column(
            "expense_type_id", sa.Integer(), sa.ForeignKey("expense_types.id")
        ),
        sa.Column(
            "budget_category_id",
            sa.Integer(),
            sa.ForeignKey("budget_categories.id"),
            nullable=False,
        ),
        sa.Column("description", sa.String(length=300)),
        sa.Column("notes", sa.Text()),
        sa.Column(
            "is_reimbursable", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column("reimbursement_id", sa.String(length=40)),
        sa.Column(
            "linked_transaction_id", sa.Integer(), sa.ForeignKey("transactions.id")
        ),
        sa.Column("import_key", sa.String(length=64)),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("user_id", "import_key", name="uq_txn_user_import_key"),
        sa.CheckConstraint("amount_cents > 0", name="ck_transactions_amount_positive"),
    )
    op.create_index("ix_transactions_user_date", "transactions", ["user_id", "date"])
    op.create_index("ix_transactions_account", "transactions", ["account_id"])
    op.create_index(
        "ix_transactions_user_category_date",
        "transactions",
        ["user_id", "budget_category_id", "date"],
    )

    op.create_table(
        "import_history",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("file_name", sa.String(length=200), nullable=False),
        sa.Column("record_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("success_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("error_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("errors_json", sa.Text(), nullable=False, server_default="[]"),
        sa.Column("imported_at", sa.DateTime(), nullable=False),
    )
    op.create_index(
        "ix_import_history_user_at", "import_history", ["user_id", "imported_at"]
    )


def downgrade():
    op.drop_index("ix_import_history_user_at", table_name="import_history")
    op.drop_table("import_history")
    op.drop_index("ix_transactions_user_category_date", table_name="transactions")
    op.drop_index("ix_transactions_account", table_name="transactions")
    op.drop_index("ix_transactions_user_date", table_name="transactions")
    op.drop_table("transactions")
    op.drop_table("budgets")
    op.drop_index("ix_accounts_user_name", table_name="accounts")
    op.drop_table("accounts")
    op.drop_table("budget_categories")
    op.drop_table("expense_types")
    op.drop_table("transaction_types")
    op.drop_table("currencies")
    sa.Enum(name="transactiontypename").drop(op.get_bind(), checkfirst=True)
