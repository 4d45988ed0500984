from datetime import date, datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


class TransactionTypeName(str, Enum):
    income = "INCOME"
    expense = "EXPENSE"
    transfer = "TRANSFER"
    reimbursement = "REIMBURSEMENT"
    account_transfer_in = "ACCOUNT_TRANSFER_IN"


TRANSACTION_TYPE_NAME_ENUM = SAEnum(
    TransactionTypeName,
    name="transactiontypename",
    values_callable=lambda enum_cls: [member.value for member in enum_cls],
)


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class Currency(Base, TimestampMixin):
    __tablename__ = "currencies"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    code: Mapped[str] = mapped_column(String(3), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(60), nullable=False)
    symbol: Mapped[str] = mapped_column(String(8), nullable=False)
    # units of this currency per 1 unit of the base currency, times 1_000_000
    rate_micros: Mapped[int] = mapped_column(Integer, nullable=False, default=1_000_000)
    is_base: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    __table_args__ = (
        CheckConstraint("rate_micros > 0", name="ck_currency_rate_positive"),
    )


class TransactionType(Base):
    __tablename__ = "transaction_types"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[TransactionTypeName] = mapped_column(
        TRANSACTION_TYPE_NAME_ENUM, nullable=False, unique=True
    )
    description: Mapped[Optional[str]] = mapped_column(String(200))


class ExpenseType(Base):
    __tablename__ = "expense_types"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    color: Mapped[Optional[str]] = mapped_column(String(9))


class BudgetCategory(Base, TimestampMixin):
    __tablename__ = "budget_categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    percentage: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    description: Mapped[Optional[str]] = mapped_column(String(200))

    budgets: Mapped[list["Budget"]] = relationship(
        "Budget", back_populates="category"
    )

    __table_args__ = (
        CheckConstraint(
            "percentage >= 0 AND percentage <= 100",
            name="ck_budget_category_percentage_range",
        ),
    )


class Account(Base, TimestampMixin):
    __tablename__ = "accounts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    type: Mapped[str] = mapped_column(String(40), nullable=False, default="checking")
    balance_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # NULL for accounts created before the column existed
    initial_balance_cents: Mapped[Optional[int]] = mapped_column(Integer)
    currency_id: Mapped[int] = mapped_column(
        ForeignKey("currencies.id"), nullable=False
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    currency: Mapped["Currency"] = relationship("Currency")
    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction", back_populates="account"
    )

    __mapper_args__ = {"version_id_col": version}
    __table_args__ = (
        Index("ix_accounts_user_name", "user_id", "name"),
    )


class Budget(Base, TimestampMixin):
    __tablename__ = "budgets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    category_id: Mapped[int] = mapped_column(
        ForeignKey("budget_categories.id"), nullable=False
    )
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    starting_balance_cents: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )
    allocated_amount_cents: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )
    current_balance_cents: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    category: Mapped["BudgetCategory"] = relationship(
        "BudgetCategory", back_populates="budgets"
    )

    __mapper_args__ = {"version_id_col": version}
    __table_args__ = (
        UniqueConstraint(
            "user_id", "category_id", "year", name="uq_budget_user_category_year"
        ),
    )


class Transaction(Base, TimestampMixin):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    account_id: Mapped[int] = mapped_column(ForeignKey("accounts.id"), nullable=False)
    currency_id: Mapped[int] = mapped_column(
        ForeignKey("currencies.id"), nullable=False
    )
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    transaction_type_id: Mapped[int] = mapped_column(
        ForeignKey("transaction_types.id"), nullable=False
    )
    expense_type_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("expense_types.id")
    )
    budget_category_id: Mapped[int] = mapped_column(
        ForeignKey("budget_categories.id"), nullable=False
    )
    description: Mapped[Optional[str]] = mapped_column(String(300))
    notes: Mapped[Optional[str]] = mapped_column(Text)
    is_reimbursable: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    reimbursement_id: Mapped[Optional[str]] = mapped_column(String(40))
    linked_transaction_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("transactions.id")
    )
    import_key: Mapped[Optional[str]] = mapped_column(String(64))

    account: Mapped["Account"] = relationship("Account", back_populates="transactions")
    currency: Mapped["Currency"] = relationship("Currency")
    transaction_type: Mapped["TransactionType"] = relationship("TransactionType")
    expense_type: Mapped[Optional["ExpenseType"]] = relationship("ExpenseType")
    budget_category: Mapped["BudgetCategory"] = relationship("BudgetCategory")
    linked_transaction: Mapped[Optional["Transaction"]] = relationship(
        "Transaction", remote_side="Transaction.id"
    )

    __table_args__ = (
        UniqueConstraint("user_id", "import_key", name="uq_txn_user_import_key"),
        Index("ix_transactions_user_date", "user_id", "date"),
        Index("ix_transactions_account", "account_id"),
        Index(
            "ix_transactions_user_category_date",
            "user_id",
            "budget_category_id",
            "date",
        ),
        CheckConstraint("amount_cents > 0", name="ck_transactions_amount_positive"),
    )


class ImportHistory(Base):
    __tablename__ = "import_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    file_name: Mapped[str] = mapped_column(String(200), nullable=False)
    record_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    success_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    errors_json: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    imported_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )

    __table_args__ = (
        Index("ix_import_history_user_at", "user_id", "imported_at"),
    )
