from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Iterable, Optional

from sqlalchemy import func, insert, or_, select
from sqlalchemy.orm import Session, joinedload

from models import (
    Account,
    Budget,
    BudgetCategory,
    Currency,
    ExpenseType,
    ImportHistory,
    Transaction,
    TransactionType,
    TransactionTypeName,
)


@dataclass
class TransactionFilters:
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    account_id: Optional[int] = None
    category_id: Optional[int] = None
    transaction_type: Optional[TransactionTypeName] = None
    expense_type_id: Optional[int] = None
    min_amount_cents: Optional[int] = None
    max_amount_cents: Optional[int] = None
    search: Optional[str] = None


class UserScopedRepository:
    """Base for repositories whose rows belong to one user."""

    model: type = None

    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def get(self, entity_id: int):
        obj = self.session.get(self.model, entity_id)
        if obj is None or obj.user_id != self.user_id:
            return None
        return obj

    def add(self, obj):
        obj.user_id = self.user_id
        self.session.add(obj)
        self.session.flush()
        return obj

    def delete(self, obj) -> None:
        self.session.delete(obj)
        self.session.flush()


class AccountRepository(UserScopedRepository):
    model = Account

    def list_all(self) -> list[Account]:
        stmt = (
            select(Account)
            .options(joinedload(Account.currency))
            .where(Account.user_id == self.user_id)
            .order_by(Account.created_at.asc(), Account.id.asc())
        )
        return self.session.scalars(stmt).all()

    def find_by_name(self, name: str) -> Optional[Account]:
        # several accounts may share a name: the earliest created one wins
        stmt = (
            select(Account)
            .where(Account.user_id == self.user_id, Account.name == name)
            .order_by(Account.created_at.asc(), Account.id.asc())
            .limit(1)
        )
        return self.session.scalar(stmt)

    def set_balance(self, account: Account, balance_cents: int) -> None:
        account.balance_cents = balance_cents
        self.session.flush()

    def set_initial_balance(self, account: Account, initial_balance_cents: int) -> None:
        account.initial_balance_cents = initial_balance_cents
        self.session.flush()


class TransactionRepository(UserScopedRepository):
    model = Transaction

    def _with_relations(self):
        return select(Transaction).options(
            joinedload(Transaction.transaction_type),
            joinedload(Transaction.expense_type),
            joinedload(Transaction.currency),
        )

    def for_account(self, account_id: int) -> list[Transaction]:
        stmt = (
            self._with_relations()
            .where(
                Transaction.user_id == self.user_id,
                Transaction.account_id == account_id,
            )
            .order_by(Transaction.date.asc(), Transaction.id.asc())
        )
        return self.session.scalars(stmt).all()

    def for_category_between(
        self, category_id: int, start: date, end: date
    ) -> list[Transaction]:
        stmt = (
            self._with_relations()
            .where(
                Transaction.user_id == self.user_id,
                Transaction.budget_category_id == category_id,
                Transaction.date.between(start, end),
            )
            .order_by(Transaction.date.asc(), Transaction.id.asc())
        )
        return self.session.scalars(stmt).all()

    def search(self, filters: Optional[TransactionFilters] = None) -> list[Transaction]:
        filters = filters or TransactionFilters()
        stmt = (
            self._with_relations()
            .options(
                joinedload(Transaction.account),
                joinedload(Transaction.budget_category),
            )
            .where(Transaction.user_id == self.user_id)
            .order_by(Transaction.date.desc(), Transaction.id.desc())
        )
        if filters.start_date:
            stmt = stmt.where(Transaction.date >= filters.start_date)
        if filters.end_date:
            stmt = stmt.where(Transaction.date <= filters.end_date)
        if filters.account_id:
            stmt = stmt.where(Transaction.account_id == filters.account_id)
        if filters.category_id:
            stmt = stmt.where(Transaction.budget_category_id == filters.category_id)
        if filters.transaction_type:
            stmt = stmt.join(Transaction.transaction_type).where(
                TransactionType.name == TransactionTypeName(filters.transaction_type)
            )
        if filters.expense_type_id:
            stmt = stmt.where(Transaction.expense_type_id == filters.expense_type_id)
        if filters.min_amount_cents is not None:
            stmt = stmt.where(Transaction.amount_cents >= filters.min_amount_cents)
        if filters.max_amount_cents is not None:
            stmt = stmt.where(Transaction.amount_cents <= filters.max_amount_cents)
        if filters.search:
            like = f"%{filters.search.lower()}%"
            stmt = stmt.where(
                or_(
                    func.lower(func.coalesce(Transaction.description, "")).like(like),
                    func.lower(func.coalesce(Transaction.notes, "")).like(like),
                )
            )
        return self.session.scalars(stmt).unique().all()

    def existing_import_keys(self, keys: Iterable[str]) -> set[str]:
        keys = list(keys)
        if not keys:
            return set()
        stmt = select(Transaction.import_key).where(
            Transaction.user_id == self.user_id, Transaction.import_key.in_(keys)
        )
        return set(self.session.scalars(stmt).all())

    def bulk_insert(self, rows: list[dict[str, object]]) -> None:
        if not rows:
            return
        payload = [{**row, "user_id": self.user_id} for row in rows]
        self.session.execute(insert(Transaction), payload)


class BudgetRepository(UserScopedRepository):
    model = Budget

    def find(self, category_id: int, year: int) -> Optional[Budget]:
        stmt = select(Budget).where(
            Budget.user_id == self.user_id,
            Budget.category_id == category_id,
            Budget.year == year,
        )
        return self.session.scalar(stmt)

    def list_for_year(self, year: int) -> list[Budget]:
        stmt = (
            select(Budget)
            .options(joinedload(Budget.category))
            .where(Budget.user_id == self.user_id, Budget.year == year)
            .order_by(Budget.category_id.asc())
        )
        return self.session.scalars(stmt).all()

    def set_current_balance(self, budget: Budget, balance_cents: int) -> None:
        budget.current_balance_cents = balance_cents
        self.session.flush()


class ImportHistoryRepository(UserScopedRepository):
    model = ImportHistory

    def latest(self, limit: int = 10) -> list[ImportHistory]:
        stmt = (
            select(ImportHistory)
            .where(ImportHistory.user_id == self.user_id)
            .order_by(ImportHistory.imported_at.desc(), ImportHistory.id.desc())
            .limit(limit)
        )
        return self.session.scalars(stmt).all()


class CurrencyRepository:
    """Currencies are shared by every user."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def by_code(self, code: str) -> Optional[Currency]:
        return self.session.scalar(
            select(Currency).where(Currency.code == code.strip().upper())
        )

    def base(self) -> Optional[Currency]:
        return self.session.scalar(select(Currency).where(Currency.is_base.is_(True)))

    def list_all(self) -> list[Currency]:
        return self.session.scalars(select(Currency).order_by(Currency.code)).all()

    def set_rate(self, currency: Currency, rate_micros: int) -> None:
        currency.rate_micros = rate_micros
        self.session.flush()


class ReferenceDataRepository:
    """Lookups of the shared type, tag and category tables."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def transaction_type_ids(self) -> dict[TransactionTypeName, int]:
        rows = self.session.execute(select(TransactionType.id, TransactionType.name))
        return {row.name: row.id for row in rows}

    def expense_types(self) -> list[ExpenseType]:
        return self.session.scalars(select(ExpenseType).order_by(ExpenseType.id)).all()

    def budget_category_ids(self) -> dict[str, int]:
        rows = self.session.execute(select(BudgetCategory.id, BudgetCategory.name))
        return {row.name: row.id for row in rows}

    def budget_category(self, category_id: int) -> Optional[BudgetCategory]:
        return self.session.get(BudgetCategory, category_id)
