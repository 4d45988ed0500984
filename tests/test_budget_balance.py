from datetime import date
from typing import Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from database import Base
from models import Account, ExpenseType, Transaction, TransactionTypeName
from reference_data import seed_reference_data
from repositories import CurrencyRepository, ReferenceDataRepository
from schemas import AccountIn, BudgetIn
from services import AccountService, BudgetService


USER = 1


def _session() -> Session:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    session = Session(engine)
    seed_reference_data(session)
    return session


def _add_raw(
    session: Session,
    account: Account,
    type_name: TransactionTypeName,
    cents: int,
    *,
    category: str = "Expenses",
    on: date = date(2025, 6, 1),
    tag: Optional[str] = None,
    currency: str = "JPY",
) -> Transaction:
    refs = ReferenceDataRepository(session)
    tag_id = None
    if tag:
        tag_id = next(et.id for et in refs.expense_types() if et.name == tag)
    txn = Transaction(
        user_id=account.user_id,
        account_id=account.id,
        currency_id=CurrencyRepository(session).by_code(currency).id,
        amount_cents=cents,
        date=on,
        transaction_type_id=refs.transaction_type_ids()[type_name],
        budget_category_id=refs.budget_category_ids()[category],
        expense_type_id=tag_id,
    )
    session.add(txn)
    session.commit()
    return txn


def _account(session: Session, user_id: int = USER) -> Account:
    return AccountService(session, user_id).create(
        AccountIn(name="Main", currency_code="JPY")
    )


def _category_id(session: Session, name: str = "Expenses") -> int:
    return ReferenceDataRepository(session).budget_category_ids()[name]


def test_only_budget_relevant_transactions_contribute() -> None:
    with _session() as session:
        session.add(ExpenseType(name="Transferencia Entre Cuentas"))
        session.commit()
        account = _account(session)
        _add_raw(session, account, TransactionTypeName.income, 100)
        _add_raw(
            session,
            account,
            TransactionTypeName.expense,
            50,
            tag="Transferencia Entre Cuentas",
        )
        _add_raw(session, account, TransactionTypeName.reimbursement, 30)
        _add_raw(session, account, TransactionTypeName.account_transfer_in, 20)

        service = BudgetService(session, USER)
        service.create(
            BudgetIn(category_id=_category_id(session), year=2025, starting_balance_cents=1000)
        )
        balance = service.recompute_budget_balance(_category_id(session), 2025)

        assert balance == 1100
        assert service.get(_category_id(session), 2025).current_balance_cents == 1100


def test_expenses_and_transfers_reduce_the_budget() -> None:
    with _session() as session:
        account = _account(session)
        _add_raw(session, account, TransactionTypeName.income, 5000)
        _add_raw(session, account, TransactionTypeName.expense, 1200)
        _add_raw(session, account, TransactionTypeName.transfer, 800)

        budget = BudgetService(session, USER).create(
            BudgetIn(category_id=_category_id(session), year=2025)
        )

        assert budget.current_balance_cents == 3000


def test_recompute_without_budget_is_a_noop() -> None:
    with _session() as session:
        account = _account(session)
        _add_raw(session, account, TransactionTypeName.income, 100)
        assert BudgetService(session, USER).recompute_budget_balance(
            _category_id(session), 2025
        ) is None


def test_foreign_currency_is_converted_to_base() -> None:
    with _session() as session:
        account = _account(session)
        # 6.70 USD at 0.0067 USD per JPY is 1000 JPY
        _add_raw(session, account, TransactionTypeName.expense, 670, currency="USD")
        _add_raw(session, account, TransactionTypeName.income, 100000)

        budget = BudgetService(session, USER).create(
            BudgetIn(category_id=_category_id(session), year=2025)
        )

        assert budget.current_balance_cents == 0


def test_fractional_conversions_round_once_at_the_end() -> None:
    with _session() as session:
        account = _account(session)
        # each is 100 / 0.12 = 833.33.. cents; rounding per row would give 2499
        for _ in range(3):
            _add_raw(session, account, TransactionTypeName.income, 100, currency="MXN")

        budget = BudgetService(session, USER).create(
            BudgetIn(category_id=_category_id(session), year=2025)
        )

        assert budget.current_balance_cents == 2500


def test_only_transactions_inside_the_year_count() -> None:
    with _session() as session:
        account = _account(session)
        for on in (date(2024, 12, 31), date(2026, 1, 1)):
            _add_raw(session, account, TransactionTypeName.income, 999, on=on)
        for on in (date(2025, 1, 1), date(2025, 12, 31)):
            _add_raw(session, account, TransactionTypeName.income, 10, on=on)
        _add_raw(session, account, TransactionTypeName.income, 777, category="Savings")

        budget = BudgetService(session, USER).create(
            BudgetIn(category_id=_category_id(session), year=2025)
        )

        assert budget.current_balance_cents == 20


def test_budgets_ignore_other_users_transactions() -> None:
    with _session() as session:
        mine = _account(session)
        theirs = _account(session, user_id=2)
        _add_raw(session, mine, TransactionTypeName.income, 10)
        _add_raw(session, theirs, TransactionTypeName.income, 500)

        budget = BudgetService(session, USER).create(
            BudgetIn(category_id=_category_id(session), year=2025)
        )

        assert budget.current_balance_cents == 10


def test_duplicate_budget_is_rejected() -> None:
    with _session() as session:
        service = BudgetService(session, USER)
        service.create(BudgetIn(category_id=_category_id(session), year=2025))
        with pytest.raises(ValueError):
            service.create(BudgetIn(category_id=_category_id(session), year=2025))
        with pytest.raises(ValueError):
            service.create(BudgetIn(category_id=9999, year=2025))
        assert len(service.list_for_year(2025)) == 1
