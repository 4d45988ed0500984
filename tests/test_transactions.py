from datetime import date

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from database import Base
from fx_rates import CurrencyNotFound
from models import TransactionTypeName
from reference_data import seed_reference_data
from repositories import CurrencyRepository, ReferenceDataRepository, TransactionFilters
from schemas import AccountIn, BudgetIn, TransactionIn
from services import (
    AccountNotFound,
    AccountService,
    BudgetService,
    TransactionNotFound,
    TransactionService,
)


USER = 1


def _session() -> Session:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    session = Session(engine)
    seed_reference_data(session)
    return session


def _payload(account_id: int, category_id: int, **overrides) -> TransactionIn:
    data = {
        "account_id": account_id,
        "date": date(2025, 4, 1),
        "amount_cents": 1000,
        "transaction_type": TransactionTypeName.expense,
        "budget_category_id": category_id,
    }
    data.update(overrides)
    return TransactionIn(**data)


def test_create_update_delete_keep_balances_reconciled() -> None:
    with _session() as session:
        categories = ReferenceDataRepository(session).budget_category_ids()
        expenses, savings = categories["Expenses"], categories["Savings"]
        account = AccountService(session, USER).create(
            AccountIn(name="Main", currency_code="JPY", balance_cents=5000)
        )
        budgets = BudgetService(session, USER)
        budgets.create(BudgetIn(category_id=expenses, year=2025, starting_balance_cents=2000))
        budgets.create(BudgetIn(category_id=savings, year=2025))
        service = TransactionService(session, USER)

        txn = service.create(_payload(account.id, expenses))
        session.refresh(account)
        assert account.balance_cents == 4000
        assert budgets.get(expenses, 2025).current_balance_cents == 1000

        service.update(
            txn.id,
            _payload(
                account.id,
                savings,
                amount_cents=300,
                transaction_type=TransactionTypeName.income,
            ),
        )
        session.refresh(account)
        assert account.balance_cents == 5300
        assert budgets.get(expenses, 2025).current_balance_cents == 2000
        assert budgets.get(savings, 2025).current_balance_cents == 300

        service.delete(txn.id)
        session.refresh(account)
        assert account.balance_cents == 5000
        assert budgets.get(savings, 2025).current_balance_cents == 0
        with pytest.raises(TransactionNotFound):
            service.get(txn.id)


def test_moving_a_transaction_reconciles_both_accounts() -> None:
    with _session() as session:
        category = ReferenceDataRepository(session).budget_category_ids()["Expenses"]
        accounts = AccountService(session, USER)
        a = accounts.create(AccountIn(name="A", currency_code="JPY", balance_cents=1000))
        b = accounts.create(AccountIn(name="B", currency_code="JPY", balance_cents=1000))
        service = TransactionService(session, USER)

        txn = service.create(_payload(a.id, category, amount_cents=400))
        service.update(txn.id, _payload(b.id, category, amount_cents=400))

        session.refresh(a)
        session.refresh(b)
        assert a.balance_cents == 1000
        assert b.balance_cents == 600


def test_currency_defaults_to_the_account_currency() -> None:
    with _session() as session:
        category = ReferenceDataRepository(session).budget_category_ids()["Expenses"]
        account = AccountService(session, USER).create(
            AccountIn(name="Dollars", currency_code="usd")
        )
        service = TransactionService(session, USER)
        currencies = CurrencyRepository(session)

        plain = service.create(_payload(account.id, category))
        in_euro = service.create(_payload(account.id, category, currency_code="EUR"))

        assert plain.currency_id == currencies.by_code("USD").id
        assert in_euro.currency_id == currencies.by_code("EUR").id
        with pytest.raises(CurrencyNotFound):
            service.create(_payload(account.id, category, currency_code="XYZ"))


def test_invalid_references_are_rejected() -> None:
    with _session() as session:
        category = ReferenceDataRepository(session).budget_category_ids()["Expenses"]
        account = AccountService(session, USER).create(
            AccountIn(name="Main", currency_code="JPY")
        )
        theirs = AccountService(session, 2).create(
            AccountIn(name="Theirs", currency_code="JPY")
        )
        service = TransactionService(session, USER)

        with pytest.raises(AccountNotFound):
            service.create(_payload(theirs.id, category))
        with pytest.raises(ValueError):
            service.create(_payload(account.id, 9999))
        with pytest.raises(ValueError):
            service.create(_payload(account.id, category, expense_type_id=9999))
        with pytest.raises(TransactionNotFound):
            service.create(_payload(account.id, category, linked_transaction_id=9999))


def test_transactions_of_other_users_are_invisible() -> None:
    with _session() as session:
        category = ReferenceDataRepository(session).budget_category_ids()["Expenses"]
        account = AccountService(session, USER).create(
            AccountIn(name="Main", currency_code="JPY")
        )
        txn = TransactionService(session, USER).create(_payload(account.id, category))
        other = TransactionService(session, 2)

        with pytest.raises(TransactionNotFound):
            other.get(txn.id)
        with pytest.raises(TransactionNotFound):
            other.delete(txn.id)
        assert other.list() == []
        assert [t.id for t in TransactionService(session, USER).list()] == [txn.id]


def test_list_filters_by_account_and_category() -> None:
    with _session() as session:
        categories = ReferenceDataRepository(session).budget_category_ids()
        accounts = AccountService(session, USER)
        a = accounts.create(AccountIn(name="A", currency_code="JPY"))
        b = accounts.create(AccountIn(name="B", currency_code="JPY"))
        service = TransactionService(session, USER)
        first = service.create(_payload(a.id, categories["Expenses"]))
        service.create(_payload(b.id, categories["Expenses"]))
        third = service.create(_payload(a.id, categories["Savings"]))

        by_account = service.list(TransactionFilters(account_id=a.id))
        by_category = service.list(
            TransactionFilters(account_id=a.id, category_id=categories["Expenses"])
        )

        assert {t.id for t in by_account} == {first.id, third.id}
        assert [t.id for t in by_category] == [first.id]
