"""Shared lookup rows every user's ledger depends on.

Seeding is idempotent: rows are matched on their natural key (currency code,
type name, tag name, category name) and only missing ones are inserted, so
existing exchange rates and edited descriptions survive a re-run.
"""

import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from fx_rates import rate_to_micros
from models import (
    BudgetCategory,
    Currency,
    ExpenseType,
    TransactionType,
    TransactionTypeName,
)


logger = logging.getLogger(__name__)

CURRENCIES = [
    # code, name, symbol, units per 1 JPY, is_base
    ("JPY", "Japanese Yen", "¥", "1", True),
    ("USD", "US Dollar", "$", "0.0067", False),
    ("EUR", "Euro", "€", "0.0062", False),
    ("MXN", "Mexican Peso", "$", "0.12", False),
]

BUDGET_CATEGORIES = [
    ("Expenses", 40, "Day-to-day expenses (transport, food, utilities, subscriptions)"),
    ("Savings", 20, "Planned purchases, building reserves, large items"),
    ("Investment", 20, "Long-term growth, education, business investments"),
    ("Emergencies", 20, "Unexpected expenses, true emergencies only"),
]

TRANSACTION_TYPES = [
    (TransactionTypeName.expense, "Money going out to external party"),
    (TransactionTypeName.income, "Money coming in (salary, cashback, interest, refunds)"),
    (TransactionTypeName.transfer, "Moving money between your own accounts"),
    (TransactionTypeName.reimbursement, "Money returning from reimbursable expense"),
    (
        TransactionTypeName.account_transfer_in,
        "Money received as transfer from another account (not counted as income)",
    ),
]

EXPENSE_TYPES = [
    ("Transport", "#4CAF50"),
    ("Food", "#FF9800"),
    ("Internet", "#2196F3"),
    ("Electricity", "#FFC107"),
    ("Health", "#F44336"),
    ("Education", "#9C27B0"),
    ("Emergency", "#E91E63"),
    ("Investment", "#00BCD4"),
    ("Savings", "#8BC34A"),
    ("Rent", "#795548"),
    ("Freetime", "#607D8B"),
    ("Electronics", "#3F51B5"),
    ("Personal", "#673AB7"),
    ("Cash", "#009688"),
    ("Social", "#FF5722"),
    ("Income", "#4CAF50"),
    ("Account Transfer", "#9E9E9E"),
    ("Inter-Account Transfer", "#757575"),
]


def seed_reference_data(session: Session) -> int:
    """Insert missing reference rows and return how many were added."""
    added = 0

    codes = set(session.scalars(select(Currency.code)))
    for code, name, symbol, rate, is_base in CURRENCIES:
        if code in codes:
            continue
        session.add(
            Currency(
                code=code,
                name=name,
                symbol=symbol,
                rate_micros=rate_to_micros(rate),
                is_base=is_base,
            )
        )
        added += 1

    categories = set(session.scalars(select(BudgetCategory.name)))
    for name, percentage, description in BUDGET_CATEGORIES:
        if name not in categories:
            session.add(
                BudgetCategory(name=name, percentage=percentage, description=description)
            )
            added += 1

    types = set(session.scalars(select(TransactionType.name)))
    for type_name, description in TRANSACTION_TYPES:
        if type_name not in types:
            session.add(TransactionType(name=type_name, description=description))
            added += 1

    tags = set(session.scalars(select(ExpenseType.name)))
    for name, color in EXPENSE_TYPES:
        if name not in tags:
            session.add(ExpenseType(name=name, color=color))
            added += 1

    session.commit()
    if added:
        logger.info(f"reference_data_seeded: rows={added}")
    return added
