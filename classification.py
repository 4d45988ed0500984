"""Sign and inclusion rules for transaction types.

Account ledgers and budget/report aggregates look at the same transactions
through two different lenses:

* the ledger counts every transaction, signed by its type;
* budgets and income/expense reports leave out money that merely moves
  between the user's own accounts or comes back from a reimbursable expense.

Every balance and report computation goes through this module.
"""

from dataclasses import dataclass
from typing import Optional

from models import TransactionTypeName


INTER_ACCOUNT_TRANSFER_TAGS = frozenset(
    {"transferencia entre cuentas", "inter-account transfer"}
)

_POSITIVE_TYPES = frozenset(
    {
        TransactionTypeName.income,
        TransactionTypeName.reimbursement,
        TransactionTypeName.account_transfer_in,
    }
)
_NEGATIVE_TYPES = frozenset({TransactionTypeName.expense, TransactionTypeName.transfer})
_OUTSIDE_BUDGET_TYPES = frozenset(
    {TransactionTypeName.reimbursement, TransactionTypeName.account_transfer_in}
)


@dataclass(frozen=True)
class Classification:
    ledger_sign: int
    include_in_budget: bool
    include_in_income_report: bool
    include_in_expense_report: bool


def is_inter_account_transfer(expense_tag_name: Optional[str]) -> bool:
    if not expense_tag_name:
        return False
    return expense_tag_name.strip().lower() in INTER_ACCOUNT_TRANSFER_TAGS


def ledger_sign(type_name: TransactionTypeName) -> int:
    """+1 or -1: what the type does to an account's running balance."""
    type_name = TransactionTypeName(type_name)
    if type_name in _POSITIVE_TYPES:
        return 1
    if type_name in _NEGATIVE_TYPES:
        return -1
    raise ValueError(f"Unknown transaction type: {type_name}")


def include_in_budget(
    type_name: TransactionTypeName, expense_tag_name: Optional[str] = None
) -> bool:
    type_name = TransactionTypeName(type_name)
    if type_name in _OUTSIDE_BUDGET_TYPES:
        return False
    return not is_inter_account_transfer(expense_tag_name)


def classify(
    type_name: TransactionTypeName, expense_tag_name: Optional[str] = None
) -> Classification:
    type_name = TransactionTypeName(type_name)
    transfer_tagged = is_inter_account_transfer(expense_tag_name)
    return Classification(
        ledger_sign=ledger_sign(type_name),
        include_in_budget=include_in_budget(type_name, expense_tag_name),
        include_in_income_report=(
            type_name == TransactionTypeName.income and not transfer_tagged
        ),
        include_in_expense_report=(
            type_name in _NEGATIVE_TYPES and not transfer_tagged
        ),
    )


def signed_amount(type_name: TransactionTypeName, amount_cents: int) -> int:
    return ledger_sign(type_name) * amount_cents
