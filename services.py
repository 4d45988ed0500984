from __future__ import annotations

import hashlib
import json
import logging
from collections import Counter
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable, Optional

from rapidfuzz.distance import Levenshtein
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from classification import classify, signed_amount
from csv_utils import (
    CSVFormatError,
    ParsedCSV,
    RawImportRow,
    export_transactions,
    infer_budget_category,
    is_reimbursable_expense,
    make_reimbursement_id,
    parse_amount,
    parse_date,
    parse_import_csv,
    parse_reimbursable_flag,
    resolve_transaction_type_name,
)
from fx_rates import CurrencyConverter, CurrencyNotFound, quantize_cents
from models import Account, Budget, ExpenseType, ImportHistory, Transaction
from periods import year_period
from repositories import (
    AccountRepository,
    BudgetRepository,
    CurrencyRepository,
    ImportHistoryRepository,
    ReferenceDataRepository,
    TransactionFilters,
    TransactionRepository,
)
from schemas import (
    AccountIn,
    BudgetIn,
    ImportResult,
    ImportRowError,
    TransactionIn,
)


logger = logging.getLogger(__name__)


class AccountNotFound(LookupError):
    pass


class TransactionNotFound(LookupError):
    pass


class AccountInfoRequired(ValueError):
    pass


class ImportFailed(RuntimeError):
    pass


class RowRejected(ValueError):
    def __init__(self, field: Optional[str], message: str) -> None:
        super().__init__(message)
        self.field = field


@dataclass
class BalanceRecomputation:
    account: Account
    initial_balance_cents: int
    balance_cents: int
    transaction_count: int
    # set when an inferred initial balance could not be stored
    warning: Optional[str] = None


def signed_total(transactions: Iterable[Transaction]) -> int:
    return sum(
        signed_amount(txn.transaction_type.name, txn.amount_cents)
        for txn in transactions
    )


def reconcile(
    session: Session,
    user_id: int,
    account_ids: Iterable[int],
    budget_scopes: Iterable[tuple[int, int]],
    converter: Optional[CurrencyConverter] = None,
) -> None:
    """Recompute every touched account and (budget category, year)."""
    accounts = AccountService(session, user_id)
    for account_id in sorted(set(account_ids)):
        accounts.recompute_account_balance(account_id)
    budgets = BudgetService(session, user_id, converter)
    for category_id, year in sorted(set(budget_scopes)):
        budgets.recompute_budget_balance(category_id, year)


class AccountService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id
        self.accounts = AccountRepository(session, user_id)
        self.transactions = TransactionRepository(session, user_id)

    def create(self, data: AccountIn) -> Account:
        currency = CurrencyRepository(self.session).by_code(data.currency_code)
        if currency is None:
            raise CurrencyNotFound(f"Currency not found: {data.currency_code}")
        account = self.accounts.add(
            Account(
                name=data.name.strip(),
                type=data.type,
                balance_cents=data.balance_cents,
                initial_balance_cents=data.balance_cents,
                currency_id=currency.id,
            )
        )
        self.session.commit()
        self.session.refresh(account)
        logger.info(f"account_created: user={self.user_id} account={account.id}")
        return account

    def list_all(self) -> list[Account]:
        return self.accounts.list_all()

    def get(self, account_id: int) -> Account:
        account = self.accounts.get(account_id)
        if account is None:
            raise AccountNotFound("Account not found")
        return account

    def _store_initial_balance(self, account: Account, initial: int) -> Optional[str]:
        # best effort: a failure here must not abort the balance write
        try:
            with self.session.begin_nested():
                self.accounts.set_initial_balance(account, initial)
        except SQLAlchemyError as exc:
            warning = f"Could not store initial balance for account {account.id}: {exc}"
            logger.warning(f"initial_balance_not_stored: account={account.id} error={exc}")
            return warning
        logger.info(f"initial_balance_stored: account={account.id} value={initial}")
        return None

    def _needs_backfill(self, account: Account, transactions: list[Transaction]) -> bool:
        return (
            account.initial_balance_cents is None
            and account.balance_cents != 0
            and len(transactions) > 0
        )

    def _resolve_initial_balance(
        self, account: Account, transactions: list[Transaction]
    ) -> tuple[int, Optional[str]]:
        if self._needs_backfill(account, transactions):
            inferred = account.balance_cents - signed_total(transactions)
            return inferred, self._store_initial_balance(account, inferred)
        return account.initial_balance_cents or 0, None

    def ensure_initial_balance(self, account_id: int) -> Optional[int]:
        """Backfill a missing initial balance against the transactions stored now.

        Call this before adding transactions to an account that predates the
        initial balance column, so the new rows are not folded into it.
        """
        account = self.get(account_id)
        transactions = self.transactions.for_account(account.id)
        if not self._needs_backfill(account, transactions):
            return account.initial_balance_cents
        initial, _ = self._resolve_initial_balance(account, transactions)
        self.session.commit()
        return initial

    def recompute_account_balance(self, account_id: int) -> BalanceRecomputation:
        account = self.get(account_id)
        transactions = self.transactions.for_account(account.id)
        initial, warning = self._resolve_initial_balance(account, transactions)
        return self._write_balance(account, initial, transactions, warning)

    def recalculate_account_balance(
        self, account_id: int, initial_balance_cents: Optional[int] = None
    ) -> BalanceRecomputation:
        account = self.get(account_id)
        transactions = self.transactions.for_account(account.id)
        if initial_balance_cents is None:
            initial, warning = self._resolve_initial_balance(account, transactions)
        else:
            initial = initial_balance_cents
            warning = self._store_initial_balance(account, initial)
        return self._write_balance(account, initial, transactions, warning)

    def _write_balance(
        self,
        account: Account,
        initial: int,
        transactions: list[Transaction],
        warning: Optional[str],
    ) -> BalanceRecomputation:
        balance = initial + signed_total(transactions)
        self.accounts.set_balance(account, balance)
        self.session.commit()
        logger.info(
            f"account_reconciled: account={account.id} balance={balance} "
            f"initial={initial} transactions={len(transactions)}"
        )
        return BalanceRecomputation(
            account=account,
            initial_balance_cents=initial,
            balance_cents=balance,
            transaction_count=len(transactions),
            warning=warning,
        )

    def backfill_initial_balances(self) -> int:
        count = 0
        for account in self.accounts.list_all():
            transactions = self.transactions.for_account(account.id)
            if not self._needs_backfill(account, transactions):
                continue
            _, warning = self._resolve_initial_balance(account, transactions)
            if warning is None:
                count += 1
        self.session.commit()
        logger.info(f"initial_balance_backfill: user={self.user_id} accounts={count}")
        return count


class BudgetService:
    def __init__(
        self,
        session: Session,
        user_id: int,
        converter: Optional[CurrencyConverter] = None,
    ) -> None:
        self.session = session
        self.user_id = user_id
        self.budgets = BudgetRepository(session, user_id)
        self.transactions = TransactionRepository(session, user_id)
        self.converter = converter or CurrencyConverter(session)

    def create(self, data: BudgetIn) -> Budget:
        if ReferenceDataRepository(self.session).budget_category(data.category_id) is None:
            raise ValueError("Budget category not found")
        if self.budgets.find(data.category_id, data.year) is not None:
            raise ValueError("Budget already exists for this category and year")
        budget = self.budgets.add(
            Budget(
                category_id=data.category_id,
                year=data.year,
                starting_balance_cents=data.starting_balance_cents,
                allocated_amount_cents=data.allocated_amount_cents,
                current_balance_cents=data.starting_balance_cents,
            )
        )
        self.session.commit()
        self.recompute_budget_balance(data.category_id, data.year)
        self.session.refresh(budget)
        return budget

    def get(self, category_id: int, year: int) -> Optional[Budget]:
        return self.budgets.find(category_id, year)

    def list_for_year(self, year: int) -> list[Budget]:
        return self.budgets.list_for_year(year)

    def recompute_budget_balance(self, category_id: int, year: int) -> Optional[int]:
        budget = self.budgets.find(category_id, year)
        if budget is None:
            return None

        window = year_period(year)
        transactions = self.transactions.for_category_between(
            category_id, window.start, window.end
        )
        net = Decimal("0")
        for txn in transactions:
            tag = txn.expense_type.name if txn.expense_type else None
            rules = classify(txn.transaction_type.name, tag)
            if not rules.include_in_budget:
                continue
            in_base = self.converter.convert_to_base_currency(
                txn.amount_cents, txn.currency.code
            )
            net += rules.ledger_sign * in_base

        balance = budget.starting_balance_cents + quantize_cents(net)
        self.budgets.set_current_balance(budget, balance)
        self.session.commit()
        logger.info(
            f"budget_reconciled: user={self.user_id} category={category_id} "
            f"year={year} balance={balance}"
        )
        return balance


class TransactionService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id
        self.transactions = TransactionRepository(session, user_id)
        self.accounts = AccountService(session, user_id)
        self.refs = ReferenceDataRepository(session)

    def get(self, transaction_id: int) -> Transaction:
        txn = self.transactions.get(transaction_id)
        if txn is None:
            raise TransactionNotFound("Transaction not found")
        return txn

    def list(self, filters: Optional[TransactionFilters] = None) -> list[Transaction]:
        return self.transactions.search(filters)

    def _validated_fields(self, data: TransactionIn) -> dict[str, object]:
        account = self.accounts.get(data.account_id)
        type_id = self.refs.transaction_type_ids().get(data.transaction_type)
        if type_id is None:
            raise ValueError(f"Unknown transaction type: {data.transaction_type.value}")
        if self.refs.budget_category(data.budget_category_id) is None:
            raise ValueError("Budget category not found")
        if data.expense_type_id is not None and not self.session.get(
            ExpenseType, data.expense_type_id
        ):
            raise ValueError("Expense type not found")
        if data.linked_transaction_id is not None:
            self.get(data.linked_transaction_id)

        currency_id = account.currency_id
        if data.currency_code:
            currency = CurrencyRepository(self.session).by_code(data.currency_code)
            if currency is None:
                raise CurrencyNotFound(f"Currency not found: {data.currency_code}")
            currency_id = currency.id

        return {
            "account_id": account.id,
            "currency_id": currency_id,
            "date": data.date,
            "amount_cents": data.amount_cents,
            "transaction_type_id": type_id,
            "expense_type_id": data.expense_type_id,
            "budget_category_id": data.budget_category_id,
            "description": data.description,
            "notes": data.notes,
            "is_reimbursable": data.is_reimbursable,
            "reimbursement_id": data.reimbursement_id,
            "linked_transaction_id": data.linked_transaction_id,
        }

    def create(self, data: TransactionIn) -> Transaction:
        fields = self._validated_fields(data)
        self.accounts.ensure_initial_balance(data.account_id)
        txn = self.transactions.add(Transaction(**fields))
        self.session.commit()
        reconcile(
            self.session,
            self.user_id,
            [txn.account_id],
            [(txn.budget_category_id, txn.date.year)],
        )
        logger.info(f"transaction_created: user={self.user_id} txn={txn.id}")
        self.session.refresh(txn)
        return txn

    def update(self, transaction_id: int, data: TransactionIn) -> Transaction:
        txn = self.get(transaction_id)
        fields = self._validated_fields(data)
        accounts = {txn.account_id, data.account_id}
        scopes = {
            (txn.budget_category_id, txn.date.year),
            (data.budget_category_id, data.date.year),
        }
        for account_id in accounts:
            self.accounts.ensure_initial_balance(account_id)
        for key, value in fields.items():
            setattr(txn, key, value)
        self.session.commit()
        reconcile(self.session, self.user_id, accounts, scopes)
        logger.info(f"transaction_updated: user={self.user_id} txn={txn.id}")
        self.session.refresh(txn)
        return txn

    def delete(self, transaction_id: int) -> None:
        txn = self.get(transaction_id)
        account_id = txn.account_id
        scope = (txn.budget_category_id, txn.date.year)
        self.accounts.ensure_initial_balance(account_id)
        self.transactions.delete(txn)
        self.session.commit()
        reconcile(self.session, self.user_id, [account_id], [scope])
        logger.info(f"transaction_deleted: user={self.user_id} txn={transaction_id}")


class ImportService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id
        self.accounts = AccountRepository(session, user_id)
        self.transactions = TransactionRepository(session, user_id)
        self.history_repo = ImportHistoryRepository(session, user_id)
        self.refs = ReferenceDataRepository(session)

    def export_transactions(self, filters: Optional[TransactionFilters] = None) -> str:
        return export_transactions(self.transactions.search(filters))

    def history(self, limit: int = 10) -> list[ImportHistory]:
        return self.history_repo.latest(limit)

    def import_transactions(
        self,
        csv_text: str,
        account_id: Optional[int] = None,
        file_name: str = "CSV Import",
    ) -> ImportResult:
        fixed_account: Optional[Account] = None
        if account_id is not None:
            fixed_account = self.accounts.get(account_id)
            if fixed_account is None:
                raise AccountNotFound("Account not found")

        try:
            parsed = parse_import_csv(csv_text)
        except CSVFormatError as exc:
            logger.error(f"import_rejected: user={self.user_id} error={exc}")
            self._record_history(
                file_name, 0, 0, 1, [ImportRowError(row=0, message=str(exc))]
            )
            raise ImportFailed(f"Import failed: {exc}") from exc

        if fixed_account is None and not any(
            row.get("account_id") or row.get("account") for row in parsed.rows
        ):
            raise AccountInfoRequired(
                "Account information is required: pass an account or add "
                "Account / Account ID columns"
            )

        total = len(parsed.rows)
        logger.info(f"import_start: user={self.user_id} rows={total}")

        staged, errors = self._stage_rows(parsed, fixed_account)

        try:
            inserted, duplicate_count = self._bulk_insert(staged)
        except Exception as exc:
            self.session.rollback()
            logger.error(f"import_failed: user={self.user_id} error={exc}")
            errors.append(ImportRowError(row=0, message=f"Bulk insert failed: {exc}"))
            self._record_history(file_name, total, 0, total, errors)
            raise ImportFailed(f"Import failed: {exc}") from exc

        try:
            reconcile(
                self.session,
                self.user_id,
                [row["account_id"] for row in inserted],
                [(row["budget_category_id"], row["date"].year) for row in inserted],
            )
        except Exception:
            self.session.rollback()
            self._record_history(file_name, total, len(staged), len(errors), errors)
            raise

        self._record_history(file_name, total, len(staged), len(errors), errors)
        logger.info(
            f"import_done: user={self.user_id} total={total} success={len(staged)} "
            f"errors={len(errors)} duplicates={duplicate_count}"
        )
        return ImportResult(
            success=len(errors) == 0,
            total_records=total,
            success_count=len(staged),
            error_count=len(errors),
            errors=errors,
            duplicate_count=duplicate_count,
        )

    def _stage_rows(
        self, parsed: ParsedCSV, fixed_account: Optional[Account]
    ) -> tuple[list[dict[str, object]], list[ImportRowError]]:
        lookups = _ImportLookups(
            type_ids={name.value: type_id for name, type_id in self.refs.transaction_type_ids().items()},
            category_ids=self.refs.budget_category_ids(),
            expense_types=self.refs.expense_types(),
        )
        staged: list[dict[str, object]] = []
        errors: list[ImportRowError] = []
        for raw in parsed.rows:
            try:
                staged.append(self._stage_row(raw, parsed, fixed_account, lookups))
            except RowRejected as exc:
                errors.append(
                    ImportRowError(row=raw.row, field=exc.field, message=str(exc))
                )
            except Exception as exc:
                logger.warning(f"import_row_error: row={raw.row} error={exc!r}")
                errors.append(
                    ImportRowError(
                        row=raw.row,
                        message=str(exc) or "Unknown error processing transaction",
                    )
                )
        return staged, errors

    def _stage_row(
        self,
        raw: RawImportRow,
        parsed: ParsedCSV,
        fixed_account: Optional[Account],
        lookups: "_ImportLookups",
    ) -> dict[str, object]:
        amount_raw = raw.get("amount")
        try:
            amount_cents = parse_amount(amount_raw, allow_negative=True)
        except ValueError:
            raise RowRejected("amount", f"Invalid amount: {amount_raw}") from None
        if amount_cents <= 0:
            raise RowRejected("amount", f"Invalid amount: {amount_raw}")

        date_raw = raw.get("date")
        try:
            txn_date = parse_date(date_raw)
        except ValueError:
            raise RowRejected("date", f"Invalid date: {date_raw}") from None

        type_label = raw.get("type")
        description = raw.get("description")
        type_name = resolve_transaction_type_name(raw.get("transaction_type"), type_label)
        type_id = lookups.type_ids.get(type_name)
        if type_id is None:
            raise RowRejected("transactionType", f"Unknown transaction type: {type_name}")

        category_name = raw.get("budget_category") or infer_budget_category(
            type_label, description, amount_cents
        )
        category_id = lookups.category_id(category_name)
        if category_id is None:
            raise RowRejected("category", f"Unknown budget category: {category_name}")

        account = fixed_account or self._row_account(raw, lookups)

        if parsed.has_column("reimbursable") and raw.get("reimbursable"):
            reimbursable = parse_reimbursable_flag(raw.get("reimbursable"))
        else:
            reimbursable = is_reimbursable_expense(description)
        reimbursement_id = None
        if reimbursable:
            reimbursement_id = raw.get("reimbursement_id") or make_reimbursement_id(
                txn_date, raw.row - 1
            )

        return {
            "account_id": account.id,
            "currency_id": account.currency_id,
            "date": txn_date,
            "amount_cents": amount_cents,
            "description": description or None,
            "notes": raw.get("notes") or None,
            "expense_type_id": lookups.expense_type_id(
                raw.get("expense_type") or type_label
            ),
            "transaction_type_id": type_id,
            "budget_category_id": category_id,
            "is_reimbursable": reimbursable,
            "reimbursement_id": reimbursement_id,
        }

    def _row_account(self, raw: RawImportRow, lookups: "_ImportLookups") -> Account:
        id_raw = raw.get("account_id")
        name_raw = raw.get("account")
        key = (id_raw, name_raw)
        if key in lookups.accounts:
            account = lookups.accounts[key]
        else:
            account = None
            if id_raw.isdigit():
                account = self.accounts.get(int(id_raw))
            if account is None and name_raw:
                account = self.accounts.find_by_name(name_raw)
            lookups.accounts[key] = account
        if account is None:
            raise RowRejected(
                "account",
                f"Account not found (id: {id_raw or '-'}, name: {name_raw or '-'})",
            )
        return account

    def _import_keys(self, staged: list[dict[str, object]]) -> None:
        seen: Counter = Counter()
        for row in staged:
            identity = (
                row["account_id"],
                row["date"].isoformat(),
                row["amount_cents"],
                row["transaction_type_id"],
                row["description"] or "",
            )
            occurrence = seen[identity]
            seen[identity] += 1
            material = "|".join(str(part) for part in (self.user_id, *identity, occurrence))
            row["import_key"] = hashlib.sha256(material.encode("utf-8")).hexdigest()

    def _bulk_insert(
        self, staged: list[dict[str, object]]
    ) -> tuple[list[dict[str, object]], int]:
        if not staged:
            return [], 0
        account_service = AccountService(self.session, self.user_id)
        for account_id in sorted({row["account_id"] for row in staged}):
            account_service.ensure_initial_balance(account_id)

        self._import_keys(staged)
        existing = self.transactions.existing_import_keys(
            row["import_key"] for row in staged
        )
        fresh = [row for row in staged if row["import_key"] not in existing]
        self.transactions.bulk_insert(fresh)
        self.session.commit()
        return fresh, len(staged) - len(fresh)

    def _record_history(
        self,
        file_name: str,
        total: int,
        success_count: int,
        error_count: int,
        errors: list[ImportRowError],
    ) -> ImportHistory:
        entry = self.history_repo.add(
            ImportHistory(
                file_name=file_name,
                record_count=total,
                success_count=success_count,
                error_count=error_count,
                errors_json=json.dumps([error.model_dump() for error in errors]),
            )
        )
        self.session.commit()
        return entry


@dataclass
class _ImportLookups:
    type_ids: dict[str, int]
    category_ids: dict[str, int]
    expense_types: list[ExpenseType]
    accounts: dict[tuple[str, str], Optional[Account]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self._categories_lower = {
            name.lower(): category_id for name, category_id in self.category_ids.items()
        }
        self._expense_lower = {et.name.lower(): et.id for et in self.expense_types}

    def category_id(self, name: str) -> Optional[int]:
        if name in self.category_ids:
            return self.category_ids[name]
        return self._categories_lower.get(name.strip().lower())

    def expense_type_id(self, label: str) -> Optional[int]:
        label = (label or "").strip().lower()
        if not label:
            return None
        if label in self._expense_lower:
            return self._expense_lower[label]
        best_distance: Optional[int] = None
        best: list[int] = []
        for name, expense_type_id in self._expense_lower.items():
            dist = int(Levenshtein.distance(label, name))
            if best_distance is None or dist < best_distance:
                best_distance = dist
                best = [expense_type_id]
            elif dist == best_distance:
                best.append(expense_type_id)
        if best_distance is not None and best_distance <= 1 and len(best) == 1:
            return best[0]
        return None
