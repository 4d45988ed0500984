import csv
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from io import StringIO
from typing import Optional, Sequence

from models import Transaction, TransactionTypeName


HEADER_ALIASES: dict[str, tuple[str, ...]] = {
    "date": ("date", "fecha"),
    "amount": ("amount", "cantidad"),
    "type": ("type", "tipo"),
    "description": ("description", "descripción", "descripcion"),
    "reimbursable": ("reimbursable", "reembolsable"),
    "transaction_type": ("transaction type", "tipo de transacción", "tipo de transaccion"),
    "account": ("account", "account name", "cuenta"),
    "account_id": ("account id", "id de cuenta"),
    "expense_type": ("expense type", "tipo de gasto"),
    "budget_category": ("budget category", "source/dest", "categoría", "categoria"),
    "reimbursement_id": ("reimbursement id", "reimb id"),
    "notes": ("notes", "notas"),
}

EXPORT_HEADER = [
    "Account",
    "Account ID",
    "Date",
    "Amount",
    "Expense Type",
    "Description",
    "Budget Category",
    "Reimbursable",
    "Reimbursement ID",
    "Transaction Type",
]

_SUMMARY_ROW = re.compile(r"\b(total|sum)\b", re.IGNORECASE)
_TRANSFER_IN_WORDS = re.compile(r"\b(in|entrada)\b")
_AMOUNT_NOISE = re.compile(r"[¥$€£,\s]")
_DATE_FORMATS = ("%Y-%m-%d", "%d.%m.%Y", "%Y/%m/%d")
_AFFIRMATIVE = {"SI", "SÍ", "YES"}
# largest value an INTEGER column holds
MAX_AMOUNT_CENTS = 2**63 - 1


class CSVFormatError(ValueError):
    pass


@dataclass
class RawImportRow:
    row: int
    values: dict[str, str]

    def get(self, key: str) -> str:
        return self.values.get(key, "")


@dataclass
class ParsedCSV:
    columns: frozenset[str]
    rows: list[RawImportRow] = field(default_factory=list)

    def has_column(self, key: str) -> bool:
        return key in self.columns


def _canonical_header(raw: str) -> Optional[str]:
    name = raw.strip().strip('"').lower()
    for key, aliases in HEADER_ALIASES.items():
        if name in aliases:
            return key
    return None


def _is_dated_entry(values: dict[str, str]) -> bool:
    try:
        parse_date(values.get("date", ""))
        parse_amount(values.get("amount", ""), allow_negative=True)
    except ValueError:
        return False
    return True


def parse_import_csv(content: str) -> ParsedCSV:
    reader = csv.reader(StringIO(content.lstrip("\ufeff")))
    header: Optional[list[Optional[str]]] = None
    parsed: Optional[ParsedCSV] = None
    for cells in reader:
        if not any(cell.strip() for cell in cells):
            continue
        if header is None:
            header = [_canonical_header(cell) for cell in cells]
            columns = frozenset(key for key in header if key)
            missing = [key for key in ("date", "amount") if key not in columns]
            if "type" not in columns and "transaction_type" not in columns:
                missing.append("type")
            if missing:
                raise CSVFormatError(
                    "CSV must contain Date (or Fecha), Amount (or Cantidad) and "
                    "Type (or Tipo / Transaction Type) columns; missing: "
                    + ", ".join(missing)
                )
            parsed = ParsedCSV(columns=columns)
            continue

        values: dict[str, str] = {}
        for key, cell in zip(header, cells):
            if key and key not in values:
                values[key] = cell.strip()
        if _SUMMARY_ROW.search(values.get("description", "")) and not _is_dated_entry(
            values
        ):
            continue
        parsed.rows.append(RawImportRow(row=len(parsed.rows) + 1, values=values))

    if parsed is None:
        raise CSVFormatError("CSV file is empty")
    return parsed


def parse_amount(value: str, *, allow_negative: bool = False) -> int:
    clean = _AMOUNT_NOISE.sub("", value or "")
    try:
        amount = Decimal(clean)
        if not amount.is_finite():
            raise ValueError(f"Invalid amount: {value}")
        cents = int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    except InvalidOperation as exc:
        raise ValueError(f"Invalid amount: {value}") from exc
    if abs(cents) > MAX_AMOUNT_CENTS:
        raise ValueError(f"Amount out of range: {value}")
    if cents < 0 and not allow_negative:
        raise ValueError("Amount must be positive")
    return cents


def parse_date(value: str) -> date:
    value = (value or "").strip()
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(value, fmt).date()
        except ValueError:
            continue
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).date()
    except ValueError as exc:
        raise ValueError(f"Invalid date: {value}") from exc


def detect_transaction_type(type_label: str) -> TransactionTypeName:
    """Guess the ledger type from a free-text Type/Tipo column."""
    label = (type_label or "").strip().lower()
    if label in ("ingresos", "income"):
        return TransactionTypeName.income
    if "transfer" in label and _TRANSFER_IN_WORDS.search(label):
        return TransactionTypeName.account_transfer_in
    if "reembolso" in label or "reimbursement" in label:
        return TransactionTypeName.reimbursement
    return TransactionTypeName.expense


def resolve_transaction_type_name(explicit: str, type_label: str) -> str:
    if explicit:
        return explicit.strip().upper().replace(" ", "_")
    return detect_transaction_type(type_label).value


def infer_budget_category(type_label: str, description: str, amount_cents: int) -> str:
    label = (type_label or "").strip().lower()
    desc = (description or "").lower()

    if label in ("ingresos", "income"):
        if "interes" in desc or "interest" in desc:
            return "Savings"
        return "Expenses"

    if label in ("emergencia", "emergency") or any(
        word in desc for word in ("emergencia", "emergency", "problema", "problem")
    ):
        return "Emergencies"

    if amount_cents > 5_000_000 and any(
        word in desc for word in ("travel", "flight", "purchase", "large")
    ):
        return "Savings"

    own_account_markers = (
        "transferencia entre cuentas",
        "inter-account transfer",
        "account transfer",
    )
    if label in own_account_markers or any(m in desc for m in own_account_markers):
        return "Expenses"

    if "transfer" in desc:
        return "Savings"

    return "Expenses"


def is_reimbursable_expense(description: str) -> bool:
    desc = (description or "").lower()
    return any(
        keyword in desc
        for keyword in (
            "reimbursable",
            "reembolsable",
            "business expense",
            "work travel",
        )
    )


def parse_reimbursable_flag(value: str) -> bool:
    return (value or "").strip().upper() in _AFFIRMATIVE


def make_reimbursement_id(txn_date: date, index: int) -> str:
    return f"REIMB-{txn_date.strftime('%Y-%m')}-{index:03d}"


def sanitize_csv_value(value: str) -> str:
    """
    Sanitize CSV values to prevent formula injection by prefixing dangerous patterns with tab.
    """
    if not value or value.strip() == "":
        return ""

    value = value.strip()

    formula_triggers = ("=", "+", "-", "@", "\t", "\r")

    if value.startswith(formula_triggers):
        return "\t" + value

    dangerous_patterns = [
        r"^cmd\b",
        r"^powershell\b",
        r"^bash\b",
        r"^sh\b",
        r"^http[s]?://",
    ]

    for pattern in dangerous_patterns:
        if re.match(pattern, value, re.IGNORECASE):
            return "\t" + value

    return value


def export_transactions(transactions: Sequence[Transaction]) -> str:
    output = StringIO()
    writer = csv.writer(output)
    writer.writerow(EXPORT_HEADER)
    for txn in transactions:
        writer.writerow(
            [
                sanitize_csv_value(txn.account.name if txn.account else ""),
                txn.account_id,
                txn.date.isoformat(),
                f"{Decimal(txn.amount_cents) / 100:.2f}",
                sanitize_csv_value(txn.expense_type.name if txn.expense_type else ""),
                sanitize_csv_value(txn.description or ""),
                sanitize_csv_value(
                    txn.budget_category.name if txn.budget_category else ""
                ),
                "YES" if txn.is_reimbursable else "NO",
                txn.reimbursement_id or "",
                txn.transaction_type.name.value if txn.transaction_type else "",
            ]
        )
    return output.getvalue()
