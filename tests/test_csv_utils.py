from datetime import date

import pytest

from csv_utils import (
    CSVFormatError,
    detect_transaction_type,
    infer_budget_category,
    is_reimbursable_expense,
    make_reimbursement_id,
    parse_amount,
    parse_date,
    parse_import_csv,
    parse_reimbursable_flag,
    resolve_transaction_type_name,
    sanitize_csv_value,
)
from models import TransactionTypeName


def test_parse_import_csv_maps_spanish_headers_and_skips_noise() -> None:
    content = (
        "\ufeffFecha,Cantidad,Tipo,Descripción,Reembolsable\n"
        "2025-01-05,\"¥1,200\",Comida,Almuerzo,NO\n"
        "\n"
        ",,,,\n"
        "2025-01-06,300,Transporte,Tren,\n"
        ",1500,,Total,\n"
    )
    parsed = parse_import_csv(content)

    assert parsed.has_column("date")
    assert parsed.has_column("reimbursable")
    assert not parsed.has_column("account")
    assert [row.row for row in parsed.rows] == [1, 2]
    assert parsed.rows[0].get("amount") == "¥1,200"
    assert parsed.rows[0].get("description") == "Almuerzo"
    assert parsed.rows[1].get("reimbursable") == ""
    assert parsed.rows[1].get("account") == ""


def test_summary_rows_match_whole_words_only() -> None:
    content = "Date,Amount,Type,Description\n2025-01-05,10,Food,Sumo tickets\n"
    parsed = parse_import_csv(content)
    assert len(parsed.rows) == 1


def test_dated_rows_mentioning_totals_are_kept() -> None:
    content = (
        "Date,Amount,Type,Description\n"
        "2025-01-05,10,Food,Total Wine shop\n"
        ",10,,Sum of January\n"
        "Total,1510,,Total\n"
    )
    parsed = parse_import_csv(content)
    assert [row.get("description") for row in parsed.rows] == ["Total Wine shop"]


def test_transaction_type_column_satisfies_type_requirement() -> None:
    parsed = parse_import_csv("Date,Amount,Transaction Type\n2025-01-05,10,INCOME\n")
    assert parsed.rows[0].get("transaction_type") == "INCOME"


@pytest.mark.parametrize(
    "content",
    [
        "Amount,Type\n10,Food\n",
        "Date,Type\n2025-01-01,Food\n",
        "Date,Amount,Description\n2025-01-01,10,Lunch\n",
        "",
        "\n\n",
    ],
)
def test_parse_import_csv_rejects_bad_structure(content) -> None:
    with pytest.raises(CSVFormatError):
        parse_import_csv(content)


@pytest.mark.parametrize(
    "raw, cents",
    [
        ("100", 10000),
        ("¥1,234", 123400),
        ("$ 12.5", 1250),
        ("€0.01", 1),
        ("£12.345", 1235),
        ("-5", -500),
    ],
)
def test_parse_amount(raw, cents) -> None:
    assert parse_amount(raw, allow_negative=True) == cents


@pytest.mark.parametrize(
    "raw", ["abc", "", "NaN", "Infinity", "1.2.3", "1e20", "-1e40"]
)
def test_parse_amount_rejects_non_numeric(raw) -> None:
    with pytest.raises(ValueError):
        parse_amount(raw, allow_negative=True)


def test_parse_amount_rejects_negative_by_default() -> None:
    with pytest.raises(ValueError):
        parse_amount("-1")


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("2025-03-04", date(2025, 3, 4)),
        ("04.03.2025", date(2025, 3, 4)),
        ("2025/03/04", date(2025, 3, 4)),
        ("2025-03-04T10:30:00Z", date(2025, 3, 4)),
    ],
)
def test_parse_date_formats(raw, expected) -> None:
    assert parse_date(raw) == expected


def test_parse_date_rejects_garbage() -> None:
    with pytest.raises(ValueError):
        parse_date("yesterday")


@pytest.mark.parametrize(
    "label, expected",
    [
        ("Ingresos", TransactionTypeName.income),
        ("income", TransactionTypeName.income),
        ("Reembolso", TransactionTypeName.reimbursement),
        ("Transfer in", TransactionTypeName.account_transfer_in),
        ("Transferencia entrada", TransactionTypeName.account_transfer_in),
        ("Inter-Account Transfer", TransactionTypeName.expense),
        ("Food", TransactionTypeName.expense),
        ("", TransactionTypeName.expense),
    ],
)
def test_detect_transaction_type(label, expected) -> None:
    assert detect_transaction_type(label) == expected


def test_explicit_transaction_type_column_wins() -> None:
    assert resolve_transaction_type_name("account transfer in", "Ingresos") == (
        "ACCOUNT_TRANSFER_IN"
    )
    assert resolve_transaction_type_name("", "Ingresos") == "INCOME"


@pytest.mark.parametrize(
    "label, description, cents, expected",
    [
        ("Ingresos", "Intereses banco", 1000, "Savings"),
        ("Ingresos", "Salario", 1000, "Expenses"),
        ("Emergencia", "", 1000, "Emergencies"),
        ("Food", "problema con el coche", 1000, "Emergencies"),
        ("Travel", "Flight to Osaka", 6_000_000, "Savings"),
        ("Travel", "Flight to Osaka", 100_000, "Expenses"),
        ("Inter-Account Transfer", "", 1000, "Expenses"),
        ("Bank", "transfer to broker", 1000, "Savings"),
        ("Food", "Lunch", 1000, "Expenses"),
    ],
)
def test_infer_budget_category(label, description, cents, expected) -> None:
    assert infer_budget_category(label, description, cents) == expected


def test_reimbursable_heuristics() -> None:
    assert is_reimbursable_expense("Taxi - work travel")
    assert is_reimbursable_expense("Cena REEMBOLSABLE")
    assert not is_reimbursable_expense("Groceries")
    assert parse_reimbursable_flag("sí")
    assert parse_reimbursable_flag("YES")
    assert parse_reimbursable_flag(" si ")
    assert not parse_reimbursable_flag("no")


def test_reimbursement_id_format() -> None:
    assert make_reimbursement_id(date(2025, 3, 4), 0) == "REIMB-2025-03-000"
    assert make_reimbursement_id(date(2025, 11, 30), 42) == "REIMB-2025-11-042"


def test_sanitize_csv_value_guards_formulas() -> None:
    assert sanitize_csv_value("=SUM(A1:A3)") == "\t=SUM(A1:A3)"
    assert sanitize_csv_value("https://example.com") == "\thttps://example.com"
    assert sanitize_csv_value("  Lunch ") == "Lunch"
    assert sanitize_csv_value("") == ""
