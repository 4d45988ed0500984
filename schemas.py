from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from csv_utils import MAX_AMOUNT_CENTS
from models import TransactionTypeName


class AccountIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    type: str = Field(default="checking", min_length=1, max_length=40)
    currency_code: str = Field(..., min_length=3, max_length=3)
    balance_cents: int = 0


class AccountOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    type: str
    balance_cents: int
    initial_balance_cents: Optional[int]
    currency_id: int
    is_active: bool


class RecalculateIn(BaseModel):
    initial_balance_cents: Optional[int] = None


class RecalculateOut(BaseModel):
    account: AccountOut
    initial_balance_cents: int
    calculated_balance_cents: int
    transaction_count: int
    warning: Optional[str] = None


class TransactionIn(BaseModel):
    account_id: int
    date: date
    amount_cents: int = Field(..., gt=0, le=MAX_AMOUNT_CENTS)
    transaction_type: TransactionTypeName
    budget_category_id: int
    currency_code: Optional[str] = Field(default=None, min_length=3, max_length=3)
    expense_type_id: Optional[int] = None
    description: Optional[str] = Field(default=None, max_length=300)
    notes: Optional[str] = None
    is_reimbursable: bool = False
    reimbursement_id: Optional[str] = Field(default=None, max_length=40)
    linked_transaction_id: Optional[int] = None


class TransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    account_id: int
    currency_id: int
    date: date
    amount_cents: int
    transaction_type_id: int
    expense_type_id: Optional[int]
    budget_category_id: int
    description: Optional[str]
    notes: Optional[str]
    is_reimbursable: bool
    reimbursement_id: Optional[str]
    linked_transaction_id: Optional[int]


class BudgetIn(BaseModel):
    category_id: int
    year: int = Field(..., ge=1970, le=3000)
    starting_balance_cents: int = 0
    allocated_amount_cents: int = Field(default=0, ge=0)


class BudgetOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    category_id: int
    year: int
    starting_balance_cents: int
    allocated_amount_cents: int
    current_balance_cents: int


class ImportRowError(BaseModel):
    row: int
    field: Optional[str] = None
    message: str


class ImportResult(BaseModel):
    success: bool
    total_records: int
    success_count: int
    error_count: int
    errors: list[ImportRowError] = Field(default_factory=list)
    duplicate_count: int = 0


class ImportHistoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    file_name: str
    record_count: int
    success_count: int
    error_count: int
    errors_json: str
    imported_at: datetime


class CurrencyOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    code: str
    name: str
    symbol: str
    rate_micros: int
    is_base: bool
