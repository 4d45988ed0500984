import logging
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Optional

from fastapi import (
    Depends,
    FastAPI,
    File,
    Form,
    Header,
    HTTPException,
    Query,
    Request,
    UploadFile,
)
from fastapi.responses import JSONResponse, Response, StreamingResponse
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from config import get_settings
from csrf import generate_csrf_token, validate_csrf_token
from csv_utils import parse_amount
from database import SessionLocal, session_scope
from fx_rates import ConfigurationError, CurrencyConverter, quantize_cents
from models import TransactionTypeName
from periods import resolve_period
from reference_data import seed_reference_data
from repositories import CurrencyRepository, TransactionFilters
from scheduler import SchedulerManager
from schemas import (
    AccountIn,
    AccountOut,
    BudgetIn,
    BudgetOut,
    CurrencyOut,
    ImportHistoryOut,
    ImportResult,
    RecalculateIn,
    RecalculateOut,
    TransactionIn,
    TransactionOut,
)
from services import (
    AccountService,
    BudgetService,
    ImportFailed,
    ImportService,
    TransactionService,
)


logger = logging.getLogger(__name__)

app = FastAPI(title="Ledger")


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def current_user(x_user_id: int = Header(..., alias="X-User-Id")) -> int:
    """The upstream auth layer sets X-User-Id; it is trusted as-is."""
    if x_user_id <= 0:
        raise HTTPException(status_code=400, detail="Invalid user id")
    return x_user_id


scheduler_manager = SchedulerManager()


@app.on_event("startup")
def startup_event():
    with session_scope() as session:
        seed_reference_data(session)
    scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


@app.exception_handler(ImportFailed)
def import_failed_handler(request: Request, exc: ImportFailed):
    return JSONResponse(status_code=500, content={"detail": str(exc)})


@app.exception_handler(ConfigurationError)
def configuration_error_handler(request: Request, exc: ConfigurationError):
    logger.error(f"configuration_error: path={request.url.path} error={exc}")
    return JSONResponse(status_code=500, content={"detail": str(exc)})


@app.exception_handler(StaleDataError)
def stale_data_handler(request: Request, exc: StaleDataError):
    logger.warning(f"concurrent_update: path={request.url.path}")
    return JSONResponse(
        status_code=409,
        content={"detail": "The record was changed concurrently, retry the request"},
    )


def filters_from_query(
    period: Optional[str] = None,
    start: Optional[str] = None,
    end: Optional[str] = None,
    account_id: Optional[int] = None,
    category_id: Optional[int] = None,
    type: Optional[str] = None,
    expense_type_id: Optional[int] = None,
    min_amount: Optional[str] = None,
    max_amount: Optional[str] = None,
    q: Optional[str] = None,
) -> TransactionFilters:
    try:
        window = resolve_period(period, start, end)
        txn_type = TransactionTypeName(type.upper()) if type else None
        min_cents = parse_amount(min_amount) if min_amount else None
        max_cents = parse_amount(max_amount) if max_amount else None
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return TransactionFilters(
        start_date=window.start if window else None,
        end_date=window.end if window else None,
        account_id=account_id,
        category_id=category_id,
        transaction_type=txn_type,
        expense_type_id=expense_type_id,
        min_amount_cents=min_cents,
        max_amount_cents=max_cents,
        search=q.strip() if q and q.strip() else None,
    )


@app.post("/accounts", response_model=AccountOut, status_code=201)
def create_account(
    payload: AccountIn,
    user_id: int = Depends(current_user),
    db: Session = Depends(get_db),
):
    try:
        return AccountService(db, user_id).create(payload)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.get("/accounts", response_model=list[AccountOut])
def list_accounts(user_id: int = Depends(current_user), db: Session = Depends(get_db)):
    return AccountService(db, user_id).list_all()


@app.get("/accounts/{account_id}", response_model=AccountOut)
def get_account(
    account_id: int,
    user_id: int = Depends(current_user),
    db: Session = Depends(get_db),
):
    try:
        return AccountService(db, user_id).get(account_id)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.post("/accounts/{account_id}/recompute")
def recompute_account(
    account_id: int,
    user_id: int = Depends(current_user),
    db: Session = Depends(get_db),
):
    try:
        result = AccountService(db, user_id).recompute_account_balance(account_id)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {
        "account_id": account_id,
        "balance_cents": result.balance_cents,
        "warning": result.warning,
    }


@app.post("/accounts/{account_id}/recalculate", response_model=RecalculateOut)
def recalculate_account(
    account_id: int,
    payload: Optional[RecalculateIn] = None,
    user_id: int = Depends(current_user),
    db: Session = Depends(get_db),
):
    explicit = payload.initial_balance_cents if payload else None
    try:
        result = AccountService(db, user_id).recalculate_account_balance(
            account_id, explicit
        )
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return RecalculateOut(
        account=AccountOut.model_validate(result.account),
        initial_balance_cents=result.initial_balance_cents,
        calculated_balance_cents=result.balance_cents,
        transaction_count=result.transaction_count,
        warning=result.warning,
    )


@app.post("/admin/backfill-initial-balances")
def backfill_initial_balances(
    user_id: int = Depends(current_user), db: Session = Depends(get_db)
):
    count = AccountService(db, user_id).backfill_initial_balances()
    return {"backfilled": count}


@app.post("/transactions", response_model=TransactionOut, status_code=201)
def create_transaction(
    payload: TransactionIn,
    user_id: int = Depends(current_user),
    db: Session = Depends(get_db),
):
    try:
        return TransactionService(db, user_id).create(payload)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.get("/transactions", response_model=list[TransactionOut])
def list_transactions(
    filters: TransactionFilters = Depends(filters_from_query),
    user_id: int = Depends(current_user),
    db: Session = Depends(get_db),
):
    return TransactionService(db, user_id).list(filters)


@app.get("/transactions/{transaction_id}", response_model=TransactionOut)
def get_transaction(
    transaction_id: int,
    user_id: int = Depends(current_user),
    db: Session = Depends(get_db),
):
    try:
        return TransactionService(db, user_id).get(transaction_id)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.put("/transactions/{transaction_id}", response_model=TransactionOut)
def update_transaction(
    transaction_id: int,
    payload: TransactionIn,
    user_id: int = Depends(current_user),
    db: Session = Depends(get_db),
):
    try:
        return TransactionService(db, user_id).update(transaction_id, payload)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.delete("/transactions/{transaction_id}", status_code=204)
def delete_transaction(
    transaction_id: int,
    user_id: int = Depends(current_user),
    db: Session = Depends(get_db),
):
    try:
        TransactionService(db, user_id).delete(transaction_id)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return Response(status_code=204)


@app.post("/budgets", response_model=BudgetOut, status_code=201)
def create_budget(
    payload: BudgetIn,
    user_id: int = Depends(current_user),
    db: Session = Depends(get_db),
):
    try:
        return BudgetService(db, user_id).create(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.get("/budgets", response_model=list[BudgetOut])
def list_budgets(
    year: Optional[int] = None,
    user_id: int = Depends(current_user),
    db: Session = Depends(get_db),
):
    year = year or datetime.now().year
    return BudgetService(db, user_id).list_for_year(year)


@app.post("/budgets/{category_id}/{year}/recompute")
def recompute_budget(
    category_id: int,
    year: int,
    user_id: int = Depends(current_user),
    db: Session = Depends(get_db),
):
    balance = BudgetService(db, user_id).recompute_budget_balance(category_id, year)
    return {
        "category_id": category_id,
        "year": year,
        "recomputed": balance is not None,
        "current_balance_cents": balance,
    }


@app.get("/import/csrf-token")
def import_csrf_token(user_id: int = Depends(current_user)):
    return {"csrf_token": generate_csrf_token(user_id)}


@app.post("/import", response_model=ImportResult)
async def import_csv(
    csrf_token: str = Form(...),
    file: UploadFile = File(...),
    account_id: Optional[int] = Form(None),
    user_id: int = Depends(current_user),
    db: Session = Depends(get_db),
):
    if not validate_csrf_token(csrf_token, user_id):
        raise HTTPException(status_code=400, detail="Invalid CSRF token")
    raw = await file.read()
    if len(raw) > get_settings().import_max_bytes:
        raise HTTPException(status_code=413, detail="CSV file too large")
    try:
        content = raw.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise HTTPException(status_code=400, detail="CSV must be UTF-8") from exc
    try:
        return ImportService(db, user_id).import_transactions(
            content, account_id, file_name=file.filename or "CSV Import"
        )
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.get("/import/history", response_model=list[ImportHistoryOut])
def import_history(
    limit: int = Query(10, ge=1, le=100),
    user_id: int = Depends(current_user),
    db: Session = Depends(get_db),
):
    return ImportService(db, user_id).history(limit)


@app.get("/export.csv")
def export_csv(
    filters: TransactionFilters = Depends(filters_from_query),
    user_id: int = Depends(current_user),
    db: Session = Depends(get_db),
):
    csv_text = ImportService(db, user_id).export_transactions(filters)
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    return StreamingResponse(
        iter([csv_text]),
        media_type="text/csv",
        headers={
            "Content-Disposition": f"attachment; filename=transactions_{timestamp}.csv"
        },
    )


@app.get("/currencies", response_model=list[CurrencyOut])
def list_currencies(db: Session = Depends(get_db)):
    return CurrencyRepository(db).list_all()


@app.get("/currencies/convert")
def convert_currency(
    amount: str,
    from_code: str = Query(..., alias="from"),
    to_code: Optional[str] = Query(None, alias="to"),
    db: Session = Depends(get_db),
):
    try:
        value = Decimal(amount)
    except InvalidOperation as exc:
        raise HTTPException(status_code=400, detail=f"Invalid amount: {amount}") from exc
    if not value.is_finite():
        raise HTTPException(status_code=400, detail=f"Invalid amount: {amount}")
    converter = CurrencyConverter(db)
    try:
        if to_code:
            result = converter.convert(value, from_code, to_code)
        else:
            result = converter.convert_to_base_currency(value, from_code)
            to_code = converter.base_currency().code
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {
        "amount": f"{value:f}",
        "from": from_code.upper(),
        "to": to_code.upper(),
        "result": f"{result:f}",
        "formatted": converter.format_amount(quantize_cents(result * 100), to_code),
    }


@app.post("/currencies/refresh")
def refresh_currencies(
    user_id: int = Depends(current_user), db: Session = Depends(get_db)
):
    summary = CurrencyConverter(db).update_exchange_rates()
    logger.info(f"fx_refresh_requested: user={user_id} fetched={summary.fetched}")
    return {
        "base": summary.base,
        "fetched": summary.fetched,
        "updated": {code: str(rate) for code, rate in summary.updated.items()},
        "missing": summary.missing,
    }


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
