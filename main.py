import logging
from datetime import date
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request, Response
from sqlalchemy.orm import Session

from config import get_settings
from database import get_db
from ledger import UnrecognizedAccountType, UnrecognizedTransactionType
from models import Account, EntityType, TransactionType
from periods import Period, resolve_period
from schemas import AccountIn, BalanceIn, BudgetCellIn, TransactionIn
from services import (
    AccountService,
    BalanceService,
    BudgetService,
    LedgerService,
    NotFoundError,
    TransactionFilters,
    TransactionService,
)

logging.basicConfig(level=get_settings().log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title="Ledger")


def _http_error(exc: ValueError) -> HTTPException:
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, (UnrecognizedAccountType, UnrecognizedTransactionType)):
        logger.error(f"data_model_drift: {exc}")
        return HTTPException(status_code=422, detail=str(exc))
    return HTTPException(status_code=400, detail=str(exc))


def _int_param(request: Request, name: str) -> Optional[int]:
    raw = request.query_params.get(name)
    if raw in (None, ""):
        return None
    try:
        return int(raw)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f"Invalid {name}") from exc


def period_from_request(request: Request) -> Period:
    period_slug = request.query_params.get("period")
    start = request.query_params.get("start")
    end = request.query_params.get("end")
    try:
        return resolve_period(period_slug, start, end)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def filters_from_request(request: Request) -> TransactionFilters:
    type_param = request.query_params.get("type")
    txn_type = None
    if type_param:
        try:
            txn_type = TransactionType(type_param.upper())
        except ValueError as exc:
            raise HTTPException(status_code=400, detail="Invalid type") from exc
    return TransactionFilters(
        group_id=_int_param(request, "group"),
        account_id=_int_param(request, "account"),
        type=txn_type,
        subcategory_id=_int_param(request, "subcategory"),
    )


def year_from_request(request: Request) -> int:
    return _int_param(request, "year") or date.today().year


def account_payload(account: Account) -> dict[str, object]:
    return {
        "id": account.id,
        "name": account.name,
        "type": account.type.value,
        "debit_method": account.debit_method.value if account.debit_method else None,
        "subcategory_id": account.subcategory_id,
        "credit_due_day": account.credit_due_day,
        "credit_closing_day": account.credit_closing_day,
        "group_id": account.group_id,
    }


@app.get("/api/accounts")
def api_accounts(request: Request, db: Session = Depends(get_db)):
    try:
        accounts = AccountService(db).list_all(group_id=_int_param(request, "group"))
    except ValueError as exc:
        raise _http_error(exc) from exc
    return [account_payload(a) for a in accounts]


@app.post("/api/accounts", status_code=201)
def api_create_account(data: AccountIn, db: Session = Depends(get_db)):
    try:
        account = AccountService(db).create(data)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return account_payload(account)


@app.get("/api/accounts/{account_id}/balance")
def api_account_balance(account_id: int, db: Session = Depends(get_db)):
    try:
        balance = BalanceService(db).current_balance(account_id)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return {
        "account_id": account_id,
        "amount_cents": balance.amount_cents,
        "as_of": balance.as_of.isoformat() if balance.as_of else None,
    }


@app.post("/api/accounts/{account_id}/balances", status_code=201)
def api_record_balance(
    account_id: int, data: BalanceIn, db: Session = Depends(get_db)
):
    try:
        anchor = BalanceService(db).record_balance(account_id, data)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return {
        "id": anchor.id,
        "amount_cents": anchor.amount_cents,
        "occurred_at": anchor.occurred_at.isoformat(),
    }


@app.get("/api/accounts/{account_id}/history")
def api_account_history(
    account_id: int, request: Request, db: Session = Depends(get_db)
):
    period = period_from_request(request)
    try:
        return LedgerService(db).account_history(account_id, period)
    except ValueError as exc:
        raise _http_error(exc) from exc


@app.get("/api/transactions")
def api_transactions(request: Request, db: Session = Depends(get_db)):
    period = period_from_request(request)
    filters = filters_from_request(request)
    try:
        return LedgerService(db).day_view(period, filters)
    except ValueError as exc:
        raise _http_error(exc) from exc


@app.post("/api/transactions", status_code=201)
def api_create_transaction(data: TransactionIn, db: Session = Depends(get_db)):
    try:
        txn = TransactionService(db).create(data)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return {"id": txn.id, "type": txn.type.value, "amount_cents": txn.amount_cents}


@app.delete("/api/transactions/{transaction_id}")
def api_delete_transaction(transaction_id: int, db: Session = Depends(get_db)):
    try:
        TransactionService(db).delete(transaction_id)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return Response(status_code=204)


@app.get("/api/transactions/aggregated")
def api_transactions_aggregated(request: Request, db: Session = Depends(get_db)):
    year = year_from_request(request)
    month = _int_param(request, "month")
    try:
        rows = LedgerService(db).actuals(year, group_id=_int_param(request, "group"))
    except ValueError as exc:
        raise _http_error(exc) from exc
    return [
        {
            "subcategory_id": row.subcategory_id,
            "year": row.year,
            "month": row.month,
            "type": row.type.value,
            "total_cents": row.total_cents,
            "count": row.count,
            "user_id": row.user_id,
        }
        for row in rows
        if month is None or row.month == month
    ]


@app.get("/api/budgets")
def api_budgets(request: Request, db: Session = Depends(get_db)):
    year = year_from_request(request)
    type_param = (request.query_params.get("type") or "EXPENSE").upper()
    try:
        entity_type = EntityType(type_param)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid type") from exc
    try:
        return BudgetService(db).grid(
            year, entity_type, group_id=_int_param(request, "group")
        )
    except ValueError as exc:
        raise _http_error(exc) from exc


@app.put("/api/budgets/cell")
def api_upsert_budget_cell(data: BudgetCellIn, db: Session = Depends(get_db)):
    try:
        budget = BudgetService(db).upsert_cell(data)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return {
        "id": budget.id,
        "name": budget.name,
        "subcategory_id": budget.subcategory_id,
        "year": budget.year,
        "month": budget.month,
        "amount_cents": budget.amount_cents,
        "type": budget.type.value,
    }


@app.get("/api/annual-review")
def api_annual_review(request: Request, db: Session = Depends(get_db)):
    year = year_from_request(request)
    try:
        return LedgerService(db).annual_review(
            year, group_id=_int_param(request, "group")
        )
    except ValueError as exc:
        raise _http_error(exc) from exc


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
