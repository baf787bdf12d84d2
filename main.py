import logging
import os
from datetime import date
from typing import Optional

from fastapi import Depends, FastAPI, Form, HTTPException, Request
from fastapi.responses import JSONResponse, Response
from sqlalchemy.orm import Session

from balances import SnapshotStore
from csrf import generate_csrf_token, validate_csrf_token
from database import get_db, init_db
from models import (
    Account,
    MonthlyAccountBalance,
    OneTimeTransaction,
    RecurringTransaction,
    TransactionType,
)
from periods import resolve_month
from recurrence import local_today
from schemas import (
    AccountIn,
    AccountOrderIn,
    MonthlySummaryOut,
    OneTimeTransactionIn,
    OneTimeTransactionUpdate,
    OpeningBalanceIn,
    RecurringAmountIn,
    RecurringBulkAmountIn,
    RecurringTransactionIn,
    RecurringTransferIn,
    SavingsPredictionOut,
    TransferIn,
    YearMonthIn,
)
from services import (
    AccountService,
    BalanceProcessingService,
    MonthlyBalanceService,
    NotFoundError,
    OneTimeTransactionService,
    PredictionService,
    RecurringTransactionService,
    SummaryService,
)

logging.basicConfig(
    level=os.getenv("LEDGER_LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Monthly Ledger")


@app.on_event("startup")
def startup_event():
    if os.getenv("LEDGER_CREATE_TABLES", "1") == "1":
        init_db()


def parse_amount(value: str, *, allow_negative: bool = False) -> int:
    """Parse a whole-yen amount such as ``"¥12,000"``."""
    clean = value.strip().replace("¥", "").replace("円", "")
    clean = clean.replace(",", "").replace(" ", "")
    try:
        amount = int(clean)
    except ValueError as exc:
        raise ValueError("Invalid amount") from exc
    if amount < 0 and not allow_negative:
        raise ValueError("Amount must be positive")
    return amount


def optional_date(value: Optional[str]) -> Optional[date]:
    return date.fromisoformat(value) if value else None


def optional_int(value: Optional[str]) -> Optional[int]:
    return int(value) if value not in (None, "") else None


async def checked_form(request: Request):
    form = await request.form()
    if not validate_csrf_token(form.get("csrf_token", "")):
        raise HTTPException(status_code=400, detail="Invalid CSRF token")
    return form


def account_payload(account: Account) -> dict:
    return {
        "id": account.id,
        "name": account.name,
        "current_balance": account.current_balance,
        "sort_order": account.sort_order,
    }


def one_time_payload(txn: OneTimeTransaction) -> dict:
    return {
        "id": txn.id,
        "account_id": txn.account_id,
        "name": txn.name,
        "amount": txn.amount,
        "type": txn.type.value,
        "transaction_date": txn.transaction_date.isoformat(),
        "description": txn.description,
        "transfer_pair_id": txn.transfer_pair_id,
    }


def recurring_payload(rule: RecurringTransaction) -> dict:
    return {
        "id": rule.id,
        "account_id": rule.account_id,
        "name": rule.name,
        "default_amount": rule.default_amount,
        "type": rule.type.value,
        "day_of_month": rule.day_of_month,
        "description": rule.description,
        "transfer_pair_id": rule.transfer_pair_id,
    }


def snapshot_payload(row: MonthlyAccountBalance) -> dict:
    return {
        "account_id": row.account_id,
        "year": row.year,
        "month": row.month,
        "balance": row.balance,
    }


def recurring_in_from_form(form) -> RecurringTransactionIn:
    return RecurringTransactionIn(
        account_id=optional_int(form.get("account_id")),
        name=form.get("name"),
        default_amount=parse_amount(form["default_amount"]),
        type=TransactionType(form["type"]),
        day_of_month=int(form["day_of_month"]),
        description=form.get("description") or None,
    )


@app.get("/api/csrf-token")
def api_csrf_token():
    return {"csrf_token": generate_csrf_token()}


@app.get("/api/summary", response_model=MonthlySummaryOut)
def api_summary(request: Request, db: Session = Depends(get_db)):
    today = local_today()
    try:
        ym = resolve_month(
            request.query_params.get("year"),
            request.query_params.get("month"),
            today=today,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    try:
        summary = SummaryService(db).monthly_summary(ym.year, ym.month, today=today)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return MonthlySummaryOut.model_validate(summary)


@app.get("/api/predictions", response_model=list[SavingsPredictionOut])
def api_predictions(request: Request, db: Session = Depends(get_db)):
    service = PredictionService(db)
    try:
        if request.query_params.get("view") == "horizons":
            predictions = service.horizon_predictions()
        else:
            months = int(request.query_params.get("months", "12"))
            predictions = service.monthly_predictions(months)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return [SavingsPredictionOut.model_validate(p) for p in predictions]


@app.get(
    "/api/accounts/{account_id}/predictions",
    response_model=list[SavingsPredictionOut],
)
def api_account_predictions(account_id: int, db: Session = Depends(get_db)):
    try:
        predictions = PredictionService(db).account_predictions(account_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return [SavingsPredictionOut.model_validate(p) for p in predictions]


@app.post("/api/monthly-balances/record")
def api_record_monthly_balances(
    year: int = Form(...),
    month: int = Form(...),
    csrf_token: str = Form(...),
    db: Session = Depends(get_db),
):
    if not validate_csrf_token(csrf_token):
        raise HTTPException(status_code=400, detail="Invalid CSRF token")
    result = MonthlyBalanceService(db).record_monthly_balances(year, month)
    status = 200 if result.success else 400
    return JSONResponse(status_code=status, content=result.as_dict())


@app.post("/api/monthly-balances/invalidate")
def api_invalidate_monthly_balances(
    year: int = Form(...),
    month: int = Form(...),
    csrf_token: str = Form(...),
    db: Session = Depends(get_db),
):
    if not validate_csrf_token(csrf_token):
        raise HTTPException(status_code=400, detail="Invalid CSRF token")
    try:
        data = YearMonthIn(year=year, month=month)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    deleted = MonthlyBalanceService(db).invalidate_future_monthly_balances(
        data.year, data.month
    )
    return {"deleted": deleted}


@app.get("/api/accounts")
def api_accounts(db: Session = Depends(get_db)):
    return {"items": [account_payload(a) for a in AccountService(db).list_all()]}


@app.post("/api/accounts")
async def create_account(request: Request, db: Session = Depends(get_db)):
    form = await checked_form(request)
    try:
        data = AccountIn(
            name=form.get("name"),
            current_balance=parse_amount(
                form.get("current_balance") or "0", allow_negative=True
            ),
            sort_order=optional_int(form.get("sort_order")),
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    account = AccountService(db).create(data)
    return JSONResponse(status_code=201, content=account_payload(account))


@app.post("/api/accounts/reorder")
async def reorder_accounts(request: Request, db: Session = Depends(get_db)):
    form = await checked_form(request)
    try:
        data = AccountOrderIn(
            account_ids=[int(v) for v in form.getlist("account_ids")]
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    try:
        AccountService(db).reorder(data.account_ids)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return Response(status_code=204)


@app.post("/api/accounts/process-due")
def process_due_transactions(
    csrf_token: str = Form(...),
    db: Session = Depends(get_db),
):
    if not validate_csrf_token(csrf_token):
        raise HTTPException(status_code=400, detail="Invalid CSRF token")
    changes = BalanceProcessingService(db).process_due()
    return {"changes": {str(k): v for k, v in changes.items()}}


@app.post("/api/accounts/{account_id}")
async def update_account(
    account_id: int, request: Request, db: Session = Depends(get_db)
):
    form = await checked_form(request)
    try:
        data = AccountIn(
            name=form.get("name"),
            current_balance=parse_amount(
                form.get("current_balance") or "0", allow_negative=True
            ),
            sort_order=optional_int(form.get("sort_order")),
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    try:
        account = AccountService(db).update(account_id, data)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return account_payload(account)


@app.post("/api/accounts/{account_id}/delete")
async def delete_account(
    account_id: int, request: Request, db: Session = Depends(get_db)
):
    await checked_form(request)
    try:
        AccountService(db).delete(account_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return Response(status_code=204)


@app.get("/api/accounts/{account_id}/monthly-balances")
def api_account_snapshots(account_id: int, db: Session = Depends(get_db)):
    try:
        rows = MonthlyBalanceService(db).list_for_account(account_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"items": [snapshot_payload(r) for r in rows]}


@app.post("/api/accounts/{account_id}/monthly-balances")
async def set_opening_balance(
    account_id: int, request: Request, db: Session = Depends(get_db)
):
    form = await checked_form(request)
    try:
        data = OpeningBalanceIn(
            year=int(form["year"]),
            month=int(form["month"]),
            balance=parse_amount(form["balance"], allow_negative=True),
        )
    except (KeyError, ValueError) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    service = MonthlyBalanceService(db)
    try:
        service.set_opening_balance(account_id, data.year, data.month, data.balance)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    balance = SnapshotStore(db, service.user_id).get(account_id, data.year, data.month)
    return {
        "account_id": account_id,
        "year": data.year,
        "month": data.month,
        "balance": balance,
    }


@app.get("/api/transactions")
def api_transactions(request: Request, db: Session = Depends(get_db)):
    params = request.query_params
    try:
        items = OneTimeTransactionService(db).list(
            account_id=optional_int(params.get("account_id")),
            start=optional_date(params.get("start")),
            end=optional_date(params.get("end")),
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"items": [one_time_payload(t) for t in items]}


@app.post("/api/transactions")
async def create_transaction(request: Request, db: Session = Depends(get_db)):
    form = await checked_form(request)
    try:
        data = OneTimeTransactionIn(
            account_id=int(form["account_id"]),
            name=form.get("name"),
            amount=parse_amount(form["amount"]),
            type=TransactionType(form["type"]),
            transaction_date=date.fromisoformat(form["transaction_date"]),
            description=form.get("description") or None,
        )
    except (KeyError, ValueError) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    try:
        txn = OneTimeTransactionService(db).create(data)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return JSONResponse(status_code=201, content=one_time_payload(txn))


@app.post("/api/transfers")
async def create_transfer(request: Request, db: Session = Depends(get_db)):
    form = await checked_form(request)
    try:
        data = TransferIn(
            source_account_id=int(form["source_account_id"]),
            destination_account_id=int(form["destination_account_id"]),
            name=form.get("name") or "Transfer",
            amount=parse_amount(form["amount"]),
            transaction_date=date.fromisoformat(form["transaction_date"]),
            description=form.get("description") or None,
        )
    except (KeyError, ValueError) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    try:
        legs = OneTimeTransactionService(db).create_transfer(data)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return JSONResponse(
        status_code=201, content={"items": [one_time_payload(t) for t in legs]}
    )


@app.post("/api/transactions/{transaction_id}")
async def update_transaction(
    transaction_id: int, request: Request, db: Session = Depends(get_db)
):
    form = await checked_form(request)
    try:
        amount = form.get("amount")
        type_value = form.get("type")
        data = OneTimeTransactionUpdate(
            name=form.get("name") or None,
            amount=parse_amount(amount) if amount else None,
            type=TransactionType(type_value) if type_value else None,
            transaction_date=optional_date(form.get("transaction_date")),
            description=form.get("description"),
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    service = OneTimeTransactionService(db)
    try:
        txn = service.update(transaction_id, data)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return one_time_payload(txn)


@app.post("/api/transactions/{transaction_id}/delete")
async def delete_transaction(
    transaction_id: int, request: Request, db: Session = Depends(get_db)
):
    await checked_form(request)
    try:
        OneTimeTransactionService(db).delete(transaction_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return Response(status_code=204)


@app.get("/api/recurring")
def api_recurring(request: Request, db: Session = Depends(get_db)):
    try:
        account_id = optional_int(request.query_params.get("account_id"))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    items = RecurringTransactionService(db).list(account_id)
    return {"items": [recurring_payload(r) for r in items]}


@app.post("/api/recurring")
async def create_recurring(request: Request, db: Session = Depends(get_db)):
    form = await checked_form(request)
    try:
        data = recurring_in_from_form(form)
    except (KeyError, ValueError) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    try:
        rule = RecurringTransactionService(db).create(data)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return JSONResponse(status_code=201, content=recurring_payload(rule))


@app.post("/api/recurring/transfers")
async def create_recurring_transfer(request: Request, db: Session = Depends(get_db)):
    form = await checked_form(request)
    try:
        data = RecurringTransferIn(
            source_account_id=int(form["source_account_id"]),
            destination_account_id=int(form["destination_account_id"]),
            name=form.get("name") or "Transfer",
            default_amount=parse_amount(form["default_amount"]),
            day_of_month=int(form["day_of_month"]),
            description=form.get("description") or None,
        )
    except (KeyError, ValueError) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    try:
        legs = RecurringTransactionService(db).create_transfer(data)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return JSONResponse(
        status_code=201, content={"items": [recurring_payload(r) for r in legs]}
    )


@app.post("/api/recurring/{rule_id}")
async def update_recurring(
    rule_id: int, request: Request, db: Session = Depends(get_db)
):
    form = await checked_form(request)
    try:
        data = recurring_in_from_form(form)
    except (KeyError, ValueError) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    try:
        rule = RecurringTransactionService(db).update(rule_id, data)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return recurring_payload(rule)


@app.post("/api/recurring/{rule_id}/delete")
async def delete_recurring(
    rule_id: int, request: Request, db: Session = Depends(get_db)
):
    await checked_form(request)
    try:
        RecurringTransactionService(db).delete(rule_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return Response(status_code=204)


@app.post("/api/recurring/{rule_id}/amounts")
async def set_recurring_amount(
    rule_id: int, request: Request, db: Session = Depends(get_db)
):
    form = await checked_form(request)
    try:
        data = RecurringAmountIn(
            year=int(form["year"]),
            month=int(form["month"]),
            amount=parse_amount(form["amount"]),
        )
    except (KeyError, ValueError) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    try:
        RecurringTransactionService(db).set_amount_for_month(
            rule_id, data.year, data.month, data.amount
        )
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"year": data.year, "month": data.month, "amount": data.amount}


@app.post("/api/recurring/{rule_id}/amounts/bulk")
async def set_recurring_bulk_amounts(
    rule_id: int, request: Request, db: Session = Depends(get_db)
):
    form = await checked_form(request)
    try:
        data = RecurringBulkAmountIn(
            start_year=int(form["start_year"]),
            start_month=int(form["start_month"]),
            end_year=int(form["end_year"]),
            end_month=int(form["end_month"]),
            amount=parse_amount(form["amount"]),
        )
    except (KeyError, ValueError) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    try:
        count = RecurringTransactionService(db).set_bulk_amounts(rule_id, data)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"months": count}


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
