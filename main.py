import logging
from typing import Optional

from fastapi import Depends, FastAPI, File, Form, Header, HTTPException, UploadFile
from fastapi.responses import StreamingResponse
from pydantic import ValidationError
from sqlalchemy.orm import Session

from config import get_settings
from database import get_session_factory
from models import Account
from schemas import AccountIn, AccountUpdateIn
from services import (
    AccountService,
    ImportService,
    LedgerError,
    MetricsService,
    StatementFilter,
    StatementService,
    import_template,
)
from spreadsheet import XLSX_CONTENT_TYPE

settings = get_settings()
logging.basicConfig(level=settings.log_level)

app = FastAPI(title="Ledger Tracker")


def get_db():
    db = get_session_factory()()
    try:
        yield db
    finally:
        db.close()


def current_user_id(x_user_id: Optional[int] = Header(None)) -> int:
    if x_user_id is None:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return x_user_id


def _raise_http(exc: LedgerError) -> None:
    if exc.status_code >= 500:
        logging.exception("request_failed")
    raise HTTPException(status_code=exc.status_code, detail=str(exc)) from exc


def _account_payload(account: Account) -> dict:
    analytics = account.analytics
    return {
        "id": account.id,
        "name": account.name,
        "balance": account.balance,
        "currency": account.currency,
        "is_default": account.is_default,
        "owner_id": account.owner_id,
        "created_at": account.created_at,
        "updated_at": account.updated_at,
        "analytics": None
        if analytics is None
        else {
            "income": analytics.income,
            "expense": analytics.expense,
            "balance": analytics.balance,
            "income_percentage_change": analytics.income_percentage_change,
            "expenses_percentage_change": analytics.expenses_percentage_change,
        },
    }


@app.get("/accounts/dashboard")
def dashboard(
    user_id: int = Depends(current_user_id), db: Session = Depends(get_db)
):
    try:
        return MetricsService(db, user_id).dashboard()
    except LedgerError as exc:
        _raise_http(exc)


@app.post("/accounts", status_code=201)
def create_account(
    payload: dict,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        data = AccountIn.model_validate(payload)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    try:
        account = AccountService(db, user_id).create(data)
    except LedgerError as exc:
        _raise_http(exc)
    return {"message": "Account created successfully", "account_id": account.id}


@app.get("/accounts/{account_id}")
def get_account(
    account_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        account = AccountService(db, user_id).get(account_id)
    except LedgerError as exc:
        _raise_http(exc)
    return _account_payload(account)


@app.put("/accounts/{account_id}")
def update_account(
    account_id: int,
    payload: dict,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        data = AccountUpdateIn.model_validate(payload)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    try:
        return AccountService(db, user_id).update(account_id, data)
    except LedgerError as exc:
        _raise_http(exc)


@app.delete("/accounts/{account_id}")
def delete_account(
    account_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        return AccountService(db, user_id).delete(account_id)
    except LedgerError as exc:
        _raise_http(exc)


@app.post("/accounts/import/transaction")
async def import_transactions(
    accountId: int = Form(...),
    file: UploadFile = File(...),
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    content = await file.read()
    if not content:
        raise HTTPException(status_code=400, detail="No file uploaded")
    if len(content) > settings.max_import_bytes:
        raise HTTPException(status_code=400, detail="Uploaded file is too large")
    try:
        return ImportService(db, user_id).stage(accountId, content)
    except LedgerError as exc:
        _raise_http(exc)


@app.get("/accounts/import/sample")
def import_sample(user_id: int = Depends(current_user_id)):
    return StreamingResponse(
        iter([import_template()]),
        media_type=XLSX_CONTENT_TYPE,
        headers={
            "Content-Disposition": 'attachment; filename="sample_transactions.xlsx"'
        },
    )


@app.get("/accounts/import/{import_id}")
def get_import_data(
    import_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        return ImportService(db, user_id).get_staged(import_id)
    except LedgerError as exc:
        _raise_http(exc)


@app.post("/accounts/import/{import_id}/confirm")
def confirm_import(
    import_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        return ImportService(db, user_id).confirm(import_id)
    except LedgerError as exc:
        _raise_http(exc)


@app.get("/accounts/{account_id}/analytics")
def account_analytics(
    account_id: int,
    duration: Optional[str] = None,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        return MetricsService(db, user_id).custom_analytics(account_id, duration)
    except LedgerError as exc:
        _raise_http(exc)


@app.get("/accounts/{account_id}/statement")
def account_statement(
    account_id: int,
    exportType: Optional[str] = None,
    startDate: Optional[str] = None,
    endDate: Optional[str] = None,
    numTransactions: Optional[str] = None,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        statement_filter = StatementFilter.from_params(
            startDate, endDate, numTransactions
        )
        statement = StatementService(db, user_id).generate(
            account_id, exportType, statement_filter
        )
    except LedgerError as exc:
        _raise_http(exc)
    return StreamingResponse(
        iter([statement.content]),
        media_type=statement.content_type,
        headers={
            "Content-Disposition": f'attachment; filename="{statement.filename}"'
        },
    )
