import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from auth import authenticate, hash_password, issue_token, read_token
from config import get_settings
from database import SessionLocal
from errors import LedgerError, Unauthorized, ValidationFailed
from models import TransactionType
from periods import Period, resolve_period
from ratelimit import limiter
from schemas import (
    AccountIn,
    AccountUpdate,
    BudgetIn,
    BulkDeleteIn,
    BulkDeleteOut,
    BulkReassignIn,
    BulkReassignOut,
    CategoryIn,
    CategoryUpdate,
    LoginIn,
    SignupIn,
    TokenOut,
    TransactionIn,
    TransactionUpdate,
    UserOut,
    validation_failed,
)
from services import (
    AccountService,
    BalanceService,
    BudgetService,
    BulkTransactionService,
    CategoryService,
    ReassignmentService,
    ReportService,
    TransactionFilters,
    TransactionService,
    UserService,
)

logging.basicConfig(
    level=get_settings().log_level,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Ledger API")


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def current_user_id(authorization: Optional[str] = Header(default=None)) -> uuid.UUID:
    if not authorization:
        raise Unauthorized("Authentication required")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise Unauthorized("Authentication required")
    return read_token(token.strip())


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip
    return request.client.host if request.client else "unknown"


def period_from_query(
    period: Optional[str] = Query(default=None),
    start: Optional[str] = Query(default=None, alias="from"),
    end: Optional[str] = Query(default=None, alias="to"),
) -> Period:
    try:
        return resolve_period(period, start, end)
    except ValueError as exc:
        raise ValidationFailed(str(exc)) from exc


@app.exception_handler(LedgerError)
def ledger_error_handler(request: Request, exc: LedgerError):
    headers = {}
    retry_after = exc.details.get("retry_after_seconds")
    if retry_after is not None:
        headers["Retry-After"] = str(retry_after)
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.to_dict()},
        headers=headers,
    )


@app.exception_handler(RequestValidationError)
def request_validation_handler(request: Request, exc: RequestValidationError):
    return ledger_error_handler(request, validation_failed(exc.errors()))


@app.get("/api/health")
def health(db: Session = Depends(get_db)):
    timestamp = datetime.now(timezone.utc).isoformat()
    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError:
        logger.exception("health_check_failed")
        return JSONResponse(
            status_code=503,
            content={"status": "error", "db": "disconnected", "timestamp": timestamp},
        )
    return {"status": "ok", "db": "connected", "timestamp": timestamp}


@app.post("/api/auth/signup", status_code=201)
def signup(payload: SignupIn, request: Request, db: Session = Depends(get_db)):
    limiter.signup(client_ip(request))
    user = UserService(db).register(
        payload.email, hash_password(payload.password), payload.name
    )
    return {"user": UserOut.model_validate(user)}


@app.post("/api/auth/login")
def login(payload: LoginIn, db: Session = Depends(get_db)):
    limiter.login(payload.email)
    user = authenticate(db, payload.email, payload.password)
    return TokenOut(token=issue_token(user.id), user=UserOut.model_validate(user))


@app.get("/api/accounts")
def list_accounts(
    db: Session = Depends(get_db), user_id: uuid.UUID = Depends(current_user_id)
):
    return {"data": BalanceService(db, user_id).accounts_with_balances()}


@app.post("/api/accounts", status_code=201)
def create_account(
    payload: AccountIn,
    db: Session = Depends(get_db),
    user_id: uuid.UUID = Depends(current_user_id),
):
    return {"data": AccountService(db, user_id).create(payload)}


@app.get("/api/accounts/{account_id}/balance")
def account_balance(
    account_id: uuid.UUID,
    db: Session = Depends(get_db),
    user_id: uuid.UUID = Depends(current_user_id),
):
    balance = BalanceService(db, user_id).balance(account_id)
    return {"data": {"account_id": account_id, "balance": float(balance)}}


@app.patch("/api/accounts/{account_id}")
def update_account(
    account_id: uuid.UUID,
    payload: AccountUpdate,
    db: Session = Depends(get_db),
    user_id: uuid.UUID = Depends(current_user_id),
):
    return {"data": AccountService(db, user_id).update(account_id, payload)}


@app.delete("/api/accounts/{account_id}", status_code=204)
def delete_account(
    account_id: uuid.UUID,
    reassign_to: Optional[str] = Query(default=None),
    db: Session = Depends(get_db),
    user_id: uuid.UUID = Depends(current_user_id),
):
    ReassignmentService(db, user_id).delete_account(account_id, reassign_to or None)
    return Response(status_code=204)


@app.get("/api/categories")
def list_categories(
    db: Session = Depends(get_db), user_id: uuid.UUID = Depends(current_user_id)
):
    return {"data": CategoryService(db, user_id).list_all()}


@app.post("/api/categories", status_code=201)
def create_category(
    payload: CategoryIn,
    db: Session = Depends(get_db),
    user_id: uuid.UUID = Depends(current_user_id),
):
    return {"data": CategoryService(db, user_id).create(payload)}


@app.patch("/api/categories/{category_id}")
def update_category(
    category_id: uuid.UUID,
    payload: CategoryUpdate,
    db: Session = Depends(get_db),
    user_id: uuid.UUID = Depends(current_user_id),
):
    return {"data": CategoryService(db, user_id).update(category_id, payload)}


@app.delete("/api/categories/{category_id}", status_code=204)
def delete_category(
    category_id: uuid.UUID,
    reassign_to: Optional[str] = Query(default=None),
    db: Session = Depends(get_db),
    user_id: uuid.UUID = Depends(current_user_id),
):
    ReassignmentService(db, user_id).delete_category(category_id, reassign_to or None)
    return Response(status_code=204)


@app.get("/api/transactions")
def list_transactions(
    period: Period = Depends(period_from_query),
    category_id: Optional[uuid.UUID] = Query(default=None),
    account_id: Optional[uuid.UUID] = Query(default=None),
    type: Optional[TransactionType] = Query(default=None),
    q: Optional[str] = Query(default=None, max_length=100),
    limit: int = Query(default=50, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    user_id: uuid.UUID = Depends(current_user_id),
):
    filters = TransactionFilters(
        start=period.start,
        end=period.end,
        category_id=category_id,
        account_id=account_id,
        type=type,
        query=q or None,
    )
    page = TransactionService(db, user_id).search(filters, limit=limit, offset=offset)
    return {"data": page.items, "total": page.total, "limit": limit, "offset": offset}


@app.post("/api/transactions", status_code=201)
def create_transaction(
    payload: TransactionIn,
    db: Session = Depends(get_db),
    user_id: uuid.UUID = Depends(current_user_id),
):
    return {"data": TransactionService(db, user_id).create(payload)}


@app.post("/api/transactions/bulk/reassign")
def bulk_reassign(
    payload: BulkReassignIn,
    db: Session = Depends(get_db),
    user_id: uuid.UUID = Depends(current_user_id),
):
    updated = BulkTransactionService(db, user_id).reassign_category(payload)
    return {"data": BulkReassignOut(updated=updated)}


@app.post("/api/transactions/bulk/delete")
def bulk_delete(
    payload: BulkDeleteIn,
    db: Session = Depends(get_db),
    user_id: uuid.UUID = Depends(current_user_id),
):
    deleted = BulkTransactionService(db, user_id).delete(payload)
    return {"data": BulkDeleteOut(deleted=deleted)}


@app.get("/api/transactions/{transaction_id}")
def get_transaction(
    transaction_id: uuid.UUID,
    db: Session = Depends(get_db),
    user_id: uuid.UUID = Depends(current_user_id),
):
    return {"data": TransactionService(db, user_id).get(transaction_id)}


@app.patch("/api/transactions/{transaction_id}")
def update_transaction(
    transaction_id: uuid.UUID,
    payload: TransactionUpdate,
    db: Session = Depends(get_db),
    user_id: uuid.UUID = Depends(current_user_id),
):
    return {"data": TransactionService(db, user_id).update(transaction_id, payload)}


@app.delete("/api/transactions/{transaction_id}", status_code=204)
def delete_transaction(
    transaction_id: uuid.UUID,
    db: Session = Depends(get_db),
    user_id: uuid.UUID = Depends(current_user_id),
):
    TransactionService(db, user_id).delete(transaction_id)
    return Response(status_code=204)


@app.get("/api/reports/summary")
def report_summary(
    period: Period = Depends(period_from_query),
    db: Session = Depends(get_db),
    user_id: uuid.UUID = Depends(current_user_id),
):
    return {"data": ReportService(db, user_id).summary(period)}


@app.get("/api/reports/cashflow")
def report_cashflow(
    start: Optional[str] = Query(default=None),
    months: int = Query(default=6),
    db: Session = Depends(get_db),
    user_id: uuid.UUID = Depends(current_user_id),
):
    return {"data": ReportService(db, user_id).cashflow(start, months)}


@app.get("/api/reports/by-category")
def report_by_category(
    period: Period = Depends(period_from_query),
    type: Optional[str] = Query(default=None),
    db: Session = Depends(get_db),
    user_id: uuid.UUID = Depends(current_user_id),
):
    breakdown = ReportService(db, user_id).by_category(period, type or None)
    return {"data": breakdown.data, "total": breakdown.total}


@app.get("/api/budgets")
def list_budgets(
    year: Optional[int] = Query(default=None),
    month: Optional[int] = Query(default=None, ge=1, le=12),
    db: Session = Depends(get_db),
    user_id: uuid.UUID = Depends(current_user_id),
):
    return {"data": BudgetService(db, user_id).list_for(year, month)}


@app.post("/api/budgets", status_code=201)
def create_budget(
    payload: BudgetIn,
    db: Session = Depends(get_db),
    user_id: uuid.UUID = Depends(current_user_id),
):
    return {"data": BudgetService(db, user_id).create(payload)}


@app.delete("/api/budgets/{budget_id}", status_code=204)
def delete_budget(
    budget_id: uuid.UUID,
    db: Session = Depends(get_db),
    user_id: uuid.UUID = Depends(current_user_id),
):
    BudgetService(db, user_id).delete(budget_id)
    return Response(status_code=204)
