import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request
from fastapi.responses import StreamingResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from auth import issue_token, read_token
from cache import ResponseCache, make_key
from config import get_settings
from csv_utils import export_transactions, parse_amount
from database import get_db
from models import BudgetGoal, Transaction, TransactionType, User
from periods import resolve_date_range
from scheduler import SchedulerManager
from schemas import (
    MAX_GOAL_YEAR,
    MIN_GOAL_YEAR,
    BudgetGoalIn,
    LoginIn,
    TransactionIn,
    UserIn,
)
from services import (
    AnalyticsService,
    BudgetGoalExists,
    BudgetGoalService,
    CategoryService,
    InvalidCredentials,
    NoTransactions,
    NotFoundError,
    TransactionFilters,
    TransactionService,
    UserExists,
    UserService,
    local_now,
)

APP_VERSION = "1.0.0"

logging.basicConfig(level=logging.INFO)

app = FastAPI(title="Personal Finance Tracker API", version=APP_VERSION)

response_cache = ResponseCache(get_settings().cache_ttl_secs)
scheduler_manager = SchedulerManager(response_cache)
bearer_scheme = HTTPBearer(auto_error=False)


@app.on_event("startup")
def startup_event():
    scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


def get_cache() -> ResponseCache:
    return response_cache


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> User:
    if credentials is None or not credentials.credentials:
        raise HTTPException(
            status_code=401,
            detail="No authentication token, authorization denied.",
            headers={"WWW-Authenticate": "Bearer"},
        )
    user_id = read_token(credentials.credentials)
    if user_id is None:
        raise HTTPException(
            status_code=401,
            detail="Token verification failed, authorization denied.",
            headers={"WWW-Authenticate": "Bearer"},
        )
    user = db.get(User, user_id)
    if user is None:
        raise HTTPException(status_code=401, detail="User no longer exists")
    return user


def user_to_dict(user: User) -> dict[str, object]:
    return {
        "id": user.id,
        "username": user.username,
        "email": user.email,
        "created_at": user.created_at.isoformat() if user.created_at else None,
    }


def transaction_to_dict(txn: Transaction) -> dict[str, object]:
    return {
        "id": txn.id,
        "date": txn.date.isoformat(),
        "type": txn.type.value,
        "category": txn.category,
        "amount_cents": txn.amount_cents,
        "note": txn.note,
    }


def goal_to_dict(goal: BudgetGoal) -> dict[str, object]:
    return {
        "id": goal.id,
        "category": goal.category,
        "amount_cents": goal.amount_cents,
        "month": goal.month,
        "year": goal.year,
    }


def filters_from_request(request: Request) -> TransactionFilters:
    params = request.query_params
    txn_type = None
    if params.get("type"):
        try:
            txn_type = TransactionType(params["type"])
        except ValueError as exc:
            raise HTTPException(
                status_code=400, detail=f"Invalid type: {params['type']}"
            ) from exc
    try:
        period = resolve_date_range(params.get("date_from"), params.get("date_to"))
        min_amount = (
            parse_amount(params["min_amount"]) if params.get("min_amount") else None
        )
        max_amount = (
            parse_amount(params["max_amount"]) if params.get("max_amount") else None
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return TransactionFilters(
        type=txn_type,
        category=params.get("category") or None,
        search=params.get("search") or None,
        period=period,
        min_amount_cents=min_amount,
        max_amount_cents=max_amount,
        sort_by=params.get("sort_by", "date"),
        sort_order=params.get("sort_order", "desc"),
    )


def _int_param(request: Request, name: str) -> Optional[int]:
    raw = request.query_params.get(name)
    if raw is None or raw == "":
        return None
    try:
        return int(raw)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f"Invalid {name}") from exc


def _check_goal_month(year: int, month: int) -> None:
    if not 0 <= month <= 11:
        raise HTTPException(status_code=400, detail="Month must be between 0 and 11")
    if not MIN_GOAL_YEAR <= year <= MAX_GOAL_YEAR:
        raise HTTPException(
            status_code=400,
            detail=f"Year must be between {MIN_GOAL_YEAR} and {MAX_GOAL_YEAR}",
        )


def cached(
    cache: ResponseCache, operation: str, user: User, request: Optional[Request], build
):
    key = make_key(
        operation, user.id, dict(request.query_params) if request is not None else None
    )
    hit = cache.get(key)
    if hit is not None:
        return hit
    value = build()
    cache.set(key, value)
    return value


# --- users -----------------------------------------------------------------

users_router = APIRouter(prefix="/api/users", tags=["users"])


@users_router.post("/register")
def register(data: UserIn, db: Session = Depends(get_db)):
    try:
        user = UserService(db).register(data)
    except UserExists as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return user_to_dict(user)


@users_router.post("/login")
def login(data: LoginIn, db: Session = Depends(get_db)):
    try:
        user = UserService(db).authenticate(data)
    except InvalidCredentials as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {
        "token": issue_token(user.id),
        "user": {"id": user.id, "username": user.username},
    }


@users_router.get("/me")
def me(user: User = Depends(get_current_user)):
    return user_to_dict(user)


# --- transactions ----------------------------------------------------------

transactions_router = APIRouter(prefix="/api/transactions", tags=["transactions"])


@transactions_router.get("")
def list_transactions(
    request: Request,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    cache: ResponseCache = Depends(get_cache),
):
    filters = filters_from_request(request)
    page = _int_param(request, "page")
    page_size = _int_param(request, "page_size")
    service = TransactionService(db, user.id)

    def build():
        if page and page_size:
            result = service.page(filters, page, page_size)
            result["transactions"] = [
                transaction_to_dict(t) for t in result["transactions"]
            ]
            return result
        return [transaction_to_dict(t) for t in service.list(filters)]

    return cached(cache, "transactions", user, request, build)


@transactions_router.post("")
def create_transaction(
    data: TransactionIn,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    cache: ResponseCache = Depends(get_cache),
):
    txn = TransactionService(db, user.id, cache).create(data)
    return transaction_to_dict(txn)


@transactions_router.put("/{transaction_id}")
def update_transaction(
    transaction_id: int,
    data: TransactionIn,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    cache: ResponseCache = Depends(get_cache),
):
    try:
        txn = TransactionService(db, user.id, cache).update(transaction_id, data)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return transaction_to_dict(txn)


@transactions_router.delete("/{transaction_id}")
def delete_transaction(
    transaction_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    cache: ResponseCache = Depends(get_cache),
):
    service = TransactionService(db, user.id, cache)
    try:
        payload = transaction_to_dict(service.get(transaction_id))
        service.delete(transaction_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return payload


@transactions_router.get("/summary")
def transactions_summary(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    cache: ResponseCache = Depends(get_cache),
):
    service = TransactionService(db, user.id)
    return cached(cache, "summary", user, None, service.expense_by_category)


@transactions_router.get("/chart-data")
def transactions_chart_data(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    cache: ResponseCache = Depends(get_cache),
):
    service = TransactionService(db, user.id)
    return cached(cache, "chart-data", user, None, service.expense_by_category)


@transactions_router.get("/stats")
def transactions_stats(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    cache: ResponseCache = Depends(get_cache),
):
    service = AnalyticsService(db, user.id)
    return cached(
        cache, "stats", user, None, lambda: service.stats(local_now().date())
    )


@transactions_router.get("/analytics")
def transactions_analytics(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    cache: ResponseCache = Depends(get_cache),
):
    service = AnalyticsService(db, user.id)
    try:
        return cached(
            cache,
            "analytics",
            user,
            None,
            lambda: service.financial_summary(local_now()),
        )
    except NoTransactions as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except Exception as exc:
        logging.exception("Error building financial summary")
        raise HTTPException(
            status_code=500, detail="Failed to generate financial summary"
        ) from exc


@transactions_router.get("/export.csv")
def export_transactions_endpoint(
    request: Request,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    filters = filters_from_request(request)
    transactions = TransactionService(db, user.id).list(filters)
    csv_text = export_transactions(transactions)
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    filename = f"transactions_{timestamp}.csv"
    logging.info(f"csv_export: user_id={user.id} rows={len(transactions)}")
    return StreamingResponse(
        iter([csv_text]),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


# --- budget goals ----------------------------------------------------------

budget_router = APIRouter(tags=["budget"])


@budget_router.get("")
def list_budget_goals(
    request: Request,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    goals = BudgetGoalService(db, user.id).list(
        month=_int_param(request, "month"), year=_int_param(request, "year")
    )
    return [goal_to_dict(g) for g in goals]


@budget_router.post("")
def create_budget_goal(
    data: BudgetGoalIn,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    cache: ResponseCache = Depends(get_cache),
):
    try:
        goal = BudgetGoalService(db, user.id, cache).create(data)
    except BudgetGoalExists as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return goal_to_dict(goal)


@budget_router.put("/{goal_id}")
def update_budget_goal(
    goal_id: int,
    data: BudgetGoalIn,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    cache: ResponseCache = Depends(get_cache),
):
    try:
        goal = BudgetGoalService(db, user.id, cache).update(goal_id, data)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except BudgetGoalExists as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return goal_to_dict(goal)


@budget_router.delete("/{goal_id}")
def delete_budget_goal(
    goal_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    cache: ResponseCache = Depends(get_cache),
):
    try:
        BudgetGoalService(db, user.id, cache).delete(goal_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"message": "Budget goal deleted successfully."}


@budget_router.get("/progress")
def budget_progress(
    request: Request,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    today = local_now().date()
    year = _int_param(request, "year")
    month = _int_param(request, "month")
    year = today.year if year is None else year
    month = today.month - 1 if month is None else month
    _check_goal_month(year, month)
    return BudgetGoalService(db, user.id).progress_for_month(year, month)


@budget_router.get("/summary/{year}/{month}")
def budget_month_summary(
    year: int,
    month: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    _check_goal_month(year, month)
    return BudgetGoalService(db, user.id).month_summary(year, month)


@budget_router.get("/categories")
def budget_categories(
    request: Request,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    service = CategoryService(db, user.id)
    query = request.query_params.get("q")
    if query:
        return service.suggest(query)
    return service.expense_categories()


app.include_router(users_router)
app.include_router(transactions_router)
app.include_router(budget_router, prefix="/api/budgetGoals")
app.include_router(budget_router, prefix="/api/budget")


@app.get("/health")
def health():
    return {"status": "OK", "timestamp": datetime.utcnow().isoformat()}


@app.get("/")
def index():
    return {
        "message": "Personal Finance Tracker API",
        "version": APP_VERSION,
        "endpoints": {
            "users": "/api/users",
            "transactions": "/api/transactions",
            "budgetGoals": "/api/budgetGoals",
            "budget": "/api/budget",
            "health": "/health",
        },
    }


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
