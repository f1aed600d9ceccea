import logging
from datetime import date
from pathlib import Path
from typing import Iterator, Optional

from fastapi import APIRouter, Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from auth import generate_auth_token, user_id_from_token
from categories import CategoryAmbiguous, CategoryNotFound, resolve_expense_category
from config import Settings, get_settings
from database import Store
from models import BUDGET_CATEGORIES, EXPENSE_CATEGORIES, Category, User
from money import cents_to_float
from periods import local_today, resolve_month
from schemas import (
    AuthOut,
    BudgetComparisonOut,
    BudgetIn,
    BudgetOut,
    BudgetStatusOut,
    CategoriesOut,
    CategoryProgressOut,
    ExpenseIn,
    ExpenseOut,
    ExpenseUpdate,
    LoginIn,
    MessageOut,
    SignupIn,
    SummaryOut,
    UserOut,
)
from services import (
    AnalyticsService,
    BudgetComparison,
    BudgetService,
    ExpenseFilters,
    ExpenseService,
    NotFound,
    ServiceError,
    StorageFailure,
    Unauthenticated,
    Unauthorized,
    UserService,
    ValidationError,
)

logger = logging.getLogger(__name__)


def _load_app_version() -> str:
    import tomllib

    try:
        with open(Path(__file__).with_name("pyproject.toml"), "rb") as f:
            data = tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError):
        return "unknown"
    return str(data.get("project", {}).get("version", "unknown"))


APP_VERSION = _load_app_version()

STATUS_CODES: dict[type[ServiceError], int] = {
    ValidationError: 400,
    Unauthenticated: 401,
    Unauthorized: 403,
    NotFound: 404,
    StorageFailure: 500,
}


def settings_from_request(request: Request) -> Settings:
    return request.app.state.settings


def get_db(request: Request) -> Iterator[Session]:
    store: Store = request.app.state.store
    db = store.session()
    try:
        yield db
    finally:
        db.close()


def current_user(request: Request, db: Session = Depends(get_db)) -> User:
    settings = settings_from_request(request)
    scheme, _, token = request.headers.get("Authorization", "").partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token:
        raise Unauthenticated("No token, authorization denied")
    user_id = user_id_from_token(
        token, settings.secret_key, settings.token_max_age_hours
    )
    if user_id is None:
        raise Unauthenticated("Token is not valid")
    try:
        return UserService(db).get(user_id)
    except NotFound as exc:
        raise Unauthenticated("Token is not valid") from exc


def _comparison_payload(comparison: BudgetComparison) -> dict[str, object]:
    return {
        "has_budget": comparison.has_budget,
        "budget": (
            cents_to_float(comparison.budget_cents)
            if comparison.budget_cents is not None
            else None
        ),
        "spent": cents_to_float(comparison.spent_cents),
        "remaining": (
            cents_to_float(comparison.remaining_cents)
            if comparison.remaining_cents is not None
            else None
        ),
        "percentage": (
            float(comparison.percentage) if comparison.percentage is not None else None
        ),
        "state": comparison.state.value,
    }


router = APIRouter()


@router.get("/health")
def health():
    return {"status": "ok", "message": "Expense Tracker API is running"}


@router.post("/auth/signup", response_model=AuthOut, status_code=201)
def signup(data: SignupIn, request: Request, db: Session = Depends(get_db)):
    user = UserService(db).signup(data)
    token = generate_auth_token(user.id, settings_from_request(request).secret_key)
    return AuthOut(token=token, user=UserOut.from_model(user))


@router.post("/auth/login", response_model=AuthOut)
def login(data: LoginIn, request: Request, db: Session = Depends(get_db)):
    user = UserService(db).authenticate(data)
    token = generate_auth_token(user.id, settings_from_request(request).secret_key)
    logger.info(f"user_login: user_id={user.id}")
    return AuthOut(token=token, user=UserOut.from_model(user))


@router.get("/auth/me", response_model=UserOut)
def me(user: User = Depends(current_user)):
    return UserOut.from_model(user)


@router.get("/categories", response_model=CategoriesOut)
def list_categories():
    return CategoriesOut(
        expense=[c.value for c in EXPENSE_CATEGORIES],
        budget=[c.value for c in BUDGET_CATEGORIES],
    )


@router.get("/budgets", response_model=list[BudgetOut])
def list_budgets(
    month: Optional[int] = Query(None, ge=1, le=12),
    year: Optional[int] = Query(None, ge=2000),
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    budgets = BudgetService(db, user.id).list(month=month, year=year)
    return [BudgetOut.from_model(b) for b in budgets]


@router.post("/budgets", response_model=BudgetOut)
def upsert_budget(
    data: BudgetIn,
    request: Request,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    settings = settings_from_request(request)
    budget = BudgetService(db, user.id, timezone=settings.timezone).upsert(data)
    return BudgetOut.from_model(budget)


@router.get("/budgets/status", response_model=BudgetStatusOut)
def budget_status(
    request: Request,
    month: Optional[int] = Query(None, ge=1, le=12),
    year: Optional[int] = Query(None, ge=2000),
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    settings = settings_from_request(request)
    period = resolve_month(month, year, today=local_today(settings.timezone))
    status = BudgetService(db, user.id, timezone=settings.timezone).status_for_month(
        period.start.year, period.start.month
    )
    return BudgetStatusOut(
        month=status.month,
        year=status.year,
        start_date=status.period.start,
        end_date=status.period.end,
        total=BudgetComparisonOut(**_comparison_payload(status.total)),
        categories=[
            CategoryProgressOut(category=category.value, **_comparison_payload(cmp))
            for category, cmp in status.categories.items()
        ],
    )


@router.delete("/budgets/{budget_id}", response_model=MessageOut)
def delete_budget(
    budget_id: int,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    BudgetService(db, user.id).delete(budget_id)
    return MessageOut(message="Budget deleted")


@router.get("/expenses", response_model=list[ExpenseOut])
def list_expenses(
    request: Request,
    start_date: Optional[date] = Query(None, alias="startDate"),
    end_date: Optional[date] = Query(None, alias="endDate"),
    category: Optional[str] = Query(None),
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    category_value: Optional[Category] = None
    if category:
        try:
            category_value = resolve_expense_category(category)
        except (CategoryNotFound, CategoryAmbiguous) as exc:
            raise ValidationError.for_field("category", str(exc)) from exc
    settings = settings_from_request(request)
    filters = ExpenseFilters(start=start_date, end=end_date, category=category_value)
    expenses = ExpenseService(db, user.id, timezone=settings.timezone).list(filters)
    return [ExpenseOut.from_model(e) for e in expenses]


@router.post("/expenses", response_model=ExpenseOut, status_code=201)
def create_expense(
    data: ExpenseIn,
    request: Request,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    settings = settings_from_request(request)
    expense = ExpenseService(db, user.id, timezone=settings.timezone).create(data)
    return ExpenseOut.from_model(expense)


@router.get("/expenses/analytics/summary", response_model=SummaryOut)
def analytics_summary(
    request: Request,
    month: Optional[int] = Query(None, ge=1, le=12),
    year: Optional[int] = Query(None, ge=2000),
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    settings = settings_from_request(request)
    period = resolve_month(month, year, today=local_today(settings.timezone))
    summary = AnalyticsService(db, user.id, timezone=settings.timezone).summarize(
        period.start, period.end
    )
    return SummaryOut(
        total=cents_to_float(summary.total_cents),
        count=summary.count,
        by_category={k: cents_to_float(v) for k, v in summary.by_category.items()},
        by_day={
            day.isoformat(): cents_to_float(v) for day, v in summary.by_day.items()
        },
        start_date=summary.start,
        end_date=summary.end,
    )


@router.put("/expenses/{expense_id}", response_model=ExpenseOut)
def update_expense(
    expense_id: int,
    data: ExpenseUpdate,
    request: Request,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    settings = settings_from_request(request)
    expense = ExpenseService(db, user.id, timezone=settings.timezone).update(
        expense_id, data
    )
    return ExpenseOut.from_model(expense)


@router.delete("/expenses/{expense_id}", response_model=MessageOut)
def delete_expense(
    expense_id: int,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    ExpenseService(db, user.id).delete(expense_id)
    return MessageOut(message="Expense deleted")


def _service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    status_code = STATUS_CODES.get(type(exc), 400)
    content: dict[str, object] = {"message": exc.message}
    headers = None
    if isinstance(exc, ValidationError):
        content["errors"] = exc.errors
    elif isinstance(exc, Unauthenticated):
        headers = {"WWW-Authenticate": "Bearer"}
    return JSONResponse(status_code=status_code, content=content, headers=headers)


def _request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors = []
    for err in exc.errors():
        loc = [
            str(part)
            for part in err.get("loc", ())
            if part not in ("body", "query", "path")
        ]
        errors.append(
            {"field": ".".join(loc) or "body", "message": str(err.get("msg", ""))}
        )
    return JSONResponse(
        status_code=400, content={"message": "Invalid input", "errors": errors}
    )


def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"unhandled_error: path={request.url.path}")
    return JSONResponse(status_code=500, content={"message": "Server error"})


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()
    logging.basicConfig(level=settings.log_level)

    store = Store(settings.database_url)
    app = FastAPI(title="Expense Tracker API", version=APP_VERSION)
    app.state.settings = settings
    app.state.store = store

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(ServiceError, _service_error_handler)
    app.add_exception_handler(RequestValidationError, _request_validation_handler)
    app.add_exception_handler(Exception, _unhandled_error_handler)
    app.include_router(router, prefix="/api")

    @app.on_event("shutdown")
    def shutdown_event() -> None:
        store.close()
        logger.info("store_closed")

    return app


def main():
    import uvicorn

    uvicorn.run(
        "main:create_app", factory=True, host="0.0.0.0", port=8000, reload=False
    )
