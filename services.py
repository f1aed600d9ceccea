from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Iterable, Iterator, Optional, Sequence, Type, TypeVar
from zoneinfo import ZoneInfo

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from auth import hash_password, verify_password
from config import DEFAULT_TIMEZONE
from models import Budget, Category, Expense, User
from money import to_cents
from periods import Period, local_now, local_today, month_period
from schemas import BudgetIn, ExpenseIn, ExpenseUpdate, LoginIn, SignupIn


logger = logging.getLogger(__name__)


class ServiceError(Exception):
    message = "Request failed"

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(message or self.message)
        self.message = message or self.message


class ValidationError(ServiceError):
    message = "Invalid input"

    def __init__(
        self,
        message: Optional[str] = None,
        errors: Optional[list[dict[str, str]]] = None,
    ) -> None:
        super().__init__(message)
        self.errors = errors or []

    @classmethod
    def for_field(cls, field_name: str, message: str) -> "ValidationError":
        return cls(message, errors=[{"field": field_name, "message": message}])


class NotFound(ServiceError):
    message = "Not found"


class Unauthorized(ServiceError):
    message = "Not authorized"


class Unauthenticated(ServiceError):
    message = "Not authenticated"


class StorageFailure(ServiceError):
    message = "Server error"


@contextmanager
def storage_guard(session: Session, action: str) -> Iterator[None]:
    try:
        yield
    except SQLAlchemyError as exc:
        session.rollback()
        logger.exception(f"storage_failure: action={action}")
        raise StorageFailure() from exc


OwnedModel = TypeVar("OwnedModel", Expense, Budget)


def get_owned(
    session: Session,
    model: Type[OwnedModel],
    entity_id: int,
    user_id: int,
    *,
    label: str,
) -> OwnedModel:
    with storage_guard(session, f"get_{model.__tablename__}"):
        entity = session.get(model, entity_id)
    if entity is None:
        raise NotFound(f"{label} not found")
    if entity.user_id != user_id:
        logger.warning(
            f"ownership_denied: table={model.__tablename__} id={entity_id} "
            f"user_id={user_id}"
        )
        raise Unauthorized()
    return entity


def _to_local_naive(value: datetime, timezone: str) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(ZoneInfo(timezone)).replace(tzinfo=None)


class UserService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, user_id: int) -> User:
        with storage_guard(self.session, "get_user"):
            user = self.session.get(User, user_id)
        if not user:
            raise NotFound("User not found")
        return user

    def by_email(self, email: str) -> Optional[User]:
        with storage_guard(self.session, "get_user_by_email"):
            return self.session.scalar(
                select(User).where(func.lower(User.email) == email.strip().lower())
            )

    def signup(self, data: SignupIn) -> User:
        if self.by_email(data.email):
            raise ValidationError.for_field("email", "User already exists")
        user = User(
            name=data.name,
            email=data.email,
            password_hash=hash_password(data.password),
        )
        self.session.add(user)
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise ValidationError.for_field("email", "User already exists") from exc
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.exception("storage_failure: action=signup")
            raise StorageFailure() from exc
        self.session.refresh(user)
        logger.info(f"user_signup: user_id={user.id}")
        return user

    def authenticate(self, data: LoginIn) -> User:
        user = self.by_email(data.email)
        if not user or not verify_password(data.password, user.password_hash):
            raise Unauthenticated("Invalid credentials")
        return user


@dataclass
class ExpenseFilters:
    start: Optional[date] = None
    end: Optional[date] = None
    category: Optional[Category] = None


class ExpenseService:
    def __init__(
        self, session: Session, user_id: int, *, timezone: str = DEFAULT_TIMEZONE
    ) -> None:
        self.session = session
        self.user_id = user_id
        self.timezone = timezone

    def list(self, filters: Optional[ExpenseFilters] = None) -> list[Expense]:
        filters = filters or ExpenseFilters()
        if filters.start and filters.end and filters.start > filters.end:
            raise ValidationError.for_field(
                "startDate", "Start date must be before end date"
            )
        stmt = select(Expense).where(Expense.user_id == self.user_id)
        if filters.start:
            stmt = stmt.where(Expense.date >= filters.start)
        if filters.end:
            stmt = stmt.where(Expense.date <= filters.end)
        if filters.category:
            stmt = stmt.where(Expense.category == filters.category)
        stmt = stmt.order_by(
            Expense.date.desc(), Expense.occurred_at.desc(), Expense.id.desc()
        )
        with storage_guard(self.session, "list_expenses"):
            return list(self.session.scalars(stmt).all())

    def get(self, expense_id: int) -> Expense:
        return get_owned(
            self.session, Expense, expense_id, self.user_id, label="Expense"
        )

    def create(self, data: ExpenseIn) -> Expense:
        if data.date is not None:
            occurred_at = _to_local_naive(data.date, self.timezone)
        else:
            occurred_at = local_now(self.timezone)
        expense = Expense(
            user_id=self.user_id,
            title=data.title,
            amount_cents=to_cents(data.amount),
            category=data.category,
            date=occurred_at.date(),
            occurred_at=occurred_at,
            description=data.description,
        )
        self.session.add(expense)
        with storage_guard(self.session, "create_expense"):
            self.session.commit()
            self.session.refresh(expense)
        logger.info(
            f"expense_create: user_id={self.user_id} expense_id={expense.id} "
            f"category={expense.category.value} amount_cents={expense.amount_cents}"
        )
        return expense

    def update(self, expense_id: int, data: ExpenseUpdate) -> Expense:
        expense = self.get(expense_id)
        changes = data.model_fields_set
        if "title" in changes:
            expense.title = data.title
        if "amount" in changes:
            expense.amount_cents = to_cents(data.amount)
        if "category" in changes:
            expense.category = data.category
        if "date" in changes:
            occurred_at = _to_local_naive(data.date, self.timezone)
            expense.occurred_at = occurred_at
            expense.date = occurred_at.date()
        if "description" in changes:
            expense.description = data.description
        with storage_guard(self.session, "update_expense"):
            self.session.commit()
            self.session.refresh(expense)
        logger.info(
            f"expense_update: user_id={self.user_id} expense_id={expense.id} "
            f"fields={','.join(sorted(changes)) or '-'}"
        )
        return expense

    def delete(self, expense_id: int) -> None:
        expense = self.get(expense_id)
        self.session.delete(expense)
        with storage_guard(self.session, "delete_expense"):
            self.session.commit()
        logger.info(f"expense_delete: user_id={self.user_id} expense_id={expense_id}")


@dataclass(frozen=True)
class ExpenseSummary:
    start: date
    end: date
    total_cents: int = 0
    count: int = 0
    by_category: dict[str, int] = field(default_factory=dict)
    by_day: dict[date, int] = field(default_factory=dict)


def summarize_expenses(expenses: Iterable[Expense], period: Period) -> ExpenseSummary:
    """Total, count and per-category/per-day sums for expenses inside ``period``.

    Expenses outside the period are ignored. Sums are integer cents so the
    total always equals both breakdowns exactly.
    """
    total = 0
    count = 0
    by_category: dict[str, int] = {}
    by_day: dict[date, int] = {}
    for expense in expenses:
        if not period.contains(expense.date):
            continue
        total += expense.amount_cents
        count += 1
        name = expense.category.value
        by_category[name] = by_category.get(name, 0) + expense.amount_cents
        by_day[expense.date] = by_day.get(expense.date, 0) + expense.amount_cents
    return ExpenseSummary(
        start=period.start,
        end=period.end,
        total_cents=total,
        count=count,
        by_category=by_category,
        by_day=by_day,
    )


class AnalyticsService:
    def __init__(
        self, session: Session, user_id: int, *, timezone: str = DEFAULT_TIMEZONE
    ) -> None:
        self.session = session
        self.user_id = user_id
        self.timezone = timezone

    def current_month(self, today: Optional[date] = None) -> Period:
        today = today or local_today(self.timezone)
        return month_period(today.year, today.month)

    def expenses_in(self, period: Period) -> Sequence[Expense]:
        stmt = (
            select(Expense)
            .where(
                Expense.user_id == self.user_id,
                Expense.date.between(period.start, period.end),
            )
            .order_by(Expense.id.asc())
        )
        with storage_guard(self.session, "summarize_expenses"):
            return self.session.scalars(stmt).all()

    def summarize(
        self,
        start: Optional[date] = None,
        end: Optional[date] = None,
        *,
        today: Optional[date] = None,
    ) -> ExpenseSummary:
        default = self.current_month(today)
        period = Period(start or default.start, end or default.end)
        if period.start > period.end:
            raise ValidationError.for_field(
                "startDate", "Start date must be before end date"
            )
        return summarize_expenses(self.expenses_in(period), period)

    def summarize_month(self, year: int, month: int) -> ExpenseSummary:
        period = month_period(year, month)
        return self.summarize(period.start, period.end)


class BudgetState(str, Enum):
    none = "none"
    normal = "normal"
    warning = "warning"
    over = "over"


WARNING_THRESHOLD = Decimal(80)
OVER_THRESHOLD = Decimal(100)


@dataclass(frozen=True)
class BudgetComparison:
    budget_cents: Optional[int]
    spent_cents: int
    remaining_cents: Optional[int]
    percentage: Optional[Decimal]
    state: BudgetState

    @property
    def has_budget(self) -> bool:
        return self.budget_cents is not None


def compare_budget(budget_cents: Optional[int], spent_cents: int) -> BudgetComparison:
    if budget_cents is None:
        return BudgetComparison(
            budget_cents=None,
            spent_cents=spent_cents,
            remaining_cents=None,
            percentage=None,
            state=BudgetState.none,
        )

    remaining = budget_cents - spent_cents
    percentage: Optional[Decimal] = None
    if budget_cents > 0:
        percentage = Decimal(spent_cents) * 100 / Decimal(budget_cents)

    state = BudgetState.normal
    if percentage is not None:
        if percentage > OVER_THRESHOLD:
            state = BudgetState.over
        elif percentage > WARNING_THRESHOLD:
            state = BudgetState.warning
    return BudgetComparison(
        budget_cents=budget_cents,
        spent_cents=spent_cents,
        remaining_cents=remaining,
        percentage=percentage,
        state=state,
    )


@dataclass(frozen=True)
class BudgetStatus:
    year: int
    month: int
    period: Period
    total: BudgetComparison
    categories: dict[Category, BudgetComparison]


class BudgetService:
    def __init__(
        self, session: Session, user_id: int, *, timezone: str = DEFAULT_TIMEZONE
    ) -> None:
        self.session = session
        self.user_id = user_id
        self.timezone = timezone

    def list(
        self, *, month: Optional[int] = None, year: Optional[int] = None
    ) -> list[Budget]:
        stmt = select(Budget).where(Budget.user_id == self.user_id)
        if month is not None:
            stmt = stmt.where(Budget.month == month)
        if year is not None:
            stmt = stmt.where(Budget.year == year)
        stmt = stmt.order_by(
            Budget.year.desc(), Budget.month.desc(), Budget.category.asc()
        )
        with storage_guard(self.session, "list_budgets"):
            return list(self.session.scalars(stmt).all())

    def find(self, year: int, month: int, category: Category) -> Optional[Budget]:
        stmt = select(Budget).where(
            Budget.user_id == self.user_id,
            Budget.year == year,
            Budget.month == month,
            Budget.category == category,
        )
        with storage_guard(self.session, "find_budget"):
            return self.session.scalar(stmt)

    def upsert(self, data: BudgetIn) -> Budget:
        amount_cents = to_cents(data.amount)
        existing = self.find(data.year, data.month, data.category)
        if existing:
            existing.amount_cents = amount_cents
            with storage_guard(self.session, "update_budget"):
                self.session.commit()
                self.session.refresh(existing)
            self._log_upsert(existing, created=False)
            return existing

        budget = Budget(
            user_id=self.user_id,
            year=data.year,
            month=data.month,
            category=data.category,
            amount_cents=amount_cents,
        )
        self.session.add(budget)
        try:
            self.session.commit()
        except IntegrityError as exc:
            # Another request inserted the same tuple first; overwrite its row.
            self.session.rollback()
            winner = self.find(data.year, data.month, data.category)
            if winner is None:
                logger.exception("storage_failure: action=insert_budget")
                raise StorageFailure() from exc
            winner.amount_cents = amount_cents
            with storage_guard(self.session, "update_budget"):
                self.session.commit()
                self.session.refresh(winner)
            self._log_upsert(winner, created=False)
            return winner
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.exception("storage_failure: action=insert_budget")
            raise StorageFailure() from exc
        self.session.refresh(budget)
        self._log_upsert(budget, created=True)
        return budget

    def _log_upsert(self, budget: Budget, *, created: bool) -> None:
        logger.info(
            f"budget_upsert: user_id={self.user_id} year={budget.year} "
            f"month={budget.month} category={budget.category.value} "
            f"amount_cents={budget.amount_cents} created={created}"
        )

    def delete(self, budget_id: int) -> None:
        budget = get_owned(
            self.session, Budget, budget_id, self.user_id, label="Budget"
        )
        self.session.delete(budget)
        with storage_guard(self.session, "delete_budget"):
            self.session.commit()
        logger.info(f"budget_delete: user_id={self.user_id} budget_id={budget_id}")

    def status_for_month(self, year: int, month: int) -> BudgetStatus:
        summary = AnalyticsService(
            self.session, self.user_id, timezone=self.timezone
        ).summarize_month(year, month)
        budgets = {b.category: b for b in self.list(month=month, year=year)}

        total_budget = budgets.get(Category.total)
        total = compare_budget(
            total_budget.amount_cents if total_budget else None, summary.total_cents
        )
        categories: dict[Category, BudgetComparison] = {}
        for category, budget in sorted(budgets.items(), key=lambda kv: kv[0].value):
            if category is Category.total:
                continue
            categories[category] = compare_budget(
                budget.amount_cents, summary.by_category.get(category.value, 0)
            )
        return BudgetStatus(
            year=year,
            month=month,
            period=Period(summary.start, summary.end),
            total=total,
            categories=categories,
        )
