import datetime as dt
from datetime import date, datetime, time
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from categories import resolve_budget_category, resolve_expense_category
from models import Budget, Category, Expense, User
from money import MAX_AMOUNT, cents_to_float


def _coerce_datetime(value):
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime.combine(value, time())
    if isinstance(value, str) and len(value.strip()) == 10:
        return datetime.combine(date.fromisoformat(value.strip()), time())
    return value


def _strip_required(value: object) -> object:
    if isinstance(value, str):
        value = value.strip()
        if not value:
            raise ValueError("must not be empty")
    return value


class ExpenseIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    title: str = Field(..., min_length=1, max_length=200)
    amount: Decimal = Field(..., ge=0, le=MAX_AMOUNT)
    category: Category
    date: Optional[dt.datetime] = None
    description: Optional[str] = Field(default=None, max_length=1000)

    @field_validator("title", mode="before")
    @classmethod
    def _strip_title(cls, value: object) -> object:
        return _strip_required(value)

    @field_validator("date", mode="before")
    @classmethod
    def _coerce_date(cls, value: object) -> object:
        return _coerce_datetime(value)

    @field_validator("category", mode="before")
    @classmethod
    def _resolve_category(cls, value: object) -> Category:
        return resolve_expense_category(value)


class ExpenseUpdate(BaseModel):
    """Partial update; only fields present in the payload are applied."""

    model_config = ConfigDict(extra="forbid")

    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    amount: Optional[Decimal] = Field(default=None, ge=0, le=MAX_AMOUNT)
    category: Optional[Category] = None
    date: Optional[dt.datetime] = None
    description: Optional[str] = Field(default=None, max_length=1000)

    @field_validator("title", mode="before")
    @classmethod
    def _strip_title(cls, value: object) -> object:
        return _strip_required(value)

    @field_validator("date", mode="before")
    @classmethod
    def _coerce_date(cls, value: object) -> object:
        return _coerce_datetime(value)

    @field_validator("category", mode="before")
    @classmethod
    def _resolve_category(cls, value: object) -> Optional[Category]:
        if value is None:
            return None
        return resolve_expense_category(value)

    @model_validator(mode="after")
    def _required_fields_not_null(self) -> "ExpenseUpdate":
        for name in ("title", "amount", "category", "date"):
            if name in self.model_fields_set and getattr(self, name) is None:
                raise ValueError(f"{name} cannot be null")
        return self


class BudgetIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    month: int = Field(..., ge=1, le=12)
    year: int = Field(..., ge=2000, le=3000)
    amount: Decimal = Field(..., ge=0, le=MAX_AMOUNT)
    category: Category = Category.total

    @field_validator("category", mode="before")
    @classmethod
    def _resolve_category(cls, value: object) -> Category:
        if value is None:
            return Category.total
        return resolve_budget_category(value)


class SignupIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1, max_length=100)
    email: str = Field(..., min_length=3, max_length=254, pattern=r"^[^@\s]+@[^@\s]+$")
    password: str = Field(..., min_length=6, max_length=128)

    @field_validator("name", mode="before")
    @classmethod
    def _strip_name(cls, value: object) -> object:
        return _strip_required(value)

    @field_validator("email", mode="before")
    @classmethod
    def _normalize_email(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().lower()
        return value


class LoginIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    email: str = Field(..., min_length=1, max_length=254)
    password: str = Field(..., min_length=1, max_length=128)

    @field_validator("email", mode="before")
    @classmethod
    def _normalize_email(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().lower()
        return value


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class UserOut(ApiModel):
    id: int
    name: str
    email: str
    created_at: datetime

    @classmethod
    def from_model(cls, user: User) -> "UserOut":
        return cls(
            id=user.id, name=user.name, email=user.email, created_at=user.created_at
        )


class AuthOut(ApiModel):
    token: str
    user: UserOut


class ExpenseOut(ApiModel):
    id: int
    user: int
    title: str
    amount: float
    category: str
    date: datetime
    description: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_model(cls, expense: Expense) -> "ExpenseOut":
        return cls(
            id=expense.id,
            user=expense.user_id,
            title=expense.title,
            amount=cents_to_float(expense.amount_cents),
            category=expense.category.value,
            date=expense.occurred_at,
            description=expense.description,
            created_at=expense.created_at,
            updated_at=expense.updated_at,
        )


class BudgetOut(ApiModel):
    id: int
    user: int
    month: int
    year: int
    amount: float
    category: str
    created_at: datetime

    @classmethod
    def from_model(cls, budget: Budget) -> "BudgetOut":
        return cls(
            id=budget.id,
            user=budget.user_id,
            month=budget.month,
            year=budget.year,
            amount=cents_to_float(budget.amount_cents),
            category=budget.category.value,
            created_at=budget.created_at,
        )


class SummaryOut(ApiModel):
    total: float
    count: int
    by_category: dict[str, float]
    by_day: dict[str, float]
    start_date: date
    end_date: date


class BudgetComparisonOut(ApiModel):
    has_budget: bool
    budget: Optional[float] = None
    spent: float
    remaining: Optional[float] = None
    percentage: Optional[float] = None
    state: str


class CategoryProgressOut(BudgetComparisonOut):
    category: str


class BudgetStatusOut(ApiModel):
    month: int
    year: int
    start_date: date
    end_date: date
    total: BudgetComparisonOut
    categories: list[CategoryProgressOut]


class CategoriesOut(ApiModel):
    expense: list[str]
    budget: list[str]


class MessageOut(ApiModel):
    message: str
