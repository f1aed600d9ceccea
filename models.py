from datetime import date, datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


class Category(str, Enum):
    food_dining = "Food & Dining"
    transportation = "Transportation"
    shopping = "Shopping"
    entertainment = "Entertainment"
    bills_utilities = "Bills & Utilities"
    healthcare = "Healthcare"
    education = "Education"
    travel = "Travel"
    personal = "Personal"
    other = "Other"
    total = "Total"


# "Total" is the whole-month cap on a budget, never a spending category.
EXPENSE_CATEGORIES: tuple[Category, ...] = tuple(
    c for c in Category if c is not Category.total
)
BUDGET_CATEGORIES: tuple[Category, ...] = tuple(Category)

CATEGORY_ENUM = SAEnum(
    Category,
    name="category",
    values_callable=lambda enum_cls: [member.value for member in enum_cls],
)


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class User(Base, TimestampMixin):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[str] = mapped_column(String(254), nullable=False, unique=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)

    expenses: Mapped[list["Expense"]] = relationship("Expense", back_populates="user")
    budgets: Mapped[list["Budget"]] = relationship("Budget", back_populates="user")


class Expense(Base, TimestampMixin):
    __tablename__ = "expenses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    category: Mapped[Category] = mapped_column(CATEGORY_ENUM, nullable=False)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)

    user: Mapped["User"] = relationship("User", back_populates="expenses")

    __table_args__ = (
        Index("ix_expenses_user_date", "user_id", "date"),
        Index("ix_expenses_user_category_date", "user_id", "category", "date"),
        CheckConstraint("amount_cents >= 0", name="ck_expenses_amount_positive"),
        CheckConstraint("category != 'Total'", name="ck_expenses_category_not_total"),
    )


class Budget(Base, TimestampMixin):
    __tablename__ = "budgets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    category: Mapped[Category] = mapped_column(
        CATEGORY_ENUM, nullable=False, default=Category.total
    )
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)

    user: Mapped["User"] = relationship("User", back_populates="budgets")

    __table_args__ = (
        UniqueConstraint(
            "user_id",
            "year",
            "month",
            "category",
            name="uq_budget_user_month_category",
        ),
        Index("ix_budget_user_month", "user_id", "year", "month"),
        CheckConstraint("amount_cents >= 0", name="ck_budget_amount_positive"),
        CheckConstraint("month BETWEEN 1 AND 12", name="ck_budget_month_range"),
        CheckConstraint("year >= 2000", name="ck_budget_year_min"),
    )
