from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import select

from models import Budget, Category
from schemas import BudgetIn, ExpenseIn
from services import (
    BudgetService,
    BudgetState,
    ExpenseService,
    NotFound,
    Unauthorized,
)


def test_upserting_same_tuple_keeps_one_row_with_latest_amount(session, alice) -> None:
    budgets = BudgetService(session, alice.id)
    first = budgets.upsert(BudgetIn(month=1, year=2025, amount=Decimal("1000")))
    second = budgets.upsert(BudgetIn(month=1, year=2025, amount=Decimal("1250.50")))

    assert first.id == second.id
    rows = session.scalars(select(Budget).where(Budget.user_id == alice.id)).all()
    assert len(rows) == 1
    assert rows[0].amount_cents == 125_050
    assert rows[0].category == Category.total


def test_category_and_owner_are_part_of_the_unique_tuple(session, alice, bob) -> None:
    BudgetService(session, alice.id).upsert(
        BudgetIn(month=1, year=2025, amount=Decimal("1000"))
    )
    BudgetService(session, alice.id).upsert(
        BudgetIn(month=1, year=2025, amount=Decimal("300"), category="Food & Dining")
    )
    BudgetService(session, bob.id).upsert(
        BudgetIn(month=1, year=2025, amount=Decimal("900"))
    )

    assert len(session.scalars(select(Budget)).all()) == 3
    assert len(BudgetService(session, alice.id).list(month=1, year=2025)) == 2


def test_upsert_recovers_when_insert_loses_race(session, alice, monkeypatch) -> None:
    session.add(
        Budget(
            user_id=alice.id,
            year=2025,
            month=3,
            category=Category.total,
            amount_cents=50_000,
        )
    )
    session.commit()

    budgets = BudgetService(session, alice.id)
    real_find = budgets.find
    calls: list[int] = []

    def stale_find(year: int, month: int, category: Category):
        calls.append(month)
        if len(calls) == 1:
            return None
        return real_find(year, month, category)

    monkeypatch.setattr(budgets, "find", stale_find)

    result = budgets.upsert(BudgetIn(month=3, year=2025, amount=Decimal("700")))

    assert result.amount_cents == 70_000
    rows = session.scalars(select(Budget).where(Budget.user_id == alice.id)).all()
    assert len(rows) == 1
    assert rows[0].amount_cents == 70_000


def test_list_is_sorted_newest_month_first(session, alice) -> None:
    budgets = BudgetService(session, alice.id)
    budgets.upsert(BudgetIn(month=11, year=2024, amount=Decimal("1")))
    budgets.upsert(BudgetIn(month=2, year=2025, amount=Decimal("1")))
    budgets.upsert(BudgetIn(month=1, year=2025, amount=Decimal("1")))

    listed = [(b.year, b.month) for b in budgets.list()]
    assert listed == [(2025, 2), (2025, 1), (2024, 11)]
    assert [(b.year, b.month) for b in budgets.list(year=2025, month=1)] == [
        (2025, 1)
    ]


def test_delete_by_other_user_is_unauthorized_and_keeps_row(
    session, alice, bob
) -> None:
    budget = BudgetService(session, alice.id).upsert(
        BudgetIn(month=5, year=2025, amount=Decimal("400"))
    )

    with pytest.raises(Unauthorized):
        BudgetService(session, bob.id).delete(budget.id)

    assert session.get(Budget, budget.id) is not None


def test_delete_missing_budget_is_not_found(session, alice) -> None:
    with pytest.raises(NotFound):
        BudgetService(session, alice.id).delete(12345)


def test_owner_can_delete_budget(session, alice) -> None:
    budgets = BudgetService(session, alice.id)
    budget = budgets.upsert(BudgetIn(month=5, year=2025, amount=Decimal("400")))
    budgets.delete(budget.id)
    assert budgets.list() == []


def test_status_for_month_compares_total_and_category_budgets(session, alice) -> None:
    budgets = BudgetService(session, alice.id, timezone="UTC")
    budgets.upsert(BudgetIn(month=1, year=2025, amount=Decimal("1000")))
    budgets.upsert(
        BudgetIn(month=1, year=2025, amount=Decimal("100"), category="Food & Dining")
    )
    budgets.upsert(
        BudgetIn(month=1, year=2025, amount=Decimal("0"), category="Travel")
    )
    expenses = ExpenseService(session, alice.id, timezone="UTC")
    for title, amount, category in [
        ("Groceries", "50", "Food & Dining"),
        ("Dinner", "60", "Food & Dining"),
        ("Rent", "700", "Bills & Utilities"),
    ]:
        expenses.create(
            ExpenseIn(
                title=title,
                amount=Decimal(amount),
                category=category,
                date=date(2025, 1, 15),
            )
        )

    status = budgets.status_for_month(2025, 1)

    assert status.total.spent_cents == 81_000
    assert status.total.remaining_cents == 19_000
    assert status.total.percentage == Decimal("81")
    assert status.total.state == BudgetState.warning

    food = status.categories[Category.food_dining]
    assert food.spent_cents == 11_000
    assert food.remaining_cents == -1_000
    assert food.state == BudgetState.over

    travel = status.categories[Category.travel]
    assert travel.percentage is None
    assert travel.state == BudgetState.normal
    assert Category.total not in status.categories


def test_status_without_total_budget_reports_none(session, alice) -> None:
    status = BudgetService(session, alice.id).status_for_month(2025, 2)
    assert not status.total.has_budget
    assert status.total.state == BudgetState.none
    assert status.total.percentage is None
    assert status.period.end == date(2025, 2, 28)
