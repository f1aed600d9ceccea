from datetime import date, datetime, timezone
from decimal import Decimal

import pytest
from pydantic import ValidationError as SchemaValidationError

from models import Category, Expense
from money import MAX_AMOUNT
from periods import local_today
from schemas import ExpenseIn, ExpenseUpdate
from services import (
    ExpenseFilters,
    ExpenseService,
    NotFound,
    Unauthorized,
    ValidationError,
)


def _expense_in(**overrides) -> ExpenseIn:
    data = {
        "title": "Coffee",
        "amount": Decimal("3.50"),
        "category": "Food & Dining",
        "date": date(2025, 1, 5),
    }
    data.update(overrides)
    return ExpenseIn(**data)


def test_create_stores_cents_and_owner(session, alice) -> None:
    expense = ExpenseService(session, alice.id).create(
        _expense_in(amount=Decimal("12.345"), description="oat milk")
    )
    assert expense.user_id == alice.id
    assert expense.amount_cents == 1235
    assert expense.category == Category.food_dining
    assert expense.date == date(2025, 1, 5)
    assert expense.description == "oat milk"


def test_date_defaults_to_now_in_configured_timezone(session, alice) -> None:
    expense = ExpenseService(session, alice.id, timezone="UTC").create(
        _expense_in(date=None)
    )
    assert expense.date == local_today("UTC")
    assert expense.occurred_at.tzinfo is None


def test_aware_timestamps_are_converted_to_local_day(session, alice) -> None:
    late_utc = datetime(2025, 1, 31, 23, 30, tzinfo=timezone.utc)
    expense = ExpenseService(session, alice.id, timezone="Europe/Berlin").create(
        _expense_in(date=late_utc)
    )
    assert expense.date == date(2025, 2, 1)
    assert expense.occurred_at == datetime(2025, 2, 1, 0, 30)


def test_category_is_restricted_to_spending_categories() -> None:
    with pytest.raises(SchemaValidationError):
        _expense_in(category="Total")
    with pytest.raises(SchemaValidationError):
        _expense_in(category="Groceries")


def test_category_matching_tolerates_case_and_typos() -> None:
    assert _expense_in(category="transportation").category == Category.transportation
    assert _expense_in(category="Food & Dinning").category == Category.food_dining


def test_blank_title_and_negative_amount_are_rejected() -> None:
    with pytest.raises(SchemaValidationError):
        _expense_in(title="   ")
    with pytest.raises(SchemaValidationError):
        _expense_in(amount=Decimal("-1"))


def test_update_applies_only_given_fields(session, alice) -> None:
    service = ExpenseService(session, alice.id)
    expense = service.create(_expense_in(description="keep me"))

    updated = service.update(
        expense.id, ExpenseUpdate(amount=Decimal("4.25"), category="Shopping")
    )

    assert updated.amount_cents == 425
    assert updated.category == Category.shopping
    assert updated.title == "Coffee"
    assert updated.description == "keep me"
    assert updated.date == date(2025, 1, 5)


def test_update_can_clear_description_and_move_date(session, alice) -> None:
    service = ExpenseService(session, alice.id)
    expense = service.create(_expense_in(description="temporary"))

    updated = service.update(
        expense.id, ExpenseUpdate(description=None, date=date(2025, 2, 1))
    )

    assert updated.description is None
    assert updated.date == date(2025, 2, 1)


def test_update_rejects_null_required_field() -> None:
    with pytest.raises(SchemaValidationError):
        ExpenseUpdate(title=None)


def test_update_by_other_user_is_unauthorized_and_unchanged(
    session, alice, bob
) -> None:
    expense = ExpenseService(session, alice.id).create(_expense_in())

    with pytest.raises(Unauthorized):
        ExpenseService(session, bob.id).update(
            expense.id, ExpenseUpdate(amount=Decimal("999"))
        )

    session.expire_all()
    assert session.get(Expense, expense.id).amount_cents == 350


def test_delete_by_other_user_is_unauthorized(session, alice, bob) -> None:
    expense = ExpenseService(session, alice.id).create(_expense_in())

    with pytest.raises(Unauthorized):
        ExpenseService(session, bob.id).delete(expense.id)

    assert session.get(Expense, expense.id) is not None


def test_missing_expense_is_not_found(session, alice) -> None:
    with pytest.raises(NotFound):
        ExpenseService(session, alice.id).delete(404)
    with pytest.raises(NotFound):
        ExpenseService(session, alice.id).update(404, ExpenseUpdate(title="x"))


def test_list_filters_and_sorts_newest_first(session, alice, bob) -> None:
    service = ExpenseService(session, alice.id)
    service.create(_expense_in(title="a", date=date(2025, 1, 2)))
    service.create(_expense_in(title="b", date=date(2025, 1, 20), category="Travel"))
    service.create(_expense_in(title="c", date=date(2025, 1, 10)))
    service.create(_expense_in(title="d", date=date(2025, 2, 1)))
    ExpenseService(session, bob.id).create(_expense_in(title="bob"))

    assert [e.title for e in service.list()] == ["d", "b", "c", "a"]
    january = service.list(
        ExpenseFilters(start=date(2025, 1, 1), end=date(2025, 1, 31))
    )
    assert [e.title for e in january] == ["b", "c", "a"]
    travel = service.list(ExpenseFilters(category=Category.travel))
    assert [e.title for e in travel] == ["b"]


def test_list_rejects_inverted_range(session, alice) -> None:
    with pytest.raises(ValidationError):
        ExpenseService(session, alice.id).list(
            ExpenseFilters(start=date(2025, 2, 1), end=date(2025, 1, 1))
        )


def test_amount_has_an_upper_bound() -> None:
    with pytest.raises(SchemaValidationError):
        _expense_in(amount=Decimal("1e20"))
    with pytest.raises(SchemaValidationError):
        ExpenseUpdate(amount=Decimal("1e20"))
    assert _expense_in(amount=MAX_AMOUNT).amount == MAX_AMOUNT
