from decimal import Decimal

from services import BudgetState, compare_budget


def test_exactly_80_percent_is_normal() -> None:
    result = compare_budget(100_000, 80_000)
    assert result.remaining_cents == 20_000
    assert result.percentage == Decimal("80")
    assert result.state == BudgetState.normal


def test_one_cent_past_80_percent_warns() -> None:
    result = compare_budget(100_000, 80_001)
    assert result.percentage > Decimal("80")
    assert result.state == BudgetState.warning


def test_exactly_100_percent_is_still_warning() -> None:
    result = compare_budget(100_000, 100_000)
    assert result.remaining_cents == 0
    assert result.state == BudgetState.warning


def test_over_budget_goes_negative() -> None:
    result = compare_budget(100_000, 120_000)
    assert result.remaining_cents == -20_000
    assert result.percentage == Decimal("120")
    assert result.state == BudgetState.over


def test_zero_budget_leaves_percentage_undefined() -> None:
    result = compare_budget(0, 5_000)
    assert result.has_budget
    assert result.percentage is None
    assert result.remaining_cents == -5_000
    assert result.state == BudgetState.normal


def test_missing_budget_reports_no_budget() -> None:
    result = compare_budget(None, 5_000)
    assert not result.has_budget
    assert result.remaining_cents is None
    assert result.percentage is None
    assert result.state == BudgetState.none
