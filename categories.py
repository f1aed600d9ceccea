from typing import Iterable, Optional

from rapidfuzz.distance import Levenshtein

from models import BUDGET_CATEGORIES, EXPENSE_CATEGORIES, Category


class CategoryNotFound(ValueError):
    pass


class CategoryAmbiguous(ValueError):
    pass


def _allowed_list(allowed: Iterable[Category]) -> str:
    return ", ".join(c.value for c in allowed)


def resolve_category(raw: object, allowed: Iterable[Category]) -> Category:
    """Map user input onto one of ``allowed``.

    Matching is case-insensitive; failing that, a single candidate within one
    edit is accepted so "food & dinning" still lands on "Food & Dining".
    """
    allowed = tuple(allowed)
    if isinstance(raw, Category):
        if raw in allowed:
            return raw
        raise CategoryNotFound(
            f"Category '{raw.value}' is not allowed here; choose one of: "
            f"{_allowed_list(allowed)}"
        )

    name = str(raw or "").strip()
    if not name:
        raise CategoryNotFound("Category is required")
    lowered = name.lower()

    for category in allowed:
        if category.value.lower() == lowered:
            return category

    best_distance: Optional[int] = None
    best: list[Category] = []
    for category in allowed:
        dist = int(Levenshtein.distance(lowered, category.value.lower()))
        if best_distance is None or dist < best_distance:
            best_distance = dist
            best = [category]
        elif dist == best_distance:
            best.append(category)

    if best_distance is not None and best_distance <= 1:
        if len(best) > 1:
            options = ", ".join(sorted(c.value for c in best))
            raise CategoryAmbiguous(
                f"Category '{name}' is ambiguous; matches: {options}"
            )
        return best[0]

    raise CategoryNotFound(
        f"Unknown category '{name}'; choose one of: {_allowed_list(allowed)}"
    )


def resolve_expense_category(raw: object) -> Category:
    return resolve_category(raw, EXPENSE_CATEGORIES)


def resolve_budget_category(raw: object) -> Category:
    return resolve_category(raw, BUDGET_CATEGORIES)
