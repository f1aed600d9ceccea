from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional
from zoneinfo import ZoneInfo


@dataclass(frozen=True)
class Period:
    start: date
    end: date

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end


def local_today(timezone: str) -> date:
    return datetime.now(ZoneInfo(timezone)).date()


def local_now(timezone: str) -> datetime:
    """Wall-clock time in ``timezone``, naive and truncated to the second."""
    return datetime.now(ZoneInfo(timezone)).replace(tzinfo=None, microsecond=0)


def month_period(year: int, month: int) -> Period:
    if not 1 <= month <= 12:
        raise ValueError("Month must be between 1 and 12")
    first = date(year, month, 1)
    if month == 12:
        next_month = first.replace(year=year + 1, month=1)
    else:
        next_month = first.replace(month=month + 1)
    return Period(first, next_month - date.resolution)


def resolve_month(
    month: Optional[int],
    year: Optional[int],
    *,
    today: date,
) -> Period:
    """Month range for the given month/year, each defaulting to ``today``'s."""
    return month_period(year or today.year, month or today.month)
