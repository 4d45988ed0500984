from dataclasses import dataclass
from datetime import date
from typing import Optional


@dataclass(frozen=True)
class Period:
    slug: str
    start: date
    end: date


def year_period(year: int) -> Period:
    return Period(str(year), date(year, 1, 1), date(year, 12, 31))


def resolve_period(
    period: Optional[str],
    start: Optional[str],
    end: Optional[str],
    *,
    today: Optional[date] = None,
) -> Optional[Period]:
    """Date window for listings and exports; None means no date bound at all."""
    today = today or date.today()
    if not period or period == "all":
        if start or end:
            period = "custom"
        else:
            return None
    if period == "this_year":
        return year_period(today.year)
    if period == "last_year":
        return year_period(today.year - 1)
    if period == "last_month":
        first_this = today.replace(day=1)
        last_month_end = first_this - date.resolution
        last_month_start = last_month_end.replace(day=1)
        return Period("last_month", last_month_start, last_month_end)
    if period == "custom":
        start_date = date.fromisoformat(start) if start else date(1970, 1, 1)
        end_date = date.fromisoformat(end) if end else today
        if start_date > end_date:
            raise ValueError("Start date must be before end date")
        return Period("custom", start_date, end_date)
    if period == "this_month":
        first = today.replace(day=1)
        if first.month == 12:
            next_month = first.replace(year=first.year + 1, month=1)
        else:
            next_month = first.replace(month=first.month + 1)
        return Period("this_month", first, next_month - date.resolution)
    raise ValueError(f"Unknown period: {period}")
