from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional
from zoneinfo import ZoneInfo

from config import get_settings


@dataclass(frozen=True)
class Period:
    slug: str
    start: Optional[date]
    end: Optional[date]


def today() -> date:
    return datetime.now(ZoneInfo(get_settings().timezone)).date()


def month_start(d: date) -> date:
    return d.replace(day=1)


def add_months(d: date, count: int) -> date:
    month_index = (d.year * 12) + (d.month - 1) + count
    return date(month_index // 12, (month_index % 12) + 1, 1)


def month_end(d: date) -> date:
    return add_months(d, 1) - date.resolution


def parse_month(value: str) -> date:
    """Parse ``YYYY-MM`` into the first day of that month."""
    try:
        year_part, month_part = value.strip().split("-")
        return date(int(year_part), int(month_part), 1)
    except ValueError as exc:
        raise ValueError("Month must be formatted as YYYY-MM") from exc


def resolve_period(
    period: Optional[str],
    start: Optional[str],
    end: Optional[str],
    *,
    on: Optional[date] = None,
) -> Period:
    on = on or today()
    if period == "all":
        return Period("all", None, None)
    if period == "this_month":
        return Period("this_month", month_start(on), month_end(on))
    if period == "last_month":
        previous = add_months(on, -1)
        return Period("last_month", previous, month_end(previous))
    if period not in (None, "", "custom"):
        raise ValueError(f"Unknown period: {period}")

    start_date = date.fromisoformat(start) if start else None
    end_date = date.fromisoformat(end) if end else None
    if start_date and end_date and start_date > end_date:
        raise ValueError("Start date must be before end date")
    return Period("custom", start_date, end_date)
