"""Calendar helpers for billing periods and contract terms."""

from __future__ import annotations

import calendar
import math
from datetime import date, datetime, timedelta

from dateutil.relativedelta import relativedelta


def parse_month(value: str) -> date:
    """Parse ``YYYY-MM`` into the first day of that month."""
    try:
        parsed = datetime.strptime(value, "%Y-%m")
    except (TypeError, ValueError) as exc:
        raise ValueError(f"month must be formatted as YYYY-MM, got {value!r}") from exc
    return parsed.date().replace(day=1)


def format_month(value: date) -> str:
    return value.strftime("%Y-%m")


def start_of_month(value: date) -> date:
    return value.replace(day=1)


def end_of_month(value: date) -> date:
    return value.replace(day=calendar.monthrange(value.year, value.month)[1])


def days_in_month(value: date) -> int:
    return calendar.monthrange(value.year, value.month)[1]


def add_months(value: date, months: int) -> date:
    """Add months without overflowing into the following month (Jan 31 + 1 -> Feb 28/29)."""
    return value + relativedelta(months=months)


def next_month_start(value: date) -> date:
    return start_of_month(value) + relativedelta(months=1)


def days_inclusive(start: date, end: date) -> int:
    return (end - start).days + 1


def count_full_months(start: date, end: date) -> int:
    """Count month-to-month steps from ``start`` that end on or before ``end``."""
    months = 0
    cursor = start
    while True:
        end_of_step = add_months(cursor, 1) - timedelta(days=1)
        if end_of_step > end:
            break
        months += 1
        cursor = end_of_step + timedelta(days=1)
    return months


def count_weeks(start: date, end: date) -> int:
    return math.ceil(days_inclusive(start, end) / 7)


def day_of_month(anchor: date, dom: int) -> date:
    """Clamp ``dom`` into the month of ``anchor``."""
    dom = max(1, min(31, dom))
    return anchor.replace(day=min(dom, days_in_month(anchor)))


def next_due_day_from(today: date, dom: int) -> date:
    """Next occurrence of day-of-month ``dom`` on or after ``today``."""
    candidate = day_of_month(today, dom)
    if candidate < today:
        candidate = day_of_month(next_month_start(today), dom)
    return candidate


def ranges_overlap(start_a: date, end_a: date, start_b: date, end_b: date) -> bool:
    return start_a <= end_b and end_a >= start_b
