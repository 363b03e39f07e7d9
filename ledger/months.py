"""Calendar-month helpers. Months are ``YYYY-MM`` strings throughout the ledger."""

from datetime import date, datetime
from typing import Iterator, Optional

from dateutil.relativedelta import relativedelta

from ledger.config import MONTH_PATTERN

MONTH_FORMAT = "%Y-%m"


def parse_month(month: str) -> date:
    if not isinstance(month, str) or not MONTH_PATTERN.match(month):
        raise ValueError(f"Month must be in YYYY-MM format, got {month!r}")
    return datetime.strptime(month, MONTH_FORMAT).date()


def format_month(d: date) -> str:
    return d.strftime(MONTH_FORMAT)


def add_months(month: str, n: int) -> str:
    return format_month(parse_month(month) + relativedelta(months=n))


def next_month(month: str) -> str:
    return add_months(month, 1)


def previous_month(month: str) -> str:
    return add_months(month, -1)


def months_between(start: str, end: str) -> int:
    """Signed number of months from ``start`` to ``end``."""
    delta = relativedelta(parse_month(end), parse_month(start))
    return delta.years * 12 + delta.months


def month_range(start: str, end: str) -> Iterator[str]:
    """Yield every month from ``start`` to ``end`` inclusive (nothing if start > end)."""
    current = start
    for _ in range(months_between(start, end) + 1):
        yield current
        current = next_month(current)


def month_of(value: str) -> str:
    """Month of an ISO date or timestamp string (``2024-03-15`` -> ``2024-03``)."""
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError as e:
        raise ValueError(f"Not an ISO date: {value!r}") from e
    return format_month(parsed)


def current_month(today: Optional[date] = None) -> str:
    return format_month(today or date.today())
