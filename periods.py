"""
Period key helpers.

Budgets and transaction queries are scoped to a calendar month expressed
as a "YYYY-MM" token.
"""

import re
from datetime import date, timedelta
from typing import Optional, Tuple

from exceptions import ValidationError

_PERIOD_PATTERN = re.compile(r"^(\d{4})-(\d{2})$")


def period_key_for(day: date) -> str:
    """Return the "YYYY-MM" key of the month containing ``day``."""
    return f"{day.year:04d}-{day.month:02d}"


def current_period_key(today: Optional[date] = None) -> str:
    """Return the period key for today (or the supplied date)."""
    return period_key_for(today or date.today())


def parse_period_key(period_key: str) -> Tuple[int, int]:
    """
    Split a period key into (year, month).

    Raises:
        ValidationError: If the key is not a well-formed "YYYY-MM" token
    """
    match = _PERIOD_PATTERN.match(str(period_key or "").strip())
    if not match:
        raise ValidationError("Period key must look like YYYY-MM", details={"period_key": period_key})
    year, month = int(match.group(1)), int(match.group(2))
    if not 1 <= month <= 12:
        raise ValidationError("Period key month out of range", details={"period_key": period_key})
    return year, month


def period_year(period_key: str) -> int:
    """Return the year component of a period key."""
    return parse_period_key(period_key)[0]


def period_bounds(period_key: str) -> Tuple[date, date]:
    """
    Get the first and last day of the month a period key names.

    Returns:
        Tuple of (period_start, period_end).
    """
    year, month = parse_period_key(period_key)
    period_start = date(year, month, 1)
    if month == 12:
        period_end = date(year + 1, 1, 1) - timedelta(days=1)
    else:
        period_end = date(year, month + 1, 1) - timedelta(days=1)
    return period_start, period_end


def shift_period(period_key: str, months: int) -> str:
    """Move a period key forward (or backward, for negative ``months``)."""
    year, month = parse_period_key(period_key)
    index = year * 12 + (month - 1) + months
    return f"{index // 12:04d}-{index % 12 + 1:02d}"
