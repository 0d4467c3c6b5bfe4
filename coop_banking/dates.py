"""
Calendar helpers shared by loan scheduling and dormancy detection.
"""

import calendar
from datetime import date, datetime, timezone
from typing import Union


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def add_months(start: Union[date, datetime], months: int) -> Union[date, datetime]:
    """
    Shift a date or datetime by whole calendar months.

    The day is clamped to the last day of the target month, so
    Jan 31 + 1 month is Feb 28 (or 29). Negative values move backwards.
    """
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return start.replace(year=year, month=month, day=day)
