"""Calendar windows used by the dashboard. Months are 0-based (0 = January), all times UTC."""
import calendar
import math
from datetime import datetime, timezone
from typing import Optional, Tuple

from pydantic import BaseModel

from crm.database import utcnow

ALL_TIME = "all"

class Period(BaseModel):
    all_time: bool = False
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    previous_start: Optional[datetime] = None
    previous_end: Optional[datetime] = None

def _shift_month(year: int, month: int, delta: int) -> Tuple[int, int]:
    index = year * 12 + month + delta
    return index // 12, index % 12

def month_start(year: int, month: int) -> datetime:
    year, month = _shift_month(year, month, 0)
    return datetime(year, month + 1, 1, tzinfo=timezone.utc)

def month_window(year: int, month: int) -> Tuple[datetime, datetime]:
    """[first day 00:00, first day of next month)"""
    next_year, next_month = _shift_month(year, month, 1)
    return month_start(year, month), month_start(next_year, next_month)

def year_window(year: int) -> Tuple[datetime, datetime]:
    return datetime(year, 1, 1, tzinfo=timezone.utc), datetime(year + 1, 1, 1, tzinfo=timezone.utc)

def resolve_period(
    range_: Optional[str], month: Optional[int] = None, year: Optional[int] = None, now: Optional[datetime] = None
) -> Period:
    if range_ == ALL_TIME:
        return Period(all_time=True)

    now = now or utcnow()
    target_year = now.year if year is None else year
    target_month = now.month - 1 if month is None else month

    start, end = month_window(target_year, target_month)
    prev_year, prev_month = _shift_month(target_year, target_month, -1)
    previous_start, previous_end = month_window(prev_year, prev_month)
    return Period(start=start, end=end, previous_start=previous_start, previous_end=previous_end)

def quarter_window(year: int, month: int) -> Tuple[int, datetime, datetime]:
    """Quarter number plus its [start, end) for the quarter containing the 0-based month."""
    start_month = (month // 3) * 3
    start = month_start(year, start_month)
    end = month_start(*_shift_month(year, start_month, 3))
    return start_month // 3 + 1, start, end

def quarter_label(year: int, month: int) -> str:
    start_month = (month // 3) * 3
    return f"{calendar.month_abbr[start_month + 1]} - {calendar.month_abbr[start_month + 3]}"

def round_half_up(value: float) -> int:
    # Python's round() is banker's rounding; percentages here round .5 up
    return int(math.floor(value + 0.5))

def calculate_change(current: float, previous: float, all_time: bool = False) -> int:
    if all_time:
        return 0
    if previous == 0:
        return 100 if current > 0 else 0
    return round_half_up((current - previous) / previous * 100)
