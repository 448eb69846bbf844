from datetime import datetime, timedelta
from typing import Optional
from zoneinfo import ZoneInfo

DEFAULT_RANGE = "month"
RANGE_TOKENS = ("today", "week", "month", "quarter", "year", "custom", "all")


def local_now(timezone: str) -> datetime:
    return datetime.now(ZoneInfo(timezone)).replace(tzinfo=None)


def start_of_day(moment: datetime) -> datetime:
    return datetime(moment.year, moment.month, moment.day)


def resolve_start_date(
    range_token: Optional[str], now: datetime
) -> Optional[datetime]:
    """Map a range token to the inclusive lower bound of the query window.

    ``None`` means no lower bound. There is never an upper bound: windows are
    open towards the present. A missing token behaves like ``month``.
    """
    token = range_token or DEFAULT_RANGE
    if token == "today":
        return start_of_day(now)
    if token == "week":
        # rolling seven days, not aligned to the calendar week
        return now - timedelta(days=7)
    if token == "month":
        return datetime(now.year, now.month, 1)
    if token == "quarter":
        first_month = ((now.month - 1) // 3) * 3 + 1
        return datetime(now.year, first_month, 1)
    if token == "year":
        return datetime(now.year, 1, 1)
    return None
