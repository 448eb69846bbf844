"""Summaries over a set of transactions.

Every view comes in two halves: a grouping step that turns records into
``GroupTotal`` rows and a shaping step that turns rows into the view. The
record store produces the same rows with SQL ``GROUP BY`` queries, so the
database-backed services and the in-memory ``aggregate`` share the shaping
functions.
"""

from __future__ import annotations

import math
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Callable, Hashable, Iterable, Optional, Sequence

from models import Transaction, TransactionType
from periods import start_of_day

MONTH_NAMES = (
    "Jan",
    "Feb",
    "Mar",
    "Apr",
    "May",
    "Jun",
    "Jul",
    "Aug",
    "Sep",
    "Oct",
    "Nov",
    "Dec",
)
DAILY_WINDOW_DAYS = 30
TOP_DESCRIPTIONS_LIMIT = 5
DEFAULT_PAGE = 1
DEFAULT_LIMIT = 50
MAX_LIMIT = 100
MAX_PAGE = 1_000_000


@dataclass(frozen=True)
class GroupTotal:
    key: Hashable
    total: float
    count: int


@dataclass(frozen=True)
class Totals:
    income: float = 0.0
    expenses: float = 0.0

    @property
    def net(self) -> float:
        return self.income - self.expenses


@dataclass(frozen=True)
class CategoryTotal:
    category: str
    total: float
    count: int


@dataclass(frozen=True)
class MonthlyBucket:
    month: str
    income: float = 0.0
    expenses: float = 0.0


@dataclass(frozen=True)
class DailyBucket:
    date: date
    amount: float


@dataclass(frozen=True)
class DescriptionTotal:
    description: str
    total: float
    count: int


@dataclass(frozen=True)
class Page:
    items: list[Transaction]
    page: int
    limit: int
    total: int

    @property
    def pages(self) -> int:
        return math.ceil(self.total / self.limit)

    @property
    def skip(self) -> int:
        return (self.page - 1) * self.limit


@dataclass(frozen=True)
class AggregateOptions:
    now: datetime
    start: Optional[datetime] = None
    type: Optional[TransactionType] = None
    category: Optional[str] = None
    page: Optional[int] = None
    limit: Optional[int] = None


@dataclass
class Summary:
    totals: Totals
    categories: list[CategoryTotal]
    monthly: list[MonthlyBucket]
    daily: list[DailyBucket]
    top_descriptions: list[DescriptionTotal]
    page: Page
    partial: bool = False
    failed: list[str] = field(default_factory=list)


def group_records(
    records: Iterable[Transaction], key: Callable[[Transaction], Hashable]
) -> list[GroupTotal]:
    totals: dict[Hashable, float] = defaultdict(float)
    counts: dict[Hashable, int] = defaultdict(int)
    for record in records:
        k = key(record)
        totals[k] += record.amount
        counts[k] += 1
    return [GroupTotal(key=k, total=totals[k], count=counts[k]) for k in totals]


def totals_from_groups(rows: Iterable[GroupTotal]) -> Totals:
    """Rows keyed by transaction type."""
    income = 0.0
    expenses = 0.0
    for row in rows:
        if row.key == TransactionType.income:
            income += row.total
        elif row.key == TransactionType.expense:
            expenses += row.total
    return Totals(income=income, expenses=expenses)


def compute_totals(records: Iterable[Transaction]) -> Totals:
    return totals_from_groups(group_records(records, lambda r: r.type))


def category_breakdown_from_groups(rows: Iterable[GroupTotal]) -> list[CategoryTotal]:
    """Rows keyed by category, already restricted to expenses.

    Sorted by total descending; equal totals fall back to the category name.
    """
    out = [CategoryTotal(str(row.key), row.total, row.count) for row in rows]
    out.sort(key=lambda c: (-c.total, c.category))
    return out


def category_breakdown(records: Iterable[Transaction]) -> list[CategoryTotal]:
    expenses = (r for r in records if r.type == TransactionType.expense)
    return category_breakdown_from_groups(group_records(expenses, lambda r: r.category))


def year_frame(now: datetime) -> tuple[datetime, datetime]:
    return datetime(now.year, 1, 1), datetime(now.year + 1, 1, 1)


def monthly_series_from_groups(rows: Iterable[GroupTotal]) -> list[MonthlyBucket]:
    """Rows keyed by ``(month_number, type)`` inside a single calendar year.

    Always twelve buckets, January first; empty months are zero.
    """
    income = [0.0] * 12
    expenses = [0.0] * 12
    for row in rows:
        month, txn_type = row.key
        if txn_type == TransactionType.income:
            income[int(month) - 1] += row.total
        elif txn_type == TransactionType.expense:
            expenses[int(month) - 1] += row.total
    return [
        MonthlyBucket(month=name, income=income[i], expenses=expenses[i])
        for i, name in enumerate(MONTH_NAMES)
    ]


def monthly_series(records: Iterable[Transaction], now: datetime) -> list[MonthlyBucket]:
    start, end = year_frame(now)
    in_year = (r for r in records if start <= r.date < end)
    return monthly_series_from_groups(
        group_records(in_year, lambda r: (r.date.month, r.type))
    )


def daily_window(now: datetime) -> tuple[datetime, datetime]:
    """The last ``DAILY_WINDOW_DAYS`` calendar days, today included."""
    today = start_of_day(now)
    return today - timedelta(days=DAILY_WINDOW_DAYS - 1), today + timedelta(days=1)


def daily_series_from_groups(rows: Iterable[GroupTotal]) -> list[DailyBucket]:
    """Rows keyed by calendar day. Sparse: days without expenses are absent."""
    out = []
    for row in rows:
        day = row.key
        if isinstance(day, str):
            day = date.fromisoformat(day)
        elif isinstance(day, datetime):
            day = day.date()
        out.append(DailyBucket(date=day, amount=row.total))
    out.sort(key=lambda b: b.date)
    return out


def daily_series(records: Iterable[Transaction], now: datetime) -> list[DailyBucket]:
    start, end = daily_window(now)
    in_window = (
        r
        for r in records
        if r.type == TransactionType.expense and start <= r.date < end
    )
    return daily_series_from_groups(group_records(in_window, lambda r: r.date.date()))


def top_descriptions_from_groups(
    rows: Iterable[GroupTotal], limit: int = TOP_DESCRIPTIONS_LIMIT
) -> list[DescriptionTotal]:
    out = [DescriptionTotal(str(row.key), row.total, row.count) for row in rows]
    out.sort(key=lambda d: (-d.total, d.description))
    return out[:limit]


def top_descriptions(
    records: Iterable[Transaction], limit: int = TOP_DESCRIPTIONS_LIMIT
) -> list[DescriptionTotal]:
    expenses = (r for r in records if r.type == TransactionType.expense)
    return top_descriptions_from_groups(
        group_records(expenses, lambda r: r.description), limit
    )


def clamp_pagination(page: Optional[int], limit: Optional[int]) -> tuple[int, int]:
    page = DEFAULT_PAGE if page is None else page
    limit = DEFAULT_LIMIT if limit is None else limit
    return min(max(page, 1), MAX_PAGE), min(max(limit, 1), MAX_LIMIT)


def sort_newest_first(records: Iterable[Transaction]) -> list[Transaction]:
    return sorted(records, key=lambda r: (r.date, r.id or 0), reverse=True)


def paginate(
    records: Sequence[Transaction], page: Optional[int], limit: Optional[int]
) -> Page:
    page, limit = clamp_pagination(page, limit)
    ordered = sort_newest_first(records)
    start = (page - 1) * limit
    return Page(
        items=ordered[start : start + limit], page=page, limit=limit, total=len(ordered)
    )


def _matches(record: Transaction, options: AggregateOptions) -> bool:
    if options.start is not None and record.date < options.start:
        return False
    if options.type is not None and record.type != options.type:
        return False
    if options.category is not None and record.category != options.category:
        return False
    return True


def aggregate(records: Sequence[Transaction], options: AggregateOptions) -> Summary:
    """Compute every summary view from one user's records.

    The active filter (start, type, category) scopes the totals, the
    breakdowns and the page. The monthly and daily series ignore it and use
    their own fixed frames.
    """
    scoped = [r for r in records if _matches(r, options)]
    return Summary(
        totals=compute_totals(scoped),
        categories=category_breakdown(scoped),
        monthly=monthly_series(records, options.now),
        daily=daily_series(records, options.now),
        top_descriptions=top_descriptions(scoped),
        page=paginate(scoped, options.page, options.limit),
    )
