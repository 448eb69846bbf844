from datetime import date, datetime

from aggregation import (
    MAX_PAGE,
    AggregateOptions,
    CategoryTotal,
    GroupTotal,
    Page,
    aggregate,
    category_breakdown,
    clamp_pagination,
    compute_totals,
    daily_series,
    monthly_series,
    monthly_series_from_groups,
    paginate,
    top_descriptions,
)
from models import Transaction, TransactionType

NOW = datetime(2025, 6, 30, 12, 0)


def _txn(txn_id, txn_type, amount, when, category="Other", description="Item"):
    return Transaction(
        id=txn_id,
        user_id=1,
        type=txn_type,
        category=category,
        amount=amount,
        description=description,
        date=when,
    )


def _sample():
    return [
        _txn(1, TransactionType.income, 1000.0, datetime(2025, 6, 2), "Salary", "Paycheck"),
        _txn(2, TransactionType.expense, 400.0, datetime(2025, 6, 3), "Food & Dining", "Groceries"),
    ]


def test_net_is_income_minus_expenses() -> None:
    totals = compute_totals(_sample())
    assert totals.income == 1000.0
    assert totals.expenses == 400.0
    assert totals.net == 600.0


def test_category_breakdown_only_counts_expenses() -> None:
    assert category_breakdown(_sample()) == [CategoryTotal("Food & Dining", 400.0, 1)]


def test_category_breakdown_ties_break_on_name() -> None:
    records = [
        _txn(1, TransactionType.expense, 50.0, NOW, "Utilities"),
        _txn(2, TransactionType.expense, 50.0, NOW, "Healthcare"),
        _txn(3, TransactionType.expense, 80.0, NOW, "Shopping"),
    ]
    assert [c.category for c in category_breakdown(records)] == [
        "Shopping",
        "Healthcare",
        "Utilities",
    ]


def test_monthly_series_always_has_twelve_buckets() -> None:
    assert len(monthly_series([], NOW)) == 12

    records = _sample() + [
        _txn(3, TransactionType.expense, 99.0, datetime(2024, 6, 3)),
    ]
    series = monthly_series(records, NOW)
    assert [b.month for b in series][:3] == ["Jan", "Feb", "Mar"]
    june = series[5]
    assert june.income == 1000.0
    assert june.expenses == 400.0
    assert sum(b.expenses for b in series) == 400.0


def test_monthly_series_from_groups_ignores_missing_months() -> None:
    rows = [GroupTotal(key=(12, TransactionType.expense), total=20.0, count=2)]
    series = monthly_series_from_groups(rows)
    assert series[11].expenses == 20.0
    assert all(b.expenses == 0 for b in series[:11])


def test_daily_series_covers_last_thirty_days_of_expenses() -> None:
    records = [
        _txn(1, TransactionType.expense, 10.0, datetime(2025, 5, 31, 23, 59)),
        _txn(2, TransactionType.expense, 20.0, datetime(2025, 6, 1, 0, 0)),
        _txn(3, TransactionType.expense, 5.0, datetime(2025, 6, 30, 23, 0)),
        _txn(4, TransactionType.expense, 7.0, datetime(2025, 6, 30, 8, 0)),
        _txn(5, TransactionType.income, 500.0, datetime(2025, 6, 10)),
    ]
    series = daily_series(records, NOW)
    assert [(b.date, b.amount) for b in series] == [
        (date(2025, 6, 1), 20.0),
        (date(2025, 6, 30), 12.0),
    ]
    assert len(series) <= 30


def test_top_descriptions_are_capped_at_five() -> None:
    records = [
        _txn(i, TransactionType.expense, float(i), NOW, description=f"Shop {i}")
        for i in range(1, 9)
    ]
    records.append(_txn(20, TransactionType.expense, 8.0, NOW, description="Another"))
    top = top_descriptions(records)
    assert len(top) == 5
    assert [d.description for d in top[:3]] == ["Another", "Shop 8", "Shop 7"]


def test_pagination_is_clamped() -> None:
    assert clamp_pagination(0, 1000) == (1, 100)
    assert clamp_pagination(None, None) == (1, 50)
    assert clamp_pagination(-3, 0) == (1, 1)
    assert clamp_pagination(10**20, 50) == (MAX_PAGE, 50)


def test_page_count_rounds_up() -> None:
    assert Page(items=[], page=1, limit=50, total=101).pages == 3
    assert Page(items=[], page=1, limit=50, total=0).pages == 0
    assert Page(items=[], page=3, limit=20, total=100).skip == 40


def test_paginate_returns_newest_first() -> None:
    records = [
        _txn(i, TransactionType.expense, 1.0, datetime(2025, 6, i)) for i in range(1, 6)
    ]
    page = paginate(records, page=2, limit=2)
    assert [t.id for t in page.items] == [3, 2]
    assert page.total == 5
    assert page.pages == 3


def test_aggregate_scopes_views_but_not_fixed_frames() -> None:
    summary = aggregate(
        _sample(), AggregateOptions(now=NOW, type=TransactionType.expense)
    )
    assert summary.totals.income == 0
    assert summary.totals.expenses == 400.0
    assert summary.monthly[5].income == 1000.0
    assert [t.id for t in summary.page.items] == [2]
    assert summary.partial is False
