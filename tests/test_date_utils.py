from datetime import date

from date_utils import (
    add_months,
    block_span_inclusive,
    days_in_month,
    days_inclusive,
    iter_month_starts,
    iter_week_starts,
    month_end,
    quarter_start,
    week_start,
)


def test_same_day_block_spans_one_day():
    x0, x1 = block_span_inclusive(date(2026, 5, 4), date(2026, 5, 4))
    assert x1 - x0 == 1.0


def test_days_inclusive_counts_both_ends():
    assert days_inclusive(date(2026, 3, 1), date(2026, 3, 5)) == 5
    assert days_inclusive(date(2026, 3, 1), date(2026, 3, 1)) == 1


def test_leap_year_february():
    assert days_in_month(2024, 2) == 29
    assert days_in_month(2026, 2) == 28
    assert month_end(date(2024, 2, 10)) == date(2024, 2, 29)


def test_add_months_clamps_day():
    assert add_months(date(2024, 1, 31), 1) == date(2024, 2, 29)
    assert add_months(date(2026, 1, 31), 1) == date(2026, 2, 28)
    assert add_months(date(2026, 11, 15), 3) == date(2027, 2, 15)
    assert add_months(date(2026, 1, 15), -1) == date(2025, 12, 15)


def test_quarter_and_week_starts():
    assert quarter_start(date(2026, 5, 20)) == date(2026, 4, 1)
    assert quarter_start(date(2026, 12, 31)) == date(2026, 10, 1)
    # 2026-01-01 is a Thursday
    assert week_start(date(2026, 1, 1)) == date(2025, 12, 29)
    assert week_start(date(2025, 12, 29)) == date(2025, 12, 29)


def test_month_and_week_iterators():
    months = list(iter_month_starts(date(2026, 1, 15), date(2026, 3, 1)))
    assert months == [date(2026, 1, 1), date(2026, 2, 1), date(2026, 3, 1)]

    weeks = list(iter_week_starts(date(2026, 1, 1), date(2026, 1, 12)))
    assert weeks == [date(2025, 12, 29), date(2026, 1, 5), date(2026, 1, 12)]
