from datetime import date

import pytest

from periods import (
    YearMonth,
    decrement_month,
    increment_month,
    parse_year_month,
    resolve_month,
)


def test_increment_wraps_into_next_year():
    assert increment_month(2024, 12) == (2025, 1)
    assert YearMonth(2024, 12).increment() == YearMonth(2025, 1)


def test_decrement_wraps_into_previous_year():
    assert decrement_month(2024, 1) == (2023, 12)
    assert YearMonth(2024, 1).decrement() == YearMonth(2023, 12)


def test_invalid_month_rejected():
    with pytest.raises(ValueError):
        YearMonth(2024, 13)
    with pytest.raises(ValueError):
        YearMonth(2024, 0)


def test_iter_until_excludes_stop_and_crosses_year():
    months = list(YearMonth(2023, 11).iter_until(YearMonth(2024, 2)))
    assert months == [YearMonth(2023, 11), YearMonth(2023, 12), YearMonth(2024, 1)]
    assert list(YearMonth(2024, 3).iter_until(YearMonth(2024, 3))) == []


def test_iter_through_includes_last_month_at_upper_bound():
    months = list(YearMonth(3000, 11).iter_through(YearMonth(3000, 12)))
    assert months == [YearMonth(3000, 11), YearMonth(3000, 12)]
    assert list(YearMonth(2024, 12).iter_through(YearMonth(2025, 1))) == [
        YearMonth(2024, 12),
        YearMonth(2025, 1),
    ]
    assert list(YearMonth(2024, 3).iter_through(YearMonth(2024, 2))) == []


def test_month_bounds_and_clamp():
    feb = YearMonth(2024, 2)
    assert feb.start == date(2024, 2, 1)
    assert feb.end == date(2024, 2, 29)
    assert feb.clamp_day(31) == date(2024, 2, 29)
    assert YearMonth(2023, 12).end == date(2023, 12, 31)
    assert YearMonth(2024, 1).months_until(YearMonth(2025, 3)) == 14


def test_resolve_month_defaults_to_today():
    today = date(2026, 10, 17)
    assert resolve_month(None, None, today=today) == YearMonth(2026, 10)
    assert resolve_month("2024", "5", today=today) == YearMonth(2024, 5)
    with pytest.raises(ValueError):
        resolve_month("2024", None, today=today)
    with pytest.raises(ValueError):
        resolve_month("abc", "1", today=today)


def test_parse_year_month():
    assert parse_year_month("2025-01") == YearMonth(2025, 1)
    assert str(YearMonth(2025, 1)) == "2025-01"
    with pytest.raises(ValueError):
        parse_year_month("2025")
