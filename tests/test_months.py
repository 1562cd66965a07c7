from datetime import date

import pytest

from errors import ValidationError
from months import MonthKey, days_in_month, parse_month_key


def test_parse_month_key_normalizes_whitespace():
    month = parse_month_key(" 2024-03 ")
    assert month == MonthKey(2024, 3)
    assert month.key == "2024-03"
    assert str(month) == "2024-03"


@pytest.mark.parametrize("value", ["2024-3", "2024/03", "24-03", "2024-00", "2024-13", "", None])
def test_parse_month_key_rejects_malformed(value):
    with pytest.raises(ValidationError):
        parse_month_key(value)


@pytest.mark.parametrize(
    "year, month, expected",
    [(2024, 2, 29), (2023, 2, 28), (1900, 2, 28), (2000, 2, 29), (2024, 4, 30), (2024, 12, 31)],
)
def test_days_in_month(year, month, expected):
    assert days_in_month(year, month) == expected


def test_day_clamps_into_month():
    month = MonthKey(2023, 2)
    assert month.day(31) == date(2023, 2, 28)
    assert month.day(0) == date(2023, 2, 1)
    assert month.day(14) == date(2023, 2, 14)


def test_bounds_and_neighbours():
    month = parse_month_key("2024-01")
    assert month.start == date(2024, 1, 1)
    assert month.end == date(2024, 1, 31)
    assert month.contains(date(2024, 1, 31))
    assert not month.contains(date(2024, 2, 1))
    assert month.previous() == MonthKey(2023, 12)
