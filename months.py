import re
from dataclasses import dataclass
from datetime import date
from typing import Optional

from errors import ValidationError

MONTH_KEY_PATTERN = re.compile(r"^(\d{4})-(\d{2})$")


@dataclass(frozen=True)
class MonthKey:
    year: int
    month: int

    @property
    def key(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"

    @property
    def start(self) -> date:
        return date(self.year, self.month, 1)

    @property
    def end(self) -> date:
        return date(self.year, self.month, self.days)

    @property
    def days(self) -> int:
        return days_in_month(self.year, self.month)

    def contains(self, value: date) -> bool:
        return value.year == self.year and value.month == self.month

    def previous(self) -> "MonthKey":
        if self.month == 1:
            return MonthKey(self.year - 1, 12)
        return MonthKey(self.year, self.month - 1)

    def day(self, day_of_month: int) -> date:
        """Date of ``day_of_month`` in this month, clamped to [1, days]."""
        return date(self.year, self.month, min(max(day_of_month, 1), self.days))

    def __str__(self) -> str:
        return self.key


def parse_month_key(value: Optional[str]) -> MonthKey:
    if not isinstance(value, str):
        raise ValidationError("Invalid month_key. Use YYYY-MM")
    match = MONTH_KEY_PATTERN.match(value.strip())
    if not match:
        raise ValidationError("Invalid month_key. Use YYYY-MM")
    year, month = int(match.group(1)), int(match.group(2))
    if year < 1 or not 1 <= month <= 12:
        raise ValidationError(f"Invalid month_key {value!r}: month must be 01-12")
    return MonthKey(year, month)


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        return 31
    next_month = date(year, month + 1, 1)
    return (next_month - date(year, month, 1)).days
