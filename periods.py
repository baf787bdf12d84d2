from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Iterator, Optional

MIN_YEAR = 1970
MAX_YEAR = 3000


@dataclass(frozen=True, order=True)
class YearMonth:
    year: int
    month: int

    def __post_init__(self) -> None:
        if not 1 <= self.month <= 12:
            raise ValueError(f"Month must be between 1 and 12, got {self.month}")
        if not MIN_YEAR <= self.year <= MAX_YEAR:
            raise ValueError(
                f"Year must be between {MIN_YEAR} and {MAX_YEAR}, got {self.year}"
            )

    @classmethod
    def from_date(cls, d: date) -> YearMonth:
        return cls(d.year, d.month)

    def increment(self) -> YearMonth:
        if self.month == 12:
            return YearMonth(self.year + 1, 1)
        return YearMonth(self.year, self.month + 1)

    def decrement(self) -> YearMonth:
        if self.month == 1:
            return YearMonth(self.year - 1, 12)
        return YearMonth(self.year, self.month - 1)

    @property
    def start(self) -> date:
        return date(self.year, self.month, 1)

    @property
    def end(self) -> date:
        if self.month == 12:
            return date(self.year + 1, 1, 1) - date.resolution
        return date(self.year, self.month + 1, 1) - date.resolution

    @property
    def days(self) -> int:
        return self.end.day

    def months_until(self, other: YearMonth) -> int:
        return (other.year - self.year) * 12 + (other.month - self.month)

    def iter_until(self, stop: YearMonth) -> Iterator[YearMonth]:
        """Yield months from ``self`` up to but excluding ``stop``."""
        cursor = self
        while cursor < stop:
            yield cursor
            cursor = cursor.increment()

    def iter_through(self, last: YearMonth) -> Iterator[YearMonth]:
        """Yield months from ``self`` through ``last`` inclusive."""
        cursor = self
        while cursor <= last:
            yield cursor
            if cursor == last:
                return
            cursor = cursor.increment()

    def clamp_day(self, day: int) -> date:
        return date(self.year, self.month, min(day, self.days))

    def __str__(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"


def increment_month(year: int, month: int) -> tuple[int, int]:
    ym = YearMonth(year, month).increment()
    return ym.year, ym.month


def decrement_month(year: int, month: int) -> tuple[int, int]:
    ym = YearMonth(year, month).decrement()
    return ym.year, ym.month


def resolve_month(
    year: Optional[str],
    month: Optional[str],
    *,
    today: Optional[date] = None,
) -> YearMonth:
    today = today or date.today()
    if not year and not month:
        return YearMonth.from_date(today)
    if not year or not month:
        raise ValueError("Both year and month are required")
    try:
        y = int(year)
        m = int(month)
    except ValueError as exc:
        raise ValueError("Year and month must be integers") from exc
    return YearMonth(y, m)


def parse_year_month(value: str) -> YearMonth:
    """Parse ``YYYY-MM``."""
    try:
        year_str, month_str = value.split("-", 1)
        return YearMonth(int(year_str), int(month_str))
    except (AttributeError, ValueError) as exc:
        raise ValueError(f"Invalid month: {value!r}") from exc
