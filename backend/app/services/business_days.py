"""
Business-day calendar used to shift bill due dates off weekends and holidays.
"""
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import FrozenSet, Tuple, Union

DateLike = Union[date, datetime]

# (month, day) pairs that repeat every year
DEFAULT_RECURRING_HOLIDAYS: FrozenSet[Tuple[int, int]] = frozenset({
    (1, 1),    # New Year's Day
    (1, 26),   # Republic Day
    (8, 15),   # Independence Day
    (10, 2),   # Gandhi Jayanti
    (12, 25),  # Christmas
})

# date.weekday(): Monday=0 ... Sunday=6
DEFAULT_WEEKEND_DAYS: FrozenSet[int] = frozenset({5, 6})

FORWARD = "forward"
BACKWARD = "backward"


@dataclass(frozen=True)
class BusinessDayCalendar:
    recurring_holidays: FrozenSet[Tuple[int, int]] = DEFAULT_RECURRING_HOLIDAYS
    holidays: FrozenSet[date] = field(default_factory=frozenset)
    weekend_days: FrozenSet[int] = DEFAULT_WEEKEND_DAYS

    @staticmethod
    def _as_date(value: DateLike) -> date:
        return value.date() if isinstance(value, datetime) else value

    def is_holiday(self, value: DateLike) -> bool:
        day = self._as_date(value)
        return day in self.holidays or (day.month, day.day) in self.recurring_holidays

    def is_business_day(self, value: DateLike) -> bool:
        day = self._as_date(value)
        return day.weekday() not in self.weekend_days and not self.is_holiday(day)

    def adjust_to_business_day(self, value: DateLike, direction: str = FORWARD) -> DateLike:
        """Roll to the nearest business day in `direction`; business days are returned unchanged."""
        if direction not in (FORWARD, BACKWARD):
            raise ValueError(f"Unsupported adjustment direction: {direction}")
        if len(self.weekend_days) >= 7:
            raise ValueError("Calendar has no business days")

        step = timedelta(days=1 if direction == FORWARD else -1)
        adjusted = value
        while not self.is_business_day(adjusted):
            adjusted = adjusted + step
        return adjusted

    def add_business_days(self, value: DateLike, days: int) -> DateLike:
        step = timedelta(days=1 if days >= 0 else -1)
        remaining = abs(days)
        current = value
        while remaining > 0:
            current = current + step
            if self.is_business_day(current):
                remaining -= 1
        return current

    def business_days_between(self, start: DateLike, end: DateLike) -> int:
        """Business days in (start, end]; negative when end is before start."""
        start_day, end_day = self._as_date(start), self._as_date(end)
        sign = 1
        if end_day < start_day:
            start_day, end_day = end_day, start_day
            sign = -1

        count = 0
        current = start_day
        while current < end_day:
            current += timedelta(days=1)
            if self.is_business_day(current):
                count += 1
        return sign * count
