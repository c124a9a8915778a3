"""
Business-day calendar checks.
"""
import os
import sys
from datetime import date, datetime

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.services.business_days import BACKWARD, FORWARD, BusinessDayCalendar  # noqa: E402


def test_weekends_and_recurring_holidays_are_not_business_days() -> None:
    calendar = BusinessDayCalendar()

    assert calendar.is_business_day(date(2024, 6, 12))  # Wednesday
    assert not calendar.is_business_day(date(2024, 6, 15))  # Saturday
    assert not calendar.is_business_day(date(2024, 6, 16))  # Sunday
    assert not calendar.is_business_day(date(2024, 8, 15))  # Thursday, recurring holiday
    assert calendar.is_holiday(datetime(2030, 12, 25, 8, 0))


def test_one_off_holidays() -> None:
    calendar = BusinessDayCalendar(holidays=frozenset({date(2024, 3, 25)}))
    assert not calendar.is_business_day(date(2024, 3, 25))
    assert calendar.is_business_day(date(2024, 3, 26))


def test_adjust_forward_and_backward() -> None:
    calendar = BusinessDayCalendar()

    assert calendar.adjust_to_business_day(date(2024, 6, 15), FORWARD) == date(2024, 6, 17)
    assert calendar.adjust_to_business_day(date(2024, 6, 16), BACKWARD) == date(2024, 6, 14)
    assert calendar.adjust_to_business_day(date(2024, 6, 12), FORWARD) == date(2024, 6, 12)
    # 2021-12-25 is a Saturday holiday followed by Sunday
    assert calendar.adjust_to_business_day(datetime(2021, 12, 25, 9, 30)) == datetime(2021, 12, 27, 9, 30)


def test_adjust_rejects_unknown_direction() -> None:
    with pytest.raises(ValueError):
        BusinessDayCalendar().adjust_to_business_day(date(2024, 6, 15), "sideways")


def test_custom_weekend() -> None:
    calendar = BusinessDayCalendar(weekend_days=frozenset({4, 5}))  # Friday and Saturday
    assert calendar.is_business_day(date(2024, 6, 16))  # Sunday
    assert calendar.adjust_to_business_day(date(2024, 6, 14)) == date(2024, 6, 16)


def test_add_business_days_skips_weekends() -> None:
    calendar = BusinessDayCalendar()
    assert calendar.add_business_days(date(2024, 6, 14), 1) == date(2024, 6, 17)
    assert calendar.add_business_days(date(2024, 6, 17), -1) == date(2024, 6, 14)
    assert calendar.add_business_days(date(2024, 6, 12), 0) == date(2024, 6, 12)


def test_business_days_between() -> None:
    calendar = BusinessDayCalendar()
    assert calendar.business_days_between(date(2024, 6, 14), date(2024, 6, 21)) == 5
    assert calendar.business_days_between(date(2024, 6, 21), date(2024, 6, 14)) == -5
    assert calendar.business_days_between(date(2024, 6, 14), date(2024, 6, 14)) == 0
