"""
Reminder spam guard and alert lifecycle checks.
"""
import os
import sys
from datetime import datetime, timedelta

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.exceptions import InvalidPaymentInput  # noqa: E402
from app.services.alert_guard import AlertService, ReminderSpamGuard  # noqa: E402
from app.services.recurring_config import SpamGuardConfig  # noqa: E402
from tests.fakes import ACCOUNT_ID, USER_ID, FakeRepository  # noqa: E402

T = datetime(2024, 3, 20, 9, 0)
OTHER_ACCOUNT_ID = "22222222-2222-2222-2222-222222222222"


def _fire(repository, alert_type="bill_reminder_3_day", at=T, account_id=ACCOUNT_ID):
    return AlertService(repository).fire(USER_ID, account_id, alert_type, "reminder", at)


def test_interval_boundary() -> None:
    repository = FakeRepository()
    _fire(repository)
    guard = ReminderSpamGuard(repository, SpamGuardConfig(min_interval_minutes=60))

    just_inside = T + timedelta(minutes=60) - timedelta(seconds=1)
    just_outside = T + timedelta(minutes=60) + timedelta(seconds=1)

    assert guard.should_block(USER_ID, ACCOUNT_ID, "bill_reminder_3_day", just_inside)
    assert not guard.should_block(USER_ID, ACCOUNT_ID, "bill_reminder_3_day", just_outside)


def test_interval_is_per_alert_type_and_account() -> None:
    repository = FakeRepository()
    _fire(repository)
    guard = ReminderSpamGuard(repository)
    soon = T + timedelta(minutes=5)

    assert not guard.should_block(USER_ID, ACCOUNT_ID, "bill_reminder_7_day", soon)
    assert not guard.should_block(USER_ID, OTHER_ACCOUNT_ID, "bill_reminder_3_day", soon)
    assert not guard.should_block("user-2", ACCOUNT_ID, "bill_reminder_3_day", soon)


def test_daily_cap_counts_every_alert_type() -> None:
    repository = FakeRepository()
    for i in range(3):
        _fire(repository, alert_type=f"type_{i}", at=T - timedelta(hours=i + 2))
    guard = ReminderSpamGuard(repository, SpamGuardConfig(min_interval_minutes=1, max_alerts_per_day=3))

    assert guard.should_block(USER_ID, ACCOUNT_ID, "new_type", T)
    # older records fall out of the 24 hour window
    assert not guard.should_block(USER_ID, ACCOUNT_ID, "new_type", T + timedelta(hours=21, minutes=30))


def test_fire_creates_triggered_record() -> None:
    repository = FakeRepository()
    alert = _fire(repository)

    assert alert.status == "triggered"
    assert alert.triggered_at == T
    assert repository.alerts == [alert]


def test_acknowledge_then_dismiss() -> None:
    repository = FakeRepository()
    alert = _fire(repository)
    service = AlertService(repository)

    acknowledged = service.acknowledge(str(alert.id), USER_ID, T + timedelta(minutes=1))
    assert acknowledged.status == "acknowledged"
    assert acknowledged.acknowledged_at == T + timedelta(minutes=1)

    dismissed = service.dismiss(str(alert.id), USER_ID, T + timedelta(minutes=2))
    assert dismissed.status == "dismissed"
    assert repository.commits == 2


def test_snooze_sets_deadline() -> None:
    repository = FakeRepository()
    alert = _fire(repository)

    snoozed = AlertService(repository).snooze(str(alert.id), USER_ID, T, minutes=30)

    assert snoozed.status == "snoozed"
    assert snoozed.snoozed_until == T + timedelta(minutes=30)


def test_dismissed_is_terminal() -> None:
    repository = FakeRepository()
    alert = _fire(repository)
    service = AlertService(repository)
    service.dismiss(str(alert.id), USER_ID, T)

    with pytest.raises(InvalidPaymentInput):
        service.acknowledge(str(alert.id), USER_ID, T)
    with pytest.raises(InvalidPaymentInput):
        service.snooze(str(alert.id), USER_ID, T)


def test_invalid_snooze_and_unknown_alerts() -> None:
    repository = FakeRepository()
    alert = _fire(repository)
    service = AlertService(repository)

    with pytest.raises(InvalidPaymentInput):
        service.snooze(str(alert.id), USER_ID, T, minutes=0)
    assert service.acknowledge("00000000-0000-0000-0000-000000000000", USER_ID, T) is None
    assert service.dismiss(str(alert.id), "user-2", T) is None


def test_list_alerts_filters_by_status() -> None:
    repository = FakeRepository()
    first = _fire(repository)
    _fire(repository, alert_type="bill_reminder_1_day")
    service = AlertService(repository)
    service.acknowledge(str(first.id), USER_ID, T)

    assert len(service.list_alerts(USER_ID)) == 2
    assert [a.id for a in service.list_alerts(USER_ID, "acknowledged")] == [first.id]
    with pytest.raises(InvalidPaymentInput):
        service.list_alerts(USER_ID, "exploded")
