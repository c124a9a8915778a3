"""
Celery beat schedule and task bodies, run eagerly against in-memory fakes.
"""
import os
import sys
from datetime import datetime, timedelta

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import celery_app  # noqa: E402
from app.services.recurring_payment_service import RecurringPaymentService  # noqa: E402
from tasks import reminder_tasks  # noqa: E402
from tests.fakes import FakeNotifier, FakeRepository, make_account, make_payment, make_transaction  # noqa: E402


class ClosableNotifier(FakeNotifier):
    closed = False

    def close(self) -> None:
        self.closed = True


class FakeSession:
    closed = False

    def close(self) -> None:
        self.closed = True


def _patch_task_collaborators(monkeypatch, repository):
    session = FakeSession()
    notifier = ClosableNotifier()
    monkeypatch.setattr(reminder_tasks, "SessionLocal", lambda: session)
    monkeypatch.setattr(reminder_tasks, "NotificationPublisher", lambda: notifier)
    monkeypatch.setattr(
        reminder_tasks,
        "_build_service",
        lambda _session, publisher: RecurringPaymentService(repository, notifier=publisher),
    )
    return session, notifier


def test_beat_schedule_follows_environment(monkeypatch) -> None:
    monkeypatch.setenv("BILL_REMINDERS_HOUR_UTC", "99")
    monkeypatch.setenv("DETECTION_SWEEP_ENABLED", "true")

    schedule = celery_app._build_beat_schedule()

    assert set(schedule) == {"bill-reminders-daily", "recurring-detection-sweep-daily"}
    assert schedule["bill-reminders-daily"]["schedule"].hour == {23}


def test_reminders_can_be_switched_off(monkeypatch) -> None:
    monkeypatch.setenv("BILL_REMINDERS_ENABLED", "false")
    monkeypatch.delenv("DETECTION_SWEEP_ENABLED", raising=False)
    assert celery_app._build_beat_schedule() == {}


def test_daily_reminder_task_returns_counts(monkeypatch) -> None:
    due = datetime.utcnow() + timedelta(days=3)
    repository = FakeRepository(payments=[make_payment(next_due_date=due)], accounts=[make_account(balance="10.00")])
    session, notifier = _patch_task_collaborators(monkeypatch, repository)

    summary = reminder_tasks.process_daily_reminders()

    assert summary == {
        "processed_count": 1,
        "triggered_count": 1,
        "created_alerts": 1,
        "insufficient_funds_warnings": 1,
    }
    assert session.closed and notifier.closed


def test_detection_sweep_announces_untracked_patterns(monkeypatch) -> None:
    now = datetime.utcnow()
    repository = FakeRepository(transactions=[
        make_transaction("-599.00", now - timedelta(days=days), "Netflix Subscription") for days in (62, 32, 1)
    ])
    _, notifier = _patch_task_collaborators(monkeypatch, repository)

    result = reminder_tasks.detect_patterns_for_all_users()

    assert result == {"users_scanned": 1, "new_patterns": 1, "users_notified": 1}
    assert notifier.kinds() == ["patterns_detected"]


class RetryScheduled(Exception):
    pass


def test_failed_runs_are_retried(monkeypatch) -> None:
    session, notifier = _patch_task_collaborators(monkeypatch, FakeRepository())
    retries = []

    def broken_service(_session, _publisher):
        raise RuntimeError("database unavailable")

    def record_retry(exc=None, countdown=None):
        retries.append((str(exc), countdown))
        return RetryScheduled()

    monkeypatch.setattr(reminder_tasks, "_build_service", broken_service)
    monkeypatch.setattr(reminder_tasks.process_daily_reminders, "retry", record_retry)
    monkeypatch.setattr(reminder_tasks.detect_patterns_for_all_users, "retry", record_retry)

    with pytest.raises(RetryScheduled):
        reminder_tasks.process_daily_reminders()
    with pytest.raises(RetryScheduled):
        reminder_tasks.detect_patterns_for_all_users()

    assert retries == [("database unavailable", 60), ("database unavailable", 60)]
    assert session.closed and notifier.closed
