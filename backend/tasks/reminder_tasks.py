"""Celery tasks for daily bill reminders and the recurring payment detection sweep."""

from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal

from dateutil.relativedelta import relativedelta

from celery_app import celery_app
from app.database import SessionLocal
from app.services.event_publisher import NotificationPublisher
from app.services.recurring_config import (
    RecurringSettings,
    bill_reminder_config_from_settings,
    detection_config_from_settings,
    spam_guard_config_from_settings,
)
from app.services.recurring_payment_service import RecurringPaymentService
from app.services.recurring_repository import SqlAlchemyRecurringPaymentRepository

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
RETRY_COUNTDOWN_SECONDS = 60


def _build_service(session, publisher: NotificationPublisher) -> RecurringPaymentService:
    settings = RecurringSettings()
    return RecurringPaymentService(
        SqlAlchemyRecurringPaymentRepository(session),
        notifier=publisher,
        detection_config=detection_config_from_settings(settings),
        reminder_config=bill_reminder_config_from_settings(settings),
        spam_config=spam_guard_config_from_settings(settings),
    )


@celery_app.task(bind=True, max_retries=2, name="tasks.reminder_tasks.process_daily_reminders")
def process_daily_reminders(self) -> dict:
    """Send due-date reminders and funds warnings, then escalate overdue payments."""
    session = SessionLocal()
    publisher = NotificationPublisher()
    try:
        result = _build_service(session, publisher).process_daily_reminders(datetime.utcnow())
        summary = {
            "processed_count": result["processed_count"],
            "triggered_count": result["triggered_count"],
            "created_alerts": len(result["created_alerts"]),
            "insufficient_funds_warnings": len(result["insufficient_funds_warnings"]),
        }
        logger.info(
            f"[BILL_REMINDERS] Daily task done: processed={summary['processed_count']} "
            f"triggered={summary['triggered_count']} funds_warnings={summary['insufficient_funds_warnings']}"
        )
        return summary
    except Exception as exc:  # noqa: BLE001
        logger.exception(f"[BILL_REMINDERS] Daily reminder task failed: {exc}")
        raise self.retry(exc=exc, countdown=RETRY_COUNTDOWN_SECONDS)
    finally:
        publisher.close()
        session.close()


@celery_app.task(bind=True, max_retries=2, name="tasks.reminder_tasks.detect_patterns_for_all_users")
def detect_patterns_for_all_users(self) -> dict:
    """Run detection for every user with recent transactions and announce untracked patterns."""
    session = SessionLocal()
    publisher = NotificationPublisher()
    try:
        service = _build_service(session, publisher)
        now = datetime.utcnow()
        since = now - relativedelta(months=service.detection_config.lookback_months)
        user_ids = service.repository.list_users_with_transactions(since)

        users_notified = 0
        new_patterns = 0
        for user_id in user_ids:
            detections = [d for d in service.detect_recurring_patterns(user_id, now) if d.is_new]
            if not detections:
                continue

            new_patterns += len(detections)
            payload = [
                {
                    "account_id": d.pattern.account_id,
                    "merchant_signature": d.pattern.merchant_signature,
                    "suggested_name": d.suggested_name,
                    "frequency": d.pattern.frequency,
                    "average_amount": str(d.pattern.average_amount.quantize(CENT)),
                    "confidence": round(d.pattern.confidence, 4),
                    "next_expected_date": d.pattern.next_expected_date.isoformat(),
                }
                for d in detections
            ]
            if publisher.publish_patterns_detected(user_id, payload):
                users_notified += 1

        logger.info(
            f"[RECURRING_DETECTOR] Sweep done: users={len(user_ids)} new_patterns={new_patterns} notified={users_notified}"
        )
        return {"users_scanned": len(user_ids), "new_patterns": new_patterns, "users_notified": users_notified}
    except Exception as exc:  # noqa: BLE001
        logger.exception(f"[RECURRING_DETECTOR] Detection sweep failed: {exc}")
        raise self.retry(exc=exc, countdown=RETRY_COUNTDOWN_SECONDS)
    finally:
        publisher.close()
        session.close()
