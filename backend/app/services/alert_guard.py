"""
Reminder spam guard and alert lifecycle.

The guard is an advisory check-then-act gate: two concurrent runs for the same
(user, account, alert type) can both pass it. The worst case is one duplicate alert.
"""
import logging
from datetime import datetime, timedelta
from typing import List, Optional

from app.exceptions import InvalidPaymentInput
from app.models import AlertFireRecord
from app.services.recurring_config import SpamGuardConfig
from app.services.recurring_repository import RecurringPaymentRepository

logger = logging.getLogger(__name__)

TRIGGERED = "triggered"
ACKNOWLEDGED = "acknowledged"
SNOOZED = "snoozed"
DISMISSED = "dismissed"

ALERT_STATUSES = (TRIGGERED, ACKNOWLEDGED, SNOOZED, DISMISSED)

# Allowed source states for each target state; dismissed is terminal
ALERT_TRANSITIONS = {
    ACKNOWLEDGED: {TRIGGERED, SNOOZED},
    SNOOZED: {TRIGGERED, ACKNOWLEDGED},
    DISMISSED: {TRIGGERED, ACKNOWLEDGED, SNOOZED},
}

DEFAULT_SNOOZE_MINUTES = 60


class ReminderSpamGuard:
    """Blocks a new alert when the same alert fired recently or the daily cap is reached."""

    def __init__(self, repository: RecurringPaymentRepository, config: Optional[SpamGuardConfig] = None):
        self.repository = repository
        self.config = config or SpamGuardConfig()

    def should_block(self, user_id: str, account_id: str, alert_type: str, now: datetime) -> bool:
        interval_start = now - timedelta(minutes=self.config.min_interval_minutes)
        recent_same_type = self.repository.list_alert_fire_records(
            user_id, account_id, alert_type, interval_start
        )
        if recent_same_type:
            logger.info(
                f"[SPAM_GUARD] Blocked {alert_type} for account {account_id}: "
                f"fired within {self.config.min_interval_minutes} minutes"
            )
            return True

        day_start = now - timedelta(hours=24)
        fired_today = self.repository.list_alert_fire_records(user_id, account_id, None, day_start)
        if len(fired_today) >= self.config.max_alerts_per_day:
            logger.info(
                f"[SPAM_GUARD] Blocked {alert_type} for account {account_id}: "
                f"daily cap of {self.config.max_alerts_per_day} reached"
            )
            return True

        return False


class AlertService:
    """Creates fire records and moves alerts through triggered/acknowledged/snoozed/dismissed."""

    def __init__(self, repository: RecurringPaymentRepository):
        self.repository = repository

    def fire(
        self,
        user_id: str,
        account_id: str,
        alert_type: str,
        message: str,
        now: datetime,
        current_value: Optional[str] = None,
        threshold_value: Optional[str] = None,
    ) -> AlertFireRecord:
        record = AlertFireRecord(
            user_id=user_id,
            account_id=account_id,
            alert_type=alert_type,
            message=message,
            current_value=current_value,
            threshold_value=threshold_value,
            status=TRIGGERED,
            triggered_at=now,
        )
        return self.repository.insert_alert_fire_record(record)

    def list_alerts(self, user_id: str, status: Optional[str] = None) -> List[AlertFireRecord]:
        if status is not None and status not in ALERT_STATUSES:
            raise InvalidPaymentInput(f"Unknown alert status: {status}")
        return self.repository.list_alerts(user_id, status)

    def _transition(self, alert_id: str, user_id: str, target: str, fields: dict) -> Optional[AlertFireRecord]:
        alert = self.repository.get_alert(alert_id, user_id)
        if not alert:
            return None

        if alert.status not in ALERT_TRANSITIONS[target]:
            raise InvalidPaymentInput(f"Cannot move alert from {alert.status} to {target}")

        updated = self.repository.update_alert(alert_id, user_id, {"status": target, **fields})
        self.repository.commit()
        return updated

    def acknowledge(self, alert_id: str, user_id: str, now: datetime) -> Optional[AlertFireRecord]:
        return self._transition(alert_id, user_id, ACKNOWLEDGED, {"acknowledged_at": now, "snoozed_until": None})

    def snooze(
        self,
        alert_id: str,
        user_id: str,
        now: datetime,
        minutes: int = DEFAULT_SNOOZE_MINUTES,
    ) -> Optional[AlertFireRecord]:
        if minutes <= 0:
            raise InvalidPaymentInput("Snooze duration must be a positive number of minutes")
        return self._transition(alert_id, user_id, SNOOZED, {"snoozed_until": now + timedelta(minutes=minutes)})

    def dismiss(self, alert_id: str, user_id: str, now: datetime) -> Optional[AlertFireRecord]:
        return self._transition(alert_id, user_id, DISMISSED, {"dismissed_at": now})
