"""
Redis Pub/Sub publisher for recurring payment notifications.
Publishes events that are consumed by the SSE endpoint for in-app delivery.
"""
import json
import os
import logging
from datetime import datetime
from typing import List, Optional

import redis

logger = logging.getLogger(__name__)

DEFAULT_CHANNELS = ["inApp", "email", "push"]
STATE_TTL_SECONDS = 300


def notification_priority(kind: str, days_until_due: int = 0) -> str:
    """
    Priority for a notification.

    Due-soon reminders escalate as the due date approaches; overdue reminders
    escalate the longer they stay unpaid. Funds warnings are always high.
    """
    if kind == "insufficient_funds":
        return "high"
    if kind == "bill_reminder":
        if days_until_due < 0:
            days_overdue = abs(days_until_due)
            if days_overdue > 7:
                return "high"
            if days_overdue > 3:
                return "medium"
            return "low"
        if days_until_due <= 1:
            return "high"
        if days_until_due <= 3:
            return "medium"
        return "low"
    return "low"


class NotificationPublisher:
    """
    Publishes recurring payment notifications to Redis Pub/Sub channels.

    Channel format: notifications:{user_id}

    Event types:
    - bill_reminder: A declared payment is due soon or overdue
    - insufficient_funds: The paying account cannot cover an upcoming payment
    - payment_confirmed: A payment was marked as paid
    - patterns_detected: Detection found recurring payments that are not tracked yet

    Publishing never raises. A failed publish is logged and reported as False so
    the caller's committed state is left alone.
    """

    def __init__(self, redis_url: Optional[str] = None):
        """
        Initialize the publisher.

        Args:
            redis_url: Redis connection URL. If not provided, uses REDIS_URL env var.
        """
        self.redis_url = redis_url or os.getenv("REDIS_URL", "redis://localhost:6379/0")
        self._redis: Optional[redis.Redis] = None

    @property
    def redis(self) -> redis.Redis:
        """Lazy-load Redis connection."""
        if self._redis is None:
            self._redis = redis.from_url(self.redis_url, decode_responses=True)
        return self._redis

    @staticmethod
    def channel(user_id: str) -> str:
        return f"notifications:{user_id}"

    @staticmethod
    def state_key(user_id: str) -> str:
        return f"notifications_state:{user_id}"

    def _publish(self, user_id: str, event_data: dict) -> bool:
        """Publish to the user's channel and keep the latest event per type for late subscribers."""
        try:
            channel = self.channel(user_id)
            message = json.dumps(event_data, default=str)

            self.redis.publish(channel, message)

            event_type = event_data.get("type", "")
            pipe = self.redis.pipeline()
            pipe.hset(self.state_key(user_id), event_type, message)
            pipe.expire(self.state_key(user_id), STATE_TTL_SECONDS)
            pipe.execute()

            logger.debug(f"[NOTIFICATIONS] Published {event_type} to {channel}")
            return True
        except Exception as e:
            logger.error(f"[NOTIFICATIONS] Failed to publish event for user {user_id}: {e}")
            return False

    def publish_bill_reminder(
        self,
        user_id: str,
        payment_id: str,
        payment_name: str,
        amount,
        due_date: datetime,
        days_until_due: int,
        message: str,
        alert_id: Optional[str] = None,
        channels: Optional[List[str]] = None,
    ) -> bool:
        return self._publish(user_id, {
            "type": "bill_reminder",
            "payment_id": payment_id,
            "payment_name": payment_name,
            "amount": str(amount),
            "due_date": due_date.isoformat(),
            "days_until_due": days_until_due,
            "is_overdue": days_until_due < 0,
            "priority": notification_priority("bill_reminder", days_until_due),
            "message": message,
            "alert_id": alert_id,
            "channels": channels or DEFAULT_CHANNELS,
            "timestamp": datetime.utcnow().isoformat()
        })

    def publish_insufficient_funds(
        self,
        user_id: str,
        payment_id: str,
        payment_name: str,
        account_name: str,
        shortfall,
        due_date: datetime,
        channels: Optional[List[str]] = None,
    ) -> bool:
        return self._publish(user_id, {
            "type": "insufficient_funds",
            "payment_id": payment_id,
            "payment_name": payment_name,
            "shortfall": str(shortfall),
            "due_date": due_date.isoformat(),
            "priority": notification_priority("insufficient_funds"),
            "message": (
                f"Insufficient funds in {account_name} for upcoming {payment_name} payment. "
                f"You need {shortfall} more."
            ),
            "channels": channels or DEFAULT_CHANNELS,
            "timestamp": datetime.utcnow().isoformat()
        })

    def publish_payment_confirmed(
        self,
        user_id: str,
        payment_id: str,
        payment_name: str,
        amount,
        next_due_date: datetime,
    ) -> bool:
        return self._publish(user_id, {
            "type": "payment_confirmed",
            "payment_id": payment_id,
            "payment_name": payment_name,
            "amount": str(amount),
            "next_due_date": next_due_date.isoformat(),
            "priority": notification_priority("payment_confirmed"),
            "message": f"{payment_name} marked as paid. Next payment due {next_due_date.date().isoformat()}.",
            "channels": ["inApp"],
            "timestamp": datetime.utcnow().isoformat()
        })

    def publish_patterns_detected(self, user_id: str, patterns: List[dict]) -> bool:
        return self._publish(user_id, {
            "type": "patterns_detected",
            "count": len(patterns),
            "patterns": patterns,
            "priority": notification_priority("patterns_detected"),
            "message": f"We found {len(patterns)} recurring payment(s) you are not tracking yet.",
            "channels": ["inApp"],
            "timestamp": datetime.utcnow().isoformat()
        })

    def close(self) -> None:
        """Close the Redis connection."""
        if self._redis:
            self._redis.close()
            self._redis = None
