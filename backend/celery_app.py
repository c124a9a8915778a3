"""
Celery application configuration for scheduled tasks.
"""
import os
from celery import Celery
from celery.schedules import crontab

# Redis URL for broker and backend
REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")

# Create Celery app
celery_app = Celery(
    "recurring_tasks",
    broker=REDIS_URL,
    backend=REDIS_URL,
    include=["tasks.reminder_tasks"],
)


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int, low: int, high: int) -> int:
    try:
        value = int(os.getenv(name, str(default)))
    except ValueError:
        value = default
    # clamp
    return max(low, min(high, value))


def _build_beat_schedule() -> dict:
    schedule = {}

    if _env_bool("BILL_REMINDERS_ENABLED", default=True):
        schedule["bill-reminders-daily"] = {
            "task": "tasks.reminder_tasks.process_daily_reminders",
            "schedule": crontab(
                minute=_env_int("BILL_REMINDERS_MINUTE_UTC", 0, 0, 59),
                hour=_env_int("BILL_REMINDERS_HOUR_UTC", 6, 0, 23),
            ),
        }

    if _env_bool("DETECTION_SWEEP_ENABLED", default=False):
        schedule["recurring-detection-sweep-daily"] = {
            "task": "tasks.reminder_tasks.detect_patterns_for_all_users",
            "schedule": crontab(
                minute=_env_int("DETECTION_SWEEP_MINUTE_UTC", 30, 0, 59),
                hour=_env_int("DETECTION_SWEEP_HOUR_UTC", 3, 0, 23),
            ),
        }

    return schedule


celery_app.conf.update(
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    result_expires=24 * 3600,

    timezone="UTC",
    enable_utc=True,

    # Daily jobs are idempotent; unacked runs are redelivered
    task_default_queue="recurring",
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_track_started=True,
    task_time_limit=30 * 60,
    task_soft_time_limit=25 * 60,

    worker_prefetch_multiplier=1,
    worker_concurrency=_env_int("CELERY_WORKER_CONCURRENCY", 2, 1, 16),

    beat_schedule=_build_beat_schedule(),
)


if __name__ == "__main__":
    celery_app.start()
