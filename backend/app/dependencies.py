"""
FastAPI dependency providers for the recurring payment engine.

Tests override get_repository and get_notifier through app.dependency_overrides.
"""
from fastapi import Depends
from sqlalchemy.orm import Session

from app.database import get_db
from app.services.cost_analysis import CostAnalysisCache
from app.services.event_publisher import NotificationPublisher
from app.services.recurring_config import (
    RecurringSettings,
    bill_reminder_config_from_settings,
    cost_analysis_config_from_settings,
    detection_config_from_settings,
    spam_guard_config_from_settings,
)
from app.services.recurring_payment_service import RecurringPaymentService
from app.services.recurring_repository import RecurringPaymentRepository, SqlAlchemyRecurringPaymentRepository

_settings = RecurringSettings()
_notifier = NotificationPublisher()
_cost_cache = CostAnalysisCache(_settings.cost_cache_ttl_seconds)


def get_settings() -> RecurringSettings:
    return _settings


def get_repository(db: Session = Depends(get_db)) -> RecurringPaymentRepository:
    return SqlAlchemyRecurringPaymentRepository(db)


def get_notifier() -> NotificationPublisher:
    return _notifier


def get_cost_cache() -> CostAnalysisCache:
    return _cost_cache


def get_recurring_service(
    repository: RecurringPaymentRepository = Depends(get_repository),
    notifier=Depends(get_notifier),
    cost_cache: CostAnalysisCache = Depends(get_cost_cache),
    settings: RecurringSettings = Depends(get_settings),
) -> RecurringPaymentService:
    return RecurringPaymentService(
        repository,
        notifier=notifier,
        detection_config=detection_config_from_settings(settings),
        reminder_config=bill_reminder_config_from_settings(settings),
        spam_config=spam_guard_config_from_settings(settings),
        cost_config=cost_analysis_config_from_settings(settings),
        cost_cache=cost_cache,
    )
