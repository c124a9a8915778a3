"""
Configuration for recurring payment detection, reminders and cost analysis.

Process defaults come from the environment (RECURRING_* variables, .env supported).
Per-request overrides are validated once when the config object is built; helpers
downstream trust the values they receive.
"""
from decimal import Decimal
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv()


class RecurringSettings(BaseSettings):
    """Environment-driven defaults shared by the API and the Celery workers."""

    model_config = SettingsConfigDict(env_prefix="RECURRING_", env_file=".env", extra="ignore")

    min_occurrences: int = 3
    amount_tolerance_percent: float = 5.0
    date_variance_days: int = 3
    lookback_months: int = 12
    confidence_threshold: float = 0.7

    spam_min_interval_minutes: int = 60
    spam_max_alerts_per_day: int = 10

    grace_period_days: int = 3
    reminder_lookahead_days: int = 14
    funds_lookahead_days: int = 7
    default_reminder_days: str = "1,3,7"
    reminder_repeat_hours: int = 23

    budget_fraction: Decimal = Decimal("0.8")
    income_window_days: int = 30
    cost_cache_ttl_seconds: int = 300


class RecurringDetectionConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    min_occurrences: int = Field(default=3, ge=2)
    amount_tolerance_percent: float = Field(default=5.0, ge=0, le=50)
    date_variance_days: int = Field(default=3, ge=0, le=7)
    lookback_months: int = Field(default=12, ge=1, le=24)
    confidence_threshold: float = Field(default=0.7, ge=0.1, le=1.0)


class SpamGuardConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    min_interval_minutes: int = Field(default=60, ge=1)
    max_alerts_per_day: int = Field(default=10, ge=1)


class BillReminderConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    grace_period_days: int = Field(default=3, ge=0)
    reminder_lookahead_days: int = Field(default=14, ge=1)
    funds_lookahead_days: int = Field(default=7, ge=0)
    default_reminder_days: str = "1,3,7"
    reminder_repeat_hours: int = Field(default=23, ge=0)


class CostAnalysisConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    budget_fraction: Decimal = Field(default=Decimal("0.8"), gt=0, le=1)
    income_window_days: int = Field(default=30, ge=1)
    cache_ttl_seconds: int = Field(default=300, ge=0)
    projection_months: int = Field(default=12, ge=1, le=60)


def detection_config_from_settings(
    settings: Optional[RecurringSettings] = None,
    **overrides,
) -> RecurringDetectionConfig:
    """Merge environment defaults with caller overrides (None values are ignored)."""
    settings = settings or RecurringSettings()
    values = {
        "min_occurrences": settings.min_occurrences,
        "amount_tolerance_percent": settings.amount_tolerance_percent,
        "date_variance_days": settings.date_variance_days,
        "lookback_months": settings.lookback_months,
        "confidence_threshold": settings.confidence_threshold,
    }
    values.update({k: v for k, v in overrides.items() if v is not None})
    return RecurringDetectionConfig(**values)


def spam_guard_config_from_settings(settings: Optional[RecurringSettings] = None) -> SpamGuardConfig:
    settings = settings or RecurringSettings()
    return SpamGuardConfig(
        min_interval_minutes=settings.spam_min_interval_minutes,
        max_alerts_per_day=settings.spam_max_alerts_per_day,
    )


def bill_reminder_config_from_settings(
    settings: Optional[RecurringSettings] = None,
    **overrides,
) -> BillReminderConfig:
    settings = settings or RecurringSettings()
    values = {
        "grace_period_days": settings.grace_period_days,
        "reminder_lookahead_days": settings.reminder_lookahead_days,
        "funds_lookahead_days": settings.funds_lookahead_days,
        "default_reminder_days": settings.default_reminder_days,
        "reminder_repeat_hours": settings.reminder_repeat_hours,
    }
    values.update({k: v for k, v in overrides.items() if v is not None})
    return BillReminderConfig(**values)


def cost_analysis_config_from_settings(
    settings: Optional[RecurringSettings] = None,
    **overrides,
) -> CostAnalysisConfig:
    settings = settings or RecurringSettings()
    values = {
        "budget_fraction": settings.budget_fraction,
        "income_window_days": settings.income_window_days,
        "cache_ttl_seconds": settings.cost_cache_ttl_seconds,
    }
    values.update({k: v for k, v in overrides.items() if v is not None})
    return CostAnalysisConfig(**values)
