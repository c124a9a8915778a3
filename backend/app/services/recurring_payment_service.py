"""
Entry point for recurring payment detection, cost analysis and bill tracking.

Routes and Celery tasks go through RecurringPaymentService; it validates caller
input, wires the detector, the cost aggregator and the bill engine to one
repository, and drops cached cost analyses when a user's payments change.
"""
import logging
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from app.exceptions import InvalidPaymentInput, RecurringPaymentNotFound
from app.models import RecurringPayment
from app.services.alert_guard import AlertService
from app.services.bill_service import (
    CANCELLED,
    PAYMENT_STATUSES,
    PENDING,
    BillDashboardSummary,
    BillService,
    MissedPaymentAlert,
    format_reminder_days,
)
from app.services.business_days import FORWARD, BusinessDayCalendar
from app.services.cost_analysis import CostAnalysis, CostAnalysisCache, CostAnalysisService, MonthlyProjection
from app.services.pattern_analysis import validate_frequency
from app.services.recurring_config import (
    BillReminderConfig,
    CostAnalysisConfig,
    RecurringDetectionConfig,
    SpamGuardConfig,
)
from app.services.recurring_detector import RecurringPatternDetector, RecurringPaymentDetection
from app.services.recurring_repository import RecurringPaymentRepository

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
UPDATABLE_FIELDS = ("name", "merchant", "amount", "category_id", "frequency", "reminder_days", "next_due_date")


def validate_amount(value: Any) -> Decimal:
    """Positive amount rounded half-up to cents; floats go through str() to keep their printed value."""
    if isinstance(value, bool):
        raise InvalidPaymentInput(f"Invalid amount: {value!r}")
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise InvalidPaymentInput(f"Invalid amount: {value!r}")
    if not amount.is_finite():
        raise InvalidPaymentInput(f"Amount must be a positive number, got {value!r}")
    # checked after rounding so sub-cent input cannot be stored as 0.00
    amount = amount.quantize(CENT, rounding=ROUND_HALF_UP)
    if amount <= 0:
        raise InvalidPaymentInput(f"Amount must be at least 0.01, got {value!r}")
    return amount


def validate_date(value: Any, field_name: str) -> datetime:
    if not isinstance(value, datetime):
        raise InvalidPaymentInput(f"{field_name} must be a datetime, got {value!r}")
    return value


def validate_payment_frequency(value: Any) -> str:
    try:
        return validate_frequency(value)
    except ValueError as e:
        raise InvalidPaymentInput(str(e))


class RecurringPaymentService:
    """Facade over the recurring payment engine for one repository."""

    def __init__(
        self,
        repository: RecurringPaymentRepository,
        notifier=None,
        detection_config: Optional[RecurringDetectionConfig] = None,
        reminder_config: Optional[BillReminderConfig] = None,
        spam_config: Optional[SpamGuardConfig] = None,
        cost_config: Optional[CostAnalysisConfig] = None,
        cost_cache: Optional[CostAnalysisCache] = None,
        calendar: Optional[BusinessDayCalendar] = None,
    ):
        self.repository = repository
        self.notifier = notifier
        self.detection_config = detection_config or RecurringDetectionConfig()
        self.costs = CostAnalysisService(repository, cost_config, cost_cache)
        self.bills = BillService(
            repository,
            config=reminder_config,
            spam_config=spam_config,
            notifier=notifier,
            calendar=calendar,
        )
        self.alerts = AlertService(repository)

    # -- detection ----------------------------------------------------------

    def detect_recurring_patterns(
        self,
        user_id: str,
        now: datetime,
        config: Optional[RecurringDetectionConfig] = None,
    ) -> List[RecurringPaymentDetection]:
        detector = RecurringPatternDetector(self.repository, user_id, config or self.detection_config)
        return detector.detect(now)

    # -- cost analysis -----------------------------------------------------

    def get_cost_analysis(self, user_id: str, now: datetime, use_cache: bool = True) -> CostAnalysis:
        return self.costs.get_cost_analysis(user_id, now, use_cache=use_cache)

    def get_cost_projections(self, user_id: str, now: datetime, months: Optional[int] = None) -> List[MonthlyProjection]:
        if months is not None and months < 1:
            raise InvalidPaymentInput("months must be at least 1")
        return self.costs.monthly_projections(user_id, now, months)

    # -- bills ----------------------------------------------------------------

    def detect_missed_payments(
        self,
        user_id: str,
        now: datetime,
        grace_period_days: Optional[int] = None,
    ) -> List[MissedPaymentAlert]:
        return self.bills.detect_missed_payments(user_id, now, grace_period_days)

    def mark_payment_as_paid(
        self,
        payment_id: str,
        user_id: str,
        now: datetime,
        payment_date: Optional[datetime] = None,
    ) -> Optional[RecurringPayment]:
        if payment_date is not None:
            validate_date(payment_date, "payment_date")
        payment = self.bills.mark_payment_as_paid(payment_id, user_id, now, payment_date)
        if payment:
            self.costs.invalidate(user_id)
        return payment

    def process_daily_reminders(self, now: datetime) -> dict:
        return self.bills.process_daily_reminders(now).as_dict()

    def get_dashboard_summary(self, user_id: str, now: datetime) -> BillDashboardSummary:
        return self.bills.dashboard_summary(user_id, now)

    def adjust_due_dates_for_business_days(self, user_id: str, direction: str = FORWARD) -> int:
        try:
            adjusted = self.bills.adjust_due_dates_for_business_days(user_id, direction=direction)
        except ValueError as e:
            raise InvalidPaymentInput(str(e))
        return adjusted

    # -- declared payments ----------------------------------------------------

    def list_payments(
        self,
        user_id: str,
        status: Optional[str] = None,
        account_id: Optional[str] = None,
    ) -> List[RecurringPayment]:
        if status is not None and status not in PAYMENT_STATUSES:
            raise InvalidPaymentInput(f"Unknown payment status: {status}")
        return self.repository.list_recurring_payments(user_id, status=status, account_id=account_id)

    def create_payment(
        self,
        user_id: str,
        now: datetime,
        account_id: str,
        name: str,
        amount: Any,
        frequency: str,
        next_due_date: Optional[datetime] = None,
        category_id: Optional[str] = None,
        merchant: Optional[str] = None,
        reminder_days: Optional[List[int]] = None,
        source_signature: Optional[str] = None,
    ) -> RecurringPayment:
        """
        Declare a recurring payment.

        With source_signature the payment confirms a detected pattern on the same
        account: the due date defaults to the predicted next date, the category
        to the suggested one, and the pattern's transactions get linked.
        """
        if not name or not name.strip():
            raise InvalidPaymentInput("name is required")
        amount = validate_amount(amount)
        frequency = validate_payment_frequency(frequency)
        if next_due_date is not None:
            validate_date(next_due_date, "next_due_date")
        self._require_owned(user_id, account_id, category_id)

        detection = None
        if source_signature:
            detection = self._find_detection(user_id, account_id, source_signature, now)
            if next_due_date is None:
                next_due_date = detection.pattern.next_expected_date
            category_id = category_id or detection.suggested_category_id
            merchant = merchant or detection.pattern.merchant_signature

        if next_due_date is None:
            raise InvalidPaymentInput("next_due_date is required")
        validate_date(next_due_date, "next_due_date")

        reminders = format_reminder_days(reminder_days) if reminder_days else self.bills.config.default_reminder_days
        if not reminders:
            raise InvalidPaymentInput("At least one positive reminder day is required")

        payment = self.repository.create_recurring_payment({
            "user_id": user_id,
            "account_id": account_id,
            "name": name.strip(),
            "merchant": merchant,
            "amount": amount,
            "frequency": frequency,
            "next_due_date": next_due_date,
            "category_id": category_id,
            "is_active": True,
            "status": PENDING,
            "reminder_days": reminders,
            "created_at": now,
            "updated_at": now,
        })
        linked = 0
        if detection is not None:
            linked = self.repository.link_transactions(detection.pattern.transaction_ids, str(payment.id), user_id)
        self.repository.commit()
        self.costs.invalidate(user_id)

        logger.info(f"[BILL_REMINDERS] Created recurring payment {payment.id} for user {user_id} ({linked} transactions linked)")
        return payment

    def _require_owned(self, user_id: str, account_id: Optional[str], category_id: Optional[str] = None) -> None:
        """Ids the caller does not own are reported exactly like missing ones."""
        if account_id is not None and not self.repository.get_account(account_id, user_id):
            raise RecurringPaymentNotFound(f"Account {account_id} not found")
        if category_id is not None and not self.repository.get_category(category_id, user_id):
            raise RecurringPaymentNotFound(f"Category {category_id} not found")

    def _find_detection(self, user_id: str, account_id: str, signature: str, now: datetime) -> RecurringPaymentDetection:
        for detection in self.detect_recurring_patterns(user_id, now):
            if detection.pattern.account_id == str(account_id) and detection.pattern.merchant_signature == signature:
                return detection
        raise RecurringPaymentNotFound(f"No detected pattern '{signature}' on account {account_id}")

    def update_payment(self, payment_id: str, user_id: str, fields: Dict[str, Any]) -> RecurringPayment:
        unknown = set(fields) - set(UPDATABLE_FIELDS)
        if unknown:
            raise InvalidPaymentInput(f"Fields cannot be updated: {', '.join(sorted(unknown))}")

        values = dict(fields)
        if "name" in values:
            if not values["name"] or not values["name"].strip():
                raise InvalidPaymentInput("name is required")
            values["name"] = values["name"].strip()
        if "amount" in values:
            values["amount"] = validate_amount(values["amount"])
        if "frequency" in values:
            values["frequency"] = validate_payment_frequency(values["frequency"])
        if "next_due_date" in values:
            validate_date(values["next_due_date"], "next_due_date")
        if "reminder_days" in values:
            values["reminder_days"] = format_reminder_days(values["reminder_days"] or [])
            if not values["reminder_days"]:
                raise InvalidPaymentInput("At least one positive reminder day is required")
        if values.get("category_id") is not None:
            self._require_owned(user_id, None, values["category_id"])

        payment = self.repository.update_recurring_payment(payment_id, user_id, values)
        if not payment:
            raise RecurringPaymentNotFound(f"Recurring payment {payment_id} not found")
        self.repository.commit()
        self.costs.invalidate(user_id)
        return payment

    def cancel_payment(self, payment_id: str, user_id: str) -> RecurringPayment:
        payment = self.repository.update_recurring_payment(payment_id, user_id, {
            "is_active": False,
            "status": CANCELLED,
        })
        if not payment:
            raise RecurringPaymentNotFound(f"Recurring payment {payment_id} not found")
        self.repository.commit()
        self.costs.invalidate(user_id)
        logger.info(f"[BILL_REMINDERS] Cancelled recurring payment {payment_id} for user {user_id}")
        return payment

    def update_reminder_settings(self, payment_id: str, user_id: str, reminder_days: List[int]) -> RecurringPayment:
        payment = self.bills.update_reminder_settings(payment_id, user_id, reminder_days)
        if not payment:
            raise RecurringPaymentNotFound(f"Recurring payment {payment_id} not found")
        return payment
