"""
Due dates, missed payments and daily bill reminders for declared recurring payments.

Usage:
    service = BillService(repository, notifier=NotificationPublisher())
    missed = service.detect_missed_payments(user_id, now=datetime.utcnow())
    summary = service.process_daily_reminders(now=datetime.utcnow())

State changes are committed before any notification goes out, and notification
failures are logged without undoing them.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable, Dict, List, Optional

from app.exceptions import InvalidPaymentInput
from app.models import Account, AlertFireRecord, RecurringPayment
from app.services.alert_guard import AlertService, ReminderSpamGuard
from app.services.business_days import FORWARD, BusinessDayCalendar
from app.services.pattern_analysis import advance_by_frequency
from app.services.recurring_config import BillReminderConfig, SpamGuardConfig
from app.services.recurring_repository import RecurringPaymentRepository

logger = logging.getLogger(__name__)

PENDING = "pending"
PAID = "paid"
OVERDUE = "overdue"
CANCELLED = "cancelled"

PAYMENT_STATUSES = (PENDING, PAID, OVERDUE, CANCELLED)
# Statuses of a cycle that has not been confirmed yet
UNCONFIRMED_STATUSES = (PENDING, OVERDUE)

REMINDER_TYPES: Dict[int, str] = {
    1: "bill_reminder_1_day",
    3: "bill_reminder_3_day",
    7: "bill_reminder_7_day",
    14: "bill_reminder_14_day",
}
INSUFFICIENT_FUNDS_ALERT = "insufficient_funds"
CREDIT_CARD = "credit_card"
DASHBOARD_UPCOMING_DAYS = 7


def parse_reminder_days(value: Optional[str]) -> List[int]:
    """Parse "1,3,7" into [1, 3, 7]; junk and non-positive entries are dropped."""
    days = set()
    for part in (value or "").split(","):
        part = part.strip()
        if part.isdigit() and int(part) > 0:
            days.add(int(part))
    return sorted(days)


def format_reminder_days(days: List[int]) -> str:
    cleaned = sorted({int(d) for d in days if int(d) > 0})
    return ",".join(str(d) for d in cleaned)


def days_between(start: datetime, end: datetime) -> int:
    """Whole calendar days from start to end."""
    return (end.date() - start.date()).days


def calculate_next_due_date(
    current_due_date: datetime,
    frequency: str,
    calendar: Optional[BusinessDayCalendar] = None,
    direction: str = FORWARD,
) -> datetime:
    """Advance one frequency cycle, optionally rolled onto a business day."""
    next_due = advance_by_frequency(current_due_date, frequency)
    if calendar is not None:
        next_due = calendar.adjust_to_business_day(next_due, direction)
    return next_due


def is_missed(payment: RecurringPayment, now: datetime, grace_period_days: int) -> bool:
    """Unconfirmed and due strictly before today minus the grace period."""
    if not payment.is_active or payment.status not in UNCONFIRMED_STATUSES:
        return False
    cutoff = now.date() - timedelta(days=grace_period_days)
    return payment.next_due_date.date() < cutoff


def generate_reminder_message(name: str, amount: Decimal, account_name: str, days_until_due: int) -> str:
    amount_text = f"{Decimal(amount):.2f}"
    if days_until_due == 0:
        return f"{name} is due today. Amount: {amount_text} from {account_name}"
    if days_until_due == 1:
        return f"{name} is due tomorrow. Amount: {amount_text} from {account_name}"
    if days_until_due > 1:
        return f"{name} is due in {days_until_due} days. Amount: {amount_text} from {account_name}"
    return f"{name} is {abs(days_until_due)} day(s) overdue. Amount: {amount_text} from {account_name}"


def notify_safely(send: Callable, *args, **kwargs) -> bool:
    """Call a notifier method; failures are logged and reported as False."""
    try:
        result = send(*args, **kwargs)
        return result is not False
    except Exception as e:
        logger.error(f"[NOTIFICATIONS] {getattr(send, '__name__', 'notify')} failed: {e}")
        return False


@dataclass
class MissedPaymentAlert:
    payment_id: str
    name: str
    expected_amount: Decimal
    expected_date: datetime
    days_overdue: int
    account_id: str
    last_payment_date: Optional[datetime] = None
    consecutive_misses: int = 1


@dataclass
class BillReminder:
    payment: RecurringPayment
    account: Optional[Account]
    days_until_due: int
    reminder_type: str
    message: str
    is_overdue: bool = False


@dataclass
class InsufficientFundsWarning:
    payment_id: str
    payment_name: str
    account_id: str
    amount: Decimal
    due_date: datetime
    account_balance: Decimal
    shortfall: Decimal


@dataclass
class NextBillDue:
    name: str
    amount: Decimal
    due_date: datetime
    days_until_due: int


@dataclass
class BillDashboardSummary:
    upcoming_bills: int
    overdue_bills: int
    total_amount_due: Decimal
    next_bill_due: Optional[NextBillDue] = None


@dataclass
class ReminderRunResult:
    processed_count: int = 0
    triggered_count: int = 0
    created_alerts: List[AlertFireRecord] = field(default_factory=list)
    insufficient_funds_warnings: List[InsufficientFundsWarning] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "processed_count": self.processed_count,
            "triggered_count": self.triggered_count,
            "created_alerts": self.created_alerts,
            "insufficient_funds_warnings": self.insufficient_funds_warnings,
        }


class BillService:
    """Due-date engine, missed-payment detection and the daily reminder batch."""

    def __init__(
        self,
        repository: RecurringPaymentRepository,
        config: Optional[BillReminderConfig] = None,
        spam_config: Optional[SpamGuardConfig] = None,
        notifier=None,
        calendar: Optional[BusinessDayCalendar] = None,
        adjustment_direction: str = FORWARD,
    ):
        self.repository = repository
        self.config = config or BillReminderConfig()
        self.spam_guard = ReminderSpamGuard(repository, spam_config)
        self.alerts = AlertService(repository)
        self.notifier = notifier
        self.calendar = calendar
        self.adjustment_direction = adjustment_direction

    # -- missed payments -------------------------------------------------

    def detect_missed_payments(
        self,
        user_id: str,
        now: datetime,
        grace_period_days: Optional[int] = None,
    ) -> List[MissedPaymentAlert]:
        grace = self.config.grace_period_days if grace_period_days is None else grace_period_days
        if grace < 0:
            raise InvalidPaymentInput("grace_period_days must be zero or positive")

        payments = self.repository.list_active_recurring_payments(user_id)
        missed = []
        for payment in payments:
            if not is_missed(payment, now, grace):
                continue
            missed.append(MissedPaymentAlert(
                payment_id=str(payment.id),
                name=payment.name,
                expected_amount=Decimal(payment.amount),
                expected_date=payment.next_due_date,
                days_overdue=days_between(payment.next_due_date, now),
                account_id=str(payment.account_id),
                last_payment_date=payment.last_processed,
                consecutive_misses=1,
            ))

        missed.sort(key=lambda m: m.expected_date, reverse=True)
        logger.info(f"[BILL_REMINDERS] User {user_id}: {len(missed)} missed payments (grace {grace} days)")
        return missed

    # -- confirmation and lifecycle --------------------------------------

    def mark_payment_as_paid(
        self,
        payment_id: str,
        user_id: str,
        now: datetime,
        payment_date: Optional[datetime] = None,
    ) -> Optional[RecurringPayment]:
        payment = self.repository.get_recurring_payment(payment_id, user_id)
        # cancelled payments keep their final state
        if not payment or not payment.is_active:
            return None

        paid_at = payment_date or now
        next_due = calculate_next_due_date(
            payment.next_due_date,
            payment.frequency,
            self.calendar,
            self.adjustment_direction,
        )
        updated = self.repository.update_recurring_payment(payment_id, user_id, {
            "status": PAID,
            "payment_date": paid_at,
            "last_processed": paid_at,
            "next_due_date": next_due,
        })
        if not updated:
            return None
        self.repository.commit()

        logger.info(f"[BILL_REMINDERS] Payment {payment_id} marked paid, next due {next_due.date()}")
        if self.notifier is not None:
            notify_safely(
                self.notifier.publish_payment_confirmed,
                user_id,
                str(updated.id),
                updated.name,
                updated.amount,
                updated.next_due_date,
            )
        return updated

    def update_reminder_settings(self, payment_id: str, user_id: str, reminder_days: List[int]) -> Optional[RecurringPayment]:
        formatted = format_reminder_days(reminder_days)
        if not formatted:
            raise InvalidPaymentInput("At least one positive reminder day is required")
        updated = self.repository.update_recurring_payment(payment_id, user_id, {"reminder_days": formatted})
        if updated:
            self.repository.commit()
        return updated

    def adjust_due_dates_for_business_days(
        self,
        user_id: str,
        calendar: Optional[BusinessDayCalendar] = None,
        direction: Optional[str] = None,
    ) -> int:
        calendar = calendar or self.calendar or BusinessDayCalendar()
        direction = direction or self.adjustment_direction
        adjusted = 0
        for payment in self.repository.list_active_recurring_payments(user_id):
            target = calendar.adjust_to_business_day(payment.next_due_date, direction)
            if target != payment.next_due_date:
                self.repository.update_recurring_payment(str(payment.id), user_id, {"next_due_date": target})
                adjusted += 1
        if adjusted:
            self.repository.commit()
        logger.info(f"[BILL_REMINDERS] User {user_id}: {adjusted} due dates moved to business days")
        return adjusted

    # -- reminders ----------------------------------------------------------

    def upcoming_reminders(
        self,
        payments: List[RecurringPayment],
        accounts: Dict[str, Account],
        now: datetime,
    ) -> List[BillReminder]:
        reminders = []
        for payment in payments:
            if not payment.is_active or payment.status != PENDING:
                continue
            days_until_due = days_between(now, payment.next_due_date)
            if days_until_due < 0 or days_until_due > self.config.reminder_lookahead_days:
                continue

            offsets = parse_reminder_days(payment.reminder_days or self.config.default_reminder_days)
            if days_until_due not in offsets or days_until_due not in REMINDER_TYPES:
                continue

            account = accounts.get(str(payment.account_id))
            account_name = account.name if account else "your account"
            reminders.append(BillReminder(
                payment=payment,
                account=account,
                days_until_due=days_until_due,
                reminder_type=REMINDER_TYPES[days_until_due],
                message=generate_reminder_message(payment.name, payment.amount, account_name, days_until_due),
                is_overdue=False,
            ))
        return reminders

    def insufficient_funds(
        self,
        payments: List[RecurringPayment],
        accounts: Dict[str, Account],
        now: datetime,
    ) -> List[InsufficientFundsWarning]:
        warnings = []
        for payment in payments:
            if not payment.is_active or payment.status != PENDING:
                continue
            days_until_due = days_between(now, payment.next_due_date)
            if days_until_due < 0 or days_until_due > self.config.funds_lookahead_days:
                continue

            account = accounts.get(str(payment.account_id))
            if account is None:
                continue

            amount = abs(Decimal(payment.amount))
            balance = Decimal(account.balance or 0)
            if account.account_type == CREDIT_CARD and account.credit_limit is not None:
                # Card balances are negative while in use
                balance = Decimal(account.credit_limit) + balance

            if amount > balance:
                warnings.append(InsufficientFundsWarning(
                    payment_id=str(payment.id),
                    payment_name=payment.name,
                    account_id=str(account.id),
                    amount=amount,
                    due_date=payment.next_due_date,
                    account_balance=balance,
                    shortfall=amount - balance,
                ))
        return warnings

    def reopen_paid_cycles(self, user_id: str, payments: List[RecurringPayment], now: datetime) -> int:
        """Paid payments whose next due date entered the reminder window go back to pending."""
        horizon = now.date() + timedelta(days=self.config.reminder_lookahead_days)
        reopened = 0
        for payment in payments:
            if payment.is_active and payment.status == PAID and payment.next_due_date.date() <= horizon:
                self.repository.update_recurring_payment(str(payment.id), user_id, {"status": PENDING})
                payment.status = PENDING
                reopened += 1
        return reopened

    def escalate_overdue(self, user_id: str, payments: List[RecurringPayment], now: datetime) -> int:
        escalated = 0
        for payment in payments:
            if payment.status == PENDING and is_missed(payment, now, self.config.grace_period_days):
                self.repository.update_recurring_payment(str(payment.id), user_id, {"status": OVERDUE})
                payment.status = OVERDUE
                escalated += 1
        return escalated

    def _is_blocked(self, user_id: str, account_id: str, alert_type: str, now: datetime) -> bool:
        if self.spam_guard.should_block(user_id, account_id, alert_type, now):
            return True
        # A given reminder type fires at most once per repeat window for an account
        repeat_start = now - timedelta(hours=self.config.reminder_repeat_hours)
        return bool(self.repository.list_alert_fire_records(user_id, account_id, alert_type, repeat_start))

    def process_user_reminders(self, user_id: str, now: datetime, result: ReminderRunResult) -> None:
        payments = self.repository.list_active_recurring_payments(user_id)
        accounts = {str(a.id): a for a in self.repository.list_accounts(user_id)}

        self.reopen_paid_cycles(user_id, payments, now)

        reminders = self.upcoming_reminders(payments, accounts, now)
        result.processed_count += len(reminders)

        outgoing: List[Callable[[], bool]] = []
        for reminder in reminders:
            account_id = str(reminder.payment.account_id)
            if self._is_blocked(user_id, account_id, reminder.reminder_type, now):
                continue

            alert = self.alerts.fire(
                user_id=user_id,
                account_id=account_id,
                alert_type=reminder.reminder_type,
                message=reminder.message,
                now=now,
                current_value=str(reminder.days_until_due),
                threshold_value=str(reminder.days_until_due),
            )
            result.created_alerts.append(alert)
            result.triggered_count += 1
            outgoing.append(self._reminder_notification(user_id, reminder, alert))

        warnings = self.insufficient_funds(payments, accounts, now)
        result.insufficient_funds_warnings.extend(warnings)
        for warning in warnings:
            if self._is_blocked(user_id, warning.account_id, INSUFFICIENT_FUNDS_ALERT, now):
                continue
            self.alerts.fire(
                user_id=user_id,
                account_id=warning.account_id,
                alert_type=INSUFFICIENT_FUNDS_ALERT,
                message=f"Insufficient funds for {warning.payment_name}: short by {warning.shortfall:.2f}",
                now=now,
                current_value=str(warning.account_balance),
                threshold_value=str(warning.amount),
            )
            outgoing.append(self._funds_notification(user_id, warning, accounts))

        escalated = self.escalate_overdue(user_id, payments, now)
        self.repository.commit()

        logger.info(
            f"[BILL_REMINDERS] User {user_id}: {len(reminders)} reminders due, "
            f"{len(outgoing)} notifications queued, {len(warnings)} funds warnings, {escalated} escalated"
        )

        for send in outgoing:
            send()

    def process_daily_reminders(self, now: datetime) -> ReminderRunResult:
        """Batch entry point run once a day by the scheduler."""
        result = ReminderRunResult()
        user_ids = self.repository.list_users_with_active_payments()
        logger.info(f"[BILL_REMINDERS] Processing daily reminders for {len(user_ids)} users")

        for user_id in user_ids:
            self.process_user_reminders(user_id, now, result)

        logger.info(
            f"[BILL_REMINDERS] Daily run complete: processed={result.processed_count} "
            f"triggered={result.triggered_count} funds_warnings={len(result.insufficient_funds_warnings)}"
        )
        return result

    def _reminder_notification(self, user_id: str, reminder: BillReminder, alert: AlertFireRecord) -> Callable[[], bool]:
        def send() -> bool:
            if self.notifier is None:
                return False
            return notify_safely(
                self.notifier.publish_bill_reminder,
                user_id,
                str(reminder.payment.id),
                reminder.payment.name,
                reminder.payment.amount,
                reminder.payment.next_due_date,
                reminder.days_until_due,
                reminder.message,
                str(alert.id) if alert.id else None,
            )
        return send

    def _funds_notification(
        self,
        user_id: str,
        warning: InsufficientFundsWarning,
        accounts: Dict[str, Account],
    ) -> Callable[[], bool]:
        account = accounts.get(warning.account_id)

        def send() -> bool:
            if self.notifier is None:
                return False
            return notify_safely(
                self.notifier.publish_insufficient_funds,
                user_id,
                warning.payment_id,
                warning.payment_name,
                account.name if account else "your account",
                warning.shortfall,
                warning.due_date,
            )
        return send

    # -- dashboard ----------------------------------------------------------

    def dashboard_summary(self, user_id: str, now: datetime) -> BillDashboardSummary:
        payments = self.repository.list_active_recurring_payments(user_id)
        upcoming = []
        overdue = []
        for payment in payments:
            if payment.status not in UNCONFIRMED_STATUSES:
                continue
            days_until_due = days_between(now, payment.next_due_date)
            if days_until_due < 0:
                overdue.append(payment)
            elif payment.status == PENDING and days_until_due <= DASHBOARD_UPCOMING_DAYS:
                upcoming.append(payment)

        total_due = sum((abs(Decimal(p.amount)) for p in upcoming + overdue), Decimal("0"))
        next_bill = min(upcoming, key=lambda p: p.next_due_date) if upcoming else None

        return BillDashboardSummary(
            upcoming_bills=len(upcoming),
            overdue_bills=len(overdue),
            total_amount_due=total_due,
            next_bill_due=NextBillDue(
                name=next_bill.name,
                amount=Decimal(next_bill.amount),
                due_date=next_bill.next_due_date,
                days_until_due=days_between(now, next_bill.next_due_date),
            ) if next_bill else None,
        )
