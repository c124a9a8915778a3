"""
In-memory collaborators for recurring payment tests.

Model objects are built without a session, so column defaults never apply:
the helpers below set every field the services read.
"""
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from app.models import Account, AlertFireRecord, Category, RecurringPayment, Transaction
from app.services.recurring_repository import RecurringPaymentRepository

USER_ID = "user-1"
ACCOUNT_ID = "11111111-1111-1111-1111-111111111111"


def make_transaction(
    amount,
    booked_at: datetime,
    description: str = "NETFLIX.COM",
    account_id: str = ACCOUNT_ID,
    user_id: str = USER_ID,
    category_id: Optional[str] = None,
) -> Transaction:
    return Transaction(
        id=uuid.uuid4(),
        user_id=user_id,
        account_id=account_id,
        amount=Decimal(str(amount)),
        currency="INR",
        description=description,
        category_id=category_id,
        booked_at=booked_at,
    )


def make_payment(
    name: str = "Netflix",
    amount="499.00",
    frequency: str = "monthly",
    next_due_date: Optional[datetime] = None,
    account_id: str = ACCOUNT_ID,
    user_id: str = USER_ID,
    status: str = "pending",
    is_active: bool = True,
    category_id: Optional[str] = None,
    created_at: Optional[datetime] = None,
    reminder_days: str = "1,3,7",
) -> RecurringPayment:
    return RecurringPayment(
        id=uuid.uuid4(),
        user_id=user_id,
        account_id=account_id,
        name=name,
        amount=Decimal(str(amount)),
        currency="INR",
        frequency=frequency,
        next_due_date=next_due_date or datetime(2024, 3, 15),
        category_id=category_id,
        is_active=is_active,
        status=status,
        reminder_days=reminder_days,
        created_at=created_at or datetime(2024, 1, 1),
        updated_at=created_at or datetime(2024, 1, 1),
    )


def make_account(
    balance="10000.00",
    account_type: str = "checking",
    credit_limit=None,
    account_id: str = ACCOUNT_ID,
    user_id: str = USER_ID,
    name: str = "Main Checking",
) -> Account:
    return Account(
        id=uuid.UUID(account_id),
        user_id=user_id,
        name=name,
        account_type=account_type,
        currency="INR",
        balance=Decimal(str(balance)),
        credit_limit=Decimal(str(credit_limit)) if credit_limit is not None else None,
        is_active=True,
    )


def make_category(category_id: str, name: str = "Entertainment", user_id: str = USER_ID) -> Category:
    return Category(id=uuid.UUID(category_id), user_id=user_id, name=name, category_type="expense")


class FakeRepository(RecurringPaymentRepository):
    def __init__(
        self,
        transactions: Optional[List[Transaction]] = None,
        payments: Optional[List[RecurringPayment]] = None,
        accounts: Optional[List[Account]] = None,
        alerts: Optional[List[AlertFireRecord]] = None,
        categories: Optional[List[Category]] = None,
    ):
        self.transactions = list(transactions or [])
        self.payments = list(payments or [])
        self.accounts = list(accounts or [])
        self.alerts = list(alerts or [])
        self.categories = list(categories or [])
        self.commits = 0
        self.expense_queries = 0

    def list_expense_transactions(self, user_id: str, since: datetime) -> List[Transaction]:
        self.expense_queries += 1
        return sorted(
            [t for t in self.transactions if t.user_id == user_id and t.booked_at >= since and t.amount < 0],
            key=lambda t: t.booked_at,
        )

    def list_income_transactions(self, user_id: str, since: datetime) -> List[Transaction]:
        return [t for t in self.transactions if t.user_id == user_id and t.booked_at >= since and t.amount > 0]

    def list_active_recurring_payments(self, user_id: str) -> List[RecurringPayment]:
        return [p for p in self.payments if p.user_id == user_id and p.is_active]

    def list_recurring_payments(
        self,
        user_id: str,
        status: Optional[str] = None,
        account_id: Optional[str] = None,
    ) -> List[RecurringPayment]:
        return [
            p for p in self.payments
            if p.user_id == user_id
            and (status is None or p.status == status)
            and (account_id is None or str(p.account_id) == str(account_id))
        ]

    def get_recurring_payment(self, payment_id: str, user_id: str) -> Optional[RecurringPayment]:
        for payment in self.payments:
            if str(payment.id) == str(payment_id) and payment.user_id == user_id:
                return payment
        return None

    def create_recurring_payment(self, fields: Dict[str, Any]) -> RecurringPayment:
        payment = RecurringPayment(id=uuid.uuid4(), **fields)
        self.payments.append(payment)
        return payment

    def update_recurring_payment(
        self,
        payment_id: str,
        user_id: str,
        fields: Dict[str, Any],
    ) -> Optional[RecurringPayment]:
        payment = self.get_recurring_payment(payment_id, user_id)
        if not payment:
            return None
        for field, value in fields.items():
            setattr(payment, field, value)
        return payment

    def link_transactions(self, transaction_ids: List[str], payment_id: str, user_id: str) -> int:
        wanted = {str(t) for t in transaction_ids}
        linked = 0
        for txn in self.transactions:
            if txn.user_id == user_id and str(txn.id) in wanted:
                txn.recurring_payment_id = payment_id
                linked += 1
        return linked

    def list_accounts(self, user_id: str) -> List[Account]:
        return [a for a in self.accounts if a.user_id == user_id]

    def get_account(self, account_id: str, user_id: str) -> Optional[Account]:
        return next((a for a in self.accounts if str(a.id) == str(account_id) and a.user_id == user_id), None)

    def get_category(self, category_id: str, user_id: str) -> Optional[Category]:
        return next((c for c in self.categories if str(c.id) == str(category_id) and c.user_id == user_id), None)

    def list_users_with_active_payments(self) -> List[str]:
        return sorted({p.user_id for p in self.payments if p.is_active})

    def list_users_with_transactions(self, since: datetime) -> List[str]:
        return sorted({t.user_id for t in self.transactions if t.booked_at >= since})

    def insert_alert_fire_record(self, record: AlertFireRecord) -> AlertFireRecord:
        if record.id is None:
            record.id = uuid.uuid4()
        self.alerts.append(record)
        return record

    def list_alert_fire_records(
        self,
        user_id: str,
        account_id: str,
        alert_type: Optional[str],
        since: datetime,
    ) -> List[AlertFireRecord]:
        return [
            a for a in self.alerts
            if a.user_id == user_id
            and str(a.account_id) == str(account_id)
            and (alert_type is None or a.alert_type == alert_type)
            and a.triggered_at >= since
        ]

    def get_alert(self, alert_id: str, user_id: str) -> Optional[AlertFireRecord]:
        for alert in self.alerts:
            if str(alert.id) == str(alert_id) and alert.user_id == user_id:
                return alert
        return None

    def update_alert(self, alert_id: str, user_id: str, fields: Dict[str, Any]) -> Optional[AlertFireRecord]:
        alert = self.get_alert(alert_id, user_id)
        if not alert:
            return None
        for field, value in fields.items():
            setattr(alert, field, value)
        return alert

    def list_alerts(self, user_id: str, status: Optional[str] = None) -> List[AlertFireRecord]:
        return [a for a in self.alerts if a.user_id == user_id and (status is None or a.status == status)]

    def commit(self) -> None:
        self.commits += 1


class FakeNotifier:
    """Records published events; with fail=True every publish raises."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.events: List[tuple] = []

    def _record(self, kind: str, *args) -> bool:
        if self.fail:
            raise ConnectionError("notification backend unavailable")
        self.events.append((kind,) + args)
        return True

    def publish_bill_reminder(self, user_id, payment_id, payment_name, amount, due_date, days_until_due, message,
                              alert_id=None, channels=None) -> bool:
        return self._record("bill_reminder", user_id, payment_id, days_until_due)

    def publish_insufficient_funds(self, user_id, payment_id, payment_name, account_name, shortfall, due_date,
                                   channels=None) -> bool:
        return self._record("insufficient_funds", user_id, payment_id, shortfall)

    def publish_payment_confirmed(self, user_id, payment_id, payment_name, amount, next_due_date) -> bool:
        return self._record("payment_confirmed", user_id, payment_id, next_due_date)

    def publish_patterns_detected(self, user_id, patterns) -> bool:
        return self._record("patterns_detected", user_id, len(patterns))

    def kinds(self) -> List[str]:
        return [event[0] for event in self.events]
