"""
Persistence boundary for the recurring payment engine.

RecurringPaymentRepository is the contract the services depend on; the SQLAlchemy
implementation below is what the API and Celery workers use. Tests plug in an
in-memory implementation.
"""
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.models import Account, AlertFireRecord, Category, RecurringPayment, Transaction

logger = logging.getLogger(__name__)


def to_uuid(value: Any) -> Optional[UUID]:
    """Safely parse a UUID-like value."""
    if value is None or value == "":
        return None
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except (ValueError, TypeError):
        return None


class RecurringPaymentRepository(ABC):
    """Abstract persistence collaborator, scoped by user on every call."""

    @abstractmethod
    def list_expense_transactions(self, user_id: str, since: datetime) -> List[Transaction]:
        """Outflows booked on or after `since`, oldest first."""
        pass

    @abstractmethod
    def list_income_transactions(self, user_id: str, since: datetime) -> List[Transaction]:
        pass

    @abstractmethod
    def list_active_recurring_payments(self, user_id: str) -> List[RecurringPayment]:
        pass

    @abstractmethod
    def list_recurring_payments(
        self,
        user_id: str,
        status: Optional[str] = None,
        account_id: Optional[str] = None,
    ) -> List[RecurringPayment]:
        pass

    @abstractmethod
    def get_recurring_payment(self, payment_id: str, user_id: str) -> Optional[RecurringPayment]:
        pass

    @abstractmethod
    def create_recurring_payment(self, fields: Dict[str, Any]) -> RecurringPayment:
        pass

    @abstractmethod
    def update_recurring_payment(
        self,
        payment_id: str,
        user_id: str,
        fields: Dict[str, Any],
    ) -> Optional[RecurringPayment]:
        """Apply `fields` and return the updated row, or None when not found/not owned."""
        pass

    @abstractmethod
    def link_transactions(self, transaction_ids: List[str], payment_id: str, user_id: str) -> int:
        pass

    @abstractmethod
    def list_accounts(self, user_id: str) -> List[Account]:
        pass

    @abstractmethod
    def get_account(self, account_id: str, user_id: str) -> Optional[Account]:
        pass

    @abstractmethod
    def get_category(self, category_id: str, user_id: str) -> Optional[Category]:
        pass

    @abstractmethod
    def list_users_with_active_payments(self) -> List[str]:
        pass

    @abstractmethod
    def list_users_with_transactions(self, since: datetime) -> List[str]:
        pass

    @abstractmethod
    def insert_alert_fire_record(self, record: AlertFireRecord) -> AlertFireRecord:
        pass

    @abstractmethod
    def list_alert_fire_records(
        self,
        user_id: str,
        account_id: str,
        alert_type: Optional[str],
        since: datetime,
    ) -> List[AlertFireRecord]:
        """Fire records triggered at or after `since`. alert_type=None matches every type."""
        pass

    @abstractmethod
    def get_alert(self, alert_id: str, user_id: str) -> Optional[AlertFireRecord]:
        pass

    @abstractmethod
    def update_alert(self, alert_id: str, user_id: str, fields: Dict[str, Any]) -> Optional[AlertFireRecord]:
        pass

    @abstractmethod
    def list_alerts(self, user_id: str, status: Optional[str] = None) -> List[AlertFireRecord]:
        pass

    @abstractmethod
    def commit(self) -> None:
        """Close the current unit of work."""
        pass


class SqlAlchemyRecurringPaymentRepository(RecurringPaymentRepository):
    """Repository backed by a SQLAlchemy session (one per request or task run)."""

    def __init__(self, db: Session):
        self.db = db

    def list_expense_transactions(self, user_id: str, since: datetime) -> List[Transaction]:
        return (
            self.db.query(Transaction)
            .outerjoin(Category, Transaction.category_id == Category.id)
            .filter(
                Transaction.user_id == user_id,
                Transaction.booked_at >= since,
                Transaction.amount < 0,
                or_(Category.id.is_(None), Category.category_type == "expense"),
            )
            .order_by(Transaction.booked_at.asc())
            .all()
        )

    def list_income_transactions(self, user_id: str, since: datetime) -> List[Transaction]:
        return (
            self.db.query(Transaction)
            .filter(
                Transaction.user_id == user_id,
                Transaction.booked_at >= since,
                Transaction.amount > 0,
            )
            .all()
        )

    def list_active_recurring_payments(self, user_id: str) -> List[RecurringPayment]:
        return (
            self.db.query(RecurringPayment)
            .filter(
                RecurringPayment.user_id == user_id,
                RecurringPayment.is_active == True,
            )
            .order_by(RecurringPayment.created_at.asc())
            .all()
        )

    def list_recurring_payments(
        self,
        user_id: str,
        status: Optional[str] = None,
        account_id: Optional[str] = None,
    ) -> List[RecurringPayment]:
        query = self.db.query(RecurringPayment).filter(RecurringPayment.user_id == user_id)
        if status:
            query = query.filter(RecurringPayment.status == status)
        if account_id:
            query = query.filter(RecurringPayment.account_id == to_uuid(account_id))
        return query.order_by(RecurringPayment.next_due_date.desc()).all()

    def get_recurring_payment(self, payment_id: str, user_id: str) -> Optional[RecurringPayment]:
        payment_uuid = to_uuid(payment_id)
        if not payment_uuid:
            return None
        return self.db.query(RecurringPayment).filter(
            RecurringPayment.id == payment_uuid,
            RecurringPayment.user_id == user_id,
        ).first()

    def create_recurring_payment(self, fields: Dict[str, Any]) -> RecurringPayment:
        values = dict(fields)
        for key in ("account_id", "category_id"):
            if key in values:
                values[key] = to_uuid(values[key])
        payment = RecurringPayment(**values)
        self.db.add(payment)
        self._flush()
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
            if field in ("account_id", "category_id"):
                value = to_uuid(value)
            setattr(payment, field, value)
        payment.updated_at = datetime.utcnow()
        self._flush()
        return payment

    def link_transactions(self, transaction_ids: List[str], payment_id: str, user_id: str) -> int:
        transaction_uuids = [u for u in (to_uuid(t) for t in transaction_ids) if u]
        if not transaction_uuids:
            return 0

        payment_uuid = to_uuid(payment_id)
        transactions = self.db.query(Transaction).filter(
            Transaction.user_id == user_id,
            Transaction.id.in_(transaction_uuids),
        ).all()
        for txn in transactions:
            txn.recurring_payment_id = payment_uuid
        self._flush()
        return len(transactions)

    def list_accounts(self, user_id: str) -> List[Account]:
        return self.db.query(Account).filter(Account.user_id == user_id).all()

    def get_account(self, account_id: str, user_id: str) -> Optional[Account]:
        account_uuid = to_uuid(account_id)
        if not account_uuid:
            return None
        return self.db.query(Account).filter(Account.id == account_uuid, Account.user_id == user_id).first()

    def get_category(self, category_id: str, user_id: str) -> Optional[Category]:
        category_uuid = to_uuid(category_id)
        if not category_uuid:
            return None
        return self.db.query(Category).filter(Category.id == category_uuid, Category.user_id == user_id).first()

    def list_users_with_active_payments(self) -> List[str]:
        rows = (
            self.db.query(RecurringPayment.user_id)
            .filter(RecurringPayment.is_active == True)
            .distinct()
            .all()
        )
        return [row[0] for row in rows]

    def list_users_with_transactions(self, since: datetime) -> List[str]:
        rows = (
            self.db.query(Transaction.user_id)
            .filter(Transaction.booked_at >= since)
            .distinct()
            .all()
        )
        return [row[0] for row in rows]

    def insert_alert_fire_record(self, record: AlertFireRecord) -> AlertFireRecord:
        record.account_id = to_uuid(record.account_id)
        self.db.add(record)
        self._flush()
        return record

    def list_alert_fire_records(
        self,
        user_id: str,
        account_id: str,
        alert_type: Optional[str],
        since: datetime,
    ) -> List[AlertFireRecord]:
        query = self.db.query(AlertFireRecord).filter(
            AlertFireRecord.user_id == user_id,
            AlertFireRecord.account_id == to_uuid(account_id),
            AlertFireRecord.triggered_at >= since,
        )
        if alert_type is not None:
            query = query.filter(AlertFireRecord.alert_type == alert_type)
        return query.order_by(AlertFireRecord.triggered_at.desc()).all()

    def get_alert(self, alert_id: str, user_id: str) -> Optional[AlertFireRecord]:
        alert_uuid = to_uuid(alert_id)
        if not alert_uuid:
            return None
        return self.db.query(AlertFireRecord).filter(
            AlertFireRecord.id == alert_uuid,
            AlertFireRecord.user_id == user_id,
        ).first()

    def update_alert(self, alert_id: str, user_id: str, fields: Dict[str, Any]) -> Optional[AlertFireRecord]:
        alert = self.get_alert(alert_id, user_id)
        if not alert:
            return None
        for field, value in fields.items():
            setattr(alert, field, value)
        self._flush()
        return alert

    def list_alerts(self, user_id: str, status: Optional[str] = None) -> List[AlertFireRecord]:
        query = self.db.query(AlertFireRecord).filter(AlertFireRecord.user_id == user_id)
        if status:
            query = query.filter(AlertFireRecord.status == status)
        return query.order_by(AlertFireRecord.triggered_at.desc()).all()

    def commit(self) -> None:
        try:
            self.db.commit()
        except SQLAlchemyError:
            logger.exception("[RECURRING_REPOSITORY] Commit failed, rolling back")
            self.db.rollback()
            raise

    def _flush(self) -> None:
        try:
            self.db.flush()
        except SQLAlchemyError:
            logger.exception("[RECURRING_REPOSITORY] Flush failed, rolling back")
            self.db.rollback()
            raise
