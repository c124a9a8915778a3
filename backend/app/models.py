"""
SQLAlchemy models for recurring payment tracking.
Transactions are the mining source; recurring payments and alert fire records are
the state the engine reads and mutates.
"""
import uuid
from datetime import datetime
from sqlalchemy import (
    Column,
    String,
    Boolean,
    DateTime,
    Numeric,
    Text,
    ForeignKey,
    Index,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
from decimal import Decimal

from app.database import Base


class User(Base):
    """Owner of accounts and recurring payments. Identity is resolved upstream."""
    __tablename__ = "users"

    id = Column(String, primary_key=True)
    email = Column(String(255), nullable=True)
    name = Column(String(255), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    accounts = relationship("Account", back_populates="user")
    recurring_payments = relationship("RecurringPayment", back_populates="user")


class Account(Base):
    __tablename__ = "accounts"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    account_type = Column(String(50), nullable=False)  # checking, savings, credit_card
    currency = Column(String(3), default="INR")
    balance = Column(Numeric(15, 2), default=Decimal("0"))  # negative for credit cards in use
    credit_limit = Column(Numeric(15, 2), nullable=True)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = relationship("User", back_populates="accounts")
    transactions = relationship("Transaction", back_populates="account")

    __table_args__ = (
        Index("idx_accounts_user", "user_id"),
    )


class Category(Base):
    __tablename__ = "categories"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    category_type = Column(String(20), default="expense")  # expense, income, transfer
    created_at = Column(DateTime, default=datetime.utcnow)


class Transaction(Base):
    """
    Booked transaction. Negative amounts are outflows.
    Only the recurring link and the category are mutated after creation.
    """
    __tablename__ = "transactions"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    account_id = Column(UUID(as_uuid=True), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True)
    amount = Column(Numeric(15, 2), nullable=False)
    currency = Column(String(3), default="INR")
    description = Column(Text)
    merchant = Column(String(255))
    category_id = Column(UUID(as_uuid=True), ForeignKey("categories.id"), nullable=True, index=True)
    booked_at = Column(DateTime, nullable=False, index=True)
    recurring_payment_id = Column(UUID(as_uuid=True), ForeignKey("recurring_payments.id", ondelete="SET NULL"), nullable=True, index=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    account = relationship("Account", back_populates="transactions")
    category = relationship("Category")
    recurring_payment = relationship("RecurringPayment", back_populates="linked_transactions")

    __table_args__ = (
        Index("idx_transactions_user_booked_at", "user_id", "booked_at"),
        Index("idx_transactions_recurring", "recurring_payment_id"),
    )


class RecurringPayment(Base):
    """
    Declared recurring payment (subscription or bill).
    status moves pending -> paid on confirmation, pending -> overdue when missed,
    and to cancelled when the user stops tracking it.
    """
    __tablename__ = "recurring_payments"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    account_id = Column(UUID(as_uuid=True), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    merchant = Column(String(255), nullable=True)
    amount = Column(Numeric(15, 2), nullable=False)
    currency = Column(String(3), default="INR")
    frequency = Column(String(20), nullable=False)  # weekly, monthly, quarterly, yearly
    next_due_date = Column(DateTime, nullable=False, index=True)
    category_id = Column(UUID(as_uuid=True), ForeignKey("categories.id"), nullable=True, index=True)
    is_active = Column(Boolean, default=True, nullable=False)
    status = Column(String(20), default="pending", nullable=False)  # pending, paid, overdue, cancelled
    payment_date = Column(DateTime, nullable=True)
    last_processed = Column(DateTime, nullable=True)
    reminder_days = Column(String(50), default="1,3,7", nullable=False)  # CSV of day offsets
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = relationship("User", back_populates="recurring_payments")
    account = relationship("Account")
    category = relationship("Category")
    linked_transactions = relationship("Transaction", back_populates="recurring_payment")

    __table_args__ = (
        Index("idx_recurring_payments_user", "user_id"),
        Index("idx_recurring_payments_active", "is_active"),
        Index("idx_recurring_payments_due", "next_due_date"),
    )


class AlertFireRecord(Base):
    """
    A reminder or threshold alert that was fired for a user/account.
    The spam guard looks back over these rows; detection never touches them.
    """
    __tablename__ = "alert_fire_records"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    account_id = Column(UUID(as_uuid=True), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False)
    alert_type = Column(String(50), nullable=False)  # bill_reminder_N_day, insufficient_funds, ...
    message = Column(Text, nullable=False)
    current_value = Column(String(50), nullable=True)
    threshold_value = Column(String(50), nullable=True)
    status = Column(String(20), default="triggered", nullable=False)  # triggered, acknowledged, snoozed, dismissed
    triggered_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    acknowledged_at = Column(DateTime, nullable=True)
    snoozed_until = Column(DateTime, nullable=True)
    dismissed_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index("idx_alert_fire_records_lookback", "user_id", "account_id", "alert_type", "triggered_at"),
        Index("idx_alert_fire_records_status", "status"),
    )
