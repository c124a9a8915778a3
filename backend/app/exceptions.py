"""Recurring payment domain exceptions"""


class RecurringPaymentError(Exception):
    """Base exception for the recurring payment engine"""

    pass


class InvalidPaymentInput(RecurringPaymentError):
    """An amount, date, frequency or state transition was rejected before persistence"""

    pass


class RecurringPaymentNotFound(RecurringPaymentError):
    """Addressed record does not exist or is not owned by the caller"""

    pass
