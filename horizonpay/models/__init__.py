"""SQLAlchemy ORM models for HorizonPay."""

from horizonpay.models.transaction_session import (
    SessionStatus,
    TransactionSession,
    VALID_TRANSITIONS,
)

__all__ = [
    "SessionStatus",
    "TransactionSession",
    "VALID_TRANSITIONS",
]
