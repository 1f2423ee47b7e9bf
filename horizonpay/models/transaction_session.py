"""
TransactionSession model — one locked-rate NGN to INR conversion.

- UUID session id handed to the client
- Rate, fees and margin captured at creation and never recomputed
- Customer and payout details held as a Fernet-encrypted JSON blob
- 5-state lifecycle with validated transitions
"""

import enum
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Numeric,
    String,
    Text,
    Enum as SAEnum,
    event,
)
from sqlalchemy.orm import Mapped, mapped_column

from horizonpay.config import settings
from horizonpay.core.security import decrypt_payload, encrypt_payload
from horizonpay.database import Base

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class SessionStatus(str, enum.Enum):
    PENDING = "pending"
    PAYMENT_INITIATED = "payment_initiated"
    COMPLETED = "completed"
    FAILED = "failed"
    EXPIRED = "expired"


TERMINAL_STATUSES = frozenset({
    SessionStatus.COMPLETED,
    SessionStatus.FAILED,
    SessionStatus.EXPIRED,
})


# ---------------------------------------------------------------------------
# Status transition map
# ---------------------------------------------------------------------------

VALID_TRANSITIONS: dict[SessionStatus, set[SessionStatus]] = {
    SessionStatus.PENDING: {
        SessionStatus.PAYMENT_INITIATED,
        SessionStatus.COMPLETED,
        SessionStatus.FAILED,
        SessionStatus.EXPIRED,
    },
    SessionStatus.PAYMENT_INITIATED: {
        SessionStatus.COMPLETED,
        SessionStatus.FAILED,
        SessionStatus.EXPIRED,
    },
    SessionStatus.COMPLETED: set(),
    SessionStatus.FAILED: set(),
    SessionStatus.EXPIRED: set(),
}


# ---------------------------------------------------------------------------
# Model
# ---------------------------------------------------------------------------


class TransactionSession(Base):
    __tablename__ = "transaction_sessions"
    __table_args__ = (
        CheckConstraint("amount_ngn > 0", name="ck_transaction_sessions_amount_positive"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)

    status: Mapped[SessionStatus] = mapped_column(
        SAEnum(
            SessionStatus,
            name="sessionstatus",
            values_callable=lambda members: [m.value for m in members],
        ),
        default=SessionStatus.PENDING,
        index=True,
    )

    # Amounts
    amount_ngn: Mapped[Decimal] = mapped_column(Numeric(precision=18, scale=2), nullable=False)
    gross_inr: Mapped[Decimal] = mapped_column(Numeric(precision=18, scale=2), nullable=False)
    net_inr: Mapped[Decimal] = mapped_column(Numeric(precision=18, scale=2), nullable=False)

    # Locked pricing
    locked_rate: Mapped[Decimal] = mapped_column(Numeric(precision=12, scale=4), nullable=False)
    fee_percent: Mapped[Decimal] = mapped_column(Numeric(precision=5, scale=2), nullable=False)
    fee_amount: Mapped[Decimal] = mapped_column(Numeric(precision=18, scale=2), nullable=False)
    profit_margin: Mapped[Decimal] = mapped_column(Numeric(precision=8, scale=4), nullable=False)
    rate_source: Mapped[str] = mapped_column(String(32), nullable=False)

    # Customer / payout details, encrypted
    encrypted_details: Mapped[str] = mapped_column(Text, nullable=False)

    # Request context
    ip_address: Mapped[str | None] = mapped_column(String(64), index=True)
    user_agent: Mapped[str | None] = mapped_column(String(500))

    # Payment
    payment_reference: Mapped[str | None] = mapped_column(String(100), unique=True, index=True)
    payment_channel: Mapped[str | None] = mapped_column(String(50))
    paid_amount: Mapped[Decimal | None] = mapped_column(Numeric(precision=18, scale=2))
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    verified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    failure_reason: Mapped[str | None] = mapped_column(String(255))

    # Lifecycle timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        index=True,
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # ------------------------------------------------------------------
    # Encrypted details helpers
    # ------------------------------------------------------------------

    def set_details(self, details: dict) -> None:
        """Encrypt and store the customer/payout details."""
        self.encrypted_details = encrypt_payload(details)

    def get_details(self) -> dict:
        """Decrypt and return the customer/payout details."""
        return decrypt_payload(self.encrypted_details)

    # ------------------------------------------------------------------
    # Expiry
    # ------------------------------------------------------------------

    def is_expired(self, now: datetime | None = None) -> bool:
        """True once the rate lock has lapsed or the session was marked expired."""
        if self.status == SessionStatus.EXPIRED:
            return True
        now = now or datetime.now(timezone.utc)
        expires_at = self.expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return self.status == SessionStatus.PENDING and now >= expires_at

    # ------------------------------------------------------------------
    # Status transition validation
    # ------------------------------------------------------------------

    @staticmethod
    def is_valid_transition(from_status: SessionStatus, to_status: SessionStatus) -> bool:
        """Check whether a status transition is allowed."""
        allowed = VALID_TRANSITIONS.get(from_status, set())
        return to_status in allowed

    def transition_to(self, new_status: SessionStatus) -> bool:
        """
        Transition to *new_status* if the move is valid.

        Re-applying the current terminal status is a no-op and returns
        False, so a webhook and a manual verification racing to complete
        the same session both succeed. Returns True when the status
        changed. Raises ValueError for any other disallowed move.
        """
        if self.status == new_status and new_status in TERMINAL_STATUSES:
            return False
        if not self.is_valid_transition(self.status, new_status):
            raise ValueError(
                f"Invalid transition: {self.status.value} -> {new_status.value}"
            )
        self.status = new_status

        now = datetime.now(timezone.utc)
        if new_status == SessionStatus.COMPLETED:
            self.verified_at = now
        self.updated_at = now
        return True

    # ------------------------------------------------------------------
    # Repr
    # ------------------------------------------------------------------

    def __repr__(self) -> str:
        return (
            f"<TransactionSession {self.id} "
            f"{self.amount_ngn} NGN @ {self.locked_rate} "
            f"status={self.status.value if self.status else 'N/A'}>"
        )


# ---------------------------------------------------------------------------
# Auto-set Python-side defaults on construction
# ---------------------------------------------------------------------------


@event.listens_for(TransactionSession, "init")
def _set_session_defaults(target, args, kwargs):
    now = datetime.now(timezone.utc)
    if "id" not in kwargs:
        target.id = str(uuid.uuid4())
    if "status" not in kwargs:
        target.status = SessionStatus.PENDING
    if "created_at" not in kwargs:
        target.created_at = now
    if "expires_at" not in kwargs:
        target.expires_at = target.created_at + timedelta(seconds=settings.SESSION_TTL_SECONDS)
    if "updated_at" not in kwargs:
        target.updated_at = now
