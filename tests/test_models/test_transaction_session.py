"""Tests for the TransactionSession model — lifecycle, expiry and encrypted details."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from horizonpay.config import settings
from horizonpay.models.transaction_session import (
    TERMINAL_STATUSES,
    VALID_TRANSITIONS,
    SessionStatus,
    TransactionSession,
)


class TestDefaults:

    def test_constructor_defaults(self, make_session):
        """New sessions get a UUID id, pending status and a TTL-based expiry."""
        session = make_session()

        assert len(session.id) == 36
        assert session.status == SessionStatus.PENDING
        assert session.expires_at - session.created_at == timedelta(seconds=settings.SESSION_TTL_SECONDS)

    def test_ids_are_unique(self, make_session):
        """Each session gets its own id."""
        assert make_session().id != make_session().id


class TestEncryptedDetails:

    def test_details_encrypted_at_rest(self, make_session):
        """The stored blob does not contain the plaintext UPI id."""
        session = make_session(details={"upi_id": "ravi.kumar@okaxis", "email": "chidi@example.com"})

        assert "ravi.kumar" not in session.encrypted_details
        assert session.get_details()["upi_id"] == "ravi.kumar@okaxis"

    def test_corrupt_blob_raises_value_error(self, make_session):
        """Undecryptable details raise ValueError."""
        session = make_session()
        session.encrypted_details = "not-a-token"

        with pytest.raises(ValueError):
            session.get_details()


class TestTransitions:

    def test_terminal_states_have_no_exits(self):
        """Completed, failed and expired are final."""
        for status in TERMINAL_STATUSES:
            assert VALID_TRANSITIONS[status] == set()

    @pytest.mark.parametrize("target", [
        SessionStatus.PAYMENT_INITIATED,
        SessionStatus.COMPLETED,
        SessionStatus.FAILED,
        SessionStatus.EXPIRED,
    ])
    def test_pending_can_move_anywhere(self, make_session, target):
        """Pending accepts every other status."""
        session = make_session()
        assert session.transition_to(target) is True
        assert session.status == target

    def test_completion_sets_verified_at(self, make_session):
        """Completing stamps verified_at."""
        session = make_session(status=SessionStatus.PAYMENT_INITIATED)
        session.transition_to(SessionStatus.COMPLETED)
        assert session.verified_at is not None

    def test_repeat_terminal_transition_is_noop(self, make_session):
        """Completing twice is idempotent and reports no change."""
        session = make_session()
        assert session.transition_to(SessionStatus.COMPLETED) is True
        first_verified = session.verified_at

        assert session.transition_to(SessionStatus.COMPLETED) is False
        assert session.status == SessionStatus.COMPLETED
        assert session.verified_at == first_verified

    def test_leaving_terminal_state_rejected(self, make_session):
        """A completed session cannot fail or go back to pending."""
        session = make_session(status=SessionStatus.COMPLETED)

        with pytest.raises(ValueError, match="Invalid transition"):
            session.transition_to(SessionStatus.FAILED)
        with pytest.raises(ValueError):
            session.transition_to(SessionStatus.PENDING)

    def test_payment_initiated_cannot_return_to_pending(self, make_session):
        """The lifecycle only moves forward."""
        session = make_session(status=SessionStatus.PAYMENT_INITIATED)
        with pytest.raises(ValueError):
            session.transition_to(SessionStatus.PENDING)


class TestExpiry:

    def test_pending_before_expiry(self, make_session):
        """Within the TTL a pending session is live."""
        session = make_session()
        assert session.is_expired() is False

    def test_pending_after_expiry(self, make_session):
        """Past expires_at a pending session is expired."""
        session = make_session()
        assert session.is_expired(session.expires_at + timedelta(seconds=1)) is True
        assert session.is_expired(session.expires_at) is True

    def test_payment_in_flight_never_lapses(self, make_session):
        """Once payment is initiated the rate lock holds for the webhook."""
        session = make_session(status=SessionStatus.PAYMENT_INITIATED)
        assert session.is_expired(session.expires_at + timedelta(hours=1)) is False

    def test_expired_status_is_expired(self, make_session):
        """A session marked expired stays expired."""
        session = make_session(status=SessionStatus.EXPIRED)
        assert session.is_expired() is True

    def test_naive_expiry_treated_as_utc(self, make_session):
        """Naive timestamps from the database compare as UTC."""
        past = datetime.now(timezone.utc) - timedelta(minutes=10)
        session = make_session(expires_at=past.replace(tzinfo=None))
        assert session.is_expired() is True


class TestRepr:

    def test_repr(self):
        """repr shows amount, rate and status."""
        session = TransactionSession(
            amount_ngn=Decimal("1000"), gross_inr=Decimal("62.81"), net_inr=Decimal("61.24"),
            locked_rate=Decimal("15.92"), fee_percent=Decimal("2.5"), fee_amount=Decimal("1.57"),
            profit_margin=Decimal("1.853"), rate_source="primary_p2p", encrypted_details="x",
        )
        assert "1000 NGN @ 15.92" in repr(session)
        assert "status=pending" in repr(session)
