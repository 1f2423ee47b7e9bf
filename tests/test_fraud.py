"""Tests for fraud screening — daily totals and rapid-request detection."""

from datetime import datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError

from horizonpay.services.fraud_service import FraudScreen, has_high_risk
from horizonpay.services.metrics import ServiceMetrics
from horizonpay.services.session_service import SessionStore

NOW = datetime(2026, 3, 14, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def screen(fake_redis, mock_db):
    store = SessionStore(mock_db, ServiceMetrics(), ttl_seconds=300)
    return FraudScreen(fake_redis, store, daily_limit_ngn=Decimal("10000000"))


async def _screen(screen, amount, email="chidi@example.com", phone=None, ip="10.0.0.1"):
    return await screen.screen(
        amount_ngn=Decimal(amount), email=email, phone=phone, ip_address=ip, now=NOW,
    )


class TestDailyLimit:

    @pytest.mark.asyncio
    async def test_under_limit_is_clean(self, screen):
        """A single modest conversion raises nothing."""
        assert await _screen(screen, "50000") == []

    @pytest.mark.asyncio
    async def test_totals_accumulate_in_kobo(self, screen, fake_redis):
        """Amounts accumulate per customer per day, in kobo, with a 24h expiry."""
        await _screen(screen, "1000.50")
        await _screen(screen, "2000")

        key = "daily_total:chidi@example.com:2026-03-14"
        assert await fake_redis.get(key) == "300050"
        assert await fake_redis.ttl(key) == 86400

    @pytest.mark.asyncio
    async def test_exceeding_limit_is_high_risk(self, screen):
        """Crossing the daily limit blocks."""
        await _screen(screen, "6000000")
        risks = await _screen(screen, "5000000")

        assert [r.type for r in risks] == ["daily_limit_exceeded"]
        assert has_high_risk(risks)

    @pytest.mark.asyncio
    async def test_exactly_at_limit_allowed(self, screen):
        """Reaching the limit exactly is allowed."""
        risks = await _screen(screen, "10000000")
        assert not has_high_risk(risks)

    @pytest.mark.asyncio
    async def test_phone_used_without_email(self, screen, fake_redis):
        """Phone identifies the customer when there is no email."""
        await _screen(screen, "1000", email=None, phone="2348012345678")
        assert await fake_redis.get("daily_total:2348012345678:2026-03-14") == "100000"

    @pytest.mark.asyncio
    async def test_anonymous_customer_not_tracked(self, screen, fake_redis):
        """No email or phone: no daily total."""
        await _screen(screen, "1000", email=None)
        assert fake_redis.data == {}

    @pytest.mark.asyncio
    async def test_redis_outage_does_not_block(self, screen, fake_redis):
        """A Redis error screens as no risk."""
        fake_redis.fail = True
        assert await _screen(screen, "50000") == []


class TestRapidRequests:

    @pytest.mark.asyncio
    async def test_three_recent_sessions_is_medium_risk(self, screen, mock_db):
        """Three sessions from one IP in five minutes is a warning."""
        mock_db.execute.return_value.scalar.return_value = 3

        risks = await _screen(screen, "50000")

        assert [(r.type, r.severity) for r in risks] == [("rapid_transactions", "medium")]
        assert not has_high_risk(risks)

    @pytest.mark.asyncio
    async def test_two_recent_sessions_is_clean(self, screen, mock_db):
        """Below the threshold nothing is flagged."""
        mock_db.execute.return_value.scalar.return_value = 2
        assert await _screen(screen, "50000") == []

    @pytest.mark.asyncio
    async def test_database_error_does_not_block(self, screen, mock_db):
        """A failed count screens as no risk."""
        mock_db.execute.side_effect = OperationalError("SELECT", {}, Exception("db down"))
        assert await _screen(screen, "50000") == []
