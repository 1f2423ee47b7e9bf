"""
Shared test fixtures for HorizonPay.

Provides an in-memory Redis double, a scripted upstream (spot, reference
index and P2P order book) behind ``httpx.MockTransport``, database session
mocks, a service context built on those fakes, and the async test client.
"""

from collections import Counter
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
import pytest_asyncio
from cryptography.fernet import Fernet
from httpx import ASGITransport, AsyncClient
from redis.exceptions import ConnectionError as RedisConnectionError, ResponseError

from horizonpay.config import Settings
from horizonpay.core.security import configure_fernet
from horizonpay.database import get_db
from horizonpay.models.transaction_session import SessionStatus, TransactionSession
from horizonpay.services.context import ServiceContext, get_context

TEST_ADMIN_KEY = "test-admin-key"
TEST_PAYSTACK_SECRET = "sk_test_horizonpay_secret"

SPOT_HOST = "api.binance.com"
REFERENCE_HOST = "api.coingecko.com"
P2P_HOST = "p2p.binance.com"


# --- Fernet Key Fixture ---


@pytest.fixture(scope="session")
def test_fernet_key():
    """Generate a Fernet key for tests."""
    return Fernet.generate_key()


@pytest.fixture(autouse=True)
def setup_fernet(test_fernet_key):
    """Encrypt session details with the test key."""
    configure_fernet(test_fernet_key)


# --- In-memory Redis ---


class FakeRedis:
    """
    Just enough of redis.asyncio for the cache, rate limiter and daily
    totals. Expiry runs on a manual clock moved with ``advance``.
    """

    def __init__(self):
        self.now = 0.0
        self.data: dict[str, str] = {}
        self.expiry: dict[str, float] = {}
        self.fail = False

    def _check(self):
        if self.fail:
            raise RedisConnectionError("Redis unavailable")

    def _purge(self, key):
        deadline = self.expiry.get(key)
        if deadline is not None and self.now >= deadline:
            self.data.pop(key, None)
            self.expiry.pop(key, None)

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def get(self, key):
        self._check()
        self._purge(key)
        return self.data.get(key)

    async def set(self, key, value, ex=None):
        self._check()
        self.data[key] = str(value)
        self.expiry.pop(key, None)
        if ex:
            self.expiry[key] = self.now + ex
        return True

    async def setex(self, key, seconds, value):
        self._check()
        if seconds <= 0:
            raise ResponseError("invalid expire time in 'setex' command")
        return await self.set(key, value, ex=seconds)

    async def delete(self, *keys):
        self._check()
        removed = 0
        for key in keys:
            self._purge(key)
            if key in self.data:
                removed += 1
                self.data.pop(key)
                self.expiry.pop(key, None)
        return removed

    async def ttl(self, key):
        self._check()
        self._purge(key)
        if key not in self.data:
            return -2
        if key not in self.expiry:
            return -1
        return int(self.expiry[key] - self.now)

    async def incrby(self, key, amount):
        self._check()
        self._purge(key)
        value = int(self.data.get(key, "0")) + int(amount)
        self.data[key] = str(value)
        return value

    async def incr(self, key):
        return await self.incrby(key, 1)

    async def expire(self, key, seconds):
        self._check()
        self._purge(key)
        if key not in self.data:
            return False
        self.expiry[key] = self.now + seconds
        return True

    async def ping(self):
        self._check()
        return True


@pytest.fixture
def fake_redis():
    return FakeRedis()


# --- Scripted upstream ---


def make_ad(
    price,
    *,
    qty="1000",
    trades=500,
    completion="0.98",
    name="RaviTrades",
    user_no="s1",
) -> dict:
    """One raw order-book advertisement as the P2P search API returns it."""
    return {
        "adv": {"price": str(price), "surplusAmount": str(qty)},
        "advertiser": {
            "nickName": name,
            "userNo": user_no,
            "monthOrderCount": trades,
            "monthFinishRate": completion,
        },
    }


def default_ads() -> list[dict]:
    """Six ads that pass the strict filter (lowest 96.00) and two that don't."""
    ads = [
        make_ad("97.20", name="Kumar", user_no="s4"),
        make_ad("96.00", name="Anand", user_no="s1"),
        make_ad("96.50", name="Bala", user_no="s2"),
        make_ad("99.00", name="Ehsan", user_no="s6"),
        make_ad("97.00", name="Chitra", user_no="s3"),
        make_ad("98.00", name="Dev", user_no="s5"),
    ]
    ads.append(make_ad("90.00", trades=20, name="Newbie", user_no="s7"))
    ads.append(make_ad("91.00", completion="0.5", name="Flaky", user_no="s8"))
    return ads


class FakeUpstream:
    """
    Routes requests by host. ``failures`` maps a host to ``"network"``,
    ``"timeout"`` or an HTTP status code; ``p2p_failures`` makes the
    order book fail that many times (HTTP 503) before answering.
    """

    def __init__(self):
        self.spot = {"symbol": "USDTINR", "price": "95.10"}
        self.reference = {"tether": {"inr": 94.8, "ngn": 1480}}
        self.p2p = {"code": "000000", "data": default_ads()}
        self.failures: dict[str, object] = {}
        self.p2p_failures = 0
        self.calls: Counter = Counter()

    def handler(self, request: httpx.Request) -> httpx.Response:
        host = request.url.host
        self.calls[host] += 1

        failure = self.failures.get(host)
        if failure == "network":
            raise httpx.ConnectError("Connection refused", request=request)
        if failure == "timeout":
            raise httpx.ReadTimeout("Timed out", request=request)
        if isinstance(failure, int):
            return httpx.Response(failure, json={"message": "upstream error"})

        if host == SPOT_HOST:
            return httpx.Response(200, json=self.spot)
        if host == REFERENCE_HOST:
            return httpx.Response(200, json=self.reference)
        if host == P2P_HOST:
            if self.p2p_failures > 0:
                self.p2p_failures -= 1
                return httpx.Response(503, json={"message": "busy"})
            return httpx.Response(200, json=self.p2p)
        return httpx.Response(404)


@pytest.fixture
def upstream():
    return FakeUpstream()


class FixedRandom:
    """Deterministic random source for the pricing engine."""

    def __init__(self, value: float = 0.5):
        self.value = value

    def random(self) -> float:
        return self.value


# --- Settings / service context ---


@pytest.fixture
def test_settings():
    """Settings with test secrets and no retry backoff."""
    return Settings(
        APP_ENV="test",
        DEBUG=False,
        ADMIN_API_KEY=TEST_ADMIN_KEY,
        PAYSTACK_SECRET_KEY=TEST_PAYSTACK_SECRET,
        PAYSTACK_MOCK=True,
        P2P_MAX_RETRIES=3,
        P2P_RETRY_DELAY_SECONDS=0,
        RATE_LIMIT_PER_MINUTE=1000,
    )


@pytest_asyncio.fixture
async def ctx(test_settings, fake_redis, upstream):
    """Service context wired to the fake Redis and scripted upstream."""
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(upstream.handler))
    context = ServiceContext.build(
        test_settings, fake_redis, http_client=http_client, rng=FixedRandom(),
    )
    yield context
    await context.aclose()


# --- Mock Database Session ---


def _make_session(details: dict | None = None, **overrides) -> TransactionSession:
    """Create a TransactionSession with test defaults via the normal constructor."""
    defaults = {
        "amount_ngn": Decimal("50000.00"),
        "gross_inr": Decimal("3140.70"),
        "net_inr": Decimal("3062.18"),
        "locked_rate": Decimal("15.92"),
        "fee_percent": Decimal("2.5"),
        "fee_amount": Decimal("78.52"),
        "profit_margin": Decimal("1.8530"),
        "rate_source": "primary_p2p",
        "ip_address": "127.0.0.1",
        "status": SessionStatus.PENDING,
    }
    defaults.update(overrides)
    session = TransactionSession(**defaults)
    session.set_details(details or {
        "customer_name": "Chidi Okafor",
        "email": "chidi@example.com",
        "phone": "2348012345678",
        "receive_method": "upi",
        "upi_id": "ravi.kumar@okaxis",
    })
    return session


@pytest.fixture
def make_session():
    """Factory fixture for creating TransactionSession instances."""
    return _make_session


@pytest.fixture
def mock_db():
    """AsyncMock database session."""
    db = AsyncMock()

    # Mock the result object returned by db.execute()
    mock_result = MagicMock()
    mock_result.scalar_one_or_none = MagicMock(return_value=None)
    mock_result.scalar = MagicMock(return_value=0)
    mock_result.scalars = MagicMock(return_value=MagicMock(all=MagicMock(return_value=[])))
    db.execute = AsyncMock(return_value=mock_result)
    db.flush = AsyncMock()
    db.add = MagicMock()
    db.commit = AsyncMock()
    db.rollback = AsyncMock()

    return db


def stored_session(mock_db, session):
    """Make ``store.get`` / ``get_by_reference`` return *session*."""
    mock_db.execute.return_value.scalar_one_or_none.return_value = session


def stored_sessions(mock_db, sessions):
    """Make list/search queries return *sessions*."""
    mock_db.execute.return_value.scalars.return_value.all.return_value = sessions


# --- Dependency Override Helpers ---


@pytest_asyncio.fixture
async def client(ctx, mock_db):
    """
    Async HTTP test client with get_db and get_context overridden
    to use test doubles.
    """
    from horizonpay.main import app

    async def override_get_db():
        yield mock_db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_context] = lambda: ctx
    app.state.context = ctx

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
    del app.state.context


@pytest.fixture
def admin_headers():
    return {"X-API-Key": TEST_ADMIN_KEY}


# --- Sample Data ---


@pytest.fixture
def sample_convert():
    """Sample UPI conversion payload."""
    return {
        "amount": 50000,
        "from": "NGN",
        "to": "INR",
        "customerName": "Chidi Okafor",
        "email": "chidi@example.com",
        "phone": "+234 801 234 5678",
        "receiveMethod": "upi",
        "upiId": "ravi.kumar@okaxis",
    }
