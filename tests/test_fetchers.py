"""Tests for upstream fetchers — spot, reference index and P2P order book."""

import gzip
import json
from decimal import Decimal

import httpx
import pytest

from conftest import FakeUpstream
from horizonpay.core.errors import FetchError, PriceSource
from horizonpay.services.fetchers import (
    P2POrderBookFetcher,
    ReferenceIndexFetcher,
    SpotPriceFetcher,
    positive_decimal,
)
from horizonpay.services.metrics import ServiceMetrics


SPOT_URL = "https://api.binance.com/api/v3/ticker/price"
REFERENCE_URL = "https://api.coingecko.com/api/v3/simple/price"
P2P_URL = "https://p2p.binance.com/bapi/c2c/v2/friendly/c2c/adv/search"


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def _spot(client, metrics) -> SpotPriceFetcher:
    return SpotPriceFetcher(client, metrics, 5.0, url=SPOT_URL, symbol="USDTINR")


def _reference(client, metrics) -> ReferenceIndexFetcher:
    return ReferenceIndexFetcher(client, metrics, 5.0, url=REFERENCE_URL, asset_id="tether")


def _order_book(client, metrics, *, max_retries=3, retry_delay=0.5, sleep=None) -> P2POrderBookFetcher:
    kwargs = {}
    if sleep is not None:
        kwargs["sleep"] = sleep
    return P2POrderBookFetcher(
        client, metrics, 5.0,
        url=P2P_URL, asset="USDT", fiat="INR", trade_type="SELL", rows=20,
        max_retries=max_retries, retry_delay=retry_delay, **kwargs,
    )


class _SleepRecorder:
    def __init__(self):
        self.delays = []

    async def __call__(self, seconds):
        self.delays.append(seconds)


# ---------------------------------------------------------------------------
# positive_decimal
# ---------------------------------------------------------------------------


class TestPositiveDecimal:

    def test_parses_numeric_strings(self):
        """Numeric strings and numbers parse to Decimal."""
        assert positive_decimal("95.10") == Decimal("95.10")
        assert positive_decimal(1480) == Decimal("1480")

    def test_rejects_unusable_values(self):
        """Zero, negatives, NaN, infinity, booleans and junk are rejected."""
        for value in (None, "0", "-3", "NaN", "Infinity", True, "abc", ""):
            assert positive_decimal(value) is None, value


# ---------------------------------------------------------------------------
# Spot price
# ---------------------------------------------------------------------------


class TestSpotPriceFetcher:

    @pytest.mark.asyncio
    async def test_fetches_spot_price(self):
        """A valid ticker yields a PriceQuote tagged with the spot source."""
        upstream = FakeUpstream()
        metrics = ServiceMetrics()
        async with _client(upstream.handler) as client:
            quote = await _spot(client, metrics).fetch()

        assert quote.value == Decimal("95.10")
        assert quote.source == PriceSource.SPOT_MARKET
        assert metrics.for_source(PriceSource.SPOT_MARKET).calls == 1
        assert metrics.for_source(PriceSource.SPOT_MARKET).failures == 0

    @pytest.mark.asyncio
    async def test_non_positive_price_is_error(self):
        """A zero price is a fetch failure, not a quote."""
        upstream = FakeUpstream()
        upstream.spot = {"symbol": "USDTINR", "price": "0"}
        metrics = ServiceMetrics()
        async with _client(upstream.handler) as client:
            with pytest.raises(FetchError) as exc_info:
                await _spot(client, metrics).fetch()

        assert exc_info.value.source == PriceSource.SPOT_MARKET
        assert metrics.for_source(PriceSource.SPOT_MARKET).failures == 1

    @pytest.mark.asyncio
    async def test_timeout_is_transient_error(self):
        """Timeouts surface as transient FetchErrors."""
        upstream = FakeUpstream()
        upstream.failures["api.binance.com"] = "timeout"
        async with _client(upstream.handler) as client:
            with pytest.raises(FetchError) as exc_info:
                await _spot(client, ServiceMetrics()).fetch()

        assert exc_info.value.transient is True
        assert exc_info.value.message == "Request timeout"

    @pytest.mark.asyncio
    async def test_invalid_json_is_error(self):
        """An undecodable body is a parse failure."""
        def handler(request):
            return httpx.Response(200, content=b"<html>maintenance</html>")

        async with _client(handler) as client:
            with pytest.raises(FetchError) as exc_info:
                await _spot(client, ServiceMetrics()).fetch()

        assert exc_info.value.message == "Failed to parse response"
        assert exc_info.value.transient is False

    @pytest.mark.asyncio
    async def test_gzip_body_is_decoded(self):
        """Compressed responses are decoded before JSON parsing."""
        body = gzip.compress(json.dumps({"symbol": "USDTINR", "price": "94.75"}).encode())

        def handler(request):
            return httpx.Response(200, content=body, headers={"Content-Encoding": "gzip"})

        async with _client(handler) as client:
            quote = await _spot(client, ServiceMetrics()).fetch()

        assert quote.value == Decimal("94.75")


# ---------------------------------------------------------------------------
# Reference index
# ---------------------------------------------------------------------------


class TestReferenceIndexFetcher:

    @pytest.mark.asyncio
    async def test_fetches_both_currencies(self):
        """INR and NGN prices are both parsed."""
        upstream = FakeUpstream()
        async with _client(upstream.handler) as client:
            rates = await _reference(client, ServiceMetrics()).fetch()

        assert rates.inr == Decimal("94.8")
        assert rates.ngn == Decimal("1480")

    @pytest.mark.asyncio
    async def test_one_missing_currency_is_tolerated(self):
        """A missing NGN price leaves ngn=None rather than failing."""
        upstream = FakeUpstream()
        upstream.reference = {"tether": {"inr": 94.8}}
        async with _client(upstream.handler) as client:
            rates = await _reference(client, ServiceMetrics()).fetch()

        assert rates.inr == Decimal("94.8")
        assert rates.ngn is None

    @pytest.mark.asyncio
    async def test_missing_asset_block_is_error(self):
        """A response without the asset block fails."""
        upstream = FakeUpstream()
        upstream.reference = {}
        async with _client(upstream.handler) as client:
            with pytest.raises(FetchError) as exc_info:
                await _reference(client, ServiceMetrics()).fetch()

        assert exc_info.value.source == PriceSource.REFERENCE_INDEX

    @pytest.mark.asyncio
    async def test_network_error(self):
        """Connection failures are transient FetchErrors."""
        upstream = FakeUpstream()
        upstream.failures["api.coingecko.com"] = "network"
        async with _client(upstream.handler) as client:
            with pytest.raises(FetchError) as exc_info:
                await _reference(client, ServiceMetrics()).fetch()

        assert exc_info.value.transient is True


# ---------------------------------------------------------------------------
# P2P order book
# ---------------------------------------------------------------------------


class TestP2POrderBookFetcher:

    @pytest.mark.asyncio
    async def test_returns_raw_entries(self):
        """The first result page's ads are returned unparsed."""
        upstream = FakeUpstream()
        async with _client(upstream.handler) as client:
            entries = await _order_book(client, ServiceMetrics()).fetch()

        assert len(entries) == 8
        assert entries[0]["adv"]["price"] == "97.20"

    @pytest.mark.asyncio
    async def test_sends_search_body(self):
        """The POST body names asset, fiat, trade type and page size."""
        seen = {}

        def handler(request):
            seen["body"] = json.loads(request.content)
            seen["method"] = request.method
            return httpx.Response(200, json={"data": [{"adv": {}, "advertiser": {}}]})

        async with _client(handler) as client:
            await _order_book(client, ServiceMetrics()).fetch()

        assert seen["method"] == "POST"
        assert seen["body"]["asset"] == "USDT"
        assert seen["body"]["fiat"] == "INR"
        assert seen["body"]["tradeType"] == "SELL"
        assert seen["body"]["rows"] == 20

    @pytest.mark.asyncio
    async def test_retries_with_exponential_backoff(self):
        """Two transient failures then success: sleeps 0.5s then 1.0s."""
        upstream = FakeUpstream()
        upstream.p2p_failures = 2
        sleep = _SleepRecorder()
        async with _client(upstream.handler) as client:
            entries = await _order_book(client, ServiceMetrics(), sleep=sleep).fetch()

        assert entries
        assert upstream.calls["p2p.binance.com"] == 3
        assert sleep.delays == [0.5, 1.0]

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self):
        """Persistent 5xx exhausts the retry budget and raises."""
        upstream = FakeUpstream()
        upstream.failures["p2p.binance.com"] = 502
        sleep = _SleepRecorder()
        async with _client(upstream.handler) as client:
            with pytest.raises(FetchError) as exc_info:
                await _order_book(client, ServiceMetrics(), max_retries=3, sleep=sleep).fetch()

        assert exc_info.value.message == "HTTP 502"
        assert upstream.calls["p2p.binance.com"] == 3
        assert len(sleep.delays) == 2

    @pytest.mark.asyncio
    async def test_client_error_is_not_retried(self):
        """A 4xx response fails immediately."""
        upstream = FakeUpstream()
        upstream.failures["p2p.binance.com"] = 403
        sleep = _SleepRecorder()
        async with _client(upstream.handler) as client:
            with pytest.raises(FetchError):
                await _order_book(client, ServiceMetrics(), sleep=sleep).fetch()

        assert upstream.calls["p2p.binance.com"] == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_empty_order_book_is_error(self):
        """An empty data list is a failure."""
        upstream = FakeUpstream()
        upstream.p2p = {"code": "000000", "data": []}
        async with _client(upstream.handler) as client:
            with pytest.raises(FetchError) as exc_info:
                await _order_book(client, ServiceMetrics()).fetch()

        assert exc_info.value.message == "No P2P data available"
