"""
Upstream market data fetchers.

Three independent clients, one per source:

  - SpotPriceFetcher        — Binance spot ticker, USDT/INR
  - ReferenceIndexFetcher   — CoinGecko simple price, USDT in INR and NGN
  - P2POrderBookFetcher     — Binance P2P advertisement search

Each performs one bounded-timeout request on a shared ``httpx.AsyncClient``.
httpx decodes gzip/deflate (and brotli, with the ``brotli`` extra) response
bodies before we parse JSON. Any failure, including an unusable price,
surfaces as a ``FetchError`` tagged with its source. Only the order-book fetch retries.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any

import httpx

from horizonpay.core.errors import FetchError, PriceSource
from horizonpay.schemas.market import PriceQuote, ReferenceRates
from horizonpay.services.metrics import ServiceMetrics

logger = logging.getLogger(__name__)

BROWSER_USER_AGENT = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"


def positive_decimal(value: Any) -> Decimal | None:
    """Parse *value* as a finite, strictly positive Decimal, else None."""
    if value is None or isinstance(value, bool):
        return None
    try:
        parsed = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    if not parsed.is_finite() or parsed <= 0:
        return None
    return parsed


# ---------------------------------------------------------------------------
# Base fetcher
# ---------------------------------------------------------------------------


class UpstreamFetcher:
    """Shared request/decode/metrics plumbing for one upstream source."""

    source: PriceSource

    def __init__(self, client: httpx.AsyncClient, metrics: ServiceMetrics, timeout: float):
        self.client = client
        self.metrics = metrics
        self.timeout = timeout

    async def _request_json(self, method: str, url: str, **kwargs) -> Any:
        """
        Issue one request and return the decoded JSON body.

        Records call count, failure count and latency for the source.
        Transient failures (timeouts, connection errors, 5xx, 429) are
        flagged so callers with a retry policy can act on them.
        """
        stats = self.metrics.for_source(self.source)
        started = time.perf_counter()

        def _elapsed_ms() -> float:
            return (time.perf_counter() - started) * 1000

        try:
            response = await self.client.request(method, url, timeout=self.timeout, **kwargs)
            response.raise_for_status()
            data = response.json()
        except httpx.TimeoutException as exc:
            stats.record(_elapsed_ms(), failed=True)
            raise FetchError(self.source, "Request timeout", transient=True) from exc
        except httpx.HTTPStatusError as exc:
            stats.record(_elapsed_ms(), failed=True)
            code = exc.response.status_code
            raise FetchError(
                self.source, f"HTTP {code}", transient=code >= 500 or code == 429,
            ) from exc
        except httpx.DecodingError as exc:
            stats.record(_elapsed_ms(), failed=True)
            raise FetchError(self.source, "Failed to decompress response") from exc
        except httpx.RequestError as exc:
            stats.record(_elapsed_ms(), failed=True)
            raise FetchError(self.source, "Network request failed", transient=True) from exc
        except ValueError as exc:
            stats.record(_elapsed_ms(), failed=True)
            raise FetchError(self.source, "Failed to parse response") from exc

        stats.record(_elapsed_ms())
        return data

    def _invalid(self, message: str) -> FetchError:
        self.metrics.for_source(self.source).failures += 1
        return FetchError(self.source, message)


# ---------------------------------------------------------------------------
# Spot market
# ---------------------------------------------------------------------------


class SpotPriceFetcher(UpstreamFetcher):
    """Single-shot spot ticker fetch."""

    source = PriceSource.SPOT_MARKET

    def __init__(self, client, metrics, timeout, *, url: str, symbol: str):
        super().__init__(client, metrics, timeout)
        self.url = url
        self.symbol = symbol

    async def fetch(self) -> PriceQuote:
        logger.debug("Fetching spot price for %s", self.symbol)
        data = await self._request_json("GET", self.url, params={"symbol": self.symbol})

        price = positive_decimal(data.get("price")) if isinstance(data, dict) else None
        if price is None:
            raise self._invalid("Invalid price in spot response")

        logger.debug("Spot price fetched: %s", price)
        return PriceQuote(source=self.source, value=price, fetched_at=datetime.now(timezone.utc))


# ---------------------------------------------------------------------------
# Reference index
# ---------------------------------------------------------------------------


class ReferenceIndexFetcher(UpstreamFetcher):
    """Single-shot dual-currency reference price fetch."""

    source = PriceSource.REFERENCE_INDEX

    def __init__(self, client, metrics, timeout, *, url: str, asset_id: str):
        super().__init__(client, metrics, timeout)
        self.url = url
        self.asset_id = asset_id

    async def fetch(self) -> ReferenceRates:
        logger.debug("Fetching reference rates for %s", self.asset_id)
        data = await self._request_json(
            "GET", self.url, params={"ids": self.asset_id, "vs_currencies": "inr,ngn"},
        )

        block = data.get(self.asset_id) if isinstance(data, dict) else None
        if not isinstance(block, dict):
            raise self._invalid("Invalid reference index response")

        inr = positive_decimal(block.get("inr"))
        ngn = positive_decimal(block.get("ngn"))
        if inr is None and ngn is None:
            raise self._invalid("No usable price in reference index response")

        logger.debug("Reference rates fetched: inr=%s ngn=%s", inr, ngn)
        return ReferenceRates(inr=inr, ngn=ngn, fetched_at=datetime.now(timezone.utc))


# ---------------------------------------------------------------------------
# P2P order book
# ---------------------------------------------------------------------------


class P2POrderBookFetcher(UpstreamFetcher):
    """
    Order-book search with exponential backoff on transient failures.

    Attempt *n* (0-based) that fails transiently sleeps
    ``retry_delay * 2**n`` seconds before the next attempt. The sleep is an
    ``await`` so other in-flight requests keep running.
    """

    source = PriceSource.P2P_ORDER_BOOK

    def __init__(
        self,
        client,
        metrics,
        timeout,
        *,
        url: str,
        asset: str,
        fiat: str,
        trade_type: str,
        rows: int,
        max_retries: int,
        retry_delay: float,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        super().__init__(client, metrics, timeout)
        self.url = url
        self.asset = asset
        self.fiat = fiat
        self.trade_type = trade_type
        self.rows = rows
        self.max_retries = max(1, max_retries)
        self.retry_delay = retry_delay
        self._sleep = sleep

    def _search_body(self) -> dict:
        return {
            "asset": self.asset,
            "fiat": self.fiat,
            "tradeType": self.trade_type,
            "page": 1,
            "rows": self.rows,
            "payTypes": [],
            "merchantCheck": False,
            "publisherType": None,
        }

    async def _fetch_once(self) -> Any:
        return await self._request_json(
            "POST",
            self.url,
            json=self._search_body(),
            headers={
                "Accept-Encoding": "gzip, deflate, br",
                "User-Agent": BROWSER_USER_AGENT,
            },
        )

    async def fetch(self) -> list[dict]:
        """Return the raw advertisement entries of the first result page."""
        logger.debug("Fetching P2P order book %s/%s %s", self.asset, self.fiat, self.trade_type)

        for attempt in range(self.max_retries):
            try:
                data = await self._fetch_once()
                break
            except FetchError as exc:
                if not exc.transient or attempt == self.max_retries - 1:
                    raise
                delay = self.retry_delay * 2 ** attempt
                logger.warning(
                    "P2P request failed, retrying (%d/%d) in %.2fs: %s",
                    attempt + 1, self.max_retries, delay, exc.message,
                )
                await self._sleep(delay)

        entries = data.get("data") if isinstance(data, dict) else None
        if not isinstance(entries, list) or not entries:
            raise self._invalid("No P2P data available")

        logger.debug("P2P order book fetched: %d ads", len(entries))
        return entries
