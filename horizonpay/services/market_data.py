"""
Market data aggregation — concurrent upstream fetch, P2P analysis and a
single Redis-cached snapshot.

The snapshot is stored under one key with SETEX so Redis enforces the TTL;
a hit returns the same snapshot (same ``fetched_at``) until it lapses. The
P2P order book is mandatory: without it no snapshot is produced and
nothing is written to the cache. Spot and reference failures degrade to
warnings, and a missing reference NGN price falls back to a fixed rate.
"""

import asyncio
import logging
from datetime import datetime, timezone

from pydantic import ValidationError as PydanticValidationError
from redis.exceptions import RedisError

from horizonpay.core.errors import (
    FatalAggregationError,
    FetchError,
    NoQualifyingListingsError,
    PriceSource,
)
from horizonpay.schemas.market import MarketSnapshot, SourceError
from horizonpay.services.fetchers import (
    P2POrderBookFetcher,
    ReferenceIndexFetcher,
    SpotPriceFetcher,
)
from horizonpay.services.metrics import ServiceMetrics
from horizonpay.services.p2p_analyzer import ListingFilter, analyze_listings

logger = logging.getLogger(__name__)

# Redis keys
SNAPSHOT_CACHE_KEY = "market_data:snapshot"


# ---------------------------------------------------------------------------
# Snapshot cache
# ---------------------------------------------------------------------------


class SnapshotCache:
    """Redis-backed holder for the one current ``MarketSnapshot``."""

    def __init__(self, redis, ttl_seconds: int, metrics: ServiceMetrics):
        self.redis = redis
        self.ttl_seconds = ttl_seconds
        self.metrics = metrics

    async def get(self) -> MarketSnapshot | None:
        """Return the cached snapshot, or None on miss or unreadable entry."""
        try:
            cached = await self.redis.get(SNAPSHOT_CACHE_KEY)
        except RedisError:
            logger.exception("Snapshot cache read failed")
            cached = None

        if cached is None:
            self.metrics.cache.misses += 1
            return None

        try:
            snapshot = MarketSnapshot.model_validate_json(cached)
        except PydanticValidationError:
            logger.warning("Discarding unreadable cached snapshot")
            self.metrics.cache.misses += 1
            return None

        self.metrics.cache.hits += 1
        return snapshot

    async def set(self, snapshot: MarketSnapshot) -> None:
        # A zero TTL disables caching; SETEX rejects non-positive expiries.
        if self.ttl_seconds <= 0:
            return
        try:
            await self.redis.setex(SNAPSHOT_CACHE_KEY, self.ttl_seconds, snapshot.model_dump_json())
        except RedisError:
            logger.exception("Snapshot cache write failed")

    async def flush(self) -> int:
        """Drop the cached snapshot. Returns the number of keys removed."""
        removed = await self.redis.delete(SNAPSHOT_CACHE_KEY)
        logger.info("Market data cache cleared")
        return int(removed or 0)

    async def stats(self) -> dict:
        ttl = await self.redis.ttl(SNAPSHOT_CACHE_KEY)
        total = self.metrics.cache.hits + self.metrics.cache.misses
        hit_rate = round(self.metrics.cache.hits / total * 100, 2) if total else 0.0
        return {
            "key": SNAPSHOT_CACHE_KEY,
            "cached": ttl is not None and ttl > 0,
            "ttlRemainingSeconds": max(int(ttl or 0), 0),
            "ttlSeconds": self.ttl_seconds,
            "hits": self.metrics.cache.hits,
            "misses": self.metrics.cache.misses,
            "hitRate": hit_rate,
        }


# ---------------------------------------------------------------------------
# Aggregator
# ---------------------------------------------------------------------------


class MarketDataAggregator:
    """Builds (or serves from cache) the current market snapshot."""

    def __init__(
        self,
        *,
        spot: SpotPriceFetcher,
        reference: ReferenceIndexFetcher,
        order_book: P2POrderBookFetcher,
        cache: SnapshotCache,
        strict_filter: ListingFilter,
        relaxed_filter: ListingFilter,
        ngn_markup,
        fallback_ngn_rate,
        top_n: int = 5,
    ):
        self.spot = spot
        self.reference = reference
        self.order_book = order_book
        self.cache = cache
        self.strict_filter = strict_filter
        self.relaxed_filter = relaxed_filter
        self.ngn_markup = ngn_markup
        self.fallback_ngn_rate = fallback_ngn_rate
        self.top_n = top_n

    @classmethod
    def from_settings(cls, settings, client, redis, metrics: ServiceMetrics) -> "MarketDataAggregator":
        timeout = settings.UPSTREAM_TIMEOUT_SECONDS
        return cls(
            spot=SpotPriceFetcher(
                client, metrics, timeout,
                url=settings.SPOT_PRICE_URL, symbol=settings.SPOT_SYMBOL,
            ),
            reference=ReferenceIndexFetcher(
                client, metrics, timeout,
                url=settings.REFERENCE_PRICE_URL, asset_id=settings.REFERENCE_ASSET_ID,
            ),
            order_book=P2POrderBookFetcher(
                client, metrics, timeout,
                url=settings.P2P_SEARCH_URL,
                asset=settings.P2P_ASSET,
                fiat=settings.P2P_FIAT,
                trade_type=settings.P2P_TRADE_TYPE,
                rows=settings.P2P_ROWS,
                max_retries=settings.P2P_MAX_RETRIES,
                retry_delay=settings.P2P_RETRY_DELAY_SECONDS,
            ),
            cache=SnapshotCache(redis, settings.MARKET_CACHE_TTL_SECONDS, metrics),
            strict_filter=ListingFilter.strict_from_settings(settings),
            relaxed_filter=ListingFilter.relaxed_from_settings(settings),
            ngn_markup=settings.NGN_MARKUP,
            fallback_ngn_rate=settings.FALLBACK_NGN_RATE,
            top_n=settings.P2P_TOP_N,
        )

    async def get_market_data(self, use_cache: bool = True) -> MarketSnapshot:
        """
        Return the current market snapshot.

        With ``use_cache`` a cached snapshot is returned when present.
        Otherwise all three sources are fetched concurrently; the P2P fetch
        and analysis must succeed or ``FatalAggregationError`` is raised.
        A fresh snapshot always replaces the cached one.
        """
        if use_cache:
            cached = await self.cache.get()
            if cached is not None:
                logger.debug("Serving market data from cache (fetched %s)", cached.fetched_at)
                return cached

        logger.info("Fetching fresh market data")
        spot_result, reference_result, p2p_result = await asyncio.gather(
            self.spot.fetch(),
            self.reference.fetch(),
            self.order_book.fetch(),
            return_exceptions=True,
        )

        if isinstance(p2p_result, BaseException):
            logger.error("P2P order book unavailable: %s", p2p_result)
            raise FatalAggregationError(
                "P2P market data unavailable",
                {"source": PriceSource.P2P_ORDER_BOOK.value, "reason": _describe(p2p_result)},
            )

        try:
            p2p_stats = analyze_listings(
                p2p_result, self.strict_filter, self.relaxed_filter, self.top_n,
            )
        except NoQualifyingListingsError as exc:
            logger.error("P2P analysis failed: %s (total ads %d)", exc.message, exc.total_ads)
            raise FatalAggregationError(
                "No qualifying P2P listings",
                {"source": PriceSource.P2P_ORDER_BOOK.value, "reason": exc.message},
            ) from exc

        partial_errors = []
        spot_price = None
        if isinstance(spot_result, BaseException):
            logger.warning("Spot price unavailable: %s", spot_result)
            partial_errors.append(
                SourceError(source=PriceSource.SPOT_MARKET, error=_describe(spot_result))
            )
        else:
            spot_price = spot_result.value

        reference_rates = None
        if isinstance(reference_result, BaseException):
            logger.warning("Reference index unavailable: %s", reference_result)
            partial_errors.append(
                SourceError(source=PriceSource.REFERENCE_INDEX, error=_describe(reference_result))
            )
        else:
            reference_rates = reference_result

        used_fallback = reference_rates is None or reference_rates.ngn is None
        ngn_rate = self.fallback_ngn_rate if used_fallback else reference_rates.ngn
        if used_fallback:
            logger.warning("Using fallback NGN rate %s", self.fallback_ngn_rate)

        snapshot = MarketSnapshot(
            spot_price=spot_price,
            reference_rates=reference_rates,
            p2p_stats=p2p_stats,
            ngn_rate_with_markup=ngn_rate + self.ngn_markup,
            used_fallback=used_fallback,
            fetched_at=datetime.now(timezone.utc),
            partial_errors=tuple(partial_errors),
        )
        await self.cache.set(snapshot)

        logger.info(
            "Market data refreshed: p2p_lowest=%s ngn_with_markup=%s fallback=%s",
            snapshot.p2p_lowest, snapshot.ngn_rate_with_markup, used_fallback,
        )
        return snapshot


def _describe(exc: BaseException) -> str:
    """Client-safe one-line summary of a fetch failure."""
    if isinstance(exc, FetchError):
        return exc.message
    return "Unexpected upstream error"
