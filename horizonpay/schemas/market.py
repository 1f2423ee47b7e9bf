"""
Pydantic models for upstream quotes, P2P statistics and the cached
market snapshot.

All models are frozen: a snapshot is built once per cache miss and then
shared, unchanged, by every request inside the TTL window. The snapshot
round-trips through Redis as JSON.
"""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict

from horizonpay.core.errors import PriceSource

P2P_PROFILE_URL = "https://p2p.binance.com/en/advertiserDetail?advertiserNo={seller_id}"


class PriceQuote(BaseModel):
    """A single upstream price observation."""
    model_config = ConfigDict(frozen=True)

    source: PriceSource
    value: Decimal
    fetched_at: datetime


class ReferenceRates(BaseModel):
    """Reference index prices of one USDT in INR and NGN."""
    model_config = ConfigDict(frozen=True)

    inr: Decimal | None = None
    ngn: Decimal | None = None
    fetched_at: datetime


class P2PListing(BaseModel):
    """One order-book advertisement after parsing."""
    model_config = ConfigDict(frozen=True)

    price: Decimal
    available_qty: Decimal
    seller_trades: int
    seller_completion_pct: Decimal
    seller_name: str
    seller_id: str | None = None

    @property
    def profile_link(self) -> str | None:
        if not self.seller_id:
            return None
        return P2P_PROFILE_URL.format(seller_id=self.seller_id)


class P2PStats(BaseModel):
    """Quality-filtered ranking of the order book."""
    model_config = ConfigDict(frozen=True)

    total_ads_seen: int
    quality_ads_count: int
    filter_used: str
    lowest_qualified_rate: Decimal
    simple_average: Decimal
    volume_weighted_average: Decimal
    top_ranked_ads: tuple[P2PListing, ...]


class SourceError(BaseModel):
    """Safe summary of one failed upstream fetch."""
    model_config = ConfigDict(frozen=True)

    source: PriceSource
    error: str


class MarketSnapshot(BaseModel):
    """Aggregated market data held in the cache for one TTL window."""
    model_config = ConfigDict(frozen=True)

    spot_price: Decimal | None = None
    reference_rates: ReferenceRates | None = None
    p2p_stats: P2PStats
    ngn_rate_with_markup: Decimal
    used_fallback: bool
    fetched_at: datetime
    partial_errors: tuple[SourceError, ...] = ()

    @property
    def p2p_lowest(self) -> Decimal:
        return self.p2p_stats.lowest_qualified_rate

    @property
    def reference_inr(self) -> Decimal | None:
        return self.reference_rates.inr if self.reference_rates else None

    @property
    def reference_ngn(self) -> Decimal | None:
        return self.reference_rates.ngn if self.reference_rates else None
