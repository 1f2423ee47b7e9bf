"""
Pydantic schemas for the public rates endpoint.
"""

from datetime import datetime
from decimal import Decimal

from horizonpay.schemas.base import CamelModel
from horizonpay.schemas.market import MarketSnapshot, P2PListing


def anonymize_name(name: str) -> str:
    """Keep the first two characters of a seller name."""
    if not name or name == "Unknown":
        return "Trader"
    return f"{name[:2]}***"


class TraderSummary(CamelModel):
    """Anonymized P2P listing shown to customers."""
    price: Decimal
    available: Decimal
    trades: int
    completion_rate: Decimal
    trader_name: str

    @classmethod
    def from_listing(cls, listing: P2PListing) -> "TraderSummary":
        return cls(
            price=listing.price,
            available=listing.available_qty,
            trades=listing.seller_trades,
            completion_rate=listing.seller_completion_pct,
            trader_name=anonymize_name(listing.seller_name),
        )


class SourceWarning(CamelModel):
    source: str
    error: str


def top_traders(snapshot: MarketSnapshot, count: int) -> list[TraderSummary]:
    return [TraderSummary.from_listing(ad) for ad in snapshot.p2p_stats.top_ranked_ads[:count]]


def snapshot_warnings(snapshot: MarketSnapshot) -> list[SourceWarning]:
    return [SourceWarning(source=e.source.value, error=e.error) for e in snapshot.partial_errors]


class RateInfo(CamelModel):
    """Customer rate derived from the current snapshot."""
    horizon_pay_rate: Decimal
    rate_description: str
    local_market_min: Decimal
    local_market_max: Decimal
    savings_vs_local_min: Decimal
    savings_vs_local_max: Decimal
    savings_percent: Decimal
    profit_margin: Decimal
    rate_source: str
    used_fallback: bool
    degraded: bool


class MarketDataInfo(CamelModel):
    usdt_to_ngn_rate: Decimal
    usdt_to_inr_rate: Decimal
    spot_usdt_inr: Decimal | None
    reference_usdt_inr: Decimal | None
    our_cost_per_inr: Decimal
    total_p2p_ads: int
    quality_p2p_ads: int
    filter_used: str
    simple_average: Decimal
    volume_weighted_average: Decimal
    top_traders: list[TraderSummary]
    used_fallback_rate: bool
    fetched_at: datetime


class RatesResponse(CamelModel):
    timestamp: datetime
    service: str
    rates: RateInfo
    market_data: MarketDataInfo
    warnings: list[SourceWarning]
