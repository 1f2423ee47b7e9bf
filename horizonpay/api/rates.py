"""
Public rate endpoint.

Serves the customer rate derived from the current (usually cached) market
snapshot together with the P2P market summary. Failures of non-essential
upstream sources are returned as warnings.
"""

import logging
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal

from fastapi import APIRouter, Depends

from horizonpay.schemas.market import MarketSnapshot
from horizonpay.schemas.rate import (
    MarketDataInfo,
    RateInfo,
    RatesResponse,
    snapshot_warnings,
    top_traders,
)
from horizonpay.services.context import ServiceContext, get_context
from horizonpay.services.pricing_engine import PricingResult
from horizonpay.services.quote_service import price_snapshot

logger = logging.getLogger(__name__)

router = APIRouter()

DISPLAY_QUANT = Decimal("0.0001")
TOP_TRADERS_SHOWN = 3


def display(value: Decimal) -> Decimal:
    return value.quantize(DISPLAY_QUANT, rounding=ROUND_HALF_UP)


def build_rate_info(pricing: PricingResult) -> RateInfo:
    return RateInfo(
        horizon_pay_rate=pricing.customer_rate,
        rate_description=f"₦{pricing.customer_rate:.2f} NGN per ₹1 INR",
        local_market_min=pricing.local_rate_min,
        local_market_max=pricing.local_rate_max,
        savings_vs_local_min=pricing.savings_vs_local_min,
        savings_vs_local_max=pricing.savings_vs_local_max,
        savings_percent=pricing.savings_percent,
        profit_margin=pricing.profit_margin_pct,
        rate_source=pricing.rate_source.value,
        used_fallback=pricing.used_reference_fallback,
        degraded=pricing.degraded,
    )


def build_market_info(snapshot: MarketSnapshot, pricing: PricingResult) -> MarketDataInfo:
    stats = snapshot.p2p_stats
    return MarketDataInfo(
        usdt_to_ngn_rate=snapshot.ngn_rate_with_markup,
        usdt_to_inr_rate=snapshot.p2p_lowest,
        spot_usdt_inr=snapshot.spot_price,
        reference_usdt_inr=snapshot.reference_inr,
        our_cost_per_inr=display(pricing.base_cost_per_unit),
        total_p2p_ads=stats.total_ads_seen,
        quality_p2p_ads=stats.quality_ads_count,
        filter_used=stats.filter_used,
        simple_average=stats.simple_average,
        volume_weighted_average=stats.volume_weighted_average,
        top_traders=top_traders(snapshot, TOP_TRADERS_SHOWN),
        used_fallback_rate=snapshot.used_fallback,
        fetched_at=snapshot.fetched_at,
    )


@router.get("/rates", response_model=RatesResponse)
async def get_rates(ctx: ServiceContext = Depends(get_context)):
    """
    Current HorizonPay NGN per INR rate.

    Returns the customer rate, profit margin and rate source, the P2P
    market summary with the top anonymized traders, and a warning for each
    upstream source that failed.
    """
    snapshot = await ctx.aggregator.get_market_data()
    pricing = price_snapshot(ctx.pricing_engine, snapshot)

    return RatesResponse(
        timestamp=datetime.now(timezone.utc),
        service=ctx.settings.APP_NAME,
        rates=build_rate_info(pricing),
        market_data=build_market_info(snapshot, pricing),
        warnings=snapshot_warnings(snapshot),
    )
