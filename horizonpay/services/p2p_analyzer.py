"""
P2P order-book analysis — parse, quality-filter and rank advertisements.

Pipeline:
  1. Parse each raw entry, skipping malformed ones
  2. Strict quality filter; relaxed filter only if strict leaves nothing
  3. Sort survivors ascending by price, keep the top N
  4. Lowest rate, simple average and volume-weighted average over the top N

Pure functions, no I/O.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

from horizonpay.core.errors import NoQualifyingListingsError
from horizonpay.schemas.market import P2PListing, P2PStats

logger = logging.getLogger(__name__)

AVERAGE_QUANT = Decimal("0.00000001")
DEFAULT_TOP_N = 5


@dataclass(frozen=True)
class ListingFilter:
    """Seller-quality and price thresholds an advertisement must meet."""

    name: str
    min_trades: int
    min_completion: Decimal
    min_qty: Decimal
    min_price: Decimal
    max_price: Decimal

    def accepts(self, listing: P2PListing) -> bool:
        return (
            listing.seller_trades >= self.min_trades
            and listing.seller_completion_pct >= self.min_completion
            and listing.available_qty >= self.min_qty
            and self.min_price <= listing.price <= self.max_price
        )

    @classmethod
    def strict_from_settings(cls, settings) -> "ListingFilter":
        return cls(
            name="strict",
            min_trades=settings.P2P_STRICT_MIN_TRADES,
            min_completion=settings.P2P_STRICT_MIN_COMPLETION,
            min_qty=settings.P2P_STRICT_MIN_QTY,
            min_price=settings.P2P_MIN_PRICE,
            max_price=settings.P2P_MAX_PRICE,
        )

    @classmethod
    def relaxed_from_settings(cls, settings) -> "ListingFilter":
        return cls(
            name="relaxed",
            min_trades=settings.P2P_RELAXED_MIN_TRADES,
            min_completion=settings.P2P_RELAXED_MIN_COMPLETION,
            min_qty=settings.P2P_RELAXED_MIN_QTY,
            min_price=settings.P2P_MIN_PRICE,
            max_price=settings.P2P_MAX_PRICE,
        )


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def _to_decimal(value) -> Decimal | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        parsed = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    return parsed if parsed.is_finite() else None


def _to_int(value) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def parse_listing(entry: dict) -> P2PListing | None:
    """
    Convert one raw advertisement into a ``P2PListing``.

    Returns None when the entry lacks an ``adv``/``advertiser`` block, has a
    missing, non-finite or non-positive price, or a non-numeric quantity.
    Completion rates reported as a 0–1 fraction are scaled to percent.
    """
    if not isinstance(entry, dict):
        return None
    adv = entry.get("adv")
    seller = entry.get("advertiser")
    if not isinstance(adv, dict) or not isinstance(seller, dict):
        return None

    price = _to_decimal(adv.get("price"))
    if price is None or price <= 0:
        return None

    qty = _to_decimal(adv.get("surplusAmount") or adv.get("tradableQuantity") or 0)
    if qty is None or qty < 0:
        return None

    completion = _to_decimal(seller.get("monthFinishRate")) or Decimal("0")
    if 0 < completion <= 1:
        completion *= 100

    seller_id = seller.get("userNo")
    return P2PListing(
        price=price,
        available_qty=qty,
        seller_trades=max(_to_int(seller.get("monthOrderCount")), 0),
        seller_completion_pct=completion,
        seller_name=seller.get("nickName") or "Unknown",
        seller_id=str(seller_id) if seller_id else None,
    )


# ---------------------------------------------------------------------------
# Analysis
# ---------------------------------------------------------------------------


def _volume_weighted_average(ads: list[P2PListing]) -> Decimal:
    total_qty = sum((ad.available_qty for ad in ads), Decimal("0"))
    if total_qty == 0:
        return sum((ad.price for ad in ads), Decimal("0")) / len(ads)
    return sum((ad.price * ad.available_qty for ad in ads), Decimal("0")) / total_qty


def analyze_listings(
    entries: list[dict],
    strict: ListingFilter,
    relaxed: ListingFilter,
    top_n: int = DEFAULT_TOP_N,
) -> P2PStats:
    """
    Rank the order book and compute pricing statistics.

    Raises ``NoQualifyingListingsError`` when no entry parses, or when
    neither the strict nor the relaxed filter leaves any listing. An
    unfiltered result is never returned.
    """
    listings = [listing for listing in map(parse_listing, entries) if listing is not None]
    skipped = len(entries) - len(listings)
    if skipped:
        logger.debug("Skipped %d malformed P2P ads", skipped)

    if not listings:
        raise NoQualifyingListingsError("No valid P2P ads found", total_ads=0)

    used = strict
    qualified = [ad for ad in listings if strict.accepts(ad)]
    if not qualified:
        logger.warning("No ads passed strict filter, trying relaxed")
        used = relaxed
        qualified = [ad for ad in listings if relaxed.accepts(ad)]
        if not qualified:
            raise NoQualifyingListingsError(
                "No P2P ads meet quality criteria", total_ads=len(listings),
            )

    top = sorted(qualified, key=lambda ad: ad.price)[:max(1, top_n)]
    simple_average = sum((ad.price for ad in top), Decimal("0")) / len(top)

    stats = P2PStats(
        total_ads_seen=len(listings),
        quality_ads_count=len(qualified),
        filter_used=used.name,
        lowest_qualified_rate=top[0].price,
        simple_average=simple_average.quantize(AVERAGE_QUANT),
        volume_weighted_average=_volume_weighted_average(top).quantize(AVERAGE_QUANT),
        top_ranked_ads=tuple(top),
    )

    logger.debug(
        "P2P analysis complete: total=%d quality=%d lowest=%s filter=%s",
        stats.total_ads_seen, stats.quality_ads_count, stats.lowest_qualified_rate, used.name,
    )
    return stats
