"""
Conversion quote — customer rate, gross INR and fees for one NGN amount,
all derived from a single market snapshot.
"""

import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from horizonpay.schemas.market import MarketSnapshot
from horizonpay.services.fee_service import FeeBreakdown, calculate_fees
from horizonpay.services.pricing_engine import PricingEngine, PricingResult

logger = logging.getLogger(__name__)

AMOUNT_QUANT = Decimal("0.01")
USDT_QUANT = Decimal("0.000001")


@dataclass(frozen=True)
class ConversionQuote:
    amount_ngn: Decimal
    snapshot: MarketSnapshot
    pricing: PricingResult
    gross_inr: Decimal
    fees: FeeBreakdown

    @property
    def usdt_bought(self) -> Decimal:
        """USDT bought with the NGN amount at the marked-up NGN price."""
        return (self.amount_ngn / self.snapshot.ngn_rate_with_markup).quantize(
            USDT_QUANT, rounding=ROUND_HALF_UP
        )

    def local_market_inr(self, local_rate: Decimal) -> Decimal:
        return (self.amount_ngn / local_rate).quantize(AMOUNT_QUANT, rounding=ROUND_HALF_UP)


def price_snapshot(engine: PricingEngine, snapshot: MarketSnapshot) -> PricingResult:
    """Run the pricing engine on the snapshot's P2P, markup and reference rates."""
    return engine.calculate_rate(
        snapshot.p2p_lowest,
        snapshot.ngn_rate_with_markup,
        snapshot.reference_inr,
    )


def build_quote(engine: PricingEngine, snapshot: MarketSnapshot, amount_ngn: Decimal) -> ConversionQuote:
    """
    Price *amount_ngn* against *snapshot*.

    gross INR = amount / customer rate; the tier fee is taken from the
    gross INR.
    """
    pricing = price_snapshot(engine, snapshot)
    gross_inr = (amount_ngn / pricing.customer_rate).quantize(AMOUNT_QUANT, rounding=ROUND_HALF_UP)
    fees = calculate_fees(gross_inr)

    logger.debug(
        "Quote: %s NGN @ %s -> gross %s INR, fee %s%% (%s), net %s",
        amount_ngn, pricing.customer_rate, gross_inr, fees.fee_percent, fees.fee_amount, fees.net_amount,
    )
    return ConversionQuote(
        amount_ngn=amount_ngn,
        snapshot=snapshot,
        pricing=pricing,
        gross_inr=gross_inr,
        fees=fees,
    )
