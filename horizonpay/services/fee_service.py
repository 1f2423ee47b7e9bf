"""
Tiered conversion fee on the gross INR amount.
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

AMOUNT_QUANT = Decimal("0.01")

# Fee tiers: (max_amount_inr, fee_percent)
# Ordered lowest-first; the first tier whose max covers the amount wins.
# A boundary amount belongs to the lower tier.
FEE_TIERS = [
    (Decimal("10000"),    Decimal("2.5")),
    (Decimal("50000"),    Decimal("2.0")),
    (Decimal("100000"),   Decimal("1.5")),
    (Decimal("500000"),   Decimal("1.0")),
    (Decimal("Infinity"), Decimal("0.75")),
]


@dataclass(frozen=True)
class FeeBreakdown:
    fee_percent: Decimal
    fee_amount: Decimal
    net_amount: Decimal


def get_fee_percent(amount: Decimal, tiers=FEE_TIERS) -> Decimal:
    for max_amount, pct in tiers:
        if amount <= max_amount:
            return pct
    return tiers[-1][1]


def calculate_fees(amount: Decimal, tiers=FEE_TIERS) -> FeeBreakdown:
    """
    Apply the tier fee to *amount*.

    The amount is rounded to 2 dp first so that ``fee + net == amount``
    holds exactly on the rounded figures.
    """
    if amount < 0:
        raise ValueError("amount must not be negative")

    amount = amount.quantize(AMOUNT_QUANT, rounding=ROUND_HALF_UP)
    pct = get_fee_percent(amount, tiers)
    fee = (amount * pct / Decimal("100")).quantize(AMOUNT_QUANT, rounding=ROUND_HALF_UP)
    return FeeBreakdown(fee_percent=pct, fee_amount=fee, net_amount=amount - fee)
