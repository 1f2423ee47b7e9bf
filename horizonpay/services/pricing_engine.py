"""
Pricing Engine — customer exchange rate (NGN per 1 INR) with a guaranteed
minimum profit margin.

Fallback ladder:
  1. Primary: candidate rate from the configured primary policy against the
     P2P base cost (NGN-with-markup / lowest qualified INR per USDT)
  2. Fallback: cost-plus pricing against the reference index INR rate
  3. Forced minimum: cost-plus at the minimum margin off the primary base cost

Each rung returns only a rate whose margin clears ``min_margin``. Rates are
rounded to 2 decimals; forced rates round up so rounding never eats into
the margin.
"""

import logging
import random
from dataclasses import dataclass
from decimal import ROUND_CEILING, ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Protocol

from pydantic import BaseModel, ConfigDict

from horizonpay.core.errors import InsufficientMarginError
from horizonpay.services.metrics import ServiceMetrics

logger = logging.getLogger(__name__)

RATE_QUANT = Decimal("0.01")
MARGIN_QUANT = Decimal("0.0001")
HUNDRED = Decimal("100")

# Extra margin (as a fraction) added on the forced rungs
REFERENCE_FORCE_EPSILON = Decimal("0.005")
PRIMARY_FORCE_EPSILON = Decimal("0.01")


class RateSource(str, Enum):
    PRIMARY_P2P = "primary_p2p"
    FALLBACK_REFERENCE = "fallback_reference"
    FORCED_MINIMUM = "forced_minimum"


class PrimaryPolicy(str, Enum):
    COMPETITIVE_BAND = "competitive_band"
    COST_PLUS = "cost_plus"


class LowMarginAction(str, Enum):
    FALLBACK = "fallback"
    REJECT = "reject"


class RandomSource(Protocol):
    def random(self) -> float:
        """Return a float in [0, 1)."""
        ...


@dataclass(frozen=True)
class PricingPolicy:
    """Margins (percent), rate band and local-market range for one engine."""

    min_margin: Decimal
    target_margin: Decimal
    band_min: Decimal
    band_max: Decimal
    jitter: Decimal
    local_rate_min: Decimal
    local_rate_max: Decimal
    primary: PrimaryPolicy = PrimaryPolicy.COMPETITIVE_BAND
    low_margin_action: LowMarginAction = LowMarginAction.FALLBACK

    def __post_init__(self):
        if not Decimal("0") <= self.min_margin < HUNDRED:
            raise ValueError("min_margin must be within [0, 100)")
        if not Decimal("0") < self.band_min <= self.band_max:
            raise ValueError("competitive band must be positive and ordered")

    @classmethod
    def from_settings(cls, settings) -> "PricingPolicy":
        return cls(
            min_margin=settings.MIN_PROFIT_MARGIN,
            target_margin=settings.TARGET_PROFIT_MARGIN,
            band_min=settings.COMPETITIVE_BAND_MIN,
            band_max=settings.COMPETITIVE_BAND_MAX,
            jitter=settings.FALLBACK_JITTER,
            local_rate_min=settings.LOCAL_RATE_MIN,
            local_rate_max=settings.LOCAL_RATE_MAX,
            primary=PrimaryPolicy(settings.PRICING_PRIMARY_POLICY),
            low_margin_action=LowMarginAction(settings.PRICING_LOW_MARGIN_ACTION),
        )


class PricingResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    base_cost_per_unit: Decimal
    customer_rate: Decimal
    profit_margin_pct: Decimal
    rate_source: RateSource
    local_rate_min: Decimal
    local_rate_max: Decimal
    savings_vs_local_min: Decimal
    savings_vs_local_max: Decimal
    savings_percent: Decimal

    @property
    def used_reference_fallback(self) -> bool:
        return self.rate_source == RateSource.FALLBACK_REFERENCE

    @property
    def degraded(self) -> bool:
        """True when the rate was forced off the primary cost without a reference."""
        return self.rate_source == RateSource.FORCED_MINIMUM


def profit_margin(rate: Decimal, cost: Decimal) -> Decimal:
    """(rate - cost) / rate, as a percentage."""
    return (rate - cost) / rate * HUNDRED


class PricingEngine:
    """Stateless apart from its random source and the metrics sink."""

    def __init__(
        self,
        policy: PricingPolicy,
        rng: RandomSource | None = None,
        metrics: ServiceMetrics | None = None,
    ):
        self.policy = policy
        self.rng = rng or random.Random()
        self.metrics = metrics

    # --- Helpers ---

    def _uniform(self, low: Decimal, high: Decimal) -> Decimal:
        return low + (high - low) * Decimal(str(self.rng.random()))

    def _cost_plus(self, cost: Decimal) -> Decimal:
        """cost × (1 + target margin) with a bounded jitter, rounded to 2 dp."""
        rate = cost * (1 + self.policy.target_margin / HUNDRED)
        rate += self._uniform(-self.policy.jitter, self.policy.jitter)
        return max(rate.quantize(RATE_QUANT, rounding=ROUND_HALF_UP), RATE_QUANT)

    def _forced(self, cost: Decimal, epsilon: Decimal) -> Decimal:
        """Smallest 2-dp rate at or above cost × (1 + min margin + epsilon) that clears the minimum."""
        min_fraction = self.policy.min_margin / HUNDRED
        rate = (cost * (1 + min_fraction + epsilon)).quantize(RATE_QUANT, rounding=ROUND_CEILING)
        if profit_margin(rate, cost) < self.policy.min_margin:
            rate = (cost / (1 - min_fraction)).quantize(RATE_QUANT, rounding=ROUND_CEILING)
        return rate

    def _primary_candidate(self, cost: Decimal) -> Decimal:
        if self.policy.primary == PrimaryPolicy.COST_PLUS:
            return self._cost_plus(cost)
        return self._uniform(self.policy.band_min, self.policy.band_max).quantize(
            RATE_QUANT, rounding=ROUND_HALF_UP
        )

    def _result(self, cost: Decimal, rate: Decimal, source: RateSource) -> PricingResult:
        savings_min = self.policy.local_rate_min - rate
        savings_max = self.policy.local_rate_max - rate
        savings_percent = savings_min / self.policy.local_rate_min * HUNDRED if savings_min > 0 else Decimal("0")
        return PricingResult(
            base_cost_per_unit=cost,
            customer_rate=rate,
            profit_margin_pct=profit_margin(rate, cost).quantize(MARGIN_QUANT, rounding=ROUND_HALF_UP),
            rate_source=source,
            local_rate_min=self.policy.local_rate_min,
            local_rate_max=self.policy.local_rate_max,
            savings_vs_local_min=savings_min,
            savings_vs_local_max=savings_max,
            savings_percent=savings_percent.quantize(MARGIN_QUANT, rounding=ROUND_HALF_UP),
        )

    def _record_fallback(self, source: RateSource) -> None:
        if self.metrics is None:
            return
        self.metrics.fallbacks.total += 1
        if source == RateSource.FALLBACK_REFERENCE:
            self.metrics.fallbacks.reference_used += 1
        else:
            self.metrics.fallbacks.forced_minimum += 1

    # --- Public API ---

    def calculate_rate(
        self,
        lowest_inr: Decimal,
        ngn_with_markup: Decimal,
        reference_inr: Decimal | None = None,
    ) -> PricingResult:
        """
        Derive the customer rate for one request.

        Args:
            lowest_inr: lowest qualified P2P price, INR per USDT.
            ngn_with_markup: NGN per USDT including the flat markup.
            reference_inr: reference index INR per USDT, if available.

        Raises:
            ValueError: a required rate is missing or not positive.
            InsufficientMarginError: the primary rate misses the minimum
                margin and the policy rejects instead of falling back.
        """
        if lowest_inr is None or lowest_inr <= 0:
            raise ValueError("lowest_inr must be positive")
        if ngn_with_markup is None or ngn_with_markup <= 0:
            raise ValueError("ngn_with_markup must be positive")

        min_margin = self.policy.min_margin
        base_cost = ngn_with_markup / lowest_inr
        rate = self._primary_candidate(base_cost)
        margin = profit_margin(rate, base_cost)

        if margin >= min_margin:
            logger.debug("Primary rate %s accepted (margin %.4f%%)", rate, margin)
            return self._result(base_cost, rate, RateSource.PRIMARY_P2P)

        logger.warning(
            "Primary rate %s below minimum margin (%.4f%% < %s%%), base cost %s",
            rate, margin, min_margin, base_cost,
        )
        if self.policy.low_margin_action == LowMarginAction.REJECT:
            raise InsufficientMarginError(margin.quantize(MARGIN_QUANT), min_margin)

        if reference_inr is not None and reference_inr > 0:
            reference_cost = ngn_with_markup / reference_inr
            rate = self._cost_plus(reference_cost)
            if profit_margin(rate, reference_cost) < min_margin:
                rate = self._forced(reference_cost, REFERENCE_FORCE_EPSILON)
                logger.warning("Forced minimum margin on reference rate: %s", rate)
            logger.info("Reference fallback rate %s (base cost %s)", rate, reference_cost)
            self._record_fallback(RateSource.FALLBACK_REFERENCE)
            return self._result(reference_cost, rate, RateSource.FALLBACK_REFERENCE)

        rate = self._forced(base_cost, PRIMARY_FORCE_EPSILON)
        logger.error(
            "No reference rate available, forced minimum rate %s (base cost %s)", rate, base_cost,
        )
        self._record_fallback(RateSource.FORCED_MINIMUM)
        return self._result(base_cost, rate, RateSource.FORCED_MINIMUM)
