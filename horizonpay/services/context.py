"""
Service context — the process-wide collaborators built once at startup.

Holds settings, the Redis client, the metrics sink, the shared httpx
client and the services built on them. Route handlers receive it through
the ``get_context`` dependency; tests override that dependency with a
context built on fakes.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

import httpx
from fastapi import Request

from horizonpay.config import Settings
from horizonpay.services.fetchers import BROWSER_USER_AGENT
from horizonpay.services.market_data import MarketDataAggregator
from horizonpay.services.metrics import ServiceMetrics
from horizonpay.services.payment_service import PaymentGateway, build_payment_gateway
from horizonpay.services.pricing_engine import PricingEngine, PricingPolicy, RandomSource

logger = logging.getLogger(__name__)


@dataclass
class ServiceContext:
    settings: Settings
    redis: object
    metrics: ServiceMetrics
    http_client: httpx.AsyncClient
    aggregator: MarketDataAggregator
    pricing_engine: PricingEngine
    payment_gateway: PaymentGateway
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def cache(self):
        return self.aggregator.cache

    @classmethod
    def build(
        cls,
        settings: Settings,
        redis,
        *,
        http_client: httpx.AsyncClient | None = None,
        rng: RandomSource | None = None,
        payment_gateway: PaymentGateway | None = None,
    ) -> "ServiceContext":
        metrics = ServiceMetrics()
        client = http_client or httpx.AsyncClient(
            timeout=settings.UPSTREAM_TIMEOUT_SECONDS,
            headers={"User-Agent": BROWSER_USER_AGENT},
        )
        return cls(
            settings=settings,
            redis=redis,
            metrics=metrics,
            http_client=client,
            aggregator=MarketDataAggregator.from_settings(settings, client, redis, metrics),
            pricing_engine=PricingEngine(PricingPolicy.from_settings(settings), rng=rng, metrics=metrics),
            payment_gateway=payment_gateway or build_payment_gateway(settings, client),
        )

    async def aclose(self) -> None:
        await self.http_client.aclose()


def get_context(request: Request) -> ServiceContext:
    """FastAPI dependency that provides the service context."""
    return request.app.state.context
