"""
In-process metrics sink.

Counters are observability side effects only; nothing reads them to make
a pricing or aggregation decision. One ``ServiceMetrics`` instance lives
on the service context.
"""

from dataclasses import asdict, dataclass, field

from horizonpay.core.errors import PriceSource


@dataclass
class ApiCallStats:
    calls: int = 0
    failures: int = 0
    avg_latency_ms: float = 0.0

    def record(self, latency_ms: float, *, failed: bool = False) -> None:
        """Fold one call into the running average."""
        self.calls += 1
        if failed:
            self.failures += 1
        self.avg_latency_ms += (latency_ms - self.avg_latency_ms) / self.calls


@dataclass
class RequestStats:
    total: int = 0
    success: int = 0
    errors: int = 0


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0


@dataclass
class TransactionStats:
    total: int = 0
    pending: int = 0
    completed: int = 0
    failed: int = 0
    expired: int = 0


@dataclass
class FallbackStats:
    reference_used: int = 0
    forced_minimum: int = 0
    total: int = 0


@dataclass
class ServiceMetrics:
    requests: RequestStats = field(default_factory=RequestStats)
    api: dict[str, ApiCallStats] = field(
        default_factory=lambda: {source.value: ApiCallStats() for source in PriceSource}
    )
    cache: CacheStats = field(default_factory=CacheStats)
    transactions: TransactionStats = field(default_factory=TransactionStats)
    fallbacks: FallbackStats = field(default_factory=FallbackStats)

    def for_source(self, source: PriceSource) -> ApiCallStats:
        return self.api[source.value]

    def record_request(self, status_code: int) -> None:
        self.requests.total += 1
        if status_code < 400:
            self.requests.success += 1
        else:
            self.requests.errors += 1

    def record_session_created(self) -> None:
        self.transactions.total += 1
        self.transactions.pending += 1

    def record_session_closed(self, status: str) -> None:
        """Move one session out of ``pending`` into its terminal bucket."""
        if self.transactions.pending > 0:
            self.transactions.pending -= 1
        if status == "completed":
            self.transactions.completed += 1
        elif status == "failed":
            self.transactions.failed += 1
        elif status == "expired":
            self.transactions.expired += 1

    def as_dict(self) -> dict:
        return asdict(self)
