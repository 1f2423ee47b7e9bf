"""
Error taxonomy shared by the services and the HTTP layer.

``APIError`` and its subclasses carry an HTTP status and a ``details``
mapping that is safe to return to clients. ``FetchError`` and
``NoQualifyingListingsError`` are domain failures raised below the HTTP
layer; the aggregator translates them into ``FatalAggregationError`` or
per-source warnings.
"""

from enum import Enum


class APIError(Exception):
    """Catch-all application error rendered as ``{error, details, type}``."""

    error_type = "api_error"

    def __init__(self, message: str, status_code: int = 500, details: dict | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.details = details or {}


class ValidationError(APIError):
    """Client input is malformed or outside configured limits."""

    error_type = "validation_error"

    def __init__(self, message: str, details: dict | None = None) -> None:
        super().__init__(message, 400, details)


class ExternalAPIError(APIError):
    """An upstream dependency is unavailable or returned unusable data."""

    error_type = "external_api_error"

    def __init__(self, message: str, details: dict | None = None) -> None:
        super().__init__(message, 503, details)


class FatalAggregationError(ExternalAPIError):
    """Market data could not be aggregated because P2P data is unavailable."""


class InsufficientMarginError(APIError):
    """Raised under the strict pricing policy when no rate clears the minimum margin."""

    error_type = "pricing_error"

    def __init__(self, profit_margin, min_margin) -> None:
        super().__init__(
            "Pricing temporarily unavailable. Please try again shortly.",
            503,
            {"profitMargin": str(profit_margin), "minRequired": str(min_margin)},
        )


class UnauthorizedError(APIError):
    error_type = "unauthorized"

    def __init__(self, message: str = "Unauthorized") -> None:
        super().__init__(message, 401)


class RateLimitExceededError(APIError):
    error_type = "rate_limited"

    def __init__(self) -> None:
        super().__init__("Too many requests, please try again later", 429)


class SessionNotFoundError(APIError):
    error_type = "not_found"

    def __init__(self, session_id: str) -> None:
        super().__init__("Session not found", 404, {"sessionId": session_id})


class SessionExpiredError(APIError):
    """The session's rate lock has lapsed; the client must start over."""

    error_type = "session_expired"

    def __init__(self, session_id: str) -> None:
        super().__init__(
            "Session expired. Please restart the conversion to get a fresh rate.",
            410,
            {"sessionId": session_id, "action": "restart"},
        )


class SessionStoreError(APIError):
    """The session could not be durably recorded."""

    error_type = "session_store_error"

    def __init__(self) -> None:
        super().__init__("Transaction session could not be created. Please try again.", 500)


# ---------------------------------------------------------------------------
# Domain failures (not rendered directly)
# ---------------------------------------------------------------------------


class PriceSource(str, Enum):
    SPOT_MARKET = "spot_market"
    REFERENCE_INDEX = "reference_index"
    P2P_ORDER_BOOK = "p2p_order_book"


class FetchError(Exception):
    """A single upstream fetch failed (network, timeout, HTTP status or payload)."""

    def __init__(self, source: PriceSource, message: str, *, transient: bool = False) -> None:
        super().__init__(f"{source.value}: {message}")
        self.source = source
        self.message = message
        self.transient = transient


class NoQualifyingListingsError(Exception):
    """No P2P listing survived the strict or the relaxed quality filter."""

    def __init__(self, message: str, total_ads: int = 0) -> None:
        super().__init__(message)
        self.message = message
        self.total_ads = total_ads
