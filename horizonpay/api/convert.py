"""
Conversion endpoints — quote an NGN amount, lock the rate in a
transaction session, and read the session back.

Convert flow:
  1. Validate body (pydantic) and amount limits for the caller tier
  2. Fraud screening (high risk blocks, medium risk warns)
  3. Market snapshot, customer rate and fees
  4. Persist the session (rate locked) and return the full breakdown
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal

from fastapi import APIRouter, Depends, Request

from horizonpay.api.deps import get_client_ip, get_session_store, is_admin_caller
from horizonpay.api.rates import display
from horizonpay.core.errors import ValidationError
from horizonpay.core.logging import sanitize_for_log
from horizonpay.models.transaction_session import TransactionSession
from horizonpay.schemas.rate import top_traders
from horizonpay.schemas.transaction import (
    Breakdown,
    Comparison,
    ConvertQuery,
    ConvertRequest,
    ConvertResponse,
    HorizonPayOffer,
    RiskFlag,
    SessionSummary,
)
from horizonpay.services.context import ServiceContext, get_context
from horizonpay.services.fraud_service import FraudScreen, has_high_risk
from horizonpay.services.pricing_engine import RateSource
from horizonpay.services.quote_service import ConversionQuote, build_quote
from horizonpay.services.session_service import SessionStore

logger = logging.getLogger(__name__)

router = APIRouter()

RECOMMENDED_TRADERS_SHOWN = 2
REFERENCE_FALLBACK_NOTICE = "Rate calculated using the reference index fallback for optimal pricing"
FORCED_MINIMUM_WARNING = "Rate adjusted to maintain minimum profit margin"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def check_amount_limits(amount: Decimal, ctx: ServiceContext, elevated: bool) -> None:
    """Raise ValidationError when *amount* is outside the caller tier's limits."""
    minimum = ctx.settings.MIN_TRANSACTION_NGN
    maximum = ctx.settings.MAX_TRANSACTION_ELEVATED_NGN if elevated else ctx.settings.MAX_TRANSACTION_NGN

    if amount < minimum:
        raise ValidationError(
            f"Amount must be at least ₦{minimum:,.0f}",
            {"minAmount": str(minimum)},
        )
    if amount > maximum:
        raise ValidationError(
            f"Amount exceeds maximum limit of ₦{maximum:,.0f}",
            {"maxAmount": str(maximum)},
        )


def session_summary(session: TransactionSession) -> SessionSummary:
    return SessionSummary(
        session_id=session.id,
        status=session.status.value,
        amount_ngn=session.amount_ngn,
        gross_inr=session.gross_inr,
        net_inr=session.net_inr,
        locked_rate=session.locked_rate,
        fee_percent=session.fee_percent,
        fee_amount=session.fee_amount,
        rate_source=session.rate_source,
        payment_reference=session.payment_reference,
        created_at=session.created_at,
        expires_at=session.expires_at,
        paid_at=session.paid_at,
    )


def build_convert_response(
    ctx: ServiceContext,
    payload: ConvertRequest,
    quote: ConversionQuote,
    session: TransactionSession,
    warnings: list[RiskFlag],
) -> ConvertResponse:
    pricing = quote.pricing
    fees = quote.fees
    local_min_inr = quote.local_market_inr(pricing.local_rate_min)
    local_max_inr = quote.local_market_inr(pricing.local_rate_max)
    now = datetime.now(timezone.utc)

    return ConvertResponse(
        timestamp=now,
        service=ctx.settings.APP_NAME,
        session_id=session.id,
        expires_at=session.expires_at,
        expires_in_seconds=ctx.settings.SESSION_TTL_SECONDS,
        status=session.status.value,
        query=ConvertQuery(amount=payload.amount, from_currency=payload.from_currency, to_currency=payload.to_currency),
        horizon_pay_offer=HorizonPayOffer(
            you_pay=quote.amount_ngn,
            you_get=fees.net_amount,
            gross_inr=quote.gross_inr,
            exchange_rate=pricing.customer_rate,
            fee_percent=fees.fee_percent,
            fee_amount=fees.fee_amount,
            rate_source=pricing.rate_source.value,
        ),
        comparison=Comparison(
            horizon_pay_total=fees.net_amount,
            local_market_min=local_min_inr,
            local_market_max=local_max_inr,
            extra_vs_local_min=fees.net_amount - local_min_inr,
            extra_vs_local_max=fees.net_amount - local_max_inr,
        ),
        breakdown=Breakdown(
            customer_pays_ngn=quote.amount_ngn,
            usdt_bought=quote.usdt_bought,
            usdt_buy_price_ngn=quote.snapshot.ngn_rate_with_markup,
            usdt_sell_price_inr=quote.snapshot.p2p_lowest,
            gross_inr=quote.gross_inr,
            net_inr=fees.net_amount,
            fee_percent=fees.fee_percent,
            our_cost_per_inr=display(pricing.base_cost_per_unit),
            our_selling_rate=pricing.customer_rate,
            our_profit_margin=pricing.profit_margin_pct,
        ),
        recommended_p2p_traders=top_traders(quote.snapshot, RECOMMENDED_TRADERS_SHOWN),
        notice=REFERENCE_FALLBACK_NOTICE if pricing.rate_source == RateSource.FALLBACK_REFERENCE else None,
        warning=FORCED_MINIMUM_WARNING if pricing.degraded else None,
        warnings=warnings,
    )


# ---------------------------------------------------------------------------
# POST /convert
# ---------------------------------------------------------------------------


@router.post("/convert", response_model=ConvertResponse)
async def convert(
    payload: ConvertRequest,
    request: Request,
    ctx: ServiceContext = Depends(get_context),
    store: SessionStore = Depends(get_session_store),
    elevated: bool = Depends(is_admin_caller),
):
    """
    Quote an NGN to INR conversion and lock the rate for the session TTL.

    Returns the session id and expiry, the offer, a comparison against the
    local market range, the step-by-step breakdown and the top recommended
    P2P traders.
    """
    check_amount_limits(payload.amount, ctx, elevated)

    client_ip = get_client_ip(request, ctx.settings.TRUSTED_PROXY_HOPS)
    details = payload.sensitive_details()

    screen = FraudScreen(ctx.redis, store, ctx.settings.DAILY_LIMIT_NGN)
    risks = await screen.screen(
        amount_ngn=payload.amount,
        email=payload.email,
        phone=payload.phone,
        ip_address=client_ip,
    )
    if has_high_risk(risks):
        logger.warning(
            "High fraud risk detected from %s: %s user=%s",
            client_ip, [r.type for r in risks], sanitize_for_log(details),
        )
        raise ValidationError(
            "Transaction blocked due to security concerns",
            {"risks": [{"type": r.type, "message": r.message, "severity": r.severity}
                       for r in risks if r.severity == "high"]},
        )

    snapshot = await ctx.aggregator.get_market_data()
    quote = build_quote(ctx.pricing_engine, snapshot, payload.amount)

    session = await store.create(
        quote,
        details,
        ip_address=client_ip,
        user_agent=request.headers.get("user-agent"),
    )

    logger.info(
        "Transaction initiated: session=%s amount=%s rate=%s margin=%s source=%s user=%s",
        session.id, payload.amount, quote.pricing.customer_rate,
        quote.pricing.profit_margin_pct, quote.pricing.rate_source.value, sanitize_for_log(details),
    )

    warnings = [RiskFlag(type=r.type, message=r.message, severity=r.severity) for r in risks]
    return build_convert_response(ctx, payload, quote, session, warnings)


# ---------------------------------------------------------------------------
# GET /transaction/{session_id}
# ---------------------------------------------------------------------------


@router.get("/transaction/{session_id}", response_model=SessionSummary)
async def get_transaction(
    session_id: str,
    store: SessionStore = Depends(get_session_store),
):
    """Non-sensitive session summary. 410 once the rate lock has expired."""
    session = await store.get_active(session_id)
    return session_summary(session)
