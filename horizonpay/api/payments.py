"""
Payment endpoints — open a Paystack checkout for a session and move the
session to completed/failed from a gateway verification.

Completion is idempotent: the callback redirect, manual verification and
the webhook may all report the same charge.
"""

import logging
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Query
from fastapi.responses import RedirectResponse

from horizonpay.api.deps import get_session_store
from horizonpay.core.errors import APIError, ValidationError
from horizonpay.models.transaction_session import SessionStatus, TransactionSession
from horizonpay.schemas.transaction import (
    ManualVerifyRequest,
    PaymentInitializeRequest,
    PaymentInitializeResponse,
    PaymentStatusResponse,
)
from horizonpay.services.context import ServiceContext, get_context
from horizonpay.services.payment_service import initialize_payment, settle_charge
from horizonpay.services.session_service import SessionStore

logger = logging.getLogger(__name__)

router = APIRouter()

SUCCESS_PAGE = "/payment-success.html"
FAILED_PAGE = "/payment-failed.html"
ERROR_PAGE = "/payment-error.html"


def _status_response(session: TransactionSession, success: bool = True) -> PaymentStatusResponse:
    return PaymentStatusResponse(
        success=success,
        session_id=session.id,
        status=session.status.value,
        payment_reference=session.payment_reference,
        paid_amount=session.paid_amount,
        paid_at=session.paid_at,
        failure_reason=session.failure_reason,
    )


def _check_reference(session: TransactionSession, reference: str) -> None:
    """The reference must be the session's own checkout reference."""
    if reference != session.payment_reference and not reference.startswith(f"HP-{session.id}-"):
        raise ValidationError("Payment reference does not belong to this session")


async def _verify_and_settle(
    ctx: ServiceContext,
    store: SessionStore,
    session: TransactionSession,
    reference: str,
) -> TransactionSession:
    _check_reference(session, reference)
    charge = await ctx.payment_gateway.verify(reference)
    await settle_charge(store, session, charge)
    return session


# ---------------------------------------------------------------------------
# POST /payment/initialize
# ---------------------------------------------------------------------------


@router.post("/payment/initialize", response_model=PaymentInitializeResponse)
async def initialize(
    payload: PaymentInitializeRequest,
    ctx: ServiceContext = Depends(get_context),
    store: SessionStore = Depends(get_session_store),
):
    """Create a Paystack checkout for a pending session (amount in kobo)."""
    session = await store.get_active(payload.session_id)
    details = session.get_details()

    init, amount_kobo = await initialize_payment(
        store,
        ctx.payment_gateway,
        session,
        email=payload.email or details.get("email") or ctx.settings.PAYSTACK_DEFAULT_EMAIL,
        customer_name=payload.customer_name or details.get("customer_name") or "Anonymous",
        callback_url=ctx.settings.PAYSTACK_CALLBACK_URL,
    )
    return PaymentInitializeResponse(
        session_id=session.id,
        reference=init.reference,
        authorization_url=init.authorization_url,
        access_code=init.access_code,
        amount_kobo=amount_kobo,
    )


# ---------------------------------------------------------------------------
# GET /payment/verify — gateway callback redirect
# ---------------------------------------------------------------------------


@router.get("/payment/verify")
async def verify_redirect(
    reference: str = Query(...),
    session_id: str = Query(..., alias="session"),
    ctx: ServiceContext = Depends(get_context),
    store: SessionStore = Depends(get_session_store),
):
    """Verify the charge the customer returned from and redirect to a result page."""
    try:
        session = await store.get(session_id)
        await _verify_and_settle(ctx, store, session, reference)
    except APIError as exc:
        logger.error("Payment verification error for %s: %s", reference, exc.message)
        return RedirectResponse(f"{ERROR_PAGE}?{urlencode({'error': exc.message})}", status_code=302)

    query = {"session": session.id, "ref": reference}
    if session.status == SessionStatus.COMPLETED:
        return RedirectResponse(f"{SUCCESS_PAGE}?{urlencode(query)}", status_code=302)

    query["reason"] = session.failure_reason or session.status.value
    return RedirectResponse(f"{FAILED_PAGE}?{urlencode(query)}", status_code=302)


# ---------------------------------------------------------------------------
# POST /payment/verify-manual
# ---------------------------------------------------------------------------


@router.post("/payment/verify-manual", response_model=PaymentStatusResponse)
async def verify_manual(
    payload: ManualVerifyRequest,
    ctx: ServiceContext = Depends(get_context),
    store: SessionStore = Depends(get_session_store),
):
    """Verify a session's charge on demand, e.g. after a missed callback."""
    session = await store.get(payload.session_id)
    reference = payload.reference or session.payment_reference
    if not reference:
        raise ValidationError("Payment reference required")

    logger.info("Manual verification requested for %s (%s)", session.id, reference)
    await _verify_and_settle(ctx, store, session, reference)
    return _status_response(session, success=session.status == SessionStatus.COMPLETED)


# ---------------------------------------------------------------------------
# GET /payment/status/{session_id}
# ---------------------------------------------------------------------------


@router.get("/payment/status/{session_id}", response_model=PaymentStatusResponse)
async def payment_status(
    session_id: str,
    store: SessionStore = Depends(get_session_store),
):
    """Polling endpoint for the session's payment state."""
    session = await store.get(session_id)
    return _status_response(session)
