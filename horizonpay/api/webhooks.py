"""
Paystack webhook endpoint — receives charge notifications.

Validates the HMAC-SHA512 signature over the raw body, then applies
``charge.success`` events to the session named in the charge metadata
(falling back to a lookup by payment reference). Other events are
acknowledged and ignored.
"""

import json
import logging

from fastapi import APIRouter, Depends, Request

from horizonpay.api.deps import get_session_store
from horizonpay.core.errors import SessionNotFoundError, ValidationError
from horizonpay.services.context import ServiceContext, get_context
from horizonpay.services.payment_service import (
    charge_from_payload,
    settle_charge,
    verify_webhook_signature,
)
from horizonpay.services.session_service import SessionStore

logger = logging.getLogger(__name__)

router = APIRouter()

SIGNATURE_HEADER = "x-paystack-signature"


@router.post("/webhook/paystack")
async def paystack_webhook(
    request: Request,
    ctx: ServiceContext = Depends(get_context),
    store: SessionStore = Depends(get_session_store),
):
    """
    Paystack event webhook.

    No auth — validated by HMAC-SHA512 signature in the
    ``x-paystack-signature`` header.
    """
    body = await request.body()
    signature = request.headers.get(SIGNATURE_HEADER, "")

    if not verify_webhook_signature(body, signature, ctx.settings.PAYSTACK_SECRET_KEY):
        logger.warning("Invalid Paystack webhook signature")
        raise ValidationError("Invalid webhook signature")

    try:
        event = json.loads(body)
    except ValueError:
        raise ValidationError("Invalid webhook payload")

    if event.get("event") != "charge.success":
        logger.debug("Ignoring Paystack event %s", event.get("event"))
        return {"status": "ignored"}

    data = event.get("data") or {}
    charge = charge_from_payload(data)
    session_id = (data.get("metadata") or {}).get("sessionId")

    session = None
    if session_id:
        try:
            session = await store.get(session_id)
        except SessionNotFoundError:
            session = None
    if session is None and charge.reference:
        session = await store.get_by_reference(charge.reference)

    if session is None:
        logger.warning("Webhook charge %s matches no session", charge.reference)
        return {"status": "ignored"}

    changed = await settle_charge(store, session, charge)
    logger.info(
        "Webhook charge %s applied to session %s (status=%s, changed=%s)",
        charge.reference, session.id, session.status.value, changed,
    )
    return {"status": "ok", "sessionStatus": session.status.value}
