"""
Admin endpoints.

Session inspection (including decrypted customer details), session
listing and search, and market-data cache controls. Every route requires
the shared admin key.
"""

import logging
from datetime import datetime
from decimal import Decimal

from fastapi import APIRouter, Depends, Query

from horizonpay.api.convert import session_summary
from horizonpay.api.deps import get_session_store
from horizonpay.core.errors import ValidationError
from horizonpay.models.transaction_session import SessionStatus, TransactionSession
from horizonpay.schemas.transaction import SessionDetail, SessionListResponse
from horizonpay.services.context import ServiceContext, get_context
from horizonpay.services.session_service import SessionStore

logger = logging.getLogger(__name__)

router = APIRouter()

MAX_LIST_LIMIT = 500


def session_detail(session: TransactionSession, details: dict | None) -> SessionDetail:
    summary = session_summary(session)
    return SessionDetail(
        **summary.model_dump(),
        profit_margin=session.profit_margin,
        ip_address=session.ip_address,
        user_agent=session.user_agent,
        payment_channel=session.payment_channel,
        paid_amount=session.paid_amount,
        verified_at=session.verified_at,
        failure_reason=session.failure_reason,
        updated_at=session.updated_at,
        details=details,
    )


@router.get("/transaction/{session_id}", response_model=SessionDetail)
async def get_transaction_detail(
    session_id: str,
    store: SessionStore = Depends(get_session_store),
):
    """Full session record with decrypted customer and payout details."""
    session = await store.get(session_id)
    try:
        details = session.get_details()
    except ValueError:
        logger.error("Could not decrypt details for session %s", session_id)
        details = None
    return session_detail(session, details)


@router.get("/transactions", response_model=SessionListResponse)
async def list_transactions(
    status: SessionStatus | None = None,
    date_from: datetime | None = Query(None, alias="from"),
    date_to: datetime | None = Query(None, alias="to"),
    limit: int = Query(50, ge=1, le=MAX_LIST_LIMIT),
    store: SessionStore = Depends(get_session_store),
):
    """Sessions newest first, filtered by status and creation date."""
    sessions = await store.list_recent(
        status=status, date_from=date_from, date_to=date_to, limit=limit,
    )
    items = [session_summary(s) for s in sessions]
    return SessionListResponse(items=items, total=len(items))


@router.get("/transactions/search", response_model=SessionListResponse)
async def search_transactions(
    email: str | None = None,
    phone: str | None = None,
    name: str | None = None,
    min_amount: Decimal | None = Query(None, alias="minAmount"),
    max_amount: Decimal | None = Query(None, alias="maxAmount"),
    limit: int = Query(50, ge=1, le=MAX_LIST_LIMIT),
    store: SessionStore = Depends(get_session_store),
):
    """Search sessions by customer email, phone, name substring or NGN amount range."""
    if not any(v is not None for v in (email, phone, name, min_amount, max_amount)):
        raise ValidationError("At least one search criterion is required")

    matches = await store.search(
        email=email, phone=phone, name=name,
        min_amount=min_amount, max_amount=max_amount, limit=limit,
    )
    items = [session_summary(session) for session, _ in matches]
    return SessionListResponse(items=items, total=len(items))


@router.post("/cache/clear")
async def clear_cache(ctx: ServiceContext = Depends(get_context)):
    """Drop the cached market snapshot; the next request refetches."""
    removed = await ctx.cache.flush()
    return {"success": True, "message": "Cache cleared", "keysRemoved": removed}


@router.get("/cache/stats")
async def cache_stats(ctx: ServiceContext = Depends(get_context)):
    """Snapshot cache hits, misses and remaining TTL."""
    return await ctx.cache.stats()
