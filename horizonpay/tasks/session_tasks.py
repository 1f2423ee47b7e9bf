"""
Session Celery tasks — expire pending sessions whose rate lock has lapsed.

Reads also expire sessions lazily; this sweep keeps the table honest for
sessions nobody reads again. Sessions already in payment_initiated are
left alone so a late webhook can still settle them.
"""

import asyncio
import logging
from datetime import datetime, timezone

from horizonpay.config import settings
from horizonpay.services.metrics import ServiceMetrics
from horizonpay.tasks.celery_app import celery_app

logger = logging.getLogger(__name__)


async def _expire_stale_sessions_async(now: datetime | None = None) -> dict:
    """
    Async inner function that expires stale PENDING sessions.

    Uses async_session() directly (not FastAPI deps — Celery runs
    outside request lifecycle).
    """
    from horizonpay.database import async_session
    from horizonpay.services.session_service import SessionStore

    now = now or datetime.now(timezone.utc)
    async with async_session() as db:
        store = SessionStore(db, ServiceMetrics(), settings.SESSION_TTL_SECONDS)
        expired = await store.expire_stale(now)

    return {"expired_count": expired, "cutoff": now.isoformat()}


@celery_app.task(name="horizonpay.tasks.session_tasks.expire_stale_sessions")
def expire_stale_sessions():
    """
    Expire PENDING sessions past their expires_at.

    Celery tasks are synchronous, so we run the async function
    in a fresh event loop.
    """
    logger.info("Starting stale session sweep")
    loop = asyncio.new_event_loop()
    try:
        result = loop.run_until_complete(_expire_stale_sessions_async())
        logger.info("Session sweep completed: %d sessions expired", result["expired_count"])
        return result
    except Exception:
        logger.exception("Stale session sweep failed")
        raise
    finally:
        loop.close()
