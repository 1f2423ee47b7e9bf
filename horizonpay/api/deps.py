"""
Reusable FastAPI dependencies.

Dependencies:
  - get_client_ip      — caller IP as seen by the trusted proxy, else peer
  - is_admin_caller    — True when a valid admin key is supplied
  - require_admin      — 401 unless a valid admin key is supplied
  - rate_limit         — per-IP requests/minute guard for /api routes (429)
  - get_session_store  — request-scoped SessionStore
"""

import logging
import time

from fastapi import Depends, Request
from redis.exceptions import RedisError
from sqlalchemy.ext.asyncio import AsyncSession

from horizonpay.core.errors import APIError, RateLimitExceededError, UnauthorizedError
from horizonpay.core.security import verify_admin_key
from horizonpay.database import get_db
from horizonpay.services.context import ServiceContext, get_context
from horizonpay.services.session_service import SessionStore

logger = logging.getLogger(__name__)

RATE_LIMIT_KEY = "rate_limit:{ip}:{window}"
RATE_LIMIT_WINDOW_SECONDS = 60


def get_client_ip(request: Request, trusted_hops: int = 1) -> str:
    """
    Client address from ``X-Forwarded-For``, counting *trusted_hops* entries
    in from the right.

    Each trusted proxy appends the address it received the request from, so
    entries left of those are whatever the client chose to send. With no
    trusted proxies the header is ignored.
    """
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded and trusted_hops > 0:
        hops = [hop.strip() for hop in forwarded.split(",") if hop.strip()]
        if hops:
            return hops[-min(trusted_hops, len(hops))]
    return request.client.host if request.client else "unknown"


def _provided_admin_key(request: Request) -> str | None:
    return request.headers.get("x-api-key") or request.query_params.get("apiKey")


# ---------------------------------------------------------------------------
# Admin capability
# ---------------------------------------------------------------------------


async def is_admin_caller(
    request: Request,
    ctx: ServiceContext = Depends(get_context),
) -> bool:
    """Caller tier: True raises the conversion maximum to the elevated limit."""
    return verify_admin_key(_provided_admin_key(request), ctx.settings.ADMIN_API_KEY)


async def require_admin(
    request: Request,
    ctx: ServiceContext = Depends(get_context),
) -> None:
    """
    Require the shared admin key in ``X-API-Key`` or the ``apiKey`` query
    parameter.

    Raises 500 if no admin key is configured and 401 if the supplied key
    is missing or wrong.
    """
    if not ctx.settings.ADMIN_API_KEY:
        raise APIError("Admin API key not configured", 500)
    if not verify_admin_key(_provided_admin_key(request), ctx.settings.ADMIN_API_KEY):
        logger.warning(
            "Rejected admin request from %s to %s",
            get_client_ip(request, ctx.settings.TRUSTED_PROXY_HOPS), request.url.path,
        )
        raise UnauthorizedError()


# ---------------------------------------------------------------------------
# Rate limiting
# ---------------------------------------------------------------------------


async def rate_limit(
    request: Request,
    ctx: ServiceContext = Depends(get_context),
) -> None:
    """Fixed one-minute window counter per client IP in Redis."""
    ip = get_client_ip(request, ctx.settings.TRUSTED_PROXY_HOPS)
    window = int(time.time()) // RATE_LIMIT_WINDOW_SECONDS
    key = RATE_LIMIT_KEY.format(ip=ip, window=window)
    try:
        count = await ctx.redis.incr(key)
        if count == 1:
            await ctx.redis.expire(key, RATE_LIMIT_WINDOW_SECONDS)
    except RedisError as exc:
        logger.error("Rate limiter unavailable: %s", exc)
        return

    if count > ctx.settings.RATE_LIMIT_PER_MINUTE:
        logger.warning("Rate limit exceeded for %s", ip)
        raise RateLimitExceededError()


# ---------------------------------------------------------------------------
# Session store
# ---------------------------------------------------------------------------


async def get_session_store(
    db: AsyncSession = Depends(get_db),
    ctx: ServiceContext = Depends(get_context),
) -> SessionStore:
    return SessionStore(db, ctx.metrics, ctx.settings.SESSION_TTL_SECONDS)
