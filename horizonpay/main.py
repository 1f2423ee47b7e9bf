"""
HorizonPay — FastAPI application entry point.

Configures the app, middleware, error handlers, and registers all API
routers.
"""

import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from horizonpay.api import admin, convert, payments, rates, webhooks
from horizonpay.api.deps import rate_limit, require_admin
from horizonpay.config import settings
from horizonpay.core.errors import APIError
from horizonpay.core.logging import setup_logging
from horizonpay.core.security import encryption_configured
from horizonpay.services.context import ServiceContext, get_context

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    setup_logging(settings.LOG_LEVEL)

    # Startup: initialize connections
    from horizonpay.database import engine
    from horizonpay.redis_client import redis

    if not encryption_configured():
        raise RuntimeError("FERNET_KEY must be set in production")

    context = ServiceContext.build(settings, redis)
    app.state.context = context
    logger.info("%s %s starting (%s)", settings.APP_NAME, settings.APP_VERSION, settings.APP_ENV)

    yield

    # Shutdown: close connections
    await context.aclose()
    await engine.dispose()
    await redis.aclose()


app = FastAPI(
    title=settings.APP_NAME,
    description="NGN to INR conversion pricing backed by P2P market data.",
    version=settings.APP_VERSION,
    lifespan=lifespan,
)

# --- CORS Middleware ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# --- Request logging / metrics ---
@app.middleware("http")
async def log_requests(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    duration_ms = (time.perf_counter() - started) * 1000

    context = getattr(request.app.state, "context", None)
    if context is not None and request.url.path.startswith("/api/"):
        context.metrics.record_request(response.status_code)

    logger.info(
        "%s %s -> %d (%.1fms)",
        request.method, request.url.path, response.status_code, duration_ms,
    )
    return response


# --- Error handlers ---
@app.exception_handler(APIError)
async def api_error_handler(request: Request, exc: APIError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.message, "details": exc.details, "type": exc.error_type},
    )


def _field_name(loc) -> str:
    parts = [str(p) for p in loc if p not in ("body", "query", "path", "header")]
    return ".".join(parts) or "request"


def _clean_message(msg: str) -> str:
    return msg.removeprefix("Value error, ")


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = [
        {"field": _field_name(err.get("loc", ())), "message": _clean_message(err.get("msg", ""))}
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content={"error": "Invalid input data", "details": {"errors": errors}, "type": "validation_error"},
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error", "details": {}, "type": "api_error"},
    )


# --- Routers ---
api_dependencies = [Depends(rate_limit)]
app.include_router(rates.router, prefix="/api", tags=["Rates"], dependencies=api_dependencies)
app.include_router(convert.router, prefix="/api", tags=["Convert"], dependencies=api_dependencies)
app.include_router(payments.router, prefix="/api", tags=["Payments"], dependencies=api_dependencies)
app.include_router(webhooks.router, prefix="/api", tags=["Webhooks"])
app.include_router(
    admin.router,
    prefix="/api/admin",
    tags=["Admin"],
    dependencies=[Depends(rate_limit), Depends(require_admin)],
)


@app.get("/health")
async def health_check(ctx: ServiceContext = Depends(get_context)):
    """Health check endpoint for load balancers and monitoring."""
    now = datetime.now(timezone.utc)
    return {
        "status": "healthy",
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "uptimeSeconds": round((now - ctx.started_at).total_seconds(), 1),
        "timestamp": now.isoformat(),
    }


@app.get("/ready")
async def readiness_check(ctx: ServiceContext = Depends(get_context)):
    """Ready when a fresh market snapshot can be built."""
    try:
        await ctx.aggregator.get_market_data(use_cache=False)
    except APIError as exc:
        return JSONResponse(status_code=503, content={"status": "not ready", "error": exc.message})
    return {"status": "ready"}


@app.get("/metrics")
async def get_metrics(request: Request, ctx: ServiceContext = Depends(get_context)):
    """Service metrics. Requires the admin key in production."""
    if ctx.settings.is_production:
        await require_admin(request, ctx)

    data = ctx.metrics.as_dict()
    data["cache"].update(await ctx.cache.stats())
    data["uptimeSeconds"] = round((datetime.now(timezone.utc) - ctx.started_at).total_seconds(), 1)
    data["timestamp"] = datetime.now(timezone.utc).isoformat()
    return data
