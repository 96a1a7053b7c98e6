"""FastAPI application entrypoint."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request, Response, status

from tutormarket.core.config import Settings, get_settings
from tutormarket.core.database import close_engine, ping_database
from tutormarket.core.metrics import build_metrics_response, instrument_http_request
from tutormarket.modules.audit.router import router as audit_router
from tutormarket.modules.billing.router import router as billing_router
from tutormarket.modules.booking.router import router as booking_router
from tutormarket.modules.identity.router import router as identity_router
from tutormarket.modules.scheduling.router import router as scheduling_router
from tutormarket.modules.tutors.router import router as tutors_router
from tutormarket.shared.exceptions import register_exception_handlers
from tutormarket.shared.utils import utc_now

settings = get_settings()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI):
    """Application startup and shutdown hooks."""
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format=settings.log_format,
    )
    logger.info(
        "Starting %s (env=%s, idempotency=%s, rate_limit=%s)",
        settings.app_name,
        settings.app_env,
        settings.idempotency_backend,
        settings.payment_rate_limit_backend,
    )
    if settings.stripe_secret_key is None:
        logger.warning("Stripe secret key is not set; payment endpoints will answer 503")

    yield

    logger.info("Shutting down %s", settings.app_name)
    await close_engine()


app = FastAPI(
    title=settings.app_name,
    debug=settings.debug,
    lifespan=lifespan,
)
app.middleware("http")(instrument_http_request)

register_exception_handlers(app)

app.include_router(identity_router, prefix=settings.api_prefix)
app.include_router(tutors_router, prefix=settings.api_prefix)
app.include_router(scheduling_router, prefix=settings.api_prefix)
app.include_router(billing_router, prefix=settings.api_prefix)
app.include_router(booking_router, prefix=settings.api_prefix)
app.include_router(audit_router, prefix=settings.api_prefix)


@app.get("/health")
async def healthcheck() -> dict[str, str]:
    """Liveness check endpoint."""
    return {"status": "ok"}


async def _is_database_ready() -> bool:
    """Return True if DB accepts basic queries."""
    try:
        await ping_database()
        return True
    except Exception:
        logger.exception("Database readiness check failed")
        return False


def _payment_processor_state(current: Settings) -> str:
    if current.stripe_secret_key is None or current.stripe_webhook_secret is None:
        return "unconfigured"
    return "configured"


@app.get("/ready")
async def readiness_check() -> dict[str, str]:
    """Readiness check.

    The database must answer. Processor configuration and the store backends
    are reported; without processor keys the API still serves catalog and
    schedule reads while payment endpoints answer 503.
    """
    if not await _is_database_ready():
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Database is not ready",
        )
    current = get_settings()
    return {
        "status": "ready",
        "database": "ok",
        "payment_processor": _payment_processor_state(current),
        "idempotency_backend": current.idempotency_backend,
        "rate_limit_backend": current.payment_rate_limit_backend,
        "timestamp": utc_now().isoformat(),
    }


@app.get("/metrics", include_in_schema=False)
async def metrics_endpoint(_: Request) -> Response:
    """Prometheus metrics endpoint."""
    return build_metrics_response()
