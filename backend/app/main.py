from contextlib import asynccontextmanager

import sentry_sdk
import structlog
from fastapi import FastAPI, HTTPException, Request
from fastapi.exception_handlers import request_validation_exception_handler
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from redis.exceptions import RedisError
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from app.admin.routes import router as admin_router
from app.auth.routes import router as auth_router
from app.config import settings
from app.database import async_session
from app.exceptions import PersistenceError, ReferralRejected
from app.metrics import REFERRAL_PERSISTENCE_ERRORS
from app.middleware import RequestContextMiddleware, SecurityHeadersMiddleware
from app.referrals.routes import router as referrals_router
from app.services import email_service
from app.utils.rate_limit import limiter

# Configure structlog: JSON in production, console in development
processors = [
    structlog.contextvars.merge_contextvars,
    structlog.processors.add_log_level,
    structlog.processors.TimeStamper(fmt="iso"),
]
if settings.is_production:
    processors.append(structlog.processors.JSONRenderer())
else:
    processors.append(structlog.dev.ConsoleRenderer())

structlog.configure(
    processors=processors,
    wrapper_class=structlog.make_filtering_bound_logger(0),
)

logger = structlog.get_logger()

if settings.SENTRY_DSN:
    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        traces_sample_rate=0.1,
        environment=settings.APP_ENV,
        send_default_pii=False,
    )

REFERRAL_API_PREFIX = "/api/referrals"
ADMIN_REFERRALS_PREFIX = "/admin/referrals"

_PERSISTENCE_MESSAGES = {
    "generate_code": "Failed to generate referral code",
    "redeem": "Failed to apply referral code",
    "mark_completed": "Failed to complete redemption",
}


async def _check_alembic_migration_version() -> None:
    """Log a warning if the database is not at the alembic head. Never raises."""
    try:
        from alembic.config import Config as AlembicConfig
        from alembic.script import ScriptDirectory

        script = ScriptDirectory.from_config(AlembicConfig("alembic.ini"))
        head_rev = script.get_current_head()

        async with async_session() as session:
            conn = await session.connection()

            def _get_current_rev(connection):
                if not connection.dialect.has_table(connection, "alembic_version"):
                    return None
                row = connection.execute(text("SELECT version_num FROM alembic_version")).fetchone()
                return row[0] if row else None

            current_rev = await conn.run_sync(_get_current_rev)

        if current_rev is None:
            logger.warning("alembic_version_check", status="no_alembic_version_table")
        elif current_rev != head_rev:
            logger.warning(
                "alembic_version_mismatch",
                current=current_rev,
                head=head_rev,
                message="Run 'alembic upgrade head'.",
            )
        else:
            logger.info("alembic_version_ok", version=current_rev)
    except Exception as exc:
        logger.warning("alembic_version_check_failed", error=str(exc))


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("lukerobert_startup", env=settings.APP_ENV)
    await _check_alembic_migration_version()
    if not settings.RESEND_API_KEY:
        logger.warning("resend_api_key_not_set", message="Referral emails will be logged but not sent")
    yield
    client = email_service._email_client
    if client is not None and not client.is_closed:
        await client.aclose()
    logger.info("lukerobert_shutdown")


app = FastAPI(
    title="Luke Robert Hair API",
    description="Referral programme back office for Luke Robert Hair",
    version="0.1.0",
    lifespan=lifespan,
    docs_url=None if settings.is_production else "/docs",
    redoc_url=None if settings.is_production else "/redoc",
    openapi_url=None if settings.is_production else "/openapi.json",
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


def _validation_message(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid request"
    first = errors[0]
    loc = [str(part) for part in first.get("loc", ()) if part != "body"]
    field = loc[-1] if loc else "request"
    if first.get("type") == "missing":
        return f"{field} is required"
    if field == "email":
        return "Invalid email format"
    if field == "status":
        return "Invalid status value"
    return f"Invalid {field}"


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Malformed referral requests are a plain 400 with the endpoint's error shape."""
    path = request.url.path
    if not path.startswith((REFERRAL_API_PREFIX, ADMIN_REFERRALS_PREFIX)):
        return await request_validation_exception_handler(request, exc)
    message = _validation_message(exc)
    logger.info("referral_request_invalid", path=path, error=message)
    if path.startswith(ADMIN_REFERRALS_PREFIX):
        return JSONResponse(status_code=400, content={"detail": message})
    if request.url.path.endswith("/validate"):
        return JSONResponse(status_code=400, content={"valid": False, "message": message})
    return JSONResponse(status_code=400, content={"success": False, "error": message})


@app.exception_handler(ReferralRejected)
async def referral_rejected_handler(request: Request, exc: ReferralRejected):
    logger.info("referral_rejected", path=request.url.path, reason=exc.reason.value)
    return JSONResponse(status_code=400, content={"success": False, "error": exc.message})


@app.exception_handler(PersistenceError)
async def persistence_error_handler(request: Request, exc: PersistenceError):
    REFERRAL_PERSISTENCE_ERRORS.labels(operation=exc.operation).inc()
    logger.error("referral_persistence_error", path=request.url.path, operation=exc.operation)
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": _PERSISTENCE_MESSAGES.get(exc.operation, "Internal server error")},
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Catch unhandled exceptions and return a safe 500 response outside development."""
    logger.exception("unhandled_exception", path=request.url.path)
    if settings.APP_ENV != "development":
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )
    raise exc


# Middleware is LIFO: the last middleware added runs first.
if settings.is_production:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH"],
        allow_headers=["Authorization", "Content-Type"],
    )
    if not settings.cors_origins_list:
        logger.warning("cors_origins_empty_in_production", app_env=settings.APP_ENV)
else:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:3000"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

app.add_middleware(SecurityHeadersMiddleware, is_production=settings.is_production)
app.add_middleware(RequestContextMiddleware)


# The instrumentator's default metrics crash on non-numeric Content-Length
def _safe_metrics(info) -> None:
    from prometheus_client import Counter, Histogram
    if not hasattr(_safe_metrics, "_total"):
        _safe_metrics._total = Counter(
            "lukerobert_http_requests_total", "Total HTTP requests",
            ["method", "status", "handler"],
        )
        _safe_metrics._latency = Histogram(
            "lukerobert_http_request_duration_seconds", "Request latency",
            ["method", "handler"],
            buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10),
        )
    _safe_metrics._total.labels(info.method, info.modified_status, info.modified_handler).inc()
    _safe_metrics._latency.labels(info.method, info.modified_handler).observe(info.modified_duration)


Instrumentator(
    should_group_status_codes=True,
    should_ignore_untemplated=True,
    excluded_handlers=["/health", "/metrics"],
).add(_safe_metrics).instrument(app)


@app.get("/metrics", include_in_schema=False)
async def metrics_endpoint(request: Request):
    """Prometheus metrics endpoint (protected by API key)."""
    from prometheus_client import generate_latest
    from starlette.responses import Response as StarletteResponse

    if settings.is_production and not settings.METRICS_API_KEY:
        raise HTTPException(status_code=503, detail="Metrics not available")

    if settings.METRICS_API_KEY:
        api_key = request.headers.get("x-metrics-key", "")
        if api_key != settings.METRICS_API_KEY:
            raise HTTPException(
                status_code=403,
                detail="Invalid metrics API key",
            )

    return StarletteResponse(
        content=generate_latest(),
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )


app.include_router(auth_router, prefix="/auth", tags=["auth"])
app.include_router(referrals_router, prefix=REFERRAL_API_PREFIX, tags=["referrals"])
app.include_router(admin_router)


@app.get("/health")
@limiter.limit("60/minute")
async def health_check(request: Request):
    """Health check with database and Redis connectivity verification."""
    result: dict = {"status": "ok", "database": "connected", "redis": "connected"}

    try:
        async with async_session() as db:
            await db.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError):
        logger.error("health_database_unreachable")
        return JSONResponse(
            status_code=503,
            content={"status": "unhealthy", "database": "disconnected", "redis": "unknown"},
        )

    # Rate limiting falls back to in-memory storage without Redis
    try:
        import redis.asyncio as aioredis
        r = aioredis.from_url(settings.REDIS_URL, socket_connect_timeout=2)
        await r.ping()
        await r.aclose()
    except (RedisError, OSError):
        result["redis"] = "unavailable"

    if settings.is_production:
        db_ok = result["database"] == "connected"
        redis_ok = result["redis"] == "connected"
        return {
            "status": "ok" if (db_ok and redis_ok) else "unhealthy",
            "database": "ok" if db_ok else "error",
            "redis": "ok" if redis_ok else "error",
        }
    return result
