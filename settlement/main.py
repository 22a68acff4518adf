from contextlib import asynccontextmanager
import logging
import traceback

from fastapi import FastAPI, Request, HTTPException
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware

from settlement.config import settings
from settlement.api.v1.router import api_router
from settlement.core.exceptions import (
    SettlementError,
    ConfigurationError,
    PolicyValidationError,
    RateValidationError,
    NotFoundError,
    ConcurrencyConflict,
    DuplicateSettlementAttempt,
    InvalidPayoutStateError,
)
from settlement.database import init_db, async_session_factory
from settlement.jobs.scheduler import start_scheduler, shutdown_scheduler

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    """Configure root logging once, from LOG_LEVEL."""
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Startup:
    - Configure logging
    - Create tables (no-op when migrations already ran)
    - Start background settlement scheduler

    Shutdown:
    - Stop the scheduler
    """
    configure_logging()
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")

    await init_db()

    if settings.SETTLEMENT_SCHEDULER_ENABLED:
        start_scheduler()
    else:
        logger.info("Settlement scheduler disabled")

    yield

    shutdown_scheduler()
    logger.info("Shutting down...")


OPENAPI_TAGS = [
    {"name": "Commissions", "description": "Commission ledger: one entry per settled order"},
    {"name": "Commission Rates", "description": "Vendor and category commission rates with validity windows"},
    {"name": "Payout Policies", "description": "Per-vendor payout frequency, minimum and method"},
    {"name": "Payouts", "description": "Payout batches, execution and retries"},
    {"name": "Settlement", "description": "Settlement runs, reconciliation and background jobs"},
    {"name": "Audit Logs", "description": "Immutable trail of settlement state transitions"},
]

API_DESCRIPTION = """
## Marketplace Settlement Engine

Computes the platform's commission on every settled order, batches each
vendor's unsettled commissions into payouts according to the vendor's
payout policy, and pays them out through the transfer gateway with retry
and failure isolation.

### Authentication

All `/api/v1` endpoints require a JWT issued by the platform's auth service:
`Authorization: Bearer <token>`. `POST /api/v1/settlement/run` also accepts
`Bearer <CRON_SECRET>`.

### Error Codes

| Code | Description |
|------|-------------|
| 400 | Invalid policy or rate values |
| 401 | Unauthorized - Invalid/expired token |
| 403 | Forbidden - Role or vendor scope |
| 404 | Not Found |
| 409 | Conflict - concurrent change or invalid payout state |
| 422 | Request validation failed, or no commission rate configured |
"""

# Create FastAPI application
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description=API_DESCRIPTION,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_tags=OPENAPI_TAGS,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API router
app.include_router(api_router, prefix="/api/v1")


# Settlement errors → HTTP
@app.exception_handler(SettlementError)
async def settlement_exception_handler(request: Request, exc: SettlementError):
    if isinstance(exc, NotFoundError):
        status_code = 404
    elif isinstance(exc, (PolicyValidationError, RateValidationError)):
        status_code = 400
    elif isinstance(exc, ConfigurationError):
        status_code = 422
        logger.error(f"Configuration error on {request.method} {request.url.path}: {exc}")
    elif isinstance(exc, (ConcurrencyConflict, InvalidPayoutStateError, DuplicateSettlementAttempt)):
        status_code = 409
    else:
        status_code = 500
        logger.error(f"Unhandled settlement error on {request.method} {request.url.path}: {exc}")

    return JSONResponse(
        status_code=status_code,
        content={"detail": str(exc), "type": type(exc).__name__},
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Log unexpected errors; include the traceback only in DEBUG."""
    if isinstance(exc, HTTPException):
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})

    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    content = {
        "detail": "Internal server error",
        "type": type(exc).__name__,
        "path": str(request.url.path),
        "method": request.method,
    }
    if settings.DEBUG:
        content["error"] = str(exc)
        content["traceback"] = traceback.format_exc()
    return JSONResponse(status_code=500, content=content)


# Health check endpoint
@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint with database validation."""
    from sqlalchemy import text
    from datetime import datetime, timezone

    health_status = {
        "status": "healthy",
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "checks": {
            "database": "unknown"
        }
    }

    # Check database connectivity
    try:
        async with async_session_factory() as session:
            result = await session.execute(text("SELECT 1"))
            result.scalar()
            health_status["checks"]["database"] = "connected"
    except Exception as e:
        health_status["status"] = "unhealthy"
        health_status["checks"]["database"] = f"error: {str(e)}"

    # Return 503 if unhealthy
    if health_status["status"] == "unhealthy":
        return JSONResponse(status_code=503, content=health_status)

    return health_status


@app.get("/", tags=["Root"])
async def root():
    """Root endpoint."""
    return {
        "message": f"Welcome to {settings.APP_NAME}",
        "version": settings.APP_VERSION,
        "docs": "/docs",
        "redoc": "/redoc",
    }
