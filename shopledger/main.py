"""Shopledger API - FastAPI application."""

import time
import traceback
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

import structlog
from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from shopledger import __version__
from shopledger.config import settings
from shopledger.database import async_session_maker, init_db
from shopledger.deps import DbSession
from shopledger.logger import configure_logging, get_logger
from shopledger.routers import imports_router, reconciliation_router
from shopledger.services.import_ledger import ImportBatchLedger

# Initialize logging early
configure_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: init DB and fail batches left processing by a crash."""
    await init_db()
    try:
        async with async_session_maker() as session:
            failed = await ImportBatchLedger().cleanup_stale_batches(session)
        logger.info("Startup stale batch sweep finished", failed_count=failed)
    except SQLAlchemyError as exc:
        logger.warning("Startup stale batch sweep skipped", error=str(exc), error_type=type(exc).__name__)

    logger.info("Application started", version=__version__, environment=settings.environment)
    yield
    logger.info("Application shutting down")


app = FastAPI(
    title="Shopledger API",
    description="Deduplicated report imports and bank reconciliation for online sellers",
    version=__version__,
    lifespan=lifespan,
)


@app.middleware("http")
async def logging_middleware(request: Request, call_next: Any) -> Response:
    """Middleware to inject Request-ID and log request details."""
    request_id = request.headers.get("X-Request-ID", str(uuid4()))

    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(
        request_id=request_id,
        method=request.method,
        path=request.url.path,
    )

    start_time = time.perf_counter()
    try:
        response = await call_next(request)
    except Exception as exc:
        logger.exception(
            "HTTP Request Failed",
            duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
            error=str(exc),
        )
        raise

    logger.info(
        "HTTP Request",
        status_code=response.status_code,
        duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
    )
    response.headers["X-Request-ID"] = request_id
    return response


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Global exception handler to ensure JSON response."""
    if settings.debug:
        detail = str(exc)
        trace = traceback.format_exc()
    else:
        detail = "An internal server error occurred. Please try again later."
        trace = None

    return JSONResponse(
        status_code=500,
        content={
            "detail": detail,
            "trace": trace,
            "request_id": structlog.contextvars.get_contextvars().get("request_id"),
        },
    )


app.include_router(imports_router)
app.include_router(reconciliation_router)


@app.get("/health")
async def health_check(db: DbSession) -> Response:
    """Return 200 when the database answers, 503 otherwise."""
    try:
        await db.execute(text("SELECT 1"))
        database_ok = True
    except SQLAlchemyError as exc:
        logger.error("Health check: database unreachable", error=str(exc), error_type=type(exc).__name__)
        database_ok = False

    return JSONResponse(
        status_code=200 if database_ok else 503,
        content={
            "status": "healthy" if database_ok else "unhealthy",
            "timestamp": datetime.now(UTC).isoformat(),
            "checks": {"database": database_ok},
            "version": __version__,
        },
    )
