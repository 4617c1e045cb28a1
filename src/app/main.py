"""
FastAPI application entry point.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.calls.sweeper import StuckCallSweeper, SweepPolicy, schedule_sweep
from app.config import Settings, get_settings
from app.extraction.llm.factory import close_llm_gateway
from app.extraction.pipeline import CallAnalyzer
from app.jobs.queue import EXTRACTION_QUEUE, STUCK_CALL_QUEUE, TRANSCRIPT_QUEUE, WEBHOOK_QUEUE
from app.jobs.worker import JobHandler, WorkerPool, WorkerPoolConfig
from app.shared.database import get_database_manager
from app.shared.exceptions import (
    AppError,
    NotFoundError,
    ValidationError,
    WebhookAuthenticationError,
    WebhookPayloadError,
)
from app.shared.logging import get_logger, setup_logging
from app.telephony.factory import close_voice_providers
from app.transcripts.scheduler import TranscriptPoller
from app.webhooks.handler import WebhookHandler
from app.webhooks.router import router as webhooks_router

# Register every model on Base.metadata
import app.appointments.models  # noqa: F401
import app.campaigns.models  # noqa: F401
import app.jobs.models  # noqa: F401
import app.leads.models  # noqa: F401
import app.tenants.models  # noqa: F401
import app.webhooks.models  # noqa: F401

logger = get_logger(__name__)


def build_worker_pools(settings: Settings) -> list[WorkerPool]:
    """One bounded pool per queue."""
    db_manager = get_database_manager()
    handlers: list[tuple[str, int, JobHandler]] = [
        (WEBHOOK_QUEUE, settings.webhook_worker_concurrency, WebhookHandler(db_manager)),
        (EXTRACTION_QUEUE, settings.extraction_worker_concurrency, CallAnalyzer(db_manager)),
        (TRANSCRIPT_QUEUE, settings.transcript_worker_concurrency, TranscriptPoller(db_manager)),
        (STUCK_CALL_QUEUE, 1, StuckCallSweeper(db_manager)),
    ]
    return [
        WorkerPool(
            WorkerPoolConfig(
                queue=queue,
                concurrency=concurrency,
                poll_interval_seconds=settings.worker_poll_interval_seconds,
                stale_after_seconds=settings.job_stale_after_seconds,
            ),
            handler,
            db_manager=db_manager,
        )
        for queue, concurrency, handler in handlers
    ]


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    setup_logging()
    settings = get_settings()
    db_manager = get_database_manager()

    logger.info("Application starting", extra={"env": settings.app_env})

    if not settings.is_production:
        await db_manager.create_tables()

    pools: list[WorkerPool] = []
    if settings.workers_enabled:
        async with db_manager.session() as session:
            await schedule_sweep(session, SweepPolicy.from_settings(settings), delay_seconds=0)
        pools = build_worker_pools(settings)
        for pool in pools:
            await pool.start()
    app.state.worker_pools = pools

    yield

    logger.info("Shutting down application")

    for pool in pools:
        await pool.stop()

    await close_voice_providers()
    await close_llm_gateway()
    await db_manager.close()
    logger.info("Application shutdown complete")


def _error_response(status_code: int, exc: AppError) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"detail": {"code": exc.error_code, "message": exc.message}},
    )


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Voice Call Pipeline API",
        description="Voice provider webhook ingestion and call lifecycle reconciliation",
        version="0.1.0",
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
    )

    # Map domain exceptions to HTTP responses
    @app.exception_handler(NotFoundError)
    async def _not_found(_: Request, exc: NotFoundError) -> JSONResponse:
        return _error_response(status.HTTP_404_NOT_FOUND, exc)

    @app.exception_handler(ValidationError)
    async def _validation(_: Request, exc: ValidationError) -> JSONResponse:
        return _error_response(status.HTTP_400_BAD_REQUEST, exc)

    @app.exception_handler(WebhookPayloadError)
    async def _bad_payload(_: Request, exc: WebhookPayloadError) -> JSONResponse:
        logger.warning("Webhook rejected: unparseable body", extra={"error": exc.message})
        return _error_response(status.HTTP_400_BAD_REQUEST, exc)

    @app.exception_handler(WebhookAuthenticationError)
    async def _unauthorized(_: Request, exc: WebhookAuthenticationError) -> JSONResponse:
        return _error_response(status.HTTP_401_UNAUTHORIZED, exc)

    # Request validation (FastAPI/Pydantic) -> consistent 422 payload
    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request,
        exc: RequestValidationError,
    ) -> JSONResponse:
        errors = []
        for error in exc.errors():
            field = ".".join(str(loc) for loc in error["loc"])
            errors.append(
                {
                    "field": field,
                    "message": error["msg"],
                    "type": error["type"],
                }
            )
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={
                "detail": {
                    "code": "VALIDATION_ERROR",
                    "message": "Request validation failed",
                    "errors": errors,
                }
            },
        )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(webhooks_router)

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        return {"status": "healthy"}

    return app


app = create_app()
