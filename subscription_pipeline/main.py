"""FastAPI application entry point and lifecycle management."""

import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from subscription_pipeline import __version__
from subscription_pipeline.config import ConfigurationError, get_config
from subscription_pipeline.logging_config import configure_logging, get_logger
from subscription_pipeline.middleware import ContextMiddleware, RequestLoggingMiddleware
from subscription_pipeline.repositories.event_store import EventNotFoundError
from subscription_pipeline.repositories.subscription_store import SubscriptionNotFoundError

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan context manager.

    Starts the periodic job runner when scheduler.enabled is set and stops it
    on shutdown.
    """
    logger.info("pipeline_starting", version=__version__)

    from subscription_pipeline.services.maintenance import build_job_runner

    runner = None
    try:
        config = get_config()
        if config.scheduler_settings.enabled:
            runner = build_job_runner()
            runner.start()
        else:
            logger.info("job_runner_disabled", message="Call the maintenance API to process the DLQ")

        logger.info(
            "pipeline_started",
            status="ready",
            platforms=[p.value for p in config.pipeline.platforms],
        )
        yield
    finally:
        logger.info("pipeline_shutting_down")
        if runner is not None:
            runner.stop()
        logger.info("pipeline_stopped")


def create_app() -> FastAPI:
    """Create and configure FastAPI application.

    Returns:
        Configured FastAPI application instance
    """
    log_level = os.getenv("LOG_LEVEL", "INFO")
    json_format = os.getenv("LOG_FORMAT", "json").lower() == "json"
    configure_logging(log_level=log_level, json_format=json_format)

    app = FastAPI(
        title="Subscription Event Pipeline",
        description="Idempotent ingestion of subscription lifecycle notifications with dead letter retry",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    include_request_details = os.getenv("LOG_REQUEST_DETAILS", "true").lower() == "true"
    app.add_middleware(RequestLoggingMiddleware, include_request_details=include_request_details)
    app.add_middleware(ContextMiddleware)

    from subscription_pipeline.api.maintenance import router as maintenance_router
    from subscription_pipeline.api.monitoring import router as monitoring_router
    from subscription_pipeline.api.notifications import router as notifications_router

    app.include_router(notifications_router)
    app.include_router(monitoring_router)
    app.include_router(maintenance_router)

    @app.get("/")
    async def root() -> dict[str, str]:
        logger.debug("root_endpoint_called")
        return {
            "service": "subscription-pipeline",
            "status": "running",
            "version": __version__,
        }

    @app.get("/health")
    def health() -> dict:
        """Detailed health check."""
        from subscription_pipeline.repositories.dead_letter_store import get_dead_letter_store
        from subscription_pipeline.repositories.event_store import get_event_store
        from subscription_pipeline.repositories.subscription_store import get_subscription_store
        from subscription_pipeline.services.time_controller import get_time_controller

        dead_letters = get_dead_letter_store()
        next_retry = dead_letters.next_retry_at()
        return {
            "status": "healthy",
            "time": get_time_controller().now().isoformat(),
            "events": get_event_store().get_statistics(),
            "subscriptions": get_subscription_store().count(),
            "dlq_pending": dead_letters.pending_count(),
            "dlq_next_retry": next_retry.isoformat() if next_retry else None,
        }

    @app.exception_handler(EventNotFoundError)
    @app.exception_handler(SubscriptionNotFoundError)
    async def not_found_handler(request: Request, exc: Exception) -> JSONResponse:
        return JSONResponse(status_code=404, content={"error": "not_found", "message": str(exc)})

    @app.exception_handler(ConfigurationError)
    async def configuration_error_handler(request: Request, exc: ConfigurationError) -> JSONResponse:
        logger.error("configuration_error", error=str(exc), path=request.url.path)
        return JSONResponse(
            status_code=500,
            content={"error": "configuration_error", "message": str(exc)},
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Handle uncaught exceptions."""
        logger.error(
            "unhandled_exception",
            error=str(exc),
            error_type=type(exc).__name__,
            path=request.url.path,
            exc_info=True,
        )
        return JSONResponse(
            status_code=500,
            content={
                "error": "internal_server_error",
                "message": "An unexpected error occurred",
            },
        )

    logger.info("app_created", endpoints=len(app.routes))
    return app


app = create_app()
