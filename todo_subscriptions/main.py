"""FastAPI application entry point and lifecycle management."""

import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from todo_subscriptions import __version__
from todo_subscriptions.logging_config import configure_logging_from_env, get_logger
from todo_subscriptions.middleware import ContextMiddleware, RequestLoggingMiddleware

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan context manager.

    Loads settings, starts the daily expiry sweep when enabled, and closes the
    processor client on shutdown.
    """
    from todo_subscriptions.config import get_settings
    from todo_subscriptions.services.expiry_sweeper import ExpirySweeper
    from todo_subscriptions.services.paystack_client import close_paystack_client

    logger.info("service_starting", version=__version__)

    settings = get_settings()
    sweeper = None
    if settings.sweeper.enabled:
        sweeper = ExpirySweeper()
        sweeper.start()
    else:
        logger.info("expiry_sweeper_disabled")

    if not settings.paystack_secret_key:
        logger.warning("paystack_not_configured", message="Payment endpoints will return 400")

    try:
        logger.info("service_started", status="ready")
        yield
    finally:
        logger.info("service_shutting_down")
        if sweeper is not None:
            sweeper.stop()
        close_paystack_client()
        logger.info("service_stopped")


def create_app() -> FastAPI:
    """Create and configure FastAPI application.

    Returns:
        Configured FastAPI application instance
    """
    configure_logging_from_env()

    app = FastAPI(
        title="Todo Subscriptions",
        description="Paid-plan subscriptions for the todo service, backed by Paystack",
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

    from todo_subscriptions.api.subscriptions import router as subscriptions_router

    app.include_router(subscriptions_router)

    @app.get("/")
    async def root() -> dict[str, str]:
        """Service name and status."""
        logger.debug("root_endpoint_called")
        return {
            "service": "todo-subscriptions",
            "status": "running",
            "version": __version__,
        }

    @app.get("/health")
    async def health() -> dict[str, str]:
        """Detailed health check."""
        from todo_subscriptions.config import get_settings
        from todo_subscriptions.repositories.subscription_store import get_subscription_store

        settings = get_settings()
        store = get_subscription_store()
        return {
            "status": "healthy",
            "paystack": "configured" if settings.paystack_secret_key else "not_configured",
            "store": f"{type(store).__name__} ({store.count()} records)",
        }

    @app.exception_handler(Exception)
    async def global_exception_handler(request, exc: Exception) -> JSONResponse:
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
