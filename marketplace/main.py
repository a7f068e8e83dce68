"""
FastAPI application entry point.

Builds the application with CORS, request-id logging middleware, the error
envelope handlers, the v1 routers and health endpoints. The lifespan owns
the notification dispatcher and the database engine.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from marketplace.api.errors import register_exception_handlers
from marketplace.api.v1 import inventory_router, orders_router, remittances_router
from marketplace.core.config import get_settings
from marketplace.core.logging import (
    clear_context,
    configure_logging,
    get_logger,
    log_performance,
    set_request_id,
)
from marketplace.database.connection import (
    check_database_health,
    close_database_connections,
)
from marketplace.services.notifications.dispatcher import (
    NotificationDispatcher,
    NullDispatcher,
)

configure_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    Application lifespan context manager for startup and shutdown events.

    Args:
        app: FastAPI application instance

    Yields:
        None during application runtime
    """
    settings = get_settings()

    logger.info(
        "Application starting",
        environment=settings.environment,
        debug=settings.debug,
        version=settings.app_version,
    )

    if settings.notification_webhook_url:
        app.state.notifier = NotificationDispatcher()
    else:
        logger.info("No notification webhook configured, notifications are logged")
        app.state.notifier = NullDispatcher()

    yield

    logger.info("Application shutting down")
    with log_performance(logger, "application_shutdown"):
        await app.state.notifier.drain()
        await close_database_connections()


def create_app() -> FastAPI:
    """Build the FastAPI application."""
    settings = get_settings()
    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Order and remittance lifecycle API",
        lifespan=lifespan,
        debug=settings.debug,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID"],
    )

    @app.middleware("http")
    async def request_logging_middleware(request: Request, call_next):
        """
        Set the correlation id, log the request and time it.

        Args:
            request: Incoming HTTP request
            call_next: Next middleware or route handler

        Returns:
            HTTP response with X-Request-ID header
        """
        request_id = set_request_id(request.headers.get("X-Request-ID"))

        logger.info(
            "Request received",
            method=request.method,
            path=request.url.path,
            client_host=request.client.host if request.client else None,
        )

        try:
            with log_performance(
                logger,
                "request_processing",
                method=request.method,
                path=request.url.path,
            ):
                response = await call_next(request)

            response.headers["X-Request-ID"] = request_id
            logger.info(
                "Request completed",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
            )
            return response
        finally:
            clear_context()

    register_exception_handlers(app)

    app.include_router(orders_router, prefix=settings.api_v1_prefix)
    app.include_router(remittances_router, prefix=settings.api_v1_prefix)
    app.include_router(inventory_router, prefix=settings.api_v1_prefix)

    @app.get("/health", tags=["Health"], summary="Health check endpoint")
    async def health_check():
        """
        Report application and database health.

        Returns 503 when the database cannot be reached.
        """
        database_ok = await check_database_health()
        body = {
            "status": "healthy" if database_ok else "unhealthy",
            "service": settings.app_name,
            "version": settings.app_version,
            "environment": settings.environment,
            "database": "healthy" if database_ok else "unhealthy",
        }
        if not database_ok:
            return JSONResponse(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content=body
            )
        return body

    return app


app = create_app()
