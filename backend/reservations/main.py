"""
Seat Reservation API - Main Application Entry Point

Books specific seats of movie shows without double booking:
- Atomic all-or-nothing seat reservation per show (lock or optimistic CAS)
- Compensating release when a booking record cannot be persisted
- Structured logging with request correlation
- Prometheus metrics and Redis-cached show metadata
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from reservations.core.config import get_settings
from reservations.core.logging import setup_logging, get_logger
from reservations.core.metrics import metrics_endpoint
from reservations.api.errors import register_exception_handlers
from reservations.api.router import api_router
from reservations.api.middleware import RequestLoggingMiddleware
from reservations.services.backend_factory import ReservationBackend, build_backend

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle: startup and shutdown hooks."""
    setup_logging()
    logger = get_logger(__name__)

    logger.info(
        "application_starting",
        app=settings.APP_NAME,
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT,
        ledger_backend=settings.LEDGER_BACKEND,
    )

    if getattr(app.state, "backend", None) is None:
        app.state.backend = build_backend(settings)
    backend: ReservationBackend = app.state.backend
    await backend.start(create_tables=settings.CREATE_TABLES_ON_STARTUP)

    yield

    await backend.stop()
    logger.info("application_shutdown")


def create_app(backend: Optional[ReservationBackend] = None) -> FastAPI:
    """Build the app. A pre-built backend skips building one at startup."""
    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="Seat reservation API with all-or-nothing, double-booking-free bookings",
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )
    app.state.backend = backend

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Restrict in production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware)
    register_exception_handlers(app)
    app.include_router(api_router)

    @app.get("/health", tags=["Health"])
    async def health_check():
        """Health check endpoint for Docker and load balancers."""
        current: ReservationBackend = app.state.backend
        cache_stats = await current.cache.stats() if current and current.cache else {"status": "disabled"}
        return {
            "status": "healthy",
            "version": settings.APP_VERSION,
            "environment": settings.ENVIRONMENT,
            "ledger_backend": current.kind if current else None,
            "cache": cache_stats,
        }

    @app.get("/metrics", include_in_schema=False)
    async def metrics():
        return metrics_endpoint()

    @app.get("/", tags=["Root"])
    async def root():
        return {
            "message": f"Welcome to {settings.APP_NAME}",
            "version": settings.APP_VERSION,
            "docs": "/docs",
        }

    return app


app = create_app()
