"""FastAPI application factory.

Creates the app with logging middleware, metrics middleware, CORS, Sentry,
lifespan events for database initialization, and the v1 API router.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from collections.abc import AsyncGenerator
from datetime import timedelta

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.requests import Request
from fastapi.responses import Response

from src.autosettle.config import get_settings
from src.autosettle.core.database import close_db, get_session, init_db
from src.autosettle.core.monitoring import MetricsMiddleware, get_metrics_response, init_sentry
from src.autosettle.api.middleware.logging import LoggingMiddleware, configure_structlog
from src.autosettle.api.v1.router import router as v1_router
from src.autosettle.deals.next_action import NextActionResolver
from src.autosettle.deals.repository import DealRepository


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: init DB and Sentry on startup, close on shutdown."""
    log = structlog.get_logger(__name__)
    settings = get_settings()
    configure_structlog()
    await init_db()

    # Initialize Sentry if DSN is configured
    if settings.SENTRY_DSN:
        init_sentry(dsn=settings.SENTRY_DSN, environment=settings.ENVIRONMENT.value)

    # ── Deal Desk ────────────────────────────────────────────────────────
    app.state.deal_repository = DealRepository(session_factory=get_session)
    app.state.next_action_resolver = NextActionResolver(
        upcoming_window=timedelta(days=settings.UPCOMING_PAYMENT_WINDOW_DAYS),
    )
    log.info(
        "deal_desk_initialized",
        upcoming_window_days=settings.UPCOMING_PAYMENT_WINDOW_DAYS,
    )

    yield

    await close_db()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Autosettle API",
        version="0.1.0",
        description="Deal desk: quotes, settlements and next actions for service deals",
        lifespan=lifespan,
    )

    # Middleware is added in reverse order (last added = outermost)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.get_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Logging middleware (logs every request with timing)
    app.add_middleware(LoggingMiddleware)

    # Metrics middleware (outermost)
    app.add_middleware(MetricsMiddleware)

    app.include_router(v1_router)

    @app.get("/metrics", include_in_schema=False)
    async def metrics(request: Request) -> Response:
        """Prometheus metrics endpoint."""
        return get_metrics_response()

    return app


# Module-level app for uvicorn
app = create_app()
