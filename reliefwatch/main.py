"""
FastAPI application entry point.

Run with:
    uvicorn reliefwatch.main:app --reload --port 8000

Or from the project root:
    python -m uvicorn reliefwatch.main:app --reload
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# ── Core infrastructure ──
from reliefwatch.core.config import settings
from reliefwatch.core.logging_config import setup_logging, get_logger
from reliefwatch.core.errors import register_error_handlers
from reliefwatch.core.middleware import RequestLoggingMiddleware
from reliefwatch.core.health import HealthStatus, run_health_check
from reliefwatch.services import Services, build_services

# ── API routers ──
from reliefwatch.api.v1.alerts import router as alert_router
from reliefwatch.api.v1.map import router as map_router

# ── Initialise logging ──
setup_logging()
logger = get_logger(__name__)


def create_app(
    services: Optional[Services] = None,
    *,
    polling_enabled: Optional[bool] = None,
) -> FastAPI:
    """Build the application. Pre-built services are used as-is (tests)."""
    polling = settings.POLLING_ENABLED if polling_enabled is None else polling_enabled

    # ── Application lifespan (startup / shutdown) ──

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            "Starting %s v%s [%s]",
            settings.APP_NAME, settings.APP_VERSION, settings.ENVIRONMENT,
        )
        if getattr(app.state, "services", None) is None:
            app.state.services = build_services()
        await app.state.services.start(polling)
        yield
        logger.info("Shutting down %s", settings.APP_NAME)
        await app.state.services.shutdown()

    app = FastAPI(
        title=settings.APP_NAME,
        description=(
            "Live disaster alert monitoring. Polls the emergency alert feed, "
            "detects newly reported alerts, auto-creates fundraising campaigns "
            "for CRITICAL and HIGH alerts, and serves a filterable map of "
            "markers, impact zones and pulse animations."
        ),
        version=settings.APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.services = services
    app.state.polling_enabled = polling

    # ── Middleware stack (outermost first) ──

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS if not settings.CORS_ALLOW_ALL else ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware)

    # ── Error handlers ──
    register_error_handlers(app)

    # ── Register routers ──
    app.include_router(alert_router)
    app.include_router(map_router)

    # ── Root & health endpoints ──

    @app.get("/", tags=["root"])
    async def root():
        return {
            "service": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "environment": settings.ENVIRONMENT,
            "modules": [
                "alert-feed",
                "new-alert-detection",
                "campaign-escalation",
                "alert-filters",
                "map-visualization",
                "alert-stats",
            ],
            "docs": "/docs",
        }

    @app.get("/health", tags=["health"])
    async def health_check(request: Request):
        """Deep health probe — feed, polling, escalation backlog."""
        report = await run_health_check(
            request.app.state.services.store,
            polling_enabled=request.app.state.polling_enabled,
        )
        return report.to_dict()

    @app.get("/health/live", tags=["health"])
    async def liveness():
        """Kubernetes liveness probe — is the process alive?"""
        return {"status": "alive"}

    @app.get("/health/ready", tags=["health"])
    async def readiness(request: Request):
        """Kubernetes readiness probe — can we serve traffic?"""
        report = await run_health_check(
            request.app.state.services.store,
            polling_enabled=request.app.state.polling_enabled,
        )
        if report.status is HealthStatus.UNHEALTHY:
            return JSONResponse(status_code=503, content=report.to_dict())
        return report.to_dict()

    return app


app = create_app()
