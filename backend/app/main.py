"""
FastAPI application entry point.

Run with:
    uvicorn backend.app.main:app --reload --port 8000

Or, using HOST / PORT from settings:
    python -m backend.app.main
"""

from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# ── Core infrastructure ──
from backend.app.core.config import settings
from backend.app.core.logging_config import setup_logging, get_logger
from backend.app.core.errors import register_error_handlers
from backend.app.core.middleware import RequestLoggingMiddleware
from backend.app.core.health import HealthStatus, run_health_check

# ── API routers ──
from backend.app.api.deps import ServiceContainer, get_container
from backend.app.api.v1.alerts import router as alert_router
from backend.app.api.v1.incidents import public_router as incident_public_router
from backend.app.api.v1.incidents import router as incident_admin_router

# ── Initialise logging ──
setup_logging()
logger = get_logger(__name__)


# ── Application lifespan (startup / shutdown) ──

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage startup and shutdown events."""
    logger.info(
        "Starting %s v%s [%s] storage=%s",
        settings.APP_NAME, settings.APP_VERSION,
        settings.ENVIRONMENT, settings.STORAGE_BACKEND,
    )
    if settings.STORAGE_BACKEND == "sql":
        from backend.app.core.database import init_db
        await init_db()
    yield
    # Shutdown: close provider clients and DB connections
    if get_container.cache_info().currsize:
        await get_container().aclose()
    if settings.STORAGE_BACKEND == "sql":
        from backend.app.core.database import close_db
        await close_db()
    logger.info("Shutting down %s", settings.APP_NAME)


# ── Create application ──

app = FastAPI(
    title=settings.APP_NAME,
    description=(
        "Community emergency alert core: parish-targeted alert delivery "
        "over email, SMS and push with throttled batching, per-recipient "
        "delivery accounting and idempotent retry of failed deliveries; "
        "crowd-sourced incident reports with community corroboration, "
        "one-time escalation and ODPEM verification."
    ),
    version=settings.APP_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

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
app.include_router(incident_admin_router)
app.include_router(incident_public_router)


# ── Root & health endpoints ──

@app.get("/", tags=["root"])
async def root():
    return {
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "modules": [
            "alert-delivery",
            "delivery-retry",
            "incident-intake",
            "incident-verification",
            "incident-review",
        ],
        "docs": "/docs",
    }


@app.get("/health", tags=["health"])
async def health_check(container: ServiceContainer = Depends(get_container)):
    """Deep health probe — checks all subsystems."""
    report = await run_health_check(container.senders)
    return report.to_dict()


@app.get("/health/live", tags=["health"])
async def liveness():
    """Kubernetes liveness probe — is the process alive?"""
    return {"status": "alive"}


@app.get("/health/ready", tags=["health"])
async def readiness(container: ServiceContainer = Depends(get_container)):
    """Kubernetes readiness probe — can we serve traffic?"""
    report = await run_health_check(container.senders)
    if report.status == HealthStatus.UNHEALTHY:
        return JSONResponse(status_code=503, content=report.to_dict())
    return report.to_dict()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "backend.app.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_config=None,
    )
