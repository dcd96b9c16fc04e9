"""FastAPI application for the PineGate API.

Provides the main application instance with routers, middleware and the
lifespan that creates tables and starts the optional job scheduler.
"""

import logging
import sys
import time as _time
from contextlib import asynccontextmanager
from importlib.metadata import version as _pkg_version

from fastapi import FastAPI, Request

# Configure logging to stdout for uvicorn to capture
logging.basicConfig(
    level=logging.INFO,
    format="%(levelname)s:%(name)s:%(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)
logging.getLogger("pinegate").setLevel(logging.INFO)
from fastapi.responses import JSONResponse

from pinegate.api.dependencies import get_app_config, get_vault
from pinegate.api.middleware.auth import require_caller_key, validate_api_keys
from pinegate.api.routes import catalog, connections, grants, jobs
from pinegate.db.connection import init_db
from pinegate.errors import DomainError

logger = logging.getLogger(__name__)

_startup_time: float = 0.0


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup: validate auth config, create tables, start scheduler."""
    global _startup_time

    from pinegate.scheduler import get_scheduler_status, start_scheduler, stop_scheduler

    _startup_time = _time.time()
    validate_api_keys()
    init_db()

    config = get_app_config()
    if config.scheduler.enabled:
        start_scheduler(get_vault(), config)
        logger.info("Scheduler status: %s", get_scheduler_status()["status"])
    else:
        logger.info("Background scheduler disabled (scheduler.enabled=false)")

    yield

    stop_scheduler()


app = FastAPI(
    title="PineGate API",
    description="Automated TradingView invite-only script access for a script marketplace",
    version="0.1.0",
    lifespan=lifespan,
)

# Storefront/admin API keys, when configured.
app.middleware("http")(require_caller_key)


@app.exception_handler(DomainError)
async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    """Handle DomainError exceptions that escape a route."""
    return JSONResponse(
        status_code=exc.http_status,
        content={
            "error": {"code": exc.code, "message": exc.message},
            "remediation": exc.remediation,
        },
    )


app.include_router(grants.router, prefix="/api/v1")
app.include_router(connections.router, prefix="/api/v1")
app.include_router(catalog.router, prefix="/api/v1")
app.include_router(jobs.router, prefix="/api/v1")


@app.get("/health")
def health_check() -> dict:
    """Liveness and basic status."""
    from pinegate.scheduler import get_scheduler_status

    uptime = int(_time.time() - _startup_time) if _startup_time else 0
    try:
        version = _pkg_version("pinegate")
    except Exception:
        version = "unknown"

    return {
        "status": "healthy",
        "version": version,
        "uptime_seconds": uptime,
        "scheduler": get_scheduler_status()["status"],
    }
