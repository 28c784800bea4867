"""
Kalkyl API
FastAPI backend for construction cost calculations: hierarchical budgets,
fixed-fee bid amounts, CO2 tracking, templates and CSV/PDF/XLSX exports.
"""
import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from kalkyl.config import settings
from kalkyl.db import init_db
from kalkyl.services.logging_config import setup_logging
from kalkyl.services.middleware import RequestTimingMiddleware
from kalkyl.services.notifications import NotificationService

setup_logging(level=settings.log_level, json_output=settings.json_logs)
logger = logging.getLogger("kalkyl-api")

_PROCESS_START = time.monotonic()
VERSION = "1.0.0"

if not settings.database_url:
    logger.warning("MISSING env var: DATABASE_URL, running in dev mode")
if not settings.reference_data_url:
    logger.info("Optional env var not set: REFERENCE_DATA_URL")


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    yield


app = FastAPI(
    title="Kalkyl API",
    version=VERSION,
    description="Cost calculations with fixed fee, CO2 budget and exports",
    lifespan=lifespan,
)
app.state.notifications = NotificationService()


# ---------------------------------------------------------------------------
# Security Headers Middleware
# ---------------------------------------------------------------------------
class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Adds standard security headers to every response."""
    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        return response


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Accept", "X-Requested-With", "X-Request-ID"],
    expose_headers=["X-Request-ID", "X-Process-Time"],
)
app.add_middleware(SecurityHeadersMiddleware)
# Timing must be outermost so it wraps all other middleware
app.add_middleware(RequestTimingMiddleware)

# Routers
from kalkyl.api.calculation_routes import router as calculation_router  # noqa: E402
from kalkyl.api.estimate_routes import router as estimate_router  # noqa: E402
from kalkyl.api.template_routes import reference_router, router as template_router  # noqa: E402

app.include_router(calculation_router)
app.include_router(estimate_router)
app.include_router(template_router)
app.include_router(reference_router)


@app.get("/health")
async def health_check():
    return {
        "status": "active",
        "version": VERSION,
        "uptime_seconds": round(time.monotonic() - _PROCESS_START, 1),
        "db_configured": bool(settings.database_url),
        "reference_data_configured": bool(settings.reference_data_url),
    }


@app.get("/api/notifications")
async def list_notifications():
    """Active notices, oldest first. Expired ones are dropped first."""
    notifications: NotificationService = app.state.notifications
    notifications.expire()
    return [n.to_dict() for n in notifications.snapshot()]


@app.delete("/api/notifications/{notification_id}", status_code=204)
async def dismiss_notification(notification_id: int):
    app.state.notifications.dismiss(notification_id)
