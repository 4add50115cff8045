# backend/studio_booking/main.py
"""
Studio booking engine API.

Run with ``uvicorn studio_booking.main:app`` from the backend directory.
"""

from contextlib import asynccontextmanager
import logging
from typing import AsyncGenerator, Dict

from fastapi import FastAPI

from .core.config import is_running_tests, settings
from .errors import register_error_handlers
from .routes import bookings, prometheus, sessions, waitlist

API_TITLE = "Studio Booking API"
API_DESCRIPTION = "Booking lifecycle, plan credit allocation and waitlists for class sessions"
API_VERSION = "1.0.0"

# Configure logging
logging.basicConfig(
    level=settings.log_level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def app_lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Handle application startup/shutdown."""
    logger.info("%s starting up...", API_TITLE)
    logger.info(
        "Environment: %s (studio timezone %s, metrics %s)",
        settings.environment,
        settings.studio_timezone,
        "on" if settings.metrics_enabled else "off",
    )
    if is_running_tests():
        logger.info("Running under pytest (test mode active)")
    yield
    logger.info("%s shutting down...", API_TITLE)


app = FastAPI(
    title=API_TITLE,
    description=API_DESCRIPTION,
    version=API_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=app_lifespan,
)
register_error_handlers(app)

app.include_router(bookings.router, prefix="/api/bookings")
app.include_router(sessions.router, prefix="/api/sessions")
app.include_router(waitlist.router, prefix="/api/waitlist")
if settings.metrics_enabled:
    app.include_router(prometheus.router)


@app.get("/health", include_in_schema=False)
def health_check() -> Dict[str, str]:
    return {"status": "healthy", "service": "studio-booking", "version": API_VERSION}
