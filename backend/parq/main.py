# backend/parq/main.py
"""
FastAPI application for the Parq booking engine.

Startup creates the tables, rebuilds the availability index from the held
bookings and starts the reconciliation worker thread.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
import contextlib
import logging
import threading
from typing import AsyncGenerator

from fastapi import APIRouter, FastAPI

from .api.dependencies import get_booking_policy, get_catalog_client, get_notifier
from .core.availability_index import get_availability_index
from .core.config import settings
from .core.constants import API_DESCRIPTION, API_TITLE, API_VERSION, BRAND_NAME
from .database import SessionLocal, with_db_retry
from .init_db import init_db
from .routes import prometheus
from .routes.v1 import availability as availability_v1
from .routes.v1 import bookings as bookings_v1
from .routes.v1 import health as health_v1
from .routes.v1 import waitlist as waitlist_v1
from .services.booking_service import BookingService
from .tasks.reconciliation import run_reconciliation_cycle

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level, logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger(__name__)


def _rebuild_availability_index() -> int:
    db = SessionLocal()
    try:
        service = BookingService(db, get_availability_index(), get_catalog_client())
        return with_db_retry("rebuild_index", service.rebuild_index)
    finally:
        db.close()


def _reconciliation_worker_sync(shutdown_event: threading.Event) -> None:
    """Advance the booking clock and sweep waitlist offers in a dedicated thread."""

    interval = max(1, int(settings.reconciliation_interval_seconds))
    check_every = max(1, int(settings.consistency_check_every_cycles))
    cycle = 0

    while not shutdown_event.wait(interval):
        cycle += 1
        db = SessionLocal()
        try:
            result = run_reconciliation_cycle(
                db,
                get_availability_index(),
                get_catalog_client(),
                get_notifier(),
                check_consistency=cycle % check_every == 0,
                policy=get_booking_policy(),
            )
            logger.debug("Reconciliation cycle finished", extra={"cycle": cycle, **result})
        except Exception:
            db.rollback()
            logger.exception("Reconciliation cycle failed", extra={"cycle": cycle})
        finally:
            db.close()


@asynccontextmanager
async def app_lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Handle application startup/shutdown."""
    logger.info(f"{BRAND_NAME} booking engine starting up...")
    logger.info(f"Environment: {settings.environment}")

    init_db()
    loaded = await asyncio.to_thread(_rebuild_availability_index)
    logger.info(f"Availability index loaded with {loaded} reservations")

    worker_task: asyncio.Task[None] | None = None
    worker_stop_event: threading.Event | None = None
    if settings.reconciliation_enabled and not settings.is_testing:
        worker_stop_event = threading.Event()
        worker_task = asyncio.create_task(
            asyncio.to_thread(_reconciliation_worker_sync, worker_stop_event)
        )

    yield

    logger.info(f"{BRAND_NAME} booking engine shutting down...")
    if worker_task is not None:
        if worker_stop_event is not None:
            worker_stop_event.set()
        with contextlib.suppress(BaseException):
            await worker_task


app = FastAPI(
    title=API_TITLE,
    description=API_DESCRIPTION,
    version=API_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=app_lifespan,
)

# Create API v1 router
api_v1 = APIRouter(prefix="/api/v1")
api_v1.include_router(bookings_v1.router, prefix="/bookings")
api_v1.include_router(waitlist_v1.router, prefix="/waitlist")
api_v1.include_router(availability_v1.router, prefix="/availability")
api_v1.include_router(health_v1.router, prefix="/health")

app.include_router(api_v1)
app.include_router(prometheus.router)


@app.get("/health", include_in_schema=False)
def root_health() -> dict[str, str]:
    return {"status": "ok"}
