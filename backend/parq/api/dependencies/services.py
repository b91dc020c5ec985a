# backend/parq/api/dependencies/services.py
"""
Service layer dependencies for dependency injection.

Every request gets one ``BookingEngine`` (FastAPI caches a dependency per
request), so the booking, extension, waitlist and issue services of a
request share a session and an event publisher.
"""

from functools import lru_cache
import logging

from fastapi import Depends
from sqlalchemy.orm import Session

from ...core.availability_index import AvailabilityIndex, get_availability_index
from ...core.booking_policy import BookingPolicy
from ...core.config import settings
from ...database import get_db
from ...integrations import CatalogClient, FakeCatalogClient, FakeNotifierClient, Notifier
from ...services.booking_service import BookingService
from ...services.engine import BookingEngine, build_booking_engine
from ...services.extension_service import ExtensionService
from ...services.issue_service import IssueService
from ...services.waitlist_service import WaitlistService
from ...tasks.notification_tasks import QueuedNotifier

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_catalog_client() -> CatalogClient:
    """Provide the listings catalog client (in-memory fake when configured)."""
    use_fake = bool(settings.use_fake_integrations)
    logger.info(
        "Catalog client selection",
        extra={"environment": settings.environment, "use_fake": use_fake},
    )
    if use_fake:
        return FakeCatalogClient()
    return CatalogClient(
        base_url=settings.catalog_base_url, timeout=settings.integrations_timeout_seconds
    )


@lru_cache(maxsize=1)
def get_notifier() -> Notifier:
    """Queue notifications through Celery, or record them in memory when faked."""
    if settings.use_fake_integrations:
        return FakeNotifierClient()
    return QueuedNotifier()


@lru_cache(maxsize=1)
def get_booking_policy() -> BookingPolicy:
    return BookingPolicy.from_settings()


def get_availability_index_dep() -> AvailabilityIndex:
    return get_availability_index()


def get_booking_engine(
    db: Session = Depends(get_db),
    index: AvailabilityIndex = Depends(get_availability_index_dep),
    catalog: CatalogClient = Depends(get_catalog_client),
    notifier: Notifier = Depends(get_notifier),
    policy: BookingPolicy = Depends(get_booking_policy),
) -> BookingEngine:
    return build_booking_engine(db, index, catalog, notifier, policy)


def get_booking_service(engine: BookingEngine = Depends(get_booking_engine)) -> BookingService:
    return engine.bookings


def get_extension_service(
    engine: BookingEngine = Depends(get_booking_engine),
) -> ExtensionService:
    return engine.extensions


def get_waitlist_service(engine: BookingEngine = Depends(get_booking_engine)) -> WaitlistService:
    return engine.waitlist


def get_issue_service(engine: BookingEngine = Depends(get_booking_engine)) -> IssueService:
    return engine.issues
