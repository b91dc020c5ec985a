# backend/parq/services/engine.py
"""
Wiring for the booking engine services.

All services built for one unit of work share a database session and an
event publisher, and the waitlist listens for window releases on that
publisher. Request handlers, the reconciliation worker and the tests all
build their services through ``build_booking_engine``.
"""

from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from ..core.availability_index import AvailabilityIndex
from ..core.booking_policy import BookingPolicy
from ..events.publisher import EventPublisher
from ..integrations.catalog_client import CatalogClient
from ..integrations.notifier_client import Notifier
from .booking_service import BookingService
from .extension_service import ExtensionService
from .issue_service import IssueService
from .waitlist_service import WaitlistService


@dataclass
class BookingEngine:
    bookings: BookingService
    extensions: ExtensionService
    waitlist: WaitlistService
    issues: IssueService
    events: EventPublisher


def build_booking_engine(
    db: Session,
    index: AvailabilityIndex,
    catalog: CatalogClient,
    notifier: Notifier,
    policy: Optional[BookingPolicy] = None,
) -> BookingEngine:
    policy = policy or BookingPolicy.from_settings()
    events = EventPublisher()
    bookings = BookingService(db, index, catalog, events=events, policy=policy)
    waitlist = WaitlistService(db, index, bookings, notifier, events=events, policy=policy)
    waitlist.register()
    return BookingEngine(
        bookings=bookings,
        extensions=ExtensionService(db, index, bookings, events=events, policy=policy),
        waitlist=waitlist,
        issues=IssueService(db, index, bookings, events=events, policy=policy),
        events=events,
    )
