# backend/parq/tasks/reconciliation.py
"""
Periodic booking reconciliation.

One cycle applies the clock-driven booking transitions, enforces waitlist
offer deadlines and, every few cycles, audits the availability index
against the booking table. It runs inside the API process (see
``parq.main``) because the index it keeps in step lives in that process.
"""

from datetime import datetime
import logging
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from ..core.availability_index import AvailabilityIndex
from ..core.booking_policy import BookingPolicy
from ..core.timezone_utils import ensure_utc, utc_now
from ..integrations.catalog_client import CatalogClient
from ..integrations.notifier_client import Notifier
from ..services.engine import build_booking_engine

logger = logging.getLogger(__name__)


def run_reconciliation_cycle(
    db: Session,
    index: AvailabilityIndex,
    catalog: CatalogClient,
    notifier: Notifier,
    *,
    now: Optional[datetime] = None,
    check_consistency: bool = False,
    policy: Optional[BookingPolicy] = None,
) -> Dict[str, Any]:
    """Run one reconciliation pass and return what it did."""
    now = ensure_utc(now) if now else utc_now()
    engine = build_booking_engine(db, index, catalog, notifier, policy)

    result: Dict[str, Any] = {
        "now": now.isoformat(),
        "clock": engine.bookings.advance_by_clock(now),
        "waitlist": engine.waitlist.expire_sweep(now),
    }
    if check_consistency:
        faults = engine.bookings.check_index_consistency()
        result["consistency_faults"] = len(faults)
        if faults:
            logger.error(
                "Availability index consistency check found faults",
                extra={"faults": [f.details for f in faults]},
            )
    return result
