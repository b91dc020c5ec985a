# backend/parq/services/waitlist_service.py
"""
Waitlist Service for the Parq booking engine.

Requesters who could not book a window queue for it per space. When a
window is freed the queue is walked in join order, and one pass offers
every waiting entry whose desired window now fits and is disjoint from the
offers already out. This is not a head-of-queue-only policy: an entry
further back for a different slice of the freed gap is offered in the same
pass. The earliest joiner still wins any overlap, and overlapping offers
are never outstanding at the same time, so two requesters cannot race for
the same slice.

Offer deadlines are enforced twice: ``claim`` checks the deadline itself,
and ``expire_sweep`` (run by the reconciliation worker) hands lapsed offers
to the next in line. An entry whose offer lapsed keeps its place in the
queue but sits out (``passed_over``) until another window on the space is
freed.
"""

from datetime import datetime
from decimal import Decimal, InvalidOperation
import logging
from typing import Dict, List, Optional, Tuple, Union

from sqlalchemy.orm import Session

from ..core.availability_index import AvailabilityIndex
from ..core.booking_policy import BookingPolicy
from ..core.exceptions import (
    BusinessRuleException,
    InvalidWindowException,
    NotFoundException,
    OfferExpiredException,
    OfferNotFoundException,
    PriceMismatchException,
    ServiceException,
    SpaceUnavailableException,
    ValidationException,
)
from ..core.timezone_utils import ensure_utc, utc_now
from ..domain.time_window import TimeWindow
from ..events.booking_events import WindowReleased
from ..events.publisher import EventPublisher
from ..integrations.catalog_client import ParkingSpace
from ..integrations.notifier_client import Notification, Notifier, NotifierError
from ..models.booking import Booking
from ..models.waitlist import WaitlistEntry, WaitlistStatus
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory
from .base import BaseService
from .booking_service import BookingService

logger = logging.getLogger(__name__)

OFFER_TEMPLATE = "waitlist_offer"


class WaitlistService(BaseService):
    """FIFO waitlist with exclusive, deadline-bound offers."""

    def __init__(
        self,
        db: Session,
        index: AvailabilityIndex,
        booking_service: BookingService,
        notifier: Notifier,
        events: Optional[EventPublisher] = None,
        policy: Optional[BookingPolicy] = None,
    ):
        super().__init__(db)
        self.index = index
        self.booking_service = booking_service
        self.notifier = notifier
        self.events = events or booking_service.events
        self.policy = policy or booking_service.policy
        self.waitlist_repository = RepositoryFactory.create_waitlist_repository(db)

    def register(self, events: Optional[EventPublisher] = None) -> None:
        """Subscribe to window releases on ``events`` (defaults to the service's publisher)."""
        (events or self.events).register(WindowReleased, self.handle_window_released)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_entry(self, entry_id: str) -> WaitlistEntry:
        entry = self.waitlist_repository.get_fresh(entry_id)
        if entry is None:
            raise NotFoundException(
                f"Waitlist entry {entry_id} not found", details={"entry_id": entry_id}
            )
        return entry

    def list_space_entries(self, space_id: str) -> List[WaitlistEntry]:
        return self.waitlist_repository.list_for_space(space_id)

    # ------------------------------------------------------------------
    # Join / leave
    # ------------------------------------------------------------------

    @BaseService.measure_operation("join_waitlist")
    def join(
        self,
        space_id: str,
        desired_window: TimeWindow,
        max_price: Optional[Union[Decimal, str, int, float]],
        requester_id: str,
        now: Optional[datetime] = None,
    ) -> WaitlistEntry:
        """
        Queue ``requester_id`` for ``desired_window`` on ``space_id``.

        ``max_price`` caps the hourly rate the requester accepts; None means no cap.
        No reservation is made here. If the window happens to be free already,
        the new entry is offered straight away.
        """
        now = ensure_utc(now) if now else utc_now()
        self.booking_service.validate_window(desired_window, now)
        self.booking_service.resolve_space(space_id)
        cap = self._parse_max_price(max_price)

        with self.index.space_lock(space_id):
            with self.transaction():
                entry = self.waitlist_repository.create(
                    space_id=space_id,
                    requester_id=requester_id,
                    desired_start=desired_window.start,
                    desired_end=desired_window.end,
                    max_price=cap,
                    status=WaitlistStatus.WAITING.value,
                    join_seq=self.waitlist_repository.next_join_seq(space_id),
                    passed_over=False,
                    offer_count=0,
                    joined_at=now,
                )

        self.log_operation(
            "join_waitlist", entry_id=entry.id, space_id=space_id, join_seq=entry.join_seq
        )
        self.match_space(space_id, now)
        return self.get_entry(entry.id)

    @staticmethod
    def _parse_max_price(
        max_price: Optional[Union[Decimal, str, int, float]]
    ) -> Optional[Decimal]:
        if max_price is None:
            return None
        try:
            cap = Decimal(str(max_price))
        except InvalidOperation as exc:
            raise ValidationException(
                "Maximum price is not a number", details={"max_price": str(max_price)}
            ) from exc
        if cap < 0:
            raise ValidationException(
                "Maximum price cannot be negative", details={"max_price": str(max_price)}
            )
        return cap

    @BaseService.measure_operation("leave_waitlist")
    def leave(self, entry_id: str, now: Optional[datetime] = None) -> WaitlistEntry:
        """Withdraw an open entry. A live offer it held goes to the next in line."""
        now = ensure_utc(now) if now else utc_now()
        entry = self.get_entry(entry_id)

        with self.index.space_lock(entry.space_id):
            entry = self.get_entry(entry_id)
            previous = entry.waitlist_status
            with self.transaction():
                cancelled = self.waitlist_repository.transition_status(
                    entry_id,
                    [WaitlistStatus.WAITING, WaitlistStatus.OFFERED],
                    WaitlistStatus.CANCELLED,
                    closed_at=now,
                    offer_expires_at=None,
                )
            if cancelled is None:
                raise BusinessRuleException(
                    f"Waitlist entry {entry_id} is already {entry.status}",
                    details={"entry_id": entry_id, "status": entry.status},
                )

        self.log_operation("leave_waitlist", entry_id=entry_id, space_id=cancelled.space_id)
        if previous == WaitlistStatus.OFFERED:
            self.match_space(cancelled.space_id, now)
        return cancelled

    # ------------------------------------------------------------------
    # Matching
    # ------------------------------------------------------------------

    def handle_window_released(self, event: WindowReleased) -> None:
        self.on_window_freed(
            event.space_id, TimeWindow(event.start, event.end), now=event.released_at
        )

    @BaseService.measure_operation("on_window_freed")
    def on_window_freed(
        self, space_id: str, freed_window: TimeWindow, now: Optional[datetime] = None
    ) -> List[WaitlistEntry]:
        """
        Offer the freed stretch of ``space_id`` to the queue.

        Everyone who sat out an earlier offer gets their turn back, then the
        queue is walked in join order against the free gap around
        ``freed_window``.
        """
        now = ensure_utc(now) if now else utc_now()
        return self.match_space(space_id, now, freed_window=freed_window, reset_turns=True)

    def match_space(
        self,
        space_id: str,
        now: datetime,
        freed_window: Optional[TimeWindow] = None,
        reset_turns: bool = False,
    ) -> List[WaitlistEntry]:
        try:
            rate = self.booking_service.resolve_space(space_id).price_per_hour
        except NotFoundException:
            self.logger.warning(
                "Skipping waitlist matching for unlisted space", extra={"space_id": space_id}
            )
            return []

        with self.index.space_lock(space_id):
            with self.transaction():
                if reset_turns:
                    self.waitlist_repository.clear_passed_over(space_id)
                gap: Optional[TimeWindow] = None
                if freed_window is not None:
                    gap = self.index.free_gap(space_id, freed_window)
                offered = self._offer_candidates(space_id, rate, now, gap)

        if offered:
            prometheus_metrics.record_waitlist_event("offered", len(offered))
            self.logger.info(
                "Waitlist offers made",
                extra={"space_id": space_id, "entries": [e.id for e in offered]},
            )
            self._notify_offers(offered)
        return offered

    def _offer_candidates(
        self, space_id: str, rate: Decimal, now: datetime, gap: Optional[TimeWindow]
    ) -> List[WaitlistEntry]:
        # Caller holds the space lock and an open transaction.
        outstanding = [
            e.desired_window
            for e in self.waitlist_repository.list_by_status(space_id, WaitlistStatus.OFFERED)
            if e.offer_is_live(now)
        ]
        earliest_start = now - self.policy.start_grace
        offered: List[WaitlistEntry] = []

        for entry in self.waitlist_repository.list_by_status(space_id, WaitlistStatus.WAITING):
            window = entry.desired_window
            if entry.passed_over or window.start < earliest_start:
                continue
            if gap is not None and not gap.contains(window):
                continue
            if entry.max_price is not None and rate > entry.max_price:
                continue
            if any(window.overlaps(other) for other in outstanding):
                continue
            if self.index.overlaps(space_id, window):
                continue

            updated = self.waitlist_repository.transition_status(
                entry.id,
                [WaitlistStatus.WAITING],
                WaitlistStatus.OFFERED,
                offered_at=now,
                offer_expires_at=now + self.policy.waitlist_offer_ttl,
                offer_count=(entry.offer_count or 0) + 1,
            )
            if updated is None:
                continue
            outstanding.append(window)
            offered.append(updated)
        return offered

    def _notify_offers(self, entries: List[WaitlistEntry]) -> None:
        for entry in entries:
            notification = Notification(
                recipient_id=entry.requester_id,
                template=OFFER_TEMPLATE,
                data={
                    "entry_id": entry.id,
                    "space_id": entry.space_id,
                    "start": entry.desired_start.isoformat(),
                    "end": entry.desired_end.isoformat(),
                    "offer_expires_at": entry.offer_expires_at.isoformat(),
                },
            )
            try:
                self.notifier.send(notification)
            except NotifierError:
                # The offer stands; the sweep still enforces its deadline.
                self.logger.exception(
                    "Failed to send waitlist offer",
                    extra={"entry_id": entry.id, "requester_id": entry.requester_id},
                )

    # ------------------------------------------------------------------
    # Claim
    # ------------------------------------------------------------------

    @BaseService.measure_operation("claim_offer")
    def claim(self, entry_id: str, now: Optional[datetime] = None) -> Booking:
        """
        Turn a live offer into a booking for the entry's desired window.

        Raises:
            OfferNotFoundException: no such entry, or it holds no offer
            OfferExpiredException: the offer deadline has passed
            PriceMismatchException: the hourly rate rose above the entry's cap
            SpaceUnavailableException: the window was taken in the meantime
        """
        now = ensure_utc(now) if now else utc_now()
        entry = self.waitlist_repository.get_fresh(entry_id)
        if entry is None:
            raise OfferNotFoundException(
                f"Waitlist entry {entry_id} not found", details={"entry_id": entry_id}
            )
        space_id = entry.space_id
        # Catalog first; the lock only guards in-process state.
        space: Optional[ParkingSpace]
        try:
            space = self.booking_service.resolve_space(space_id)
        except NotFoundException:
            space = None
        failure: Optional[Exception] = None
        booking: Optional[Booking] = None

        with self.index.space_lock(space_id):
            entry = self.get_entry(entry_id)
            if entry.waitlist_status != WaitlistStatus.OFFERED:
                raise OfferNotFoundException(
                    f"Waitlist entry {entry_id} has no offer to claim",
                    details={"entry_id": entry_id, "status": entry.status},
                )

            if not entry.offer_is_live(now):
                self._requeue(entry_id, passed_over=True)
                prometheus_metrics.record_waitlist_event("expired")
                failure = OfferExpiredException(
                    f"Offer for waitlist entry {entry_id} expired at "
                    f"{entry.offer_expires_at.isoformat()}",
                    details={
                        "entry_id": entry_id,
                        "offer_expires_at": entry.offer_expires_at.isoformat(),
                    },
                )
            else:
                booking, failure = self._book_offer(entry, space, now)

        if failure is not None:
            self.match_space(space_id, now)
            raise failure

        assert booking is not None
        self.log_operation("claim_offer", entry_id=entry_id, booking_id=booking.id)
        return booking

    def _book_offer(
        self, entry: WaitlistEntry, space: Optional[ParkingSpace], now: datetime
    ) -> Tuple[Optional[Booking], Optional[Exception]]:
        # Caller holds the space lock.
        window = entry.desired_window
        try:
            if space is None:
                raise NotFoundException(
                    f"Space {entry.space_id} not found", details={"space_id": entry.space_id}
                )
            if entry.max_price is not None and space.price_per_hour > entry.max_price:
                self._requeue(entry.id, passed_over=False)
                return None, PriceMismatchException(
                    entry.space_id, entry.max_price, space.price_per_hour
                )
            booking = self.booking_service.create_for_space(
                space,
                entry.requester_id,
                window,
                self.booking_service.price_for(space, window),
                now=now,
            )
        except SpaceUnavailableException as exc:
            self._requeue(entry.id, passed_over=False)
            prometheus_metrics.record_waitlist_event("lost_race")
            return None, exc
        except (InvalidWindowException, NotFoundException):
            with self.transaction():
                self.waitlist_repository.transition_status(
                    entry.id,
                    [WaitlistStatus.OFFERED],
                    WaitlistStatus.EXPIRED,
                    closed_at=now,
                    offer_expires_at=None,
                )
            prometheus_metrics.record_waitlist_event("expired")
            raise

        with self.transaction():
            self.waitlist_repository.transition_status(
                entry.id,
                [WaitlistStatus.OFFERED],
                WaitlistStatus.CLAIMED,
                booking_id=booking.id,
                closed_at=now,
            )
        prometheus_metrics.record_waitlist_event("claimed")
        return booking, None

    def _requeue(self, entry_id: str, passed_over: bool) -> Optional[WaitlistEntry]:
        """Send an offered entry back to the queue at its original position."""
        with self.transaction():
            return self.waitlist_repository.transition_status(
                entry_id,
                [WaitlistStatus.OFFERED],
                WaitlistStatus.WAITING,
                passed_over=passed_over,
                offer_expires_at=None,
            )

    # ------------------------------------------------------------------
    # Sweep
    # ------------------------------------------------------------------

    @BaseService.measure_operation("expire_sweep")
    def expire_sweep(self, now: Optional[datetime] = None) -> Dict[str, int]:
        """
        Enforce offer deadlines and retire entries that can no longer be booked.

        Lapsed offers go back to the queue (passed over), waiting entries whose
        desired start is out of reach expire, and every space with waiting
        entries is matched again so the next in line is offered.
        """
        now = ensure_utc(now) if now else utc_now()
        summary = {"offers_expired": 0, "entries_expired": 0, "offered": 0, "errors": 0}

        for entry in self.waitlist_repository.list_lapsed_offers(now):
            with self.index.space_lock(entry.space_id):
                if self._requeue(entry.id, passed_over=True) is not None:
                    summary["offers_expired"] += 1

        for entry in self.waitlist_repository.list_stale_waiting(now - self.policy.start_grace):
            with self.index.space_lock(entry.space_id):
                with self.transaction():
                    expired = self.waitlist_repository.transition_status(
                        entry.id, [WaitlistStatus.WAITING], WaitlistStatus.EXPIRED, closed_at=now
                    )
            if expired is not None:
                summary["entries_expired"] += 1

        if summary["offers_expired"] or summary["entries_expired"]:
            prometheus_metrics.record_waitlist_event(
                "expired", summary["offers_expired"] + summary["entries_expired"]
            )

        for space_id in self.waitlist_repository.spaces_with_waiting():
            try:
                summary["offered"] += len(self.match_space(space_id, now))
            except ServiceException:
                summary["errors"] += 1
                self.logger.exception(
                    "Waitlist matching failed during sweep", extra={"space_id": space_id}
                )

        if any(summary.values()):
            self.logger.info("Waitlist sweep applied", extra={"now": now.isoformat(), **summary})
        return summary
