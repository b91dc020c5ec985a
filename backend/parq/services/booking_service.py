# backend/parq/services/booking_service.py
"""
Booking Service for the Parq booking engine.

Owns the booking lifecycle: creation against the availability index,
payment confirmation, cancellation with refunds, and the clock-driven
transitions (confirmed -> active -> completed).

Every reservation-affecting step for a space runs under that space's lock
from the availability index. Index and table move together:
- create reserves in the index first, then commits the row; a failed
  commit rolls the reservation back
- cancel/complete commit the new status first, then release the window

Events (and through them the waitlist) are published only after the space
lock has been released.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, Union

from sqlalchemy.orm import Session

from ..core.availability_index import AvailabilityIndex
from ..core.booking_policy import BookingPolicy, quantize_money
from ..core.enums import ActorRole
from ..core.exceptions import (
    ConsistencyFault,
    InvalidTransitionException,
    InvalidWindowException,
    NotCancellableException,
    NotFoundException,
    PriceMismatchException,
    RepositoryException,
    ServiceException,
    ValidationException,
)
from ..core.timezone_utils import ensure_utc, utc_now
from ..core.ulid_helper import generate_ulid
from ..domain.booking_transitions import assert_booking_transition
from ..domain.time_window import TimeWindow
from ..events.booking_events import (
    BookingCancelled,
    BookingCompleted,
    BookingCreated,
    WindowReleased,
)
from ..events.publisher import EventPublisher
from ..integrations.catalog_client import CatalogClient, CatalogError, ParkingSpace
from ..models.booking import Booking, BookingStatus
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory
from .base import BaseService
from .refund_policy_engine import RefundPolicyEngine, RefundPolicyResult

logger = logging.getLogger(__name__)

CANCELLABLE_BY_ANYONE = (BookingStatus.PENDING, BookingStatus.CONFIRMED)
CANCELLABLE_FOR_CAUSE = (BookingStatus.PENDING, BookingStatus.CONFIRMED, BookingStatus.ACTIVE)

ClockStep = Callable[[str, datetime, Dict[str, int], List[Any]], None]


@dataclass
class CancellationResult:
    booking: Booking
    refund: RefundPolicyResult


class BookingService(BaseService):
    """
    Service layer for booking lifecycle operations.
    """

    def __init__(
        self,
        db: Session,
        index: AvailabilityIndex,
        catalog: CatalogClient,
        events: Optional[EventPublisher] = None,
        policy: Optional[BookingPolicy] = None,
    ):
        super().__init__(db)
        self.index = index
        self.catalog = catalog
        self.events = events or EventPublisher()
        self.policy = policy or BookingPolicy()
        self.refund_policy = RefundPolicyEngine(self.policy)
        self.booking_repository = RepositoryFactory.create_booking_repository(db)

    # ------------------------------------------------------------------
    # Lookups and pricing
    # ------------------------------------------------------------------

    def get_booking(self, booking_id: str) -> Booking:
        booking = self.booking_repository.get_fresh(booking_id)
        if booking is None:
            raise NotFoundException(
                f"Booking {booking_id} not found", details={"booking_id": booking_id}
            )
        return booking

    def list_space_bookings(
        self, space_id: str, statuses: Optional[Iterable[BookingStatus]] = None
    ) -> List[Booking]:
        return self.booking_repository.list_for_space(space_id, statuses)

    def list_renter_bookings(self, renter_id: str, limit: Optional[int] = None) -> List[Booking]:
        return self.booking_repository.list_for_renter(renter_id, limit)

    def list_host_bookings(self, host_id: str, limit: Optional[int] = None) -> List[Booking]:
        """Bookings across the host's spaces, newest first."""
        return self.booking_repository.list_for_host(host_id, limit)

    def resolve_space(self, space_id: str) -> ParkingSpace:
        try:
            space = self.catalog.get_space(space_id)
        except CatalogError as exc:
            self.logger.error(f"Catalog lookup failed for space {space_id}: {exc}")
            raise ServiceException(
                "Space catalog is unavailable", details={"space_id": space_id}
            ) from exc
        if space is None:
            raise NotFoundException(f"Space {space_id} not found", details={"space_id": space_id})
        return space

    def price_for(self, space: ParkingSpace, window: TimeWindow) -> Decimal:
        return quantize_money(window.hours * space.price_per_hour)

    def quote(self, space_id: str, window: TimeWindow) -> Decimal:
        """Server-side price for booking ``window`` on ``space_id``."""
        return self.price_for(self.resolve_space(space_id), window)

    def is_available(self, space_id: str, window: TimeWindow) -> bool:
        return not self.index.overlaps(space_id, window)

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def validate_window(self, window: TimeWindow, now: datetime) -> None:
        if window.start < now - self.policy.start_grace:
            raise InvalidWindowException(
                "Booking cannot start in the past",
                details={"start": window.start.isoformat(), "now": now.isoformat()},
            )
        if window.duration > self.policy.max_duration:
            raise InvalidWindowException(
                f"Booking cannot be longer than {self.policy.max_duration}",
                details=window.to_dict(),
            )

    @BaseService.measure_operation("create_booking")
    def create(
        self,
        space_id: str,
        renter_id: str,
        window: TimeWindow,
        expected_price: Union[Decimal, str, int, float],
        *,
        payment_confirmed: bool = True,
        now: Optional[datetime] = None,
    ) -> Booking:
        """
        Reserve ``window`` on ``space_id`` for ``renter_id``.

        The booking starts ``confirmed``, or ``pending`` when the payment
        signal arrives later through ``confirm_payment``.

        Raises:
            InvalidWindowException: window in the past or too long
            NotFoundException: space is not listed
            PriceMismatchException: client price disagrees with the server price
            SpaceUnavailableException: window overlaps a held booking
        """
        now = ensure_utc(now) if now else utc_now()
        self.validate_window(window, now)

        space = self.resolve_space(space_id)
        return self.create_for_space(
            space,
            renter_id,
            window,
            expected_price,
            payment_confirmed=payment_confirmed,
            now=now,
        )

    def create_for_space(
        self,
        space: ParkingSpace,
        renter_id: str,
        window: TimeWindow,
        expected_price: Union[Decimal, str, int, float],
        *,
        payment_confirmed: bool = True,
        now: Optional[datetime] = None,
    ) -> Booking:
        """
        ``create`` for a space already read from the catalog.

        Makes no catalog call, so the waitlist can run it under the space lock.
        """
        now = ensure_utc(now) if now else utc_now()
        self.validate_window(window, now)
        space_id = space.id
        total = self.price_for(space, window)
        try:
            expected = Decimal(str(expected_price))
        except InvalidOperation as exc:
            raise ValidationException(
                "Expected price is not a number", details={"expected_price": str(expected_price)}
            ) from exc
        if abs(total - expected) > self.policy.price_tolerance:
            raise PriceMismatchException(space_id, expected, total)

        booking_id = generate_ulid()
        status = BookingStatus.CONFIRMED if payment_confirmed else BookingStatus.PENDING

        with self.index.space_lock(space_id):
            token = self.index.try_reserve(space_id, window, booking_id)
            try:
                with self.transaction():
                    booking = self.booking_repository.create(
                        id=booking_id,
                        space_id=space_id,
                        renter_id=renter_id,
                        host_id=space.host_id,
                        start_at=window.start,
                        end_at=window.end,
                        status=status.value,
                        price_per_hour=space.price_per_hour,
                        total_price=total,
                        extension_price=Decimal("0.00"),
                        extended_count=0,
                        created_at=now,
                        status_changed_at=now,
                    )
            except RepositoryException as exc:
                self.index.rollback(token)
                raise ServiceException(
                    "Booking could not be saved", details={"space_id": space_id}
                ) from exc
            except Exception:
                self.index.rollback(token)
                raise

        self.log_operation(
            "create_booking", booking_id=booking_id, space_id=space_id, status=status.value
        )
        self.events.publish(
            BookingCreated(
                booking_id=booking.id,
                space_id=space_id,
                renter_id=renter_id,
                start_at=window.start,
                end_at=window.end,
                status=status.value,
            )
        )
        return booking

    # ------------------------------------------------------------------
    # Payment signals
    # ------------------------------------------------------------------

    @BaseService.measure_operation("confirm_payment")
    def confirm_payment(self, booking_id: str, now: Optional[datetime] = None) -> Booking:
        now = ensure_utc(now) if now else utc_now()
        booking = self.get_booking(booking_id)

        with self.index.space_lock(booking.space_id):
            booking = self.get_booking(booking_id)
            if booking.booking_status == BookingStatus.CONFIRMED:
                return booking
            with self.transaction():
                updated = self.apply_transition(
                    booking, [BookingStatus.PENDING], BookingStatus.CONFIRMED, status_changed_at=now
                )
        return updated

    @BaseService.measure_operation("record_payment_failure")
    def record_payment_failure(self, booking_id: str, now: Optional[datetime] = None) -> Booking:
        """Cancel a booking whose payment was declined and free its window."""
        now = ensure_utc(now) if now else utc_now()
        booking = self.get_booking(booking_id)
        released: Optional[WindowReleased] = None

        with self.index.space_lock(booking.space_id):
            booking = self.get_booking(booking_id)
            with self.transaction():
                updated = self.apply_transition(
                    booking,
                    [BookingStatus.PENDING, BookingStatus.CONFIRMED],
                    BookingStatus.CANCELLED,
                    status_changed_at=now,
                    cancelled_at=now,
                    cancelled_by=ActorRole.SYSTEM.value,
                    cancellation_reason="payment_failed",
                    refund_amount=Decimal("0.00"),
                )
            released = self.release_hold(updated, "payment_failed", now)

        if released is not None:
            self.events.publish(released)
        return updated

    # ------------------------------------------------------------------
    # Cancel
    # ------------------------------------------------------------------

    @BaseService.measure_operation("cancel_booking")
    def cancel(
        self,
        booking_id: str,
        actor: Union[ActorRole, str],
        reason: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> CancellationResult:
        """
        Cancel a booking and free its window.

        Renters may cancel before the window starts; hosts and the system may
        also cancel an active booking (for cause).

        Raises:
            NotFoundException: unknown booking
            NotCancellableException: status/actor combination is not cancellable
        """
        now = ensure_utc(now) if now else utc_now()
        actor = ActorRole(actor)
        allowed = CANCELLABLE_BY_ANYONE if actor == ActorRole.RENTER else CANCELLABLE_FOR_CAUSE

        booking = self.get_booking(booking_id)
        released: Optional[WindowReleased] = None

        with self.index.space_lock(booking.space_id):
            booking = self.get_booking(booking_id)
            if booking.booking_status not in allowed:
                raise NotCancellableException(
                    f"Booking {booking_id} cannot be cancelled by {actor.value} "
                    f"while {booking.status}",
                    details={"booking_id": booking_id, "status": booking.status, "actor": actor.value},
                )

            refund = self.refund_policy.evaluate_cancellation(booking, actor, now)
            with self.transaction():
                updated = self.booking_repository.transition_status(
                    booking_id,
                    allowed,
                    BookingStatus.CANCELLED,
                    status_changed_at=now,
                    cancelled_at=now,
                    cancelled_by=actor.value,
                    cancellation_reason=reason,
                    refund_amount=refund.amount,
                )
                if updated is None:
                    current = self.get_booking(booking_id)
                    raise NotCancellableException(
                        f"Booking {booking_id} changed to {current.status} before it could be cancelled",
                        details={"booking_id": booking_id, "status": current.status},
                    )
            prometheus_metrics.record_booking_transition(booking.status, BookingStatus.CANCELLED.value)
            released = self.release_hold(updated, "cancelled", now)

        self.log_operation(
            "cancel_booking", booking_id=booking_id, actor=actor.value, refund=str(refund.amount)
        )
        self.events.publish(
            BookingCancelled(
                booking_id=booking_id,
                space_id=updated.space_id,
                cancelled_by=actor.value,
                cancelled_at=now,
                refund_amount=refund.amount,
            )
        )
        if released is not None:
            self.events.publish(released)
        return CancellationResult(booking=updated, refund=refund)

    # ------------------------------------------------------------------
    # Clock
    # ------------------------------------------------------------------

    @BaseService.measure_operation("advance_by_clock")
    def advance_by_clock(self, now: Optional[datetime] = None) -> Dict[str, int]:
        """
        Apply every transition that is due at ``now``.

        Each transition is a guarded compare-and-set, so running this twice
        for the same instant (or concurrently) applies nothing twice.
        """
        now = ensure_utc(now) if now else utc_now()
        summary = {
            "unpaid_cancelled": 0,
            "activated": 0,
            "completed": 0,
            "disputes_closed": 0,
            "errors": 0,
        }
        pending_events: List[Any] = []

        steps: List[Tuple[Callable[[datetime], List[Booking]], ClockStep]] = [
            (self.booking_repository.list_unpaid_past_start, self._expire_unpaid),
            (self.booking_repository.list_due_to_start, self._activate),
            (self.booking_repository.list_due_to_complete, self._complete_active),
            (self.booking_repository.list_denied_disputes_elapsed, self._close_dispute),
        ]
        for query, step in steps:
            for booking in query(now):
                try:
                    with self.index.space_lock(booking.space_id):
                        step(booking.id, now, summary, pending_events)
                except ServiceException:
                    summary["errors"] += 1
                    self.logger.exception(
                        "Clock transition failed",
                        extra={"booking_id": booking.id, "space_id": booking.space_id},
                    )

        for event in pending_events:
            self.events.publish(event)

        if any(summary.values()):
            self.logger.info(
                "Clock reconciliation applied", extra={"now": now.isoformat(), **summary}
            )
        return summary

    def _activate(
        self, booking_id: str, now: datetime, summary: Dict[str, int], pending_events: List[Any]
    ) -> None:
        with self.transaction():
            active = self.booking_repository.transition_status(
                booking_id, [BookingStatus.CONFIRMED], BookingStatus.ACTIVE, status_changed_at=now
            )
        if active is None:
            return
        summary["activated"] += 1
        prometheus_metrics.record_booking_transition(
            BookingStatus.CONFIRMED.value, BookingStatus.ACTIVE.value
        )
        if active.end_at <= now:
            # Reconciliation lagged past the whole window.
            self._complete_active(booking_id, now, summary, pending_events)

    def _complete_active(
        self, booking_id: str, now: datetime, summary: Dict[str, int], pending_events: List[Any]
    ) -> None:
        with self.transaction():
            completed = self.booking_repository.transition_status(
                booking_id,
                [BookingStatus.ACTIVE],
                BookingStatus.COMPLETED,
                status_changed_at=now,
                completed_at=now,
            )
        if completed is None:
            return
        summary["completed"] += 1
        prometheus_metrics.record_booking_transition(
            BookingStatus.ACTIVE.value, BookingStatus.COMPLETED.value
        )
        self.index.release(completed.space_id, booking_id)
        pending_events.append(
            BookingCompleted(booking_id=booking_id, space_id=completed.space_id, completed_at=now)
        )

    def _expire_unpaid(
        self, booking_id: str, now: datetime, summary: Dict[str, int], pending_events: List[Any]
    ) -> None:
        with self.transaction():
            cancelled = self.booking_repository.transition_status(
                booking_id,
                [BookingStatus.PENDING],
                BookingStatus.CANCELLED,
                status_changed_at=now,
                cancelled_at=now,
                cancelled_by=ActorRole.SYSTEM.value,
                cancellation_reason="payment_not_received",
                refund_amount=Decimal("0.00"),
            )
        if cancelled is None:
            return
        summary["unpaid_cancelled"] += 1
        prometheus_metrics.record_booking_transition(
            BookingStatus.PENDING.value, BookingStatus.CANCELLED.value
        )
        released = self.release_hold(cancelled, "payment_not_received", now)
        if released is not None:
            pending_events.append(released)

    def _close_dispute(
        self, booking_id: str, now: datetime, summary: Dict[str, int], pending_events: List[Any]
    ) -> None:
        with self.transaction():
            completed = self.booking_repository.transition_status(
                booking_id,
                [BookingStatus.ISSUE_REPORTED],
                BookingStatus.COMPLETED,
                status_changed_at=now,
                completed_at=now,
            )
        if completed is None:
            return
        summary["disputes_closed"] += 1
        prometheus_metrics.record_booking_transition(
            BookingStatus.ISSUE_REPORTED.value, BookingStatus.COMPLETED.value
        )
        self.index.release(completed.space_id, booking_id)
        pending_events.append(
            BookingCompleted(booking_id=booking_id, space_id=completed.space_id, completed_at=now)
        )

    # ------------------------------------------------------------------
    # Shared helpers (also used by the issue resolver)
    # ------------------------------------------------------------------

    def apply_transition(
        self,
        booking: Booking,
        expected: List[BookingStatus],
        target: BookingStatus,
        **values: Any,
    ) -> Booking:
        """Guarded transition that raises when the booking has moved out of ``expected``."""
        assert_booking_transition(booking.id, booking.status, target)
        updated = self.booking_repository.transition_status(booking.id, expected, target, **values)
        if updated is None:
            current = self.get_booking(booking.id)
            raise InvalidTransitionException(booking.id, current.status, target.value)
        prometheus_metrics.record_booking_transition(booking.status, target.value)
        return updated

    def release_hold(self, booking: Booking, reason: str, now: datetime) -> Optional[WindowReleased]:
        """
        Drop the booking's window from the index. Caller holds the space lock.

        Returns the event advertising what is left of the window, or None when
        nothing usable was freed.
        """
        freed = self.index.release(booking.space_id, booking.id)
        if freed is None or freed.end <= now:
            return None
        return WindowReleased(
            space_id=booking.space_id,
            booking_id=booking.id,
            start=max(freed.start, now),
            end=freed.end,
            reason=reason,
            released_at=now,
        )

    # ------------------------------------------------------------------
    # Index maintenance
    # ------------------------------------------------------------------

    @BaseService.measure_operation("rebuild_index")
    def rebuild_index(self) -> int:
        """Re-derive the availability index from the held bookings in the table."""
        held = self.booking_repository.list_held()
        return self.index.rebuild((b.space_id, b.id, b.window) for b in held)

    @BaseService.measure_operation("check_index_consistency")
    def check_index_consistency(self) -> List[ConsistencyFault]:
        """
        Compare the index with the held bookings, space by space.

        Faults are logged and counted, never repaired here; ``rebuild_index``
        is the repair path.
        """
        faults: List[ConsistencyFault] = []
        space_ids = {b.space_id for b in self.booking_repository.list_held()}
        space_ids.update(self.index.snapshot().keys())

        for space_id in sorted(space_ids):
            with self.index.space_lock(space_id):
                expected = {
                    b.id: b.window
                    for b in self.booking_repository.list_for_space(
                        space_id,
                        [
                            BookingStatus.PENDING,
                            BookingStatus.CONFIRMED,
                            BookingStatus.ACTIVE,
                            BookingStatus.ISSUE_REPORTED,
                        ],
                    )
                }
                actual = {r.booking_id: r.window for r in self.index.windows(space_id)}

            for booking_id in sorted(set(expected) - set(actual)):
                faults.append(
                    self._fault("missing_in_index", space_id, booking_id, expected[booking_id], None)
                )
            for booking_id in sorted(set(actual) - set(expected)):
                faults.append(
                    self._fault("stale_in_index", space_id, booking_id, None, actual[booking_id])
                )
            for booking_id in sorted(set(actual) & set(expected)):
                if actual[booking_id] != expected[booking_id]:
                    faults.append(
                        self._fault(
                            "window_mismatch",
                            space_id,
                            booking_id,
                            expected[booking_id],
                            actual[booking_id],
                        )
                    )
        return faults

    def _fault(
        self,
        kind: str,
        space_id: str,
        booking_id: str,
        table_window: Optional[TimeWindow],
        index_window: Optional[TimeWindow],
    ) -> ConsistencyFault:
        details = {
            "kind": kind,
            "space_id": space_id,
            "booking_id": booking_id,
            "table_window": table_window.to_dict() if table_window else None,
            "index_window": index_window.to_dict() if index_window else None,
        }
        self.logger.error("Availability index out of sync with bookings", extra=details)
        prometheus_metrics.record_consistency_fault(kind)
        return ConsistencyFault(
            f"Availability index {kind.replace('_', ' ')} for booking {booking_id} on space {space_id}",
            details=details,
        )
