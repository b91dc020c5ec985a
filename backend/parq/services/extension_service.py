# backend/parq/services/extension_service.py
"""
Extension Service for the Parq booking engine.

An active booking may push its end time out while little enough of it is
left (``BookingPolicy.extension_window``). The extra span is claimed in the
availability index first, atomically and without truncation; the booking
row follows under a guard on the previous end time. If the row cannot be
written the index is shrunk back.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
import logging
from typing import Any, Dict, Optional, Union

from sqlalchemy.orm import Session

from ..core.availability_index import AvailabilityIndex
from ..core.booking_policy import BookingPolicy, quantize_money
from ..core.exceptions import NotExtendableException, ValidationException
from ..core.timezone_utils import ensure_utc, utc_now
from ..events.booking_events import BookingExtended
from ..events.publisher import EventPublisher
from ..models.booking import Booking, BookingStatus
from .base import BaseService
from .booking_service import BookingService

logger = logging.getLogger(__name__)


def hours_delta(hours: Decimal) -> timedelta:
    return timedelta(seconds=float(hours * 3600))


@dataclass(frozen=True)
class ExtensionQuote:
    booking_id: str
    additional_hours: Decimal
    eligible: bool
    current_end: datetime
    new_end: datetime
    additional_cost: Decimal
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "booking_id": self.booking_id,
            "additional_hours": str(self.additional_hours),
            "eligible": self.eligible,
            "current_end": self.current_end.isoformat(),
            "new_end": self.new_end.isoformat(),
            "additional_cost": str(self.additional_cost),
            "reason": self.reason,
        }


class ExtensionService(BaseService):
    """Extends active bookings without ever truncating or overlapping."""

    def __init__(
        self,
        db: Session,
        index: AvailabilityIndex,
        booking_service: BookingService,
        events: Optional[EventPublisher] = None,
        policy: Optional[BookingPolicy] = None,
    ):
        super().__init__(db)
        self.index = index
        self.booking_service = booking_service
        self.events = events or booking_service.events
        self.policy = policy or booking_service.policy
        self.booking_repository = booking_service.booking_repository

    @staticmethod
    def _parse_hours(additional_hours: Union[Decimal, str, int, float]) -> Decimal:
        # Any positive duration; the 1-4 hour menu is a client concern.
        try:
            hours = Decimal(str(additional_hours))
        except (InvalidOperation, ValueError) as exc:
            raise ValidationException(
                "Extension hours must be a number",
                details={"additional_hours": str(additional_hours)},
            ) from exc
        if not hours.is_finite() or hours <= 0:
            raise ValidationException(
                "Extension must add a positive amount of time",
                details={"additional_hours": str(additional_hours)},
            )
        return hours

    def ineligibility_reason(
        self, booking: Booking, new_end: datetime, now: datetime
    ) -> Optional[str]:
        """Why ``booking`` cannot be extended to ``new_end`` at ``now``; None when it can."""
        if booking.booking_status != BookingStatus.ACTIVE:
            return f"Only active bookings can be extended (booking is {booking.status})"
        remaining = booking.end_at - now
        if remaining <= timedelta(0):
            return "Booking has already ended"
        if remaining > self.policy.extension_window:
            return f"Extensions open when {self.policy.extension_window} or less remains"
        if new_end - booking.start_at > self.policy.max_duration:
            return f"Booking cannot be longer than {self.policy.max_duration}"
        return None

    def quote(
        self,
        booking_id: str,
        additional_hours: Union[Decimal, str, int, float],
        now: Optional[datetime] = None,
    ) -> ExtensionQuote:
        """Eligibility, cost and new end of an extension. Changes nothing."""
        now = ensure_utc(now) if now else utc_now()
        additional_hours = self._parse_hours(additional_hours)
        booking = self.booking_service.get_booking(booking_id)
        new_end = booking.end_at + hours_delta(additional_hours)
        reason = self.ineligibility_reason(booking, new_end, now)
        return ExtensionQuote(
            booking_id=booking_id,
            additional_hours=additional_hours,
            eligible=reason is None,
            current_end=booking.end_at,
            new_end=new_end,
            additional_cost=quantize_money(additional_hours * Decimal(booking.price_per_hour)),
            reason=reason,
        )

    @BaseService.measure_operation("extend_booking")
    def extend(
        self,
        booking_id: str,
        additional_hours: Union[Decimal, str, int, float],
        now: Optional[datetime] = None,
    ) -> Booking:
        """
        Push an active booking's end out by ``additional_hours``.

        Raises:
            ValidationException: hours not a positive number
            NotFoundException: unknown booking
            NotExtendableException: booking not active or outside the extension window
            ExtensionConflictException: the added span is already reserved
        """
        now = ensure_utc(now) if now else utc_now()
        additional_hours = self._parse_hours(additional_hours)
        booking = self.booking_service.get_booking(booking_id)

        with self.index.space_lock(booking.space_id):
            booking = self.booking_service.get_booking(booking_id)
            previous_end = booking.end_at
            new_end = previous_end + hours_delta(additional_hours)
            reason = self.ineligibility_reason(booking, new_end, now)
            if reason is not None:
                raise NotExtendableException(
                    reason,
                    details={
                        "booking_id": booking_id,
                        "status": booking.status,
                        "end_at": previous_end.isoformat(),
                    },
                )

            cost = quantize_money(additional_hours * Decimal(booking.price_per_hour))
            self.index.extend(booking.space_id, booking_id, new_end)
            try:
                with self.transaction():
                    updated = self.booking_repository.compare_and_update(
                        booking_id,
                        [BookingStatus.ACTIVE],
                        expected_end=previous_end,
                        end_at=new_end,
                        original_end_at=booking.original_end_at or previous_end,
                        total_price=quantize_money(Decimal(booking.total_price) + cost),
                        extension_price=quantize_money(
                            Decimal(booking.extension_price or 0) + cost
                        ),
                        extended_count=(booking.extended_count or 0) + 1,
                    )
                    if updated is None:
                        raise NotExtendableException(
                            f"Booking {booking_id} changed before it could be extended",
                            details={"booking_id": booking_id},
                        )
            except Exception:
                self.index.reset_end(booking.space_id, booking_id, previous_end)
                raise

        self.log_operation(
            "extend_booking",
            booking_id=booking_id,
            space_id=updated.space_id,
            new_end=new_end.isoformat(),
            cost=str(cost),
        )
        self.events.publish(
            BookingExtended(
                booking_id=booking_id,
                space_id=updated.space_id,
                previous_end=previous_end,
                new_end=new_end,
                additional_cost=cost,
            )
        )
        return updated
