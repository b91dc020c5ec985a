"""Booking domain events."""
from dataclasses import asdict, dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional


@dataclass
class BookingCreated:
    """Fired after a booking is successfully created."""

    booking_id: str
    space_id: str
    renter_id: str
    start_at: datetime
    end_at: datetime
    status: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class BookingCancelled:
    """Fired after a booking is cancelled."""

    booking_id: str
    space_id: str
    cancelled_by: str  # 'renter', 'host' or 'system'
    cancelled_at: datetime
    refund_amount: Optional[Decimal] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class BookingCompleted:
    """Fired after a booking's window has elapsed."""

    booking_id: str
    space_id: str
    completed_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class BookingExtended:
    """Fired after an active booking's end was pushed out."""

    booking_id: str
    space_id: str
    previous_end: datetime
    new_end: datetime
    additional_cost: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class WindowReleased:
    """
    Fired when a still-usable stretch of a space's timeline becomes free.

    ``start`` is clipped to the release time, so a window that is already
    half over is only advertised for what is left of it.
    """

    space_id: str
    booking_id: str
    start: datetime
    end: datetime
    reason: str  # cancelled | payment_failed | payment_not_received | refunded
    released_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
