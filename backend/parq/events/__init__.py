"""Booking domain events and the in-process publisher that routes them."""

from .booking_events import (
    BookingCancelled,
    BookingCompleted,
    BookingCreated,
    BookingExtended,
    WindowReleased,
)
from .publisher import EventPublisher

__all__ = [
    "BookingCreated",
    "BookingCancelled",
    "BookingCompleted",
    "BookingExtended",
    "WindowReleased",
    "EventPublisher",
]
