# backend/parq/models/booking.py
"""
Booking model for the Parq booking engine.

A booking is a renter's claim on one parking space for a half-open time
window. Price and host are snapshotted at creation time so later catalog
changes never rewrite history. The window of every booking in a held
status is mirrored in the in-memory availability index.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
import logging
from typing import Any, Optional

from sqlalchemy import CheckConstraint, Column, Index, Integer, Numeric, String, Text
from sqlalchemy.sql import func

from ..core.ulid_helper import ULID_LENGTH, generate_ulid
from ..database import Base
from ..domain.time_window import TimeWindow
from .types import UTCDateTime

logger = logging.getLogger(__name__)


class BookingStatus(str, Enum):
    """Booking lifecycle statuses."""

    PENDING = "pending"  # Reserved, waiting on the payment signal
    CONFIRMED = "confirmed"  # Paid, window not started yet
    ACTIVE = "active"  # Window in progress
    COMPLETED = "completed"  # Window elapsed
    CANCELLED = "cancelled"
    ISSUE_REPORTED = "issue_reported"  # Renter reported a problem with the space


# Statuses whose window occupies the space in the availability index.
HELD_STATUSES = frozenset(
    {
        BookingStatus.PENDING,
        BookingStatus.CONFIRMED,
        BookingStatus.ACTIVE,
        BookingStatus.ISSUE_REPORTED,
    }
)

TERMINAL_STATUSES = frozenset({BookingStatus.COMPLETED, BookingStatus.CANCELLED})


class Booking(Base):
    """
    Reservation of a parking space for ``[start_at, end_at)``.

    ``original_end_at`` is set the first time the booking is extended and
    keeps the end the renter originally paid for.
    """

    __tablename__ = "bookings"

    id = Column(String(ULID_LENGTH), primary_key=True, index=True, default=generate_ulid)

    space_id = Column(String(64), nullable=False, index=True)
    renter_id = Column(String(64), nullable=False, index=True)
    host_id = Column(String(64), nullable=False, index=True)

    start_at = Column(UTCDateTime(), nullable=False)
    end_at = Column(UTCDateTime(), nullable=False)
    original_end_at = Column(UTCDateTime(), nullable=True)

    status = Column(String(20), nullable=False, default=BookingStatus.CONFIRMED.value, index=True)

    # Pricing snapshot
    price_per_hour = Column(Numeric(10, 2), nullable=False)
    total_price = Column(Numeric(10, 2), nullable=False)
    extension_price = Column(Numeric(10, 2), nullable=False, default=Decimal("0.00"))
    extended_count = Column(Integer, nullable=False, default=0)
    refund_amount = Column(Numeric(10, 2), nullable=True)

    # Timestamps
    created_at = Column(UTCDateTime(), nullable=False, server_default=func.now())
    status_changed_at = Column(UTCDateTime(), nullable=True)
    completed_at = Column(UTCDateTime(), nullable=True)
    cancelled_at = Column(UTCDateTime(), nullable=True)

    # Cancellation tracking
    cancelled_by = Column(String(20), nullable=True)
    cancellation_reason = Column(Text, nullable=True)

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'confirmed', 'active', 'completed', 'cancelled', 'issue_reported')",
            name="ck_bookings_status",
        ),
        CheckConstraint("end_at > start_at", name="check_window_order"),
        CheckConstraint("total_price >= 0", name="check_price_non_negative"),
        CheckConstraint("price_per_hour > 0", name="check_rate_positive"),
        CheckConstraint("extended_count >= 0", name="check_extended_count"),
        Index("ix_bookings_space_window", "space_id", "start_at", "end_at"),
        Index("ix_bookings_status_start", "status", "start_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<Booking {self.id}: space={self.space_id}, renter={self.renter_id}, "
            f"window={self.start_at}-{self.end_at}, status={self.status}>"
        )

    @property
    def window(self) -> TimeWindow:
        return TimeWindow(self.start_at, self.end_at)

    @property
    def booking_status(self) -> BookingStatus:
        return BookingStatus(self.status)

    @property
    def is_held(self) -> bool:
        """True while the booking's window blocks the space."""
        return self.booking_status in HELD_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self.booking_status in TERMINAL_STATUSES

    def has_elapsed(self, now: datetime) -> bool:
        return now >= self.window.end

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for API responses."""

        def _iso(value: Optional[datetime]) -> Optional[str]:
            return value.isoformat() if value else None

        return {
            "id": self.id,
            "space_id": self.space_id,
            "renter_id": self.renter_id,
            "host_id": self.host_id,
            "start_at": _iso(self.start_at),
            "end_at": _iso(self.end_at),
            "original_end_at": _iso(self.original_end_at),
            "status": self.status,
            "price_per_hour": str(self.price_per_hour),
            "total_price": str(self.total_price),
            "extension_price": str(self.extension_price or Decimal("0.00")),
            "extended_count": self.extended_count or 0,
            "refund_amount": str(self.refund_amount) if self.refund_amount is not None else None,
            "created_at": _iso(self.created_at),
            "cancelled_at": _iso(self.cancelled_at),
            "cancelled_by": self.cancelled_by,
            "cancellation_reason": self.cancellation_reason,
            "completed_at": _iso(self.completed_at),
        }
