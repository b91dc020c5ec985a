# backend/parq/models/waitlist.py
"""
Waitlist entries for spaces that were unavailable at request time.

Entries are served strictly in ``join_seq`` order per space. An entry that
lets an offer lapse keeps its sequence number but is flagged
``passed_over`` so the next requester in line gets a turn; the flag is
cleared the next time a window on the space is freed.
"""

from datetime import datetime
from enum import Enum
import logging
from typing import Any, Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.sql import func

from ..core.ulid_helper import ULID_LENGTH, generate_ulid
from ..database import Base
from ..domain.time_window import TimeWindow
from .types import UTCDateTime

logger = logging.getLogger(__name__)


class WaitlistStatus(str, Enum):
    WAITING = "waiting"
    OFFERED = "offered"
    CLAIMED = "claimed"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


OPEN_WAITLIST_STATUSES = frozenset({WaitlistStatus.WAITING, WaitlistStatus.OFFERED})


class WaitlistEntry(Base):
    """A requester's standing interest in a window on one space."""

    __tablename__ = "waitlist_entries"

    id = Column(String(ULID_LENGTH), primary_key=True, index=True, default=generate_ulid)
    space_id = Column(String(64), nullable=False, index=True)
    requester_id = Column(String(64), nullable=False, index=True)

    desired_start = Column(UTCDateTime(), nullable=False)
    desired_end = Column(UTCDateTime(), nullable=False)
    max_price = Column(Numeric(10, 2), nullable=True)

    status = Column(String(20), nullable=False, default=WaitlistStatus.WAITING.value, index=True)
    join_seq = Column(Integer, nullable=False)
    passed_over = Column(Boolean, nullable=False, default=False)
    offer_count = Column(Integer, nullable=False, default=0)

    joined_at = Column(UTCDateTime(), nullable=False, server_default=func.now())
    offered_at = Column(UTCDateTime(), nullable=True)
    offer_expires_at = Column(UTCDateTime(), nullable=True)
    closed_at = Column(UTCDateTime(), nullable=True)

    booking_id = Column(String(ULID_LENGTH), ForeignKey("bookings.id"), nullable=True)

    __table_args__ = (
        CheckConstraint(
            "status IN ('waiting', 'offered', 'claimed', 'expired', 'cancelled')",
            name="ck_waitlist_status",
        ),
        CheckConstraint("desired_end > desired_start", name="check_desired_window_order"),
        CheckConstraint("max_price IS NULL OR max_price >= 0", name="check_max_price"),
        UniqueConstraint("space_id", "join_seq", name="uq_waitlist_space_seq"),
        Index("ix_waitlist_space_status_seq", "space_id", "status", "join_seq"),
    )

    def __repr__(self) -> str:
        return (
            f"<WaitlistEntry {self.id}: space={self.space_id}, seq={self.join_seq}, "
            f"window={self.desired_start}-{self.desired_end}, status={self.status}>"
        )

    @property
    def desired_window(self) -> TimeWindow:
        return TimeWindow(self.desired_start, self.desired_end)

    @property
    def waitlist_status(self) -> WaitlistStatus:
        return WaitlistStatus(self.status)

    def offer_is_live(self, now: datetime) -> bool:
        return (
            self.waitlist_status == WaitlistStatus.OFFERED
            and self.offer_expires_at is not None
            and now < self.offer_expires_at
        )

    def to_dict(self) -> dict[str, Any]:
        def _iso(value: Optional[datetime]) -> Optional[str]:
            return value.isoformat() if value else None

        return {
            "id": self.id,
            "space_id": self.space_id,
            "requester_id": self.requester_id,
            "desired_start": _iso(self.desired_start),
            "desired_end": _iso(self.desired_end),
            "max_price": str(self.max_price) if self.max_price is not None else None,
            "status": self.status,
            "join_seq": self.join_seq,
            "passed_over": bool(self.passed_over),
            "offer_count": self.offer_count or 0,
            "joined_at": _iso(self.joined_at),
            "offered_at": _iso(self.offered_at),
            "offer_expires_at": _iso(self.offer_expires_at),
            "booking_id": self.booking_id,
        }
