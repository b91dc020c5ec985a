# backend/parq/models/issue_report.py
"""Problem reports raised by renters against a booking."""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from sqlalchemy import CheckConstraint, Column, ForeignKey, Index, Numeric, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from ..core.ulid_helper import ULID_LENGTH, generate_ulid
from ..database import Base
from .types import UTCDateTime


class IssueType(str, Enum):
    BLOCKED = "blocked"  # Another vehicle or obstacle occupies the space
    NO_ACCESS = "no_access"  # Gate, code or key did not work
    DAMAGED = "damaged"  # Space exists but is unusable or unsafe
    OTHER = "other"


class IssueResolution(str, Enum):
    PENDING = "pending"
    REFUNDED_FULL = "refunded_full"
    REFUNDED_PARTIAL = "refunded_partial"
    DENIED = "denied"


class IssueReport(Base):
    """One report per booking may be open (``resolution == pending``) at a time."""

    __tablename__ = "issue_reports"

    id = Column(String(ULID_LENGTH), primary_key=True, index=True, default=generate_ulid)
    booking_id = Column(String(ULID_LENGTH), ForeignKey("bookings.id"), nullable=False, index=True)
    issue_type = Column(String(20), nullable=False)
    description = Column(Text, nullable=False)
    reported_at = Column(UTCDateTime(), nullable=False, server_default=func.now())

    resolution = Column(
        String(20), nullable=False, default=IssueResolution.PENDING.value, index=True
    )
    resolved_at = Column(UTCDateTime(), nullable=True)
    refund_amount = Column(Numeric(10, 2), nullable=True)

    booking = relationship("Booking", backref="issue_reports")

    __table_args__ = (
        CheckConstraint(
            "issue_type IN ('blocked', 'no_access', 'damaged', 'other')",
            name="ck_issue_reports_type",
        ),
        CheckConstraint(
            "resolution IN ('pending', 'refunded_full', 'refunded_partial', 'denied')",
            name="ck_issue_reports_resolution",
        ),
        CheckConstraint("refund_amount IS NULL OR refund_amount >= 0", name="check_refund_amount"),
        Index("ix_issue_reports_booking_resolution", "booking_id", "resolution"),
    )

    def __repr__(self) -> str:
        return (
            f"<IssueReport {self.id}: booking={self.booking_id}, type={self.issue_type}, "
            f"resolution={self.resolution}>"
        )

    @property
    def is_open(self) -> bool:
        return self.resolution == IssueResolution.PENDING.value

    def to_dict(self) -> dict[str, Any]:
        def _iso(value: Optional[datetime]) -> Optional[str]:
            return value.isoformat() if value else None

        return {
            "id": self.id,
            "booking_id": self.booking_id,
            "issue_type": self.issue_type,
            "description": self.description,
            "reported_at": _iso(self.reported_at),
            "resolution": self.resolution,
            "resolved_at": _iso(self.resolved_at),
            "refund_amount": str(self.refund_amount) if self.refund_amount is not None else None,
        }
