"""
Database models for the Parq booking engine.

- Booking: a reservation of one space for a time window
- WaitlistEntry: FIFO interest in a window that was unavailable
- IssueReport: renter-reported problem and its refund resolution
"""

from .booking import HELD_STATUSES, TERMINAL_STATUSES, Booking, BookingStatus
from .issue_report import IssueReport, IssueResolution, IssueType
from .waitlist import OPEN_WAITLIST_STATUSES, WaitlistEntry, WaitlistStatus

__all__ = [
    "Booking",
    "BookingStatus",
    "HELD_STATUSES",
    "TERMINAL_STATUSES",
    "IssueReport",
    "IssueResolution",
    "IssueType",
    "WaitlistEntry",
    "WaitlistStatus",
    "OPEN_WAITLIST_STATUSES",
]
