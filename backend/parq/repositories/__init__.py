"""Repository layer: all database access for the booking engine goes through here."""

from .base_repository import BaseRepository
from .booking_repository import BookingRepository
from .factory import RepositoryFactory
from .issue_report_repository import IssueReportRepository
from .waitlist_repository import WaitlistRepository

__all__ = [
    "BaseRepository",
    "BookingRepository",
    "IssueReportRepository",
    "RepositoryFactory",
    "WaitlistRepository",
]
