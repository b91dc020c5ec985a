# backend/parq/repositories/factory.py
"""
Repository construction for services.

Services ask the factory rather than instantiating repositories so a
single place decides which implementation backs each table.
"""

from sqlalchemy.orm import Session

from .booking_repository import BookingRepository
from .issue_report_repository import IssueReportRepository
from .waitlist_repository import WaitlistRepository


class RepositoryFactory:
    @staticmethod
    def create_booking_repository(db: Session) -> BookingRepository:
        return BookingRepository(db)

    @staticmethod
    def create_waitlist_repository(db: Session) -> WaitlistRepository:
        return WaitlistRepository(db)

    @staticmethod
    def create_issue_report_repository(db: Session) -> IssueReportRepository:
        return IssueReportRepository(db)
