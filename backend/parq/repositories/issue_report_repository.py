# backend/parq/repositories/issue_report_repository.py
"""Issue report data access."""

from typing import List, Optional

from sqlalchemy.orm import Session

from ..models.issue_report import IssueReport, IssueResolution
from .base_repository import BaseRepository


class IssueReportRepository(BaseRepository[IssueReport]):
    def __init__(self, db: Session):
        super().__init__(db, IssueReport)

    def get_open_for_booking(self, booking_id: str) -> Optional[IssueReport]:
        query = self._build_query().filter(
            IssueReport.booking_id == booking_id,
            IssueReport.resolution == IssueResolution.PENDING.value,
        )
        reports = self._execute_query(query.order_by(IssueReport.reported_at.desc()))
        return reports[0] if reports else None

    def list_for_booking(self, booking_id: str) -> List[IssueReport]:
        query = self._build_query().filter(IssueReport.booking_id == booking_id)
        return self._execute_query(query.order_by(IssueReport.reported_at))
