# backend/parq/repositories/booking_repository.py
"""
Booking Repository for the Parq booking engine.

Status changes go through ``transition_status``, a compare-and-set UPDATE
guarded on the current status. Two actors racing on the same booking (a
cancel and the reconciliation clock, say) cannot both win, and re-running
the clock never applies the same transition twice.
"""

from datetime import datetime
import logging
from typing import Any, Iterable, List, Optional

from sqlalchemy import and_, exists
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Query, Session

from ..core.exceptions import RepositoryException
from ..models.booking import HELD_STATUSES, Booking, BookingStatus
from ..models.issue_report import IssueReport, IssueResolution
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


def _status_values(statuses: Iterable[BookingStatus]) -> List[str]:
    return [BookingStatus(s).value for s in statuses]


class BookingRepository(BaseRepository[Booking]):
    """Data access for bookings."""

    def __init__(self, db: Session):
        super().__init__(db, Booking)

    def transition_status(
        self,
        booking_id: str,
        expected: Iterable[BookingStatus],
        target: BookingStatus,
        **values: Any,
    ) -> Optional[Booking]:
        """
        Move a booking to ``target`` only if it is currently in one of ``expected``.

        Returns the refreshed booking on success, None if the guard did not match
        (someone else changed the status first).
        """
        return self.compare_and_update(booking_id, expected, status=target.value, **values)

    def compare_and_update(
        self,
        booking_id: str,
        expected: Iterable[BookingStatus],
        *,
        expected_end: Optional[datetime] = None,
        **values: Any,
    ) -> Optional[Booking]:
        """Apply ``values`` only while the booking is in ``expected`` (and ends at ``expected_end``)."""
        try:
            self.db.flush()
            query = self.db.query(Booking).filter(
                Booking.id == booking_id, Booking.status.in_(_status_values(expected))
            )
            if expected_end is not None:
                query = query.filter(Booking.end_at == expected_end)
            updated = query.update(values, synchronize_session=False)
            if updated != 1:
                return None
            return self.db.get(Booking, booking_id, populate_existing=True)
        except SQLAlchemyError as e:
            self.logger.error(f"Error updating booking {booking_id}: {str(e)}")
            raise RepositoryException(f"Failed to update booking: {str(e)}")

    def list_for_space(
        self, space_id: str, statuses: Optional[Iterable[BookingStatus]] = None
    ) -> List[Booking]:
        query = self._build_query().filter(Booking.space_id == space_id)
        if statuses is not None:
            query = query.filter(Booking.status.in_(_status_values(statuses)))
        return self._execute_query(query.order_by(Booking.start_at))

    def list_held(self) -> List[Booking]:
        """Every booking whose window currently blocks its space."""
        query = self._build_query().filter(Booking.status.in_(_status_values(HELD_STATUSES)))
        return self._execute_query(query.order_by(Booking.space_id, Booking.start_at))

    def list_for_renter(self, renter_id: str, limit: Optional[int] = None) -> List[Booking]:
        return self._list_newest(self._build_query().filter(Booking.renter_id == renter_id), limit)

    def list_for_host(self, host_id: str, limit: Optional[int] = None) -> List[Booking]:
        """Bookings on every space the host lists, newest first."""
        return self._list_newest(self._build_query().filter(Booking.host_id == host_id), limit)

    def _list_newest(self, query: Query, limit: Optional[int]) -> List[Booking]:
        query = query.order_by(Booking.created_at.desc(), Booking.id.desc())
        if limit is not None:
            query = query.limit(limit)
        return self._execute_query(query)

    # Reconciliation queries

    def list_due_to_start(self, now: datetime) -> List[Booking]:
        query = self._build_query().filter(
            Booking.status == BookingStatus.CONFIRMED.value, Booking.start_at <= now
        )
        return self._execute_query(query.order_by(Booking.start_at))

    def list_due_to_complete(self, now: datetime) -> List[Booking]:
        query = self._build_query().filter(
            Booking.status == BookingStatus.ACTIVE.value, Booking.end_at <= now
        )
        return self._execute_query(query.order_by(Booking.end_at))

    def list_unpaid_past_start(self, now: datetime) -> List[Booking]:
        query = self._build_query().filter(
            Booking.status == BookingStatus.PENDING.value, Booking.start_at <= now
        )
        return self._execute_query(query.order_by(Booking.start_at))

    def list_denied_disputes_elapsed(self, now: datetime) -> List[Booking]:
        """Disputed bookings whose report was denied and whose window has ended."""
        open_report = exists().where(
            and_(
                IssueReport.booking_id == Booking.id,
                IssueReport.resolution == IssueResolution.PENDING.value,
            )
        )
        denied_report = exists().where(
            and_(
                IssueReport.booking_id == Booking.id,
                IssueReport.resolution == IssueResolution.DENIED.value,
            )
        )
        query = self._build_query().filter(
            Booking.status == BookingStatus.ISSUE_REPORTED.value,
            Booking.end_at <= now,
            ~open_report,
            denied_report,
        )
        return self._execute_query(query.order_by(Booking.end_at))
