# backend/parq/repositories/waitlist_repository.py
"""Waitlist Repository for the Parq booking engine."""

from datetime import datetime
import logging
from typing import Any, Iterable, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.waitlist import WaitlistEntry, WaitlistStatus
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class WaitlistRepository(BaseRepository[WaitlistEntry]):
    """Data access for waitlist entries, always in FIFO (``join_seq``) order."""

    def __init__(self, db: Session):
        super().__init__(db, WaitlistEntry)

    def next_join_seq(self, space_id: str) -> int:
        """Next sequence number for the space. Caller holds the space lock."""
        try:
            current = (
                self.db.query(func.max(WaitlistEntry.join_seq))
                .filter(WaitlistEntry.space_id == space_id)
                .scalar()
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error reading join sequence for space {space_id}: {str(e)}")
            raise RepositoryException(f"Failed to read waitlist sequence: {str(e)}")
        return int(current or 0) + 1

    def transition_status(
        self,
        entry_id: str,
        expected: Iterable[WaitlistStatus],
        target: WaitlistStatus,
        **values: Any,
    ) -> Optional[WaitlistEntry]:
        """Compare-and-set status change; None when the entry moved on first."""
        try:
            self.db.flush()
            updated = (
                self.db.query(WaitlistEntry)
                .filter(
                    WaitlistEntry.id == entry_id,
                    WaitlistEntry.status.in_([WaitlistStatus(s).value for s in expected]),
                )
                .update({"status": target.value, **values}, synchronize_session=False)
            )
            if updated != 1:
                return None
            return self.db.get(WaitlistEntry, entry_id, populate_existing=True)
        except SQLAlchemyError as e:
            self.logger.error(f"Error transitioning waitlist entry {entry_id}: {str(e)}")
            raise RepositoryException(f"Failed to update waitlist entry: {str(e)}")

    def list_by_status(self, space_id: str, status: WaitlistStatus) -> List[WaitlistEntry]:
        query = self._build_query().filter(
            WaitlistEntry.space_id == space_id, WaitlistEntry.status == status.value
        )
        return self._execute_query(query.order_by(WaitlistEntry.join_seq))

    def list_for_space(self, space_id: str) -> List[WaitlistEntry]:
        query = self._build_query().filter(WaitlistEntry.space_id == space_id)
        return self._execute_query(query.order_by(WaitlistEntry.join_seq))

    def list_lapsed_offers(self, now: datetime) -> List[WaitlistEntry]:
        query = self._build_query().filter(
            WaitlistEntry.status == WaitlistStatus.OFFERED.value,
            WaitlistEntry.offer_expires_at <= now,
        )
        return self._execute_query(query.order_by(WaitlistEntry.space_id, WaitlistEntry.join_seq))

    def list_stale_waiting(self, cutoff: datetime) -> List[WaitlistEntry]:
        """Waiting entries whose desired window started before ``cutoff`` and can no longer be booked."""
        query = self._build_query().filter(
            WaitlistEntry.status == WaitlistStatus.WAITING.value,
            WaitlistEntry.desired_start < cutoff,
        )
        return self._execute_query(query.order_by(WaitlistEntry.space_id, WaitlistEntry.join_seq))

    def spaces_with_waiting(self) -> List[str]:
        try:
            rows = (
                self.db.query(WaitlistEntry.space_id)
                .filter(WaitlistEntry.status == WaitlistStatus.WAITING.value)
                .distinct()
                .all()
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error listing spaces with waiting entries: {str(e)}")
            raise RepositoryException(f"Failed to list waitlisted spaces: {str(e)}")
        return sorted(row[0] for row in rows)

    def clear_passed_over(self, space_id: str) -> int:
        try:
            self.db.flush()
            cleared = (
                self.db.query(WaitlistEntry)
                .filter(
                    WaitlistEntry.space_id == space_id,
                    WaitlistEntry.passed_over.is_(True),
                )
                .update({"passed_over": False}, synchronize_session=False)
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error clearing passed-over flags for {space_id}: {str(e)}")
            raise RepositoryException(f"Failed to reset waitlist turn flags: {str(e)}")
        if cleared:
            self.db.expire_all()
        return int(cleared)
