# backend/parq/services/issue_service.py
"""
Issue Service for the Parq booking engine.

Renters report a problem with a confirmed or active booking (space blocked,
no access, damaged). The booking moves to ``issue_reported`` and keeps its
window while the report is open. Resolution decides the refund and the
booking's terminal status; a refund before the window has elapsed gives
what is left of the window back to the waitlist.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
import logging
from typing import Any, List, Optional, Union

from sqlalchemy.orm import Session

from ..core.availability_index import AvailabilityIndex
from ..core.booking_policy import BookingPolicy, quantize_money
from ..core.constants import MAX_ISSUE_DESCRIPTION_LENGTH
from ..core.enums import ActorRole
from ..core.exceptions import NotFoundException, NotReportableException, ValidationException
from ..core.timezone_utils import ensure_utc, utc_now
from ..events.booking_events import BookingCancelled, BookingCompleted, WindowReleased
from ..events.publisher import EventPublisher
from ..models.booking import Booking, BookingStatus
from ..models.issue_report import IssueReport, IssueResolution, IssueType
from ..repositories.factory import RepositoryFactory
from .base import BaseService
from .booking_service import BookingService
from .refund_policy_engine import RefundPolicyEngine, RefundPolicyResult

logger = logging.getLogger(__name__)

REPORTABLE_STATUSES = (BookingStatus.CONFIRMED, BookingStatus.ACTIVE)


@dataclass
class IssueResolutionResult:
    booking: Booking
    report: IssueReport
    refund_amount: Decimal

    def to_dict(self) -> dict[str, Any]:
        return {
            "booking": self.booking.to_dict(),
            "report": self.report.to_dict(),
            "refund_amount": str(self.refund_amount),
        }


class IssueService(BaseService):
    """Issue reporting and refund resolution."""

    def __init__(
        self,
        db: Session,
        index: AvailabilityIndex,
        booking_service: BookingService,
        events: Optional[EventPublisher] = None,
        policy: Optional[BookingPolicy] = None,
    ):
        super().__init__(db)
        self.index = index
        self.booking_service = booking_service
        self.events = events or booking_service.events
        self.policy = policy or booking_service.policy
        self.refund_policy = RefundPolicyEngine(self.policy)
        self.issue_report_repository = RepositoryFactory.create_issue_report_repository(db)

    def list_reports(self, booking_id: str) -> List[IssueReport]:
        self.booking_service.get_booking(booking_id)
        return self.issue_report_repository.list_for_booking(booking_id)

    def _clean_description(self, description: str) -> str:
        cleaned = (description or "").strip()
        if len(cleaned) < self.policy.issue_description_min_length:
            raise ValidationException(
                f"Description must be at least {self.policy.issue_description_min_length} characters",
                details={"length": len(cleaned)},
            )
        if len(cleaned) > MAX_ISSUE_DESCRIPTION_LENGTH:
            raise ValidationException(
                f"Description cannot exceed {MAX_ISSUE_DESCRIPTION_LENGTH} characters",
                details={"length": len(cleaned)},
            )
        return cleaned

    @BaseService.measure_operation("report_issue")
    def report(
        self,
        booking_id: str,
        issue_type: Union[IssueType, str],
        description: str,
        now: Optional[datetime] = None,
    ) -> IssueReport:
        """
        Open an issue report and put the booking into ``issue_reported``.

        Raises:
            ValidationException: unknown issue type or description too short
            NotFoundException: unknown booking
            NotReportableException: booking not confirmed/active, or a report is already open
        """
        now = ensure_utc(now) if now else utc_now()
        try:
            kind = IssueType(issue_type)
        except ValueError as exc:
            raise ValidationException(
                f"Unknown issue type {issue_type}", details={"issue_type": str(issue_type)}
            ) from exc
        cleaned = self._clean_description(description)
        booking = self.booking_service.get_booking(booking_id)

        with self.index.space_lock(booking.space_id):
            booking = self.booking_service.get_booking(booking_id)
            if booking.booking_status not in REPORTABLE_STATUSES:
                raise NotReportableException(
                    f"Issues can only be reported on confirmed or active bookings "
                    f"(booking {booking_id} is {booking.status})",
                    details={"booking_id": booking_id, "status": booking.status},
                )
            if self.issue_report_repository.get_open_for_booking(booking_id) is not None:
                raise NotReportableException(
                    f"Booking {booking_id} already has an open issue report",
                    details={"booking_id": booking_id},
                )

            with self.transaction():
                report = self.issue_report_repository.create(
                    booking_id=booking_id,
                    issue_type=kind.value,
                    description=cleaned,
                    reported_at=now,
                    resolution=IssueResolution.PENDING.value,
                )
                self.booking_service.apply_transition(
                    booking,
                    list(REPORTABLE_STATUSES),
                    BookingStatus.ISSUE_REPORTED,
                    status_changed_at=now,
                )

        self.log_operation(
            "report_issue", booking_id=booking_id, report_id=report.id, issue_type=kind.value
        )
        return report

    def _latest_report(self, booking_id: str) -> IssueReport:
        report = self.issue_report_repository.get_open_for_booking(booking_id)
        if report is None:
            reports = self.issue_report_repository.list_for_booking(booking_id)
            report = reports[-1] if reports else None
        if report is None:
            raise NotFoundException(
                f"Booking {booking_id} has no issue report", details={"booking_id": booking_id}
            )
        return report

    def evaluate(self, booking_id: str) -> RefundPolicyResult:
        """Advisory refund for the booking's open (or most recent) report."""
        booking = self.booking_service.get_booking(booking_id)
        return self.refund_policy.evaluate_issue(booking, self._latest_report(booking_id))

    def _resolve_amount(
        self,
        booking: Booking,
        report: IssueReport,
        resolution: IssueResolution,
        refund_amount: Optional[Union[Decimal, str, int, float]],
    ) -> Decimal:
        total = quantize_money(Decimal(booking.total_price))
        if resolution == IssueResolution.REFUNDED_FULL:
            return total
        if resolution == IssueResolution.DENIED:
            return Decimal("0.00")
        if refund_amount is None:
            return self.refund_policy.unused_share(booking, report.reported_at)
        try:
            amount = quantize_money(Decimal(str(refund_amount)))
        except InvalidOperation as exc:
            raise ValidationException(
                "Refund amount is not a number", details={"refund_amount": str(refund_amount)}
            ) from exc
        if amount < 0 or amount > total:
            raise ValidationException(
                f"Refund amount must be between 0 and {total}",
                details={"refund_amount": str(amount), "total_price": str(total)},
            )
        return amount

    @BaseService.measure_operation("resolve_issue")
    def resolve(
        self,
        booking_id: str,
        resolution: Union[IssueResolution, str],
        now: Optional[datetime] = None,
        refund_amount: Optional[Union[Decimal, str, int, float]] = None,
    ) -> IssueResolutionResult:
        """
        Close the open report on ``booking_id``.

        ``refunded_full`` cancels the booking with the whole price refunded.
        ``refunded_partial`` refunds ``refund_amount`` (or the unused share of
        the window from the moment of the report) and cancels the booking, or
        completes it when the window is already over. ``denied`` refunds
        nothing; the booking completes now if its window is over, otherwise
        the clock completes it later.

        Raises:
            ValidationException: unknown resolution or refund amount out of range
            NotFoundException: unknown booking
            NotReportableException: no open report on the booking
        """
        now = ensure_utc(now) if now else utc_now()
        try:
            outcome = IssueResolution(resolution)
        except ValueError as exc:
            raise ValidationException(
                f"Unknown resolution {resolution}", details={"resolution": str(resolution)}
            ) from exc
        if outcome == IssueResolution.PENDING:
            raise ValidationException(
                "Resolution must close the report", details={"resolution": outcome.value}
            )
        if refund_amount is not None and outcome != IssueResolution.REFUNDED_PARTIAL:
            raise ValidationException(
                "A refund amount can only accompany a partial refund",
                details={"resolution": outcome.value},
            )

        booking = self.booking_service.get_booking(booking_id)
        events: List[Any] = []

        with self.index.space_lock(booking.space_id):
            booking = self.booking_service.get_booking(booking_id)
            report = self.issue_report_repository.get_open_for_booking(booking_id)
            if report is None or booking.booking_status != BookingStatus.ISSUE_REPORTED:
                raise NotReportableException(
                    f"Booking {booking_id} has no open issue report",
                    details={"booking_id": booking_id, "status": booking.status},
                )

            amount = self._resolve_amount(booking, report, outcome, refund_amount)
            elapsed = booking.end_at <= now
            target: Optional[BookingStatus]
            if outcome == IssueResolution.REFUNDED_FULL:
                target = BookingStatus.CANCELLED
            elif outcome == IssueResolution.REFUNDED_PARTIAL:
                target = BookingStatus.COMPLETED if elapsed else BookingStatus.CANCELLED
            else:
                target = BookingStatus.COMPLETED if elapsed else None

            with self.transaction():
                report = self.issue_report_repository.update(
                    report.id, resolution=outcome.value, resolved_at=now, refund_amount=amount
                )
                updated = booking
                if target == BookingStatus.CANCELLED:
                    updated = self.booking_service.apply_transition(
                        booking,
                        [BookingStatus.ISSUE_REPORTED],
                        BookingStatus.CANCELLED,
                        status_changed_at=now,
                        cancelled_at=now,
                        cancelled_by=ActorRole.SYSTEM.value,
                        cancellation_reason=f"issue_{outcome.value}",
                        refund_amount=amount,
                    )
                elif target == BookingStatus.COMPLETED:
                    updated = self.booking_service.apply_transition(
                        booking,
                        [BookingStatus.ISSUE_REPORTED],
                        BookingStatus.COMPLETED,
                        status_changed_at=now,
                        completed_at=now,
                        refund_amount=amount,
                    )

            if target == BookingStatus.CANCELLED:
                events.append(
                    BookingCancelled(
                        booking_id=booking_id,
                        space_id=updated.space_id,
                        cancelled_by=ActorRole.SYSTEM.value,
                        cancelled_at=now,
                        refund_amount=amount,
                    )
                )
            elif target == BookingStatus.COMPLETED:
                events.append(
                    BookingCompleted(
                        booking_id=booking_id, space_id=updated.space_id, completed_at=now
                    )
                )
            if target is not None:
                released: Optional[WindowReleased] = self.booking_service.release_hold(
                    updated, "refunded", now
                )
                if released is not None:
                    events.append(released)

        self.log_operation(
            "resolve_issue",
            booking_id=booking_id,
            resolution=outcome.value,
            refund=str(amount),
            status=updated.status,
        )
        for event in events:
            self.events.publish(event)
        return IssueResolutionResult(booking=updated, report=report, refund_amount=amount)
