from decimal import Decimal

import pytest

from parq.core.exceptions import NotFoundException, NotReportableException, ValidationException
from parq.events import BookingCancelled, WindowReleased
from parq.models.booking import BookingStatus
from parq.models.issue_report import IssueResolution
from parq.models.waitlist import WaitlistStatus
from tests.helpers.clock import at, hours

DESCRIPTION = "Another car is parked in the space"


@pytest.fixture
def bookings(booking_engine):
    return booking_engine.bookings


@pytest.fixture
def issues(booking_engine):
    return booking_engine.issues


@pytest.fixture
def booking(bookings):
    return bookings.create("space-1", "renter-1", hours(10, 12), "10.00", now=at(8))


class TestReport:
    def test_report_moves_booking_to_issue_reported(self, bookings, issues, booking):
        report = issues.report(booking.id, "blocked", DESCRIPTION, now=at(10, 5))

        assert report.resolution == IssueResolution.PENDING.value
        assert report.reported_at == at(10, 5)
        assert bookings.get_booking(booking.id).booking_status == BookingStatus.ISSUE_REPORTED
        # The window stays held while the report is open.
        assert bookings.index.reservation_for(booking.id) == ("space-1", hours(10, 12))
        assert [r.id for r in issues.list_reports(booking.id)] == [report.id]

    def test_report_on_active_booking(self, bookings, issues, booking):
        bookings.advance_by_clock(at(10))
        report = issues.report(booking.id, "damaged", DESCRIPTION, now=at(11))
        assert report.issue_type == "damaged"

    def test_pending_booking_is_not_reportable(self, bookings, issues):
        pending = bookings.create(
            "space-1", "renter-1", hours(10, 12), "10.00", payment_confirmed=False, now=at(8)
        )
        with pytest.raises(NotReportableException):
            issues.report(pending.id, "blocked", DESCRIPTION, now=at(10, 5))

    def test_only_one_open_report(self, issues, booking):
        issues.report(booking.id, "blocked", DESCRIPTION, now=at(10, 5))
        with pytest.raises(NotReportableException):
            issues.report(booking.id, "no_access", DESCRIPTION, now=at(10, 6))

    @pytest.mark.parametrize(
        "issue_type,description",
        [("flooded", DESCRIPTION), ("blocked", "bad"), ("blocked", "   ")],
    )
    def test_invalid_reports(self, issues, booking, issue_type, description):
        with pytest.raises(ValidationException):
            issues.report(booking.id, issue_type, description, now=at(10, 5))

    def test_unknown_booking(self, issues):
        with pytest.raises(NotFoundException):
            issues.report("01HZZZZZZZZZZZZZZZZZZZZZZZ", "blocked", DESCRIPTION, now=at(10))


class TestEvaluate:
    def test_blocked_at_start_suggests_full_refund(self, issues, booking):
        issues.report(booking.id, "blocked", DESCRIPTION, now=at(10, 5))

        result = issues.evaluate(booking.id)

        assert result.resolution == IssueResolution.REFUNDED_FULL.value
        assert result.amount == Decimal("10.00")

    def test_no_report(self, issues, booking):
        with pytest.raises(NotFoundException):
            issues.evaluate(booking.id)


class TestResolve:
    def test_full_refund_cancels_and_frees_the_rest(
        self, bookings, issues, booking, booking_engine, published
    ):
        entry = booking_engine.waitlist.join(
            "space-1", hours(11, 12), None, "renter-2", now=at(8, 30)
        )
        issues.report(booking.id, "blocked", DESCRIPTION, now=at(10, 5))

        result = issues.resolve(booking.id, "refunded_full", now=at(10, 10))

        assert result.booking.booking_status == BookingStatus.CANCELLED
        assert result.booking.cancellation_reason == "issue_refunded_full"
        assert result.refund_amount == Decimal("10.00")
        assert result.report.resolution == IssueResolution.REFUNDED_FULL.value
        assert result.report.resolved_at == at(10, 10)
        assert bookings.index.reservation_for(booking.id) is None

        cancelled, released = [
            e for e in published if isinstance(e, (BookingCancelled, WindowReleased))
        ]
        assert released.reason == "refunded"
        assert released.start == at(10, 10)
        waiting = booking_engine.waitlist.get_entry(entry.id)
        assert waiting.waitlist_status == WaitlistStatus.OFFERED

    def test_partial_refund_defaults_to_unused_time(self, bookings, issues, booking):
        bookings.advance_by_clock(at(10))
        issues.report(booking.id, "damaged", DESCRIPTION, now=at(11))

        result = issues.resolve(booking.id, IssueResolution.REFUNDED_PARTIAL, now=at(11, 30))

        assert result.refund_amount == Decimal("5.00")
        assert result.booking.booking_status == BookingStatus.CANCELLED

    def test_partial_refund_after_window_completes(self, bookings, issues, booking, published):
        issues.report(booking.id, "damaged", DESCRIPTION, now=at(11))

        result = issues.resolve(booking.id, "refunded_partial", now=at(12, 30), refund_amount="3.00")

        assert result.refund_amount == Decimal("3.00")
        assert result.booking.booking_status == BookingStatus.COMPLETED
        assert bookings.index.reservation_for(booking.id) is None
        # Nothing usable is left to advertise.
        assert not any(isinstance(e, WindowReleased) for e in published)

    def test_partial_amount_out_of_range(self, bookings, issues, booking):
        issues.report(booking.id, "damaged", DESCRIPTION, now=at(11))

        with pytest.raises(ValidationException):
            issues.resolve(booking.id, "refunded_partial", now=at(11, 30), refund_amount="11.00")
        assert bookings.get_booking(booking.id).booking_status == BookingStatus.ISSUE_REPORTED

    def test_denied_before_end_waits_for_the_clock(self, bookings, issues, booking):
        issues.report(booking.id, "other", DESCRIPTION, now=at(10, 15))

        result = issues.resolve(booking.id, "denied", now=at(10, 30))

        assert result.refund_amount == Decimal("0.00")
        assert result.booking.booking_status == BookingStatus.ISSUE_REPORTED
        assert bookings.index.reservation_for(booking.id) == ("space-1", hours(10, 12))

        summary = bookings.advance_by_clock(at(12))
        assert summary["disputes_closed"] == 1
        assert bookings.get_booking(booking.id).booking_status == BookingStatus.COMPLETED
        assert bookings.index.reservation_for(booking.id) is None

    def test_open_report_blocks_completion(self, bookings, issues, booking):
        issues.report(booking.id, "blocked", DESCRIPTION, now=at(10, 5))

        assert bookings.advance_by_clock(at(12))["disputes_closed"] == 0
        assert bookings.get_booking(booking.id).booking_status == BookingStatus.ISSUE_REPORTED

    def test_resolve_without_open_report(self, issues, booking):
        with pytest.raises(NotReportableException):
            issues.resolve(booking.id, "refunded_full", now=at(10, 10))

    def test_resolve_twice(self, issues, booking):
        issues.report(booking.id, "blocked", DESCRIPTION, now=at(10, 5))
        issues.resolve(booking.id, "refunded_full", now=at(10, 10))

        with pytest.raises(NotReportableException):
            issues.resolve(booking.id, "refunded_full", now=at(10, 11))

    @pytest.mark.parametrize(
        "resolution,amount",
        [("pending", None), ("refunded_full", "1.00"), ("denied", "1.00"), ("approved", None)],
    )
    def test_invalid_resolutions(self, issues, booking, resolution, amount):
        issues.report(booking.id, "blocked", DESCRIPTION, now=at(10, 5))
        with pytest.raises(ValidationException):
            issues.resolve(booking.id, resolution, now=at(10, 10), refund_amount=amount)
