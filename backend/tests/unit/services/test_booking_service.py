"""
Booking lifecycle tests against a real (in-memory SQLite) session.

All instants are passed explicitly so the clock-driven transitions are
deterministic.
"""

from decimal import Decimal

import pytest

from parq.core.enums import ActorRole
from parq.core.exceptions import (
    ConsistencyFault,
    InvalidWindowException,
    NotCancellableException,
    NotFoundException,
    PriceMismatchException,
    RepositoryException,
    ServiceException,
    SpaceUnavailableException,
    ValidationException,
)
from parq.domain.time_window import TimeWindow
from parq.events import BookingCancelled, BookingCreated, WindowReleased
from parq.integrations import CatalogError, FakeCatalogClient
from parq.models.booking import BookingStatus
from parq.services.booking_service import BookingService
from tests.helpers.clock import at, hours


@pytest.fixture
def service(booking_engine) -> BookingService:
    return booking_engine.bookings


def book(service, window=None, space_id="space-1", renter_id="renter-1", now=None, **kwargs):
    window = window or hours(10, 12)
    price = service.quote(space_id, window)
    return service.create(space_id, renter_id, window, price, now=now or at(8), **kwargs)


class TestCreate:
    def test_create_confirmed_booking(self, service, availability_index, published):
        booking = service.create("space-1", "renter-1", hours(10, 12), "10.00", now=at(8))

        assert booking.booking_status == BookingStatus.CONFIRMED
        assert booking.host_id == "host-1"
        assert booking.total_price == Decimal("10.00")
        assert booking.price_per_hour == Decimal("5.00")
        assert availability_index.reservation_for(booking.id) == ("space-1", hours(10, 12))
        assert isinstance(published[-1], BookingCreated)
        assert published[-1].booking_id == booking.id

    def test_overlapping_booking_is_rejected(self, service):
        book(service, hours(10, 12))

        with pytest.raises(SpaceUnavailableException):
            book(service, hours(11, 13), renter_id="renter-2")
        assert len(service.list_space_bookings("space-1")) == 1

    def test_back_to_back_bookings(self, service):
        first = book(service, hours(10, 12))
        second = book(service, hours(12, 14), renter_id="renter-2")

        assert first.id != second.id
        assert [b.id for b in service.list_space_bookings("space-1")] == [first.id, second.id]

    def test_start_in_the_past_is_rejected(self, service):
        with pytest.raises(InvalidWindowException):
            book(service, hours(10, 12), now=at(10, 10))

    def test_start_within_grace_is_accepted(self, service):
        booking = book(service, hours(10, 12), now=at(10, 3))
        assert booking.booking_status == BookingStatus.CONFIRMED

    def test_window_longer_than_a_week_is_rejected(self, service):
        with pytest.raises(InvalidWindowException):
            book(service, TimeWindow(at(10), at(10, day=8)))

    def test_unknown_space(self, service):
        with pytest.raises(NotFoundException):
            service.create("space-404", "renter-1", hours(10, 12), "10.00", now=at(8))

    def test_catalog_outage_is_a_service_error(self, unit_db, availability_index):
        class BrokenCatalog(FakeCatalogClient):
            def get_space(self, space_id):
                raise CatalogError("catalog down", 503)

        service = BookingService(unit_db, availability_index, BrokenCatalog())
        with pytest.raises(ServiceException):
            service.create("space-1", "renter-1", hours(10, 12), "10.00", now=at(8))

    def test_catalog_is_read_before_the_space_lock(
        self, service, catalog, availability_index, monkeypatch
    ):
        lock = availability_index.space_lock("space-1")
        lock_held = []
        get_space = catalog.get_space

        def recording_get_space(space_id):
            lock_held.append(lock._is_owned())
            return get_space(space_id)

        monkeypatch.setattr(catalog, "get_space", recording_get_space)
        with lock:
            # The waitlist claims offers this way.
            space = get_space("space-1")
            booking = service.create_for_space(space, "renter-1", hours(10, 12), "10.00", now=at(8))
        book(service, hours(12, 13))

        assert booking.host_id == "host-1"
        assert lock_held == [False, False]

    def test_price_mismatch(self, service, availability_index):
        with pytest.raises(PriceMismatchException) as exc:
            service.create("space-1", "renter-1", hours(10, 12), "9.00", now=at(8))
        assert exc.value.details["actual"] == "10.00"
        assert len(availability_index) == 0

    def test_price_within_tolerance(self, service):
        booking = service.create("space-1", "renter-1", hours(10, 12), "9.99", now=at(8))
        assert booking.total_price == Decimal("10.00")

    def test_expected_price_must_be_a_number(self, service):
        with pytest.raises(ValidationException):
            service.create("space-1", "renter-1", hours(10, 12), "ten", now=at(8))

    def test_failed_write_rolls_back_the_reservation(self, service, availability_index, monkeypatch):
        def fail(**kwargs):
            raise RepositoryException("disk full")

        monkeypatch.setattr(service.booking_repository, "create", fail)

        with pytest.raises(ServiceException):
            book(service, hours(10, 12))
        assert len(availability_index) == 0
        assert not availability_index.overlaps("space-1", hours(10, 12))

    def test_unknown_booking(self, service):
        with pytest.raises(NotFoundException):
            service.get_booking("01HZZZZZZZZZZZZZZZZZZZZZZZ")


class TestListings:
    def test_renter_bookings_newest_first(self, service):
        first = book(service, hours(10, 11), now=at(8))
        book(service, hours(11, 12), renter_id="renter-2", now=at(8, 5))
        second = book(service, hours(14, 15), now=at(8, 10))

        assert [b.id for b in service.list_renter_bookings("renter-1")] == [second.id, first.id]
        assert [b.id for b in service.list_renter_bookings("renter-1", limit=1)] == [second.id]
        assert service.list_renter_bookings("renter-9") == []

    def test_host_bookings_span_every_listed_space(self, service, catalog):
        catalog.add_space("space-3", "4.00", host_id="host-1")
        first = book(service, hours(10, 11), now=at(8))
        other_host = book(service, hours(10, 11), space_id="space-2", now=at(8, 5))
        second = book(
            service, hours(10, 11), space_id="space-3", renter_id="renter-2", now=at(8, 10)
        )
        service.cancel(first.id, ActorRole.RENTER, now=at(8, 20))

        assert [b.id for b in service.list_host_bookings("host-1")] == [second.id, first.id]
        assert [b.id for b in service.list_host_bookings("host-1", limit=1)] == [second.id]
        assert [b.id for b in service.list_host_bookings("host-2")] == [other_host.id]


class TestPayment:
    def test_pending_booking_holds_the_window(self, service, availability_index):
        booking = book(service, payment_confirmed=False)

        assert booking.booking_status == BookingStatus.PENDING
        assert availability_index.overlaps("space-1", hours(10, 12))

    def test_confirm_payment_is_idempotent(self, service):
        booking = book(service, payment_confirmed=False)

        confirmed = service.confirm_payment(booking.id, now=at(8, 5))
        again = service.confirm_payment(booking.id, now=at(8, 6))

        assert confirmed.booking_status == BookingStatus.CONFIRMED
        assert again.booking_status == BookingStatus.CONFIRMED

    def test_payment_failure_cancels_and_frees(self, service, availability_index, published):
        booking = book(service, payment_confirmed=False)

        cancelled = service.record_payment_failure(booking.id, now=at(8, 5))

        assert cancelled.booking_status == BookingStatus.CANCELLED
        assert cancelled.cancellation_reason == "payment_failed"
        assert cancelled.refund_amount == Decimal("0.00")
        assert not availability_index.overlaps("space-1", hours(10, 12))
        released = [e for e in published if isinstance(e, WindowReleased)]
        assert released[0].reason == "payment_failed"


class TestCancel:
    def test_renter_cancel_refunds_by_lead_time(self, service, availability_index, published):
        booking = book(service)

        result = service.cancel(booking.id, ActorRole.RENTER, "plans changed", now=at(7, 30))

        assert result.booking.booking_status == BookingStatus.CANCELLED
        assert result.booking.cancelled_by == "renter"
        assert result.refund.amount == Decimal("5.00")
        assert result.booking.refund_amount == Decimal("5.00")
        assert availability_index.reservation_for(booking.id) is None

        cancelled, released = published[-2:]
        assert isinstance(cancelled, BookingCancelled)
        assert isinstance(released, WindowReleased)
        assert (released.start, released.end) == (at(10), at(12))
        assert released.released_at == at(7, 30)

    def test_cancelled_booking_cannot_be_cancelled_again(self, service):
        booking = book(service)
        service.cancel(booking.id, "renter", now=at(8, 30))

        with pytest.raises(NotCancellableException):
            service.cancel(booking.id, "renter", now=at(8, 31))

    def test_renter_cannot_cancel_active_booking(self, service):
        booking = book(service)
        service.advance_by_clock(at(10))

        with pytest.raises(NotCancellableException):
            service.cancel(booking.id, ActorRole.RENTER, now=at(10, 30))

    def test_host_cancels_active_booking_for_cause(self, service, published):
        booking = book(service)
        service.advance_by_clock(at(10))

        result = service.cancel(booking.id, ActorRole.HOST, "gate broken", now=at(10, 30))

        assert result.refund.amount == Decimal("7.50")
        released = published[-1]
        assert isinstance(released, WindowReleased)
        # Only what is left of the window is advertised.
        assert (released.start, released.end) == (at(10, 30), at(12))

    def test_unknown_actor_is_rejected(self, service):
        booking = book(service)
        with pytest.raises(ValueError):
            service.cancel(booking.id, "landlord", now=at(8, 30))


class TestClock:
    def test_clock_activates_then_completes(self, service, availability_index):
        booking = book(service)

        assert service.advance_by_clock(at(9, 59))["activated"] == 0
        assert service.advance_by_clock(at(10))["activated"] == 1
        assert service.get_booking(booking.id).booking_status == BookingStatus.ACTIVE

        summary = service.advance_by_clock(at(12))
        assert summary["completed"] == 1
        completed = service.get_booking(booking.id)
        assert completed.booking_status == BookingStatus.COMPLETED
        assert completed.completed_at == at(12)
        assert availability_index.reservation_for(booking.id) is None

    def test_clock_is_idempotent(self, service):
        book(service)

        first = service.advance_by_clock(at(10))
        second = service.advance_by_clock(at(10))

        assert first["activated"] == 1
        assert not any(second.values())

    def test_lagging_clock_completes_in_one_pass(self, service):
        booking = book(service)

        summary = service.advance_by_clock(at(12, 30))

        assert summary["activated"] == 1
        assert summary["completed"] == 1
        assert service.get_booking(booking.id).booking_status == BookingStatus.COMPLETED

    def test_unpaid_booking_is_cancelled_at_start(self, service, availability_index, published):
        booking = book(service, hours(13, 14), space_id="space-2", payment_confirmed=False)

        assert service.advance_by_clock(at(12, 59))["unpaid_cancelled"] == 0
        summary = service.advance_by_clock(at(13))

        assert summary["unpaid_cancelled"] == 1
        cancelled = service.get_booking(booking.id)
        assert cancelled.booking_status == BookingStatus.CANCELLED
        assert cancelled.cancellation_reason == "payment_not_received"
        assert availability_index.reservation_for(booking.id) is None
        assert isinstance(published[-1], WindowReleased)


class TestIndexConsistency:
    def test_consistent_index_has_no_faults(self, service):
        book(service, hours(10, 12))
        book(service, hours(10, 12), space_id="space-2")
        assert service.check_index_consistency() == []

    def test_detects_each_kind_of_drift(self, service, availability_index):
        missing = book(service, hours(10, 12))
        mismatched = book(service, hours(10, 12), space_id="space-2")
        availability_index.release("space-1", missing.id)
        availability_index.extend("space-2", mismatched.id, at(13))
        availability_index.try_reserve("space-1", hours(15, 16), "ghost")

        faults = service.check_index_consistency()

        kinds = {(f.details["kind"], f.details["booking_id"]) for f in faults}
        assert kinds == {
            ("missing_in_index", missing.id),
            ("window_mismatch", mismatched.id),
            ("stale_in_index", "ghost"),
        }
        assert all(isinstance(f, ConsistencyFault) for f in faults)

    def test_rebuild_repairs_drift(self, service, availability_index):
        booking = book(service, hours(10, 12))
        availability_index.release("space-1", booking.id)
        availability_index.try_reserve("space-1", hours(15, 16), "ghost")

        assert service.rebuild_index() == 1
        assert service.check_index_consistency() == []
        assert availability_index.reservation_for(booking.id) == ("space-1", hours(10, 12))
