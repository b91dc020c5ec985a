"""
Waitlist tests: FIFO offers, deadlines, claims and the races around them.

The usual setup books ``[10, 12)`` on space-1 so that entries queue up,
then frees it by cancelling.
"""

from decimal import Decimal

import pytest

from parq.core.enums import ActorRole
from parq.core.exceptions import (
    BusinessRuleException,
    InvalidWindowException,
    NotFoundException,
    OfferExpiredException,
    OfferNotFoundException,
    PriceMismatchException,
    SpaceUnavailableException,
    ValidationException,
)
from parq.integrations import FakeNotifierClient, NotifierError
from parq.models.booking import BookingStatus
from parq.models.waitlist import WaitlistStatus
from parq.services.engine import build_booking_engine
from tests.helpers.clock import at, hours


@pytest.fixture
def bookings(booking_engine):
    return booking_engine.bookings


@pytest.fixture
def waitlist(booking_engine):
    return booking_engine.waitlist


def occupy(bookings, window=None, renter_id="renter-x", now=None):
    window = window or hours(10, 12)
    return bookings.create(
        "space-1", renter_id, window, bookings.quote("space-1", window), now=now or at(8)
    )


def queue(waitlist, names, window=None, max_price=None):
    window = window or hours(10, 12)
    return [
        waitlist.join("space-1", window, max_price, f"renter-{name}", now=at(8, n + 1))
        for n, name in enumerate(names)
    ]


def status_of(waitlist, entry):
    return waitlist.get_entry(entry.id).waitlist_status


class TestJoin:
    def test_entries_wait_while_window_is_taken(self, bookings, waitlist):
        occupy(bookings)
        a, b, c = queue(waitlist, "abc")

        assert [e.join_seq for e in (a, b, c)] == [1, 2, 3]
        assert all(e.waitlist_status == WaitlistStatus.WAITING for e in (a, b, c))
        assert [e.id for e in waitlist.list_space_entries("space-1")] == [a.id, b.id, c.id]

    def test_free_window_is_offered_straight_away(self, waitlist, policy):
        entry = waitlist.join("space-1", hours(10, 12), None, "renter-a", now=at(8))

        assert entry.waitlist_status == WaitlistStatus.OFFERED
        assert entry.offer_expires_at == at(8) + policy.waitlist_offer_ttl
        assert entry.offer_count == 1

    def test_join_does_not_reserve(self, bookings, waitlist):
        waitlist.join("space-1", hours(10, 12), None, "renter-a", now=at(8))
        assert not bookings.index.overlaps("space-1", hours(10, 12))

    def test_window_in_the_past(self, waitlist):
        with pytest.raises(InvalidWindowException):
            waitlist.join("space-1", hours(10, 12), None, "renter-a", now=at(11))

    def test_unknown_space(self, waitlist):
        with pytest.raises(NotFoundException):
            waitlist.join("space-404", hours(10, 12), None, "renter-a", now=at(8))

    def test_negative_price_cap(self, waitlist):
        with pytest.raises(ValidationException):
            waitlist.join("space-1", hours(10, 12), "-1", "renter-a", now=at(8))

    def test_rate_above_cap_is_never_offered(self, waitlist):
        entry = waitlist.join("space-1", hours(10, 12), "4.00", "renter-a", now=at(8))
        assert entry.waitlist_status == WaitlistStatus.WAITING
        assert entry.max_price == Decimal("4.00")


class TestOffers:
    def test_freed_window_goes_to_the_head_of_the_queue(self, bookings, waitlist, notifier):
        booking = occupy(bookings)
        a, b, c = queue(waitlist, "abc")

        bookings.cancel(booking.id, ActorRole.RENTER, now=at(8, 10))

        offered = waitlist.get_entry(a.id)
        assert offered.waitlist_status == WaitlistStatus.OFFERED
        assert offered.offered_at == at(8, 10)
        assert offered.offer_expires_at == at(8, 25)
        # Overlapping offers are never outstanding together.
        assert status_of(waitlist, b) == WaitlistStatus.WAITING
        assert status_of(waitlist, c) == WaitlistStatus.WAITING

        sent = notifier.sent[-1]
        assert sent.template == "waitlist_offer"
        assert sent.recipient_id == "renter-a"
        assert sent.data["entry_id"] == a.id

    def test_fifo_across_expiries(self, bookings, waitlist):
        booking = occupy(bookings)
        a, b, c = queue(waitlist, "abc")
        bookings.cancel(booking.id, ActorRole.RENTER, now=at(8, 10))

        first = waitlist.expire_sweep(at(8, 26))
        assert first["offers_expired"] == 1
        assert first["offered"] == 1
        assert status_of(waitlist, b) == WaitlistStatus.OFFERED

        second = waitlist.expire_sweep(at(8, 42))
        assert second["offers_expired"] == 1
        assert status_of(waitlist, c) == WaitlistStatus.OFFERED

        claimed = waitlist.claim(c.id, now=at(8, 45))

        assert claimed.renter_id == "renter-c"
        assert claimed.window == hours(10, 12)
        for entry in (a, b):
            current = waitlist.get_entry(entry.id)
            assert current.waitlist_status == WaitlistStatus.WAITING
            assert current.passed_over is True
        closed = waitlist.get_entry(c.id)
        assert closed.waitlist_status == WaitlistStatus.CLAIMED
        assert closed.booking_id == claimed.id

    def test_disjoint_entries_are_offered_together(self, bookings, waitlist):
        booking = occupy(bookings, hours(10, 14))
        early = waitlist.join("space-1", hours(10, 11), None, "renter-a", now=at(8, 1))
        late = waitlist.join("space-1", hours(12, 13), None, "renter-b", now=at(8, 2))

        bookings.cancel(booking.id, ActorRole.HOST, now=at(8, 10))

        assert status_of(waitlist, early) == WaitlistStatus.OFFERED
        assert status_of(waitlist, late) == WaitlistStatus.OFFERED

    def test_entry_outside_the_freed_gap_waits(self, bookings, waitlist):
        occupy(bookings, hours(12, 14), renter_id="renter-y")
        booking = occupy(bookings, hours(10, 12))
        entry = waitlist.join("space-1", hours(11, 13), None, "renter-a", now=at(8, 1))

        bookings.cancel(booking.id, ActorRole.RENTER, now=at(8, 10))

        # [10, 12) is free again but [12, 14) still blocks the rest of the wish.
        assert status_of(waitlist, entry) == WaitlistStatus.WAITING

    def test_passed_over_entry_gets_its_turn_back_on_next_release(self, bookings, waitlist):
        booking = occupy(bookings)
        a, b = queue(waitlist, "ab")
        bookings.cancel(booking.id, ActorRole.RENTER, now=at(8, 10))
        waitlist.expire_sweep(at(8, 26))
        waitlist.leave(b.id, now=at(8, 30))

        # Matching without a release does not bring A back.
        assert status_of(waitlist, a) == WaitlistStatus.WAITING

        other = occupy(bookings, hours(14, 15), renter_id="renter-y", now=at(8, 32))
        bookings.cancel(other.id, ActorRole.RENTER, now=at(8, 35))

        again = waitlist.get_entry(a.id)
        assert again.waitlist_status == WaitlistStatus.OFFERED
        assert again.passed_over is False
        assert again.offer_count == 2

    def test_notifier_failure_does_not_undo_the_offer(
        self, unit_db, availability_index, catalog, policy
    ):
        engine = build_booking_engine(
            unit_db,
            availability_index,
            catalog,
            FakeNotifierClient(fail_with=NotifierError("dispatcher down")),
            policy,
        )

        entry = engine.waitlist.join("space-1", hours(10, 12), None, "renter-a", now=at(8))

        assert entry.waitlist_status == WaitlistStatus.OFFERED


class TestClaim:
    def test_conflict_then_waitlist_then_claim(self, bookings, waitlist):
        held = occupy(bookings, hours(10, 12), renter_id="renter-1")
        with pytest.raises(SpaceUnavailableException):
            bookings.create("space-1", "renter-x", hours(11, 13), "10.00", now=at(8, 5))
        entry = waitlist.join("space-1", hours(11, 13), "10", "renter-x", now=at(8, 5))
        assert entry.waitlist_status == WaitlistStatus.WAITING

        bookings.advance_by_clock(at(10))
        bookings.cancel(held.id, ActorRole.HOST, "double booked", now=at(10, 30))

        offered = waitlist.get_entry(entry.id)
        assert offered.waitlist_status == WaitlistStatus.OFFERED
        assert offered.offer_expires_at == at(10, 45)

        booking = waitlist.claim(entry.id, now=at(10, 35))

        assert booking.booking_status == BookingStatus.CONFIRMED
        assert booking.window == hours(11, 13)
        assert booking.total_price == Decimal("10.00")
        assert waitlist.get_entry(entry.id).waitlist_status == WaitlistStatus.CLAIMED

    def test_claim_after_deadline_fails_without_sweep(self, bookings, waitlist):
        booking = occupy(bookings)
        a, b = queue(waitlist, "ab")
        bookings.cancel(booking.id, ActorRole.RENTER, now=at(8, 10))

        with pytest.raises(OfferExpiredException):
            waitlist.claim(a.id, now=at(8, 30))

        lapsed = waitlist.get_entry(a.id)
        assert lapsed.waitlist_status == WaitlistStatus.WAITING
        assert lapsed.passed_over is True
        assert status_of(waitlist, b) == WaitlistStatus.OFFERED
        assert not bookings.index.overlaps("space-1", hours(10, 12))

    def test_claim_at_the_deadline_is_too_late(self, bookings, waitlist):
        booking = occupy(bookings)
        (a,) = queue(waitlist, "a")
        bookings.cancel(booking.id, ActorRole.RENTER, now=at(8, 10))

        with pytest.raises(OfferExpiredException):
            waitlist.claim(a.id, now=at(8, 25))

    def test_claim_loses_race_to_direct_booking(self, bookings, waitlist):
        booking = occupy(bookings)
        (a,) = queue(waitlist, "a")
        bookings.cancel(booking.id, ActorRole.RENTER, now=at(8, 10))
        occupy(bookings, renter_id="renter-fast", now=at(8, 15))

        with pytest.raises(SpaceUnavailableException):
            waitlist.claim(a.id, now=at(8, 20))

        entry = waitlist.get_entry(a.id)
        assert entry.waitlist_status == WaitlistStatus.WAITING
        assert entry.passed_over is False

    def test_price_rise_after_offer(self, bookings, waitlist, catalog):
        booking = occupy(bookings)
        (a,) = queue(waitlist, "a", max_price="6.00")
        bookings.cancel(booking.id, ActorRole.RENTER, now=at(8, 10))
        assert status_of(waitlist, a) == WaitlistStatus.OFFERED

        catalog.add_space("space-1", "12.00", host_id="host-1")

        with pytest.raises(PriceMismatchException):
            waitlist.claim(a.id, now=at(8, 15))
        assert status_of(waitlist, a) == WaitlistStatus.WAITING

    def test_delisted_space_expires_the_entry(self, bookings, waitlist, catalog):
        booking = occupy(bookings)
        (a,) = queue(waitlist, "a")
        bookings.cancel(booking.id, ActorRole.RENTER, now=at(8, 10))
        catalog.remove_space("space-1")

        with pytest.raises(NotFoundException):
            waitlist.claim(a.id, now=at(8, 15))
        assert status_of(waitlist, a) == WaitlistStatus.EXPIRED

    def test_catalog_is_read_outside_the_space_lock(
        self, bookings, waitlist, catalog, availability_index, monkeypatch
    ):
        booking = occupy(bookings)
        (a,) = queue(waitlist, "a")
        bookings.cancel(booking.id, ActorRole.RENTER, now=at(8, 10))

        lock = availability_index.space_lock("space-1")
        lock_held = []
        get_space = catalog.get_space

        def recording_get_space(space_id):
            lock_held.append(lock._is_owned())
            return get_space(space_id)

        monkeypatch.setattr(catalog, "get_space", recording_get_space)
        claimed = waitlist.claim(a.id, now=at(8, 15))

        assert claimed.window == hours(10, 12)
        assert lock_held
        assert not any(lock_held)

    def test_claim_without_offer(self, bookings, waitlist):
        occupy(bookings)
        (a,) = queue(waitlist, "a")

        with pytest.raises(OfferNotFoundException):
            waitlist.claim(a.id, now=at(8, 15))
        with pytest.raises(OfferNotFoundException):
            waitlist.claim("01HZZZZZZZZZZZZZZZZZZZZZZZ", now=at(8, 15))


class TestLeave:
    def test_leaving_with_a_live_offer_passes_it_on(self, bookings, waitlist):
        booking = occupy(bookings)
        a, b = queue(waitlist, "ab")
        bookings.cancel(booking.id, ActorRole.RENTER, now=at(8, 10))

        left = waitlist.leave(a.id, now=at(8, 12))

        assert left.waitlist_status == WaitlistStatus.CANCELLED
        assert status_of(waitlist, b) == WaitlistStatus.OFFERED

    def test_leaving_twice(self, bookings, waitlist):
        occupy(bookings)
        (a,) = queue(waitlist, "a")
        waitlist.leave(a.id, now=at(8, 12))

        with pytest.raises(BusinessRuleException):
            waitlist.leave(a.id, now=at(8, 13))


class TestSweep:
    def test_entries_past_their_start_expire(self, bookings, waitlist):
        occupy(bookings)
        (a,) = queue(waitlist, "a")

        summary = waitlist.expire_sweep(at(10, 10))

        assert summary["entries_expired"] == 1
        assert status_of(waitlist, a) == WaitlistStatus.EXPIRED

    def test_sweep_with_nothing_to_do(self, waitlist):
        assert waitlist.expire_sweep(at(8)) == {
            "offers_expired": 0,
            "entries_expired": 0,
            "offered": 0,
            "errors": 0,
        }
