"""Booking state machine."""

from typing import Dict, FrozenSet, Union

from ..core.exceptions import InvalidTransitionException
from ..models.booking import BookingStatus

BOOKING_TRANSITIONS: Dict[BookingStatus, FrozenSet[BookingStatus]] = {
    BookingStatus.PENDING: frozenset({BookingStatus.CONFIRMED, BookingStatus.CANCELLED}),
    BookingStatus.CONFIRMED: frozenset(
        {BookingStatus.ACTIVE, BookingStatus.CANCELLED, BookingStatus.ISSUE_REPORTED}
    ),
    BookingStatus.ACTIVE: frozenset(
        {BookingStatus.COMPLETED, BookingStatus.CANCELLED, BookingStatus.ISSUE_REPORTED}
    ),
    BookingStatus.ISSUE_REPORTED: frozenset({BookingStatus.COMPLETED, BookingStatus.CANCELLED}),
    BookingStatus.COMPLETED: frozenset(),
    BookingStatus.CANCELLED: frozenset(),
}

_missing = set(BookingStatus) - set(BOOKING_TRANSITIONS)
if _missing:
    raise RuntimeError(f"Booking transition table is missing statuses: {sorted(_missing)}")


def can_transition(
    current: Union[BookingStatus, str], target: Union[BookingStatus, str]
) -> bool:
    return BookingStatus(target) in BOOKING_TRANSITIONS[BookingStatus(current)]


def assert_booking_transition(
    booking_id: str, current: Union[BookingStatus, str], target: Union[BookingStatus, str]
) -> None:
    if not can_transition(current, target):
        raise InvalidTransitionException(
            booking_id, BookingStatus(current).value, BookingStatus(target).value
        )
