# backend/parq/core/availability_index.py
"""
In-memory availability index.

Keeps, per parking space, the reserved windows ordered by start time.
Reserved windows on one space never overlap each other, so ordering by
start also orders by end. An overlap check bisects to the window end and
walks back only over the reservations it hits; booking lookups go through
a per-space map.

Every mutation runs under the space's re-entrant lock. Callers that need a
multi-step check-then-commit (reserve, then persist the booking row) hold
``space_lock(space_id)`` around the whole sequence; the lock is re-entrant
so the index methods can be called inside it.

The index is a cache of the booking table: ``rebuild`` re-derives it from
the held bookings and ``BookingService.check_index_consistency`` audits it.
"""

from __future__ import annotations

from bisect import bisect_left
from dataclasses import dataclass
from datetime import datetime, timezone
import logging
import threading
from typing import Dict, Iterable, List, Optional, Tuple

from ..domain.time_window import TimeWindow
from ..monitoring.prometheus_metrics import prometheus_metrics
from .enums import ReservationOutcome
from .exceptions import (
    ExtensionConflictException,
    NotFoundException,
    SpaceUnavailableException,
    ValidationException,
)

logger = logging.getLogger(__name__)

FAR_PAST = datetime(1970, 1, 1, tzinfo=timezone.utc)
FAR_FUTURE = datetime(9999, 1, 1, tzinfo=timezone.utc)


@dataclass(frozen=True)
class Reservation:
    """A window held on a space by one booking."""

    booking_id: str
    window: TimeWindow

    @property
    def start(self) -> datetime:
        return self.window.start

    @property
    def end(self) -> datetime:
        return self.window.end

    def to_dict(self) -> Dict[str, str]:
        return {"booking_id": self.booking_id, **self.window.to_dict()}


@dataclass(frozen=True)
class ReservationToken:
    """Proof that ``try_reserve`` succeeded; used to roll the reservation back."""

    space_id: str
    booking_id: str
    window: TimeWindow


class _SpaceTimeline:
    """
    Sorted, non-overlapping reservations for one space. Not thread-safe on its own.

    ``starts`` mirrors ``reservations`` so lookups bisect without rebuilding
    a key list, and ``by_booking`` finds a booking's slot without a scan.
    Starts are unique: reservations are non-empty and never overlap.
    """

    __slots__ = ("reservations", "starts", "by_booking")

    def __init__(self) -> None:
        self.reservations: List[Reservation] = []
        self.starts: List[datetime] = []
        self.by_booking: Dict[str, Reservation] = {}

    def conflicts(self, window: TimeWindow, exclude: Optional[str] = None) -> List[Reservation]:
        # Everything left of the cut starts before window.end; walk back while ends reach past
        # window.start. Ends are ordered because reservations never overlap.
        cut = bisect_left(self.starts, window.end)
        found: List[Reservation] = []
        for idx in range(cut - 1, -1, -1):
            reservation = self.reservations[idx]
            if reservation.end <= window.start:
                break
            if reservation.booking_id != exclude:
                found.append(reservation)
        found.reverse()
        return found

    def get(self, booking_id: str) -> Optional[Reservation]:
        return self.by_booking.get(booking_id)

    def _position(self, reservation: Reservation) -> int:
        return bisect_left(self.starts, reservation.start)

    def insert(self, reservation: Reservation) -> None:
        idx = self._position(reservation)
        self.reservations.insert(idx, reservation)
        self.starts.insert(idx, reservation.start)
        self.by_booking[reservation.booking_id] = reservation

    def remove(self, booking_id: str) -> Optional[Reservation]:
        reservation = self.by_booking.pop(booking_id, None)
        if reservation is None:
            return None
        idx = self._position(reservation)
        del self.reservations[idx]
        del self.starts[idx]
        return reservation

    def replace_end(self, booking_id: str, end: datetime) -> Reservation:
        # Start is unchanged, so the sort position is unchanged.
        current = self.by_booking[booking_id]
        updated = Reservation(booking_id, current.window.with_end(end))
        self.reservations[self._position(current)] = updated
        self.by_booking[booking_id] = updated
        return updated

    def clear(self) -> List[Reservation]:
        dropped = self.reservations
        self.reservations = []
        self.starts = []
        self.by_booking = {}
        return dropped

    def neighbours(self, window: TimeWindow) -> Tuple[Optional[Reservation], Optional[Reservation]]:
        """Closest reservations either side of a free ``window``."""
        cut = bisect_left(self.starts, window.end)
        before = self.reservations[cut - 1] if cut > 0 else None
        after = self.reservations[cut] if cut < len(self.reservations) else None
        return before, after


class AvailabilityIndex:
    """Thread-safe per-space interval index of reserved windows."""

    def __init__(self) -> None:
        self._registry_lock = threading.Lock()
        self._space_locks: Dict[str, threading.RLock] = {}
        self._timelines: Dict[str, _SpaceTimeline] = {}
        self._booking_spaces: Dict[str, str] = {}

    # ------------------------------------------------------------------
    # Locking
    # ------------------------------------------------------------------

    def space_lock(self, space_id: str) -> threading.RLock:
        """Re-entrant lock that linearizes every reservation change on ``space_id``."""
        with self._registry_lock:
            lock = self._space_locks.get(space_id)
            if lock is None:
                lock = threading.RLock()
                self._space_locks[space_id] = lock
                self._timelines[space_id] = _SpaceTimeline()
            return lock

    def _timeline(self, space_id: str) -> _SpaceTimeline:
        # Caller holds the space lock, which guarantees the timeline exists.
        return self._timelines[space_id]

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def try_reserve(self, space_id: str, window: TimeWindow, booking_id: str) -> ReservationToken:
        """
        Reserve ``window`` on ``space_id`` for ``booking_id``.

        Raises:
            SpaceUnavailableException: if the window overlaps an existing reservation
        """
        with self.space_lock(space_id):
            timeline = self._timeline(space_id)
            held = timeline.get(booking_id)
            if held is not None:
                if held.window == window:
                    return ReservationToken(space_id, booking_id, window)
                raise ValidationException(
                    f"Booking {booking_id} already holds {held.window} on space {space_id}",
                    details={"booking_id": booking_id, "space_id": space_id},
                )

            conflicts = timeline.conflicts(window)
            if conflicts:
                prometheus_metrics.record_index_operation(ReservationOutcome.CONFLICT.value)
                logger.info(
                    "Reservation rejected",
                    extra={
                        "space_id": space_id,
                        "booking_id": booking_id,
                        "window": str(window),
                        "conflicts": [c.booking_id for c in conflicts],
                    },
                )
                raise SpaceUnavailableException(
                    space_id, window.start, window.end, [c.to_dict() for c in conflicts]
                )

            timeline.insert(Reservation(booking_id, window))
            self._booking_spaces[booking_id] = space_id
            prometheus_metrics.record_index_operation(ReservationOutcome.RESERVED.value)
            prometheus_metrics.set_index_size(len(self._booking_spaces))
            return ReservationToken(space_id, booking_id, window)

    def release(self, space_id: str, booking_id: str) -> Optional[TimeWindow]:
        """Drop the booking's reservation. Returns the freed window, or None if none was held."""
        with self.space_lock(space_id):
            timeline = self._timeline(space_id)
            reservation = timeline.remove(booking_id)
            if reservation is None:
                return None
            self._booking_spaces.pop(booking_id, None)
            prometheus_metrics.record_index_operation(ReservationOutcome.RELEASED.value)
            prometheus_metrics.set_index_size(len(self._booking_spaces))
            return reservation.window

    def rollback(self, token: ReservationToken) -> None:
        """Undo a ``try_reserve`` whose booking row could not be persisted."""
        released = self.release(token.space_id, token.booking_id)
        if released is not None:
            logger.warning(
                "Rolled back reservation",
                extra={"space_id": token.space_id, "booking_id": token.booking_id},
            )

    def extend(self, space_id: str, booking_id: str, new_end: datetime) -> TimeWindow:
        """
        Push the end of the booking's reservation out to ``new_end``.

        The change is all-or-nothing: on conflict nothing is modified.

        Raises:
            NotFoundException: booking holds no reservation on the space
            ValidationException: ``new_end`` does not move the end forward
            ExtensionConflictException: ``[old_end, new_end)`` is reserved by someone else
        """
        with self.space_lock(space_id):
            timeline = self._timeline(space_id)
            current = timeline.get(booking_id)
            if current is None:
                raise NotFoundException(
                    f"Booking {booking_id} holds no reservation on space {space_id}",
                    details={"booking_id": booking_id, "space_id": space_id},
                )
            if new_end <= current.end:
                raise ValidationException(
                    "Extension must move the end time forward",
                    details={"booking_id": booking_id, "current_end": current.end.isoformat()},
                )

            added = TimeWindow(current.end, new_end)
            conflicts = timeline.conflicts(added, exclude=booking_id)
            if conflicts:
                prometheus_metrics.record_index_operation(
                    ReservationOutcome.EXTENSION_CONFLICT.value
                )
                raise ExtensionConflictException(
                    space_id, added.start, added.end, [c.to_dict() for c in conflicts]
                )

            extended = timeline.replace_end(booking_id, new_end).window
            prometheus_metrics.record_index_operation(ReservationOutcome.EXTENDED.value)
            return extended

    def reset_end(self, space_id: str, booking_id: str, end: datetime) -> None:
        """Shrink a reservation back to ``end``; compensation for a failed extension commit."""
        with self.space_lock(space_id):
            timeline = self._timeline(space_id)
            current = timeline.get(booking_id)
            if current is None or end >= current.end:
                return
            timeline.replace_end(booking_id, end)

    def rebuild(self, entries: Iterable[Tuple[str, str, TimeWindow]]) -> int:
        """
        Replace the whole index with ``(space_id, booking_id, window)`` entries.

        Entries that collide are skipped and logged; the booking table is
        expected to be overlap-free, so a collision is a data fault.
        """
        grouped: Dict[str, List[Tuple[str, TimeWindow]]] = {}
        for space_id, booking_id, window in entries:
            grouped.setdefault(space_id, []).append((booking_id, window))

        with self._registry_lock:
            space_ids = set(self._space_locks) | set(grouped)
            for space_id in space_ids:
                if space_id not in self._space_locks:
                    self._space_locks[space_id] = threading.RLock()
                    self._timelines[space_id] = _SpaceTimeline()

        loaded = 0
        for space_id in sorted(space_ids):
            with self.space_lock(space_id):
                timeline = self._timeline(space_id)
                for reservation in timeline.clear():
                    self._booking_spaces.pop(reservation.booking_id, None)
                for booking_id, window in sorted(grouped.get(space_id, []), key=lambda e: e[1]):
                    if timeline.get(booking_id) is not None or timeline.conflicts(window):
                        logger.error(
                            "Overlapping held bookings found while rebuilding index",
                            extra={"space_id": space_id, "booking_id": booking_id},
                        )
                        continue
                    timeline.insert(Reservation(booking_id, window))
                    self._booking_spaces[booking_id] = space_id
                    loaded += 1

        prometheus_metrics.set_index_size(len(self._booking_spaces))
        logger.info("Availability index rebuilt", extra={"reservations": loaded})
        return loaded

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def overlaps(self, space_id: str, window: TimeWindow) -> bool:
        with self.space_lock(space_id):
            return bool(self._timeline(space_id).conflicts(window))

    def conflicts(self, space_id: str, window: TimeWindow) -> List[Reservation]:
        with self.space_lock(space_id):
            return self._timeline(space_id).conflicts(window)

    def free_gap(self, space_id: str, window: TimeWindow) -> Optional[TimeWindow]:
        """Maximal free interval that contains ``window``, or None if ``window`` is not free."""
        with self.space_lock(space_id):
            timeline = self._timeline(space_id)
            if timeline.conflicts(window):
                return None
            before, after = timeline.neighbours(window)
            start = before.end if before else FAR_PAST
            end = after.start if after else FAR_FUTURE
            return TimeWindow(start, end)

    def windows(self, space_id: str) -> List[Reservation]:
        with self.space_lock(space_id):
            return list(self._timeline(space_id).reservations)

    def reservation_for(self, booking_id: str) -> Optional[Tuple[str, TimeWindow]]:
        space_id = self._booking_spaces.get(booking_id)
        if space_id is None:
            return None
        with self.space_lock(space_id):
            reservation = self._timeline(space_id).get(booking_id)
            if reservation is None:
                return None
            return space_id, reservation.window

    def snapshot(self) -> Dict[str, List[Reservation]]:
        """Copy of every space's reservations, taken space by space."""
        with self._registry_lock:
            space_ids = list(self._space_locks)
        return {space_id: self.windows(space_id) for space_id in space_ids}

    def __len__(self) -> int:
        return len(self._booking_spaces)


_index_singleton: Optional[AvailabilityIndex] = None
_index_singleton_lock = threading.Lock()


def get_availability_index() -> AvailabilityIndex:
    """Process-wide index shared by request handlers and the reconciliation worker."""
    global _index_singleton
    if _index_singleton is not None:
        return _index_singleton
    with _index_singleton_lock:
        if _index_singleton is None:
            _index_singleton = AvailabilityIndex()
        return _index_singleton
