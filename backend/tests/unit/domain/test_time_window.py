from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from parq.core.exceptions import InvalidWindowException
from parq.domain.time_window import TimeWindow
from tests.helpers.clock import at, hours


class TestTimeWindow:
    def test_end_must_follow_start(self):
        with pytest.raises(InvalidWindowException):
            TimeWindow(at(10), at(10))
        with pytest.raises(InvalidWindowException):
            TimeWindow(at(11), at(10))

    def test_naive_datetimes_are_treated_as_utc(self):
        window = TimeWindow(datetime(2030, 6, 3, 10), datetime(2030, 6, 3, 12))
        assert window.start.tzinfo is not None
        assert window == hours(10, 12)

    def test_other_offsets_are_normalized(self):
        plus_two = timezone(timedelta(hours=2))
        window = TimeWindow(
            datetime(2030, 6, 3, 12, tzinfo=plus_two), datetime(2030, 6, 3, 14, tzinfo=plus_two)
        )
        assert window == hours(10, 12)

    def test_touching_windows_do_not_overlap(self):
        assert not hours(9, 10).overlaps(hours(10, 11))
        assert not hours(10, 11).overlaps(hours(9, 10))

    @pytest.mark.parametrize(
        "other",
        [hours(9, 11), hours(11, 13), hours(10, 12), hours(10, 11), hours(8, 14)],
    )
    def test_overlaps(self, other):
        assert hours(10, 12).overlaps(other)
        assert other.overlaps(hours(10, 12))

    def test_hours_is_exact_decimal(self):
        window = TimeWindow(at(10), at(11, 30))
        assert window.hours == Decimal("1.5")
        assert hours(10, 12).duration == timedelta(hours=2)

    def test_contains(self):
        assert hours(9, 13).contains(hours(10, 12))
        assert hours(10, 12).contains(hours(10, 12))
        assert not hours(10, 12).contains(hours(9, 11))
        assert hours(10, 12).contains_instant(at(10))
        assert not hours(10, 12).contains_instant(at(12))

    def test_remaining_after(self):
        window = hours(10, 12)
        assert window.remaining_after(at(9)) == timedelta(hours=2)
        assert window.remaining_after(at(11, 30)) == timedelta(minutes=30)
        assert window.remaining_after(at(13)) == timedelta(0)

    def test_with_end_keeps_start(self):
        extended = hours(10, 12).with_end(at(13))
        assert extended == hours(10, 13)
        with pytest.raises(InvalidWindowException):
            hours(10, 12).with_end(at(9))

    def test_ordering_by_start(self):
        assert sorted([hours(12, 13), hours(9, 10)]) == [hours(9, 10), hours(12, 13)]
