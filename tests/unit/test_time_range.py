from datetime import datetime, time, timedelta, timezone

import pytest

from salonbook.core.time_range import (
    TimeRange,
    ensure_utc,
    minutes_between,
    minutes_to_time,
    overlaps,
    time_to_minutes,
)

BASE = datetime(2030, 3, 4, 10, 0, tzinfo=timezone.utc)


class TestOverlaps:
    def test_partial_overlap(self):
        assert overlaps(BASE, BASE + timedelta(minutes=45), BASE + timedelta(minutes=15), BASE + timedelta(minutes=60))

    def test_touching_boundaries_do_not_overlap(self):
        first = TimeRange.from_duration(BASE, 30)
        second = TimeRange.from_duration(BASE + timedelta(minutes=30), 30)
        assert not first.overlaps(second)
        assert not second.overlaps(first)

    def test_containment_overlaps(self):
        outer = TimeRange.from_duration(BASE, 120)
        inner = TimeRange.from_duration(BASE + timedelta(minutes=30), 15)
        assert outer.overlaps(inner)
        assert inner.overlaps(outer)


class TestTimeRange:
    def test_naive_datetimes_are_treated_as_utc(self):
        naive = datetime(2030, 3, 4, 10, 0)
        assert ensure_utc(naive) == BASE
        assert TimeRange.from_duration(naive, 30).start.tzinfo is not None

    def test_other_offsets_are_normalised(self):
        ist = timezone(timedelta(hours=5, minutes=30))
        local = datetime(2030, 3, 4, 15, 30, tzinfo=ist)
        assert ensure_utc(local) == BASE

    def test_duration_and_contains(self):
        window = TimeRange.from_duration(BASE, 45)
        assert window.duration_minutes == 45
        assert window.contains(BASE)
        assert not window.contains(BASE + timedelta(minutes=45))

    def test_rejects_empty_or_inverted_ranges(self):
        with pytest.raises(ValueError):
            TimeRange(BASE, BASE)
        with pytest.raises(ValueError):
            TimeRange.from_duration(BASE, 0)

    def test_is_past(self):
        window = TimeRange.from_duration(BASE, 30)
        assert window.is_past(BASE + timedelta(seconds=1))
        assert not window.is_past(BASE)


def test_minute_helpers():
    assert time_to_minutes(time(9, 45)) == 585
    assert minutes_to_time(585) == time(9, 45)
    assert minutes_between(BASE, BASE + timedelta(hours=2)) == 120
    with pytest.raises(ValueError):
        minutes_to_time(24 * 60)
