# backend/tests/test_date_range.py

from datetime import datetime, timedelta, timezone

import pytest

from kaspi_review.kaspi.date_range import (
    WINDOW_STEP,
    DateWindow,
    split_date_range,
    to_epoch_millis,
)


def _dt(day: int, hour: int = 0) -> datetime:
    return datetime(2024, 1, 1, hour, tzinfo=timezone.utc) + timedelta(days=day - 1)


def test_thirty_days_split_into_three_windows():
    start = _dt(1)
    end = start + timedelta(days=30)

    windows = split_date_range(start, end, max_days=14)

    assert len(windows) == 3
    assert windows[0].duration == timedelta(days=14)
    assert windows[1].duration == timedelta(days=14)
    assert timedelta(days=1) < windows[2].duration <= timedelta(days=2)
    assert windows[-1].end == end


@pytest.mark.parametrize("days", [1, 7, 13, 14, 15, 28, 29, 45, 100])
def test_windows_are_contiguous_and_bounded(days):
    start = _dt(3, 5)
    end = start + timedelta(days=days, hours=7)

    windows = split_date_range(start, end, max_days=14)

    assert windows[0].start == start
    assert windows[-1].end == end
    for previous, current in zip(windows, windows[1:]):
        assert current.start == previous.end + WINDOW_STEP
    for window in windows:
        assert window.duration <= timedelta(days=14)


def test_short_range_is_single_window():
    start = _dt(1)
    end = start + timedelta(hours=3)

    assert split_date_range(start, end) == [DateWindow(start, end)]


@pytest.mark.parametrize("offset", [timedelta(0), timedelta(days=-1)])
def test_start_not_before_end_returns_empty(offset):
    start = _dt(10)
    assert split_date_range(start, start + offset) == []


def test_invalid_max_days_raises():
    with pytest.raises(ValueError):
        split_date_range(_dt(1), _dt(2), max_days=0)


def test_date_window_rejects_inverted_bounds():
    with pytest.raises(ValueError):
        DateWindow(_dt(2), _dt(1))


def test_naive_datetimes_are_treated_as_utc():
    naive = datetime(2024, 1, 1)
    assert to_epoch_millis(naive) == to_epoch_millis(naive.replace(tzinfo=timezone.utc))
    assert to_epoch_millis(naive) == 1704067200000


def test_trailing_millisecond_is_still_covered():
    start = _dt(1)
    end = start + timedelta(days=14) + WINDOW_STEP

    windows = split_date_range(start, end, max_days=14)

    assert len(windows) == 2
    assert windows[1].start == windows[1].end == end
