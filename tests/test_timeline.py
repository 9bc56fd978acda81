import random
from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from app.errors import InvalidTimeline
from app.services import timeline
from app.services.timeline import resolve, timeline_window
from app.types.reminder_contract import Timeline

UTC = timezone.utc

# Saturday afternoon
NOW = datetime(2025, 3, 15, 13, 45, 12, 345678, tzinfo=UTC)


class FixedRandom:
    def __init__(self, value: float):
        self.value = value

    def random(self) -> float:
        return self.value


def _utc(*args) -> datetime:
    return datetime(*args, tzinfo=UTC)


@pytest.mark.parametrize(
    "bucket, expected",
    [
        (Timeline.IMMINENT, (NOW, NOW + timedelta(minutes=5))),
        (Timeline.TODAY, (NOW, _utc(2025, 3, 16))),
        (Timeline.TOMORROW, (_utc(2025, 3, 16), _utc(2025, 3, 17))),
        (Timeline.THIS_WEEK, (NOW, _utc(2025, 3, 17))),
        (Timeline.NEXT_WEEK, (_utc(2025, 3, 17), _utc(2025, 3, 24))),
        (Timeline.THIS_MONTH, (NOW, _utc(2025, 4, 1))),
        (Timeline.NEXT_MONTH, (_utc(2025, 4, 1), _utc(2025, 5, 1))),
        (Timeline.LATER_THIS_YEAR, (NOW, _utc(2026, 1, 1))),
        (Timeline.NEXT_YEAR, (_utc(2026, 1, 1), _utc(2027, 1, 1))),
    ],
)
def test_windows(bucket, expected):
    assert timeline_window(bucket, NOW) == expected


@pytest.mark.parametrize("bucket", list(Timeline))
@pytest.mark.parametrize("seed", range(20))
def test_resolved_instant_stays_inside_window(bucket, seed):
    start, end = timeline_window(bucket, NOW)
    due = resolve(bucket, NOW, random.Random(seed))
    assert start <= due < end


@pytest.mark.parametrize("bucket", list(Timeline))
def test_fraction_bounds(bucket):
    start, end = timeline_window(bucket, NOW)
    assert resolve(bucket, NOW, FixedRandom(0.0)) == start
    assert resolve(bucket, NOW, FixedRandom(0.9999999999999999)) < end


def test_same_seed_same_instant():
    a = resolve(Timeline.NEXT_MONTH, NOW, random.Random(42))
    b = resolve(Timeline.NEXT_MONTH, NOW, random.Random(42))
    assert a == b


def test_imminent_within_five_minutes():
    rng = random.Random(7)
    for _ in range(200):
        due = resolve(Timeline.IMMINENT, NOW, rng)
        assert NOW <= due < NOW + timedelta(minutes=5)


@pytest.mark.parametrize(
    "now",
    [
        _utc(2025, 6, 10, 0, 0, 0),
        _utc(2025, 6, 10, 12, 0, 0),
        _utc(2025, 6, 10, 23, 59, 59, 999999),
        _utc(2025, 12, 31, 23, 0, 0),
        _utc(2024, 2, 28, 8, 30, 0),
    ],
)
def test_tomorrow_is_next_calendar_day(now):
    rng = random.Random(3)
    for _ in range(50):
        due = resolve(Timeline.TOMORROW, now, rng)
        assert due.date() == now.date() + timedelta(days=1)


@pytest.mark.parametrize(
    "now",
    [_utc(2025, 1, 1), _utc(2025, 7, 4, 9, 0), _utc(2025, 12, 31, 23, 59, 59)],
)
def test_next_year_within_following_year(now):
    rng = random.Random(11)
    for _ in range(50):
        assert resolve(Timeline.NEXT_YEAR, now, rng).year == now.year + 1


def test_next_month_rolls_over_december():
    now = _utc(2025, 12, 20, 10, 0)
    start, end = timeline_window(Timeline.NEXT_MONTH, now)
    assert (start, end) == (_utc(2026, 1, 1), _utc(2026, 2, 1))


def test_next_month_from_january_covers_february():
    now = _utc(2024, 1, 31, 22, 0)
    start, end = timeline_window(Timeline.NEXT_MONTH, now)
    assert (start, end) == (_utc(2024, 2, 1), _utc(2024, 3, 1))


@pytest.mark.parametrize(
    "now",
    [_utc(2025, 1, 31, 0, 0), _utc(2025, 2, 28, 17, 30), _utc(2024, 2, 29, 23, 59), _utc(2025, 12, 31, 1, 0)],
)
def test_this_month_on_last_day_is_at_most_one_day(now):
    start, end = timeline_window(Timeline.THIS_MONTH, now)
    assert end - start <= timedelta(days=1)
    due = resolve(Timeline.THIS_MONTH, now, random.Random(5))
    assert due.month == now.month


def test_this_week_on_monday_runs_to_following_monday():
    monday = _utc(2025, 3, 17, 10, 0)
    start, end = timeline_window(Timeline.THIS_WEEK, monday)
    assert start == monday
    assert end == _utc(2025, 3, 24)


def test_this_week_on_sunday_ends_at_midnight():
    sunday = _utc(2025, 3, 16, 22, 0)
    _, end = timeline_window(Timeline.THIS_WEEK, sunday)
    assert end == _utc(2025, 3, 17)


def test_calendar_boundaries_follow_the_reference_clock():
    tz = ZoneInfo("America/New_York")
    now = datetime(2025, 3, 15, 22, 30, tzinfo=tz)  # already the 16th in UTC
    due = resolve(Timeline.TOMORROW, now, random.Random(1))
    assert due.tzinfo is tz
    assert due.date() == datetime(2025, 3, 16).date()


def test_zero_width_window_returns_start(monkeypatch):
    monkeypatch.setattr(timeline, "timeline_window", lambda bucket, now: (now, now))
    assert resolve(Timeline.TODAY, NOW, FixedRandom(0.5)) == NOW


def test_inverted_window_returns_start(monkeypatch):
    later = NOW + timedelta(seconds=1)
    monkeypatch.setattr(timeline, "timeline_window", lambda bucket, now: (later, now))
    assert resolve(Timeline.TODAY, NOW, FixedRandom(0.5)) == later


def test_string_values_and_member_names_accepted():
    assert timeline_window("NextWeek", NOW) == timeline_window(Timeline.NEXT_WEEK, NOW)
    assert timeline_window("NEXT_WEEK", NOW) == timeline_window(Timeline.NEXT_WEEK, NOW)


@pytest.mark.parametrize("bad", ["Someday", "", "nextweek", 3, None])
def test_unknown_bucket_raises(bad):
    with pytest.raises(InvalidTimeline):
        resolve(bad, NOW, random.Random(0))


def test_invalid_timeline_is_a_value_error():
    with pytest.raises(ValueError, match="Invalid reminder timeline"):
        timeline_window("Eventually", NOW)


NEW_YORK = ZoneInfo("America/New_York")


@pytest.mark.parametrize(
    "now",
    [
        # last minutes of EDT before clocks fall back
        datetime(2025, 11, 2, 1, 58, tzinfo=NEW_YORK),
        # the repeated hour, already on EST
        datetime(2025, 11, 2, 1, 30, fold=1, tzinfo=NEW_YORK),
        # just before clocks spring forward
        datetime(2025, 3, 9, 1, 58, tzinfo=NEW_YORK),
    ],
)
def test_imminent_measures_elapsed_time_across_dst(now):
    rng = random.Random(0)
    start = now.astimezone(UTC)
    for _ in range(200):
        due = resolve(Timeline.IMMINENT, now, rng).astimezone(UTC)
        assert start <= due < start + timedelta(minutes=5)


def test_today_is_shorter_on_spring_forward_day():
    now = datetime(2025, 3, 9, 0, 30, tzinfo=NEW_YORK)
    start, end = timeline_window(Timeline.TODAY, now)
    assert end - start == timedelta(hours=22, minutes=30)
    assert end == datetime(2025, 3, 10, tzinfo=NEW_YORK)


def test_tomorrow_is_longer_on_fall_back_day():
    now = datetime(2025, 11, 1, 12, 0, tzinfo=NEW_YORK)
    start, end = timeline_window(Timeline.TOMORROW, now)
    assert end - start == timedelta(hours=25)

    for value in (0.0, 0.5, 0.9999999999999999):
        due = resolve(Timeline.TOMORROW, now, FixedRandom(value))
        assert start <= due.astimezone(UTC) < end
        assert due.date() == datetime(2025, 11, 2).date()


@pytest.mark.parametrize("bucket", list(Timeline))
@pytest.mark.parametrize("seed", range(10))
def test_resolved_instant_inside_window_on_dst_day(bucket, seed):
    now = datetime(2025, 11, 2, 1, 45, tzinfo=NEW_YORK)
    start, end = timeline_window(bucket, now)
    due = resolve(bucket, now, random.Random(seed))
    assert due.tzinfo is NEW_YORK
    assert start <= due.astimezone(UTC) < end
