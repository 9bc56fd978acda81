"""Timeline resolver.

Turns a coarse timeline bucket ("Tomorrow", "NextMonth", ...) into a concrete
due instant: a uniformly random moment inside the bucket's half-open window
``[start, end)`` relative to *now*.

Calendar boundaries (midnight, Monday, the 1st of a month, January 1st) are
found on *now*'s own wall clock, so pass an aware datetime in the reference
time zone. The window itself is returned as exact UTC instants: spans and
offsets then measure elapsed time, which is not the same as wall-clock time
on a day with a DST change.
"""

from __future__ import annotations

import random
from datetime import datetime, timedelta, timezone
from typing import Tuple, Union

from app.errors import InvalidTimeline
from app.types.reminder_contract import Timeline

IMMINENT_WINDOW = timedelta(minutes=5)

_ONE_MICROSECOND = timedelta(microseconds=1)


def _instant(moment: datetime) -> datetime:
    return moment.astimezone(timezone.utc)


def _midnight(moment: datetime) -> datetime:
    return moment.replace(hour=0, minute=0, second=0, microsecond=0, fold=0)


def _start_of_next_day(moment: datetime) -> datetime:
    return _midnight(moment) + timedelta(days=1)


def _start_of_next_week(moment: datetime) -> datetime:
    # weeks start on Monday; on a Monday this is the following Monday
    return _midnight(moment) + timedelta(days=7 - moment.weekday())


def _start_of_next_month(moment: datetime) -> datetime:
    if moment.month == 12:
        return _midnight(moment).replace(year=moment.year + 1, month=1, day=1)
    return _midnight(moment).replace(month=moment.month + 1, day=1)


def _start_of_next_year(moment: datetime) -> datetime:
    return _midnight(moment).replace(year=moment.year + 1, month=1, day=1)


def coerce_timeline(value: Union[Timeline, str]) -> Timeline:
    """Accept a ``Timeline`` or its string value; anything else is invalid."""
    if isinstance(value, Timeline):
        return value
    if isinstance(value, str):
        try:
            return Timeline(value)
        except ValueError:
            pass
        # tolerate enum member names, e.g. "NEXT_WEEK"
        member = Timeline.__members__.get(value)
        if member is not None:
            return member
    raise InvalidTimeline(value)


def timeline_window(bucket: Union[Timeline, str], now: datetime) -> Tuple[datetime, datetime]:
    """Return the ``(start, end)`` window for *bucket* in UTC; *end* is exclusive."""
    bucket = coerce_timeline(bucket)

    if bucket is Timeline.IMMINENT:
        start = _instant(now)
        return start, start + IMMINENT_WINDOW
    if bucket is Timeline.TODAY:
        return _instant(now), _instant(_start_of_next_day(now))
    if bucket is Timeline.TOMORROW:
        start = _start_of_next_day(now)
        return _instant(start), _instant(start + timedelta(days=1))
    if bucket is Timeline.THIS_WEEK:
        return _instant(now), _instant(_start_of_next_week(now))
    if bucket is Timeline.NEXT_WEEK:
        start = _start_of_next_week(now)
        return _instant(start), _instant(start + timedelta(days=7))
    if bucket is Timeline.THIS_MONTH:
        return _instant(now), _instant(_start_of_next_month(now))
    if bucket is Timeline.NEXT_MONTH:
        start = _start_of_next_month(now)
        return _instant(start), _instant(_start_of_next_month(start))
    if bucket is Timeline.LATER_THIS_YEAR:
        return _instant(now), _instant(_start_of_next_year(now))
    if bucket is Timeline.NEXT_YEAR:
        start = _start_of_next_year(now)
        return _instant(start), _instant(_start_of_next_year(start))

    raise InvalidTimeline(bucket)


def resolve(bucket: Union[Timeline, str], now: datetime, rng: random.Random) -> datetime:
    """Pick the due instant for *bucket*, expressed in *now*'s time zone.

    *rng* supplies the uniform fraction; pass a seeded ``random.Random`` for
    reproducible results. A zero-width (or inverted) window resolves to its
    start.
    """
    start, end = timeline_window(bucket, now)
    span = end - start
    if span <= timedelta(0):
        return start.astimezone(now.tzinfo)

    due = start + span * rng.random()
    # float rounding to whole microseconds may land exactly on the end
    if due >= end:
        due = end - _ONE_MICROSECOND
    return due.astimezone(now.tzinfo)
