""" Operating windows and slot alignment of resources.

Everything in here is computed in the resource's own timezone, since a lab
that opens at 09:00 opens at 09:00 local time, summer or winter. The dates
going in and out are timezone aware.

"""
from __future__ import annotations

import sedate

from datetime import datetime, time, timedelta


from typing import NamedTuple
from typing import Protocol
from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from collections.abc import Collection
    from collections.abc import Iterator
    from datetime import date


MIDNIGHT = time(0, 0)


class HasOperatingWindow(Protocol):
    timezone: str
    opens_at: time | None
    closes_at: time | None
    operating_days: Collection[int] | None
    slot_granularity_minutes: int


class Window(NamedTuple):
    start: datetime
    end: datetime


def to_local(date: datetime, timezone: str) -> datetime:
    return sedate.to_timezone(date, timezone)


def localize(date: datetime, timezone: str) -> datetime:
    return sedate.replace_timezone(date, timezone)


def days_spanned(
    start: datetime,
    end: datetime,
    timezone: str
) -> Iterator[date]:
    """ Yields the local dates touched by [start, end). """

    first = to_local(start, timezone).date()
    last = to_local(end - timedelta(microseconds=1), timezone).date()

    day = first
    while day <= last:
        yield day
        day += timedelta(days=1)


def is_operating_day(resource: HasOperatingWindow, day: date) -> bool:
    if not resource.operating_days:
        return True

    return day.weekday() in resource.operating_days


def window_on(resource: HasOperatingWindow, day: date) -> Window | None:
    """ Returns the operating window of the resource on the given local day,
    or None if the resource doesn't operate on that day.

    """
    if not is_operating_day(resource, day):
        return None

    opens_at = resource.opens_at or MIDNIGHT
    closes_at = resource.closes_at or MIDNIGHT

    start = datetime.combine(day, opens_at)

    # closing at midnight means closing at the end of the day
    if closes_at == MIDNIGHT:
        end = datetime.combine(day + timedelta(days=1), MIDNIGHT)
    else:
        end = datetime.combine(day, closes_at)

    if end <= start:
        return None

    return Window(
        localize(start, resource.timezone),
        localize(end, resource.timezone)
    )


def windows_between(
    resource: HasOperatingWindow,
    start: datetime,
    end: datetime
) -> Iterator[Window]:
    """ Yields the operating windows of the resource intersecting
    [start, end), clipped to the range.

    """
    # a window may start on the previous local day if it runs past midnight
    first = to_local(start, resource.timezone).date() - timedelta(days=1)
    last = to_local(end, resource.timezone).date()

    day = first
    while day <= last:
        window = window_on(resource, day)
        day += timedelta(days=1)

        if window is None:
            continue

        s = max(window.start, start)
        e = min(window.end, end)

        if s < e:
            yield Window(s, e)


def is_within_window(
    resource: HasOperatingWindow,
    start: datetime,
    end: datetime
) -> bool:
    """ True if every part of [start, end) lies within the operating window
    of the day it falls on. A booking may not span the hours in between.

    """
    timezone = resource.timezone

    for day in days_spanned(start, end, timezone):
        window = window_on(resource, day)

        if window is None:
            return False

        day_start = localize(datetime.combine(day, MIDNIGHT), timezone)
        day_end = localize(
            datetime.combine(day + timedelta(days=1), MIDNIGHT), timezone
        )

        segment_start = max(start, day_start)
        segment_end = min(end, day_end)

        if segment_start < window.start or window.end < segment_end:
            return False

    return True


def is_aligned(resource: HasOperatingWindow, start: datetime) -> bool:
    """ True if the start lies on the slot raster, which begins at the
    opening time of the day.

    """
    local = to_local(start, resource.timezone).replace(tzinfo=None)
    origin = datetime.combine(local.date(), resource.opens_at or MIDNIGHT)

    step = resource.slot_granularity_minutes * 60
    offset = (local - origin).total_seconds()

    return offset % step == 0


def is_granular(resource: HasOperatingWindow, duration: timedelta) -> bool:
    """ True if the duration is a multiple of the slot granularity. """
    step = resource.slot_granularity_minutes * 60
    return duration.total_seconds() % step == 0
