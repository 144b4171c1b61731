""" The sweep turns a set of occupied intervals into a sequence of
non-overlapping segments with the occupancy of each segment.

All intervals are half-open, ``[start, end)``. Boundary events are sorted by
time with the ends before the starts, so a booking ending at 12:00 and one
starting at 12:00 never count against each other.

"""
from __future__ import annotations

from itertools import groupby


from typing import NamedTuple
from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from collections.abc import Iterable
    from collections.abc import Iterator
    from datetime import datetime


class Occupant(NamedTuple):
    start: datetime
    end: datetime
    quantity: int


class Segment(NamedTuple):
    start: datetime
    end: datetime
    used: int


def boundary_events(
    occupants: Iterable[Occupant],
    start: datetime,
    end: datetime
) -> list[tuple[datetime, int]]:
    """ Returns the (timestamp, delta) events of the occupants clipped to
    the given range, ordered by time with ends first.

    """
    events = []

    for occupant in occupants:
        s = max(occupant.start, start)
        e = min(occupant.end, end)

        if s >= e or occupant.quantity <= 0:
            continue

        events.append((s, occupant.quantity))
        events.append((e, -occupant.quantity))

    # negative deltas (ends) sort before positive ones (starts)
    events.sort()
    return events


def sweep(
    occupants: Iterable[Occupant],
    start: datetime,
    end: datetime
) -> Iterator[Segment]:
    """ Yields consecutive segments covering [start, end) with the summed
    quantity of the occupants covering each segment. Gaps are yielded with a
    usage of zero.

    """
    if start >= end:
        return

    used = 0
    cursor = start

    events = boundary_events(occupants, start, end)

    for timestamp, group in groupby(events, key=lambda ev: ev[0]):
        if timestamp > cursor:
            yield Segment(cursor, timestamp, used)
            cursor = timestamp

        used += sum(delta for _, delta in group)

    if cursor < end:
        yield Segment(cursor, end, used)


def peak(
    occupants: Iterable[Occupant],
    start: datetime,
    end: datetime
) -> int:
    """ The highest occupancy at any instant in [start, end). """
    return max((s.used for s in sweep(occupants, start, end)), default=0)


def merged(segments: Iterable[Segment]) -> Iterator[Segment]:
    """ Merges adjacent segments with the same usage. """

    current: Segment | None = None

    for segment in segments:
        if current is None:
            current = segment
        elif current.end == segment.start and current.used == segment.used:
            current = Segment(current.start, segment.end, current.used)
        else:
            yield current
            current = segment

    if current is not None:
        yield current
