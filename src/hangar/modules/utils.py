from __future__ import annotations

import itertools
import sedate
import threading

from decimal import Decimal, ROUND_HALF_UP


from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from collections.abc import Iterator
    from datetime import datetime, timedelta


CENT = Decimal('0.01')


def money(value: Decimal | int | float | str) -> Decimal:
    """ Rounds the given amount half-up to cents. Floats are converted
    through their string representation to avoid binary noise.

    """
    if isinstance(value, float):
        value = str(value)

    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def hours(duration: timedelta) -> Decimal:
    """ Returns the duration in (possibly fractional) hours. """
    return Decimal(int(duration.total_seconds())) / Decimal(3600)


def overlaps(
    start: datetime,
    end: datetime,
    other_start: datetime,
    other_end: datetime
) -> bool:
    """ True if the half-open intervals [start, end) and
    [other_start, other_end) share at least one instant.

    """
    return other_start < end and other_end > start


class SequenceGenerator:
    """ Hands out human readable numbers like REQ-2026-00001.

    Each prefix has its own counter. The default generator keeps the counters
    in memory, so it only suits single process deployments and tests.
    Register a different ``sequence`` service on the context to use a
    database sequence instead.

    """

    def __init__(self, start: int = 1, year: int | None = None):
        self.start = start
        self.year = year
        self.counters: dict[str, Iterator[int]] = {}
        self.thread_lock = threading.Lock()

    def __call__(self, prefix: str) -> str:
        with self.thread_lock:
            if prefix not in self.counters:
                self.counters[prefix] = itertools.count(self.start)

            number = next(self.counters[prefix])

        year = self.year or sedate.utcnow().year
        return f'{prefix}-{year}-{number:05d}'
