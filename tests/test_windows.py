from __future__ import annotations

from datetime import date, datetime, time, timedelta
from hangar.modules import windows
from sedate import replace_timezone


from typing import NamedTuple


class Resource(NamedTuple):
    timezone: str = 'Asia/Kolkata'
    opens_at: time | None = time(9)
    closes_at: time | None = time(18)
    operating_days: list[int] | None = None
    slot_granularity_minutes: int = 60


def local(day: int, hour: int, minute: int = 0) -> datetime:
    return replace_timezone(
        datetime(2026, 10, day, hour, minute), 'Asia/Kolkata'
    )


def test_window_on() -> None:
    resource = Resource()

    window = windows.window_on(resource, date(2026, 10, 20))
    assert window == (local(20, 9), local(20, 18))

    # closed on weekends
    resource = Resource(operating_days=[0, 1, 2, 3, 4])
    assert windows.window_on(resource, date(2026, 10, 24)) is None
    assert windows.window_on(resource, date(2026, 10, 23)) is not None


def test_window_around_the_clock() -> None:
    resource = Resource(opens_at=None, closes_at=None)

    window = windows.window_on(resource, date(2026, 10, 20))
    assert window == (local(20, 0), local(21, 0))


def test_window_closing_at_midnight() -> None:
    resource = Resource(opens_at=time(18), closes_at=time(0))

    window = windows.window_on(resource, date(2026, 10, 20))
    assert window == (local(20, 18), local(21, 0))


def test_is_within_window() -> None:
    resource = Resource()

    assert windows.is_within_window(resource, local(20, 9), local(20, 18))
    assert windows.is_within_window(resource, local(20, 10), local(20, 12))
    assert not windows.is_within_window(resource, local(20, 8), local(20, 10))
    assert not windows.is_within_window(
        resource, local(20, 17), local(20, 19)
    )
    assert not windows.is_within_window(
        resource, local(20, 17), local(21, 10)
    )


def test_is_within_window_across_days() -> None:
    resource = Resource(opens_at=None, closes_at=None)

    assert windows.is_within_window(resource, local(20, 22), local(22, 2))

    resource = Resource(
        opens_at=None, closes_at=None, operating_days=[0, 1]
    )

    # monday and tuesday
    assert windows.is_within_window(resource, local(19, 22), local(20, 2))

    # wednesday is closed
    assert not windows.is_within_window(
        resource, local(20, 22), local(21, 2)
    )


def test_is_within_window_other_timezone() -> None:
    resource = Resource(timezone='Europe/Zurich')

    # 13:30 - 15:30 in Kolkata is 10:00 - 12:00 in Zurich (summer time)
    assert windows.is_within_window(
        resource, local(20, 13, 30), local(20, 15, 30)
    )
    assert not windows.is_within_window(resource, local(20, 10), local(20, 12))


def test_windows_between() -> None:
    resource = Resource()

    assert list(windows.windows_between(
        resource, local(20, 0), local(22, 0)
    )) == [
        (local(20, 9), local(20, 18)),
        (local(21, 9), local(21, 18)),
    ]

    # clipped to the range
    assert list(windows.windows_between(
        resource, local(20, 12), local(21, 10)
    )) == [
        (local(20, 12), local(20, 18)),
        (local(21, 9), local(21, 10)),
    ]


def test_is_aligned() -> None:
    resource = Resource(opens_at=time(9, 15), slot_granularity_minutes=30)

    assert windows.is_aligned(resource, local(20, 9, 15))
    assert windows.is_aligned(resource, local(20, 11, 45))
    assert not windows.is_aligned(resource, local(20, 10))


def test_is_granular() -> None:
    resource = Resource(slot_granularity_minutes=15)

    assert windows.is_granular(resource, timedelta(minutes=45))
    assert not windows.is_granular(resource, timedelta(minutes=50))
