from __future__ import annotations

from hangar.db.scheduler import Scheduler


from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from hangar.context.core import Context


def new_scheduler(
    context: Context,
    timezone: str | None = None
) -> Scheduler:
    """ Returns a new scheduler operating on the given context. Naive dates
    passed to it are assumed to be in the given timezone, which defaults to
    the timezone configured on the context.

    """
    return Scheduler(context, timezone)


__all__ = (
    'new_scheduler',
    'Scheduler',
)
