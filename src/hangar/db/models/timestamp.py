from __future__ import annotations

import sedate

from datetime import datetime
from sqlalchemy.orm import Mapped
from sqlalchemy.orm import mapped_column


def timestamp() -> datetime:
    return sedate.utcnow()


class TimestampMixin:
    """ Mixin providing created/modified timestamps for all records.

    The columns are deferred loaded as this is primarily for logging and future
    forensics.

    """

    created: Mapped[datetime] = mapped_column(
        default=timestamp,
        deferred=True
    )

    modified: Mapped[datetime | None] = mapped_column(
        onupdate=timestamp,
        deferred=True
    )
