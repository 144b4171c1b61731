from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from sqlalchemy import types
from sqlalchemy.orm import registry
from sqlalchemy.orm import DeclarativeBase

from .types import JSON
from .types import UTCDateTime


from typing import Any


class ORMBase(DeclarativeBase):

    registry = registry(type_annotation_map={
        datetime: UTCDateTime(timezone=False),
        dict[str, Any]: JSON,
        Decimal: types.Numeric(12, 2),
    })
