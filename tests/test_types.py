from __future__ import annotations

import pytest

from datetime import datetime
from hangar.db.models.types import JSON, UTCDateTime
from hangar.modules import errors
from sedate import replace_timezone


def test_utcdatetime_refuses_naive_dates() -> None:
    with pytest.raises(errors.NotTimezoneAware):
        UTCDateTime().process_bind_param(datetime(2026, 10, 20, 10), None)


def test_utcdatetime_stores_utc() -> None:
    local = replace_timezone(datetime(2026, 10, 20, 10), 'Asia/Kolkata')

    stored = UTCDateTime().process_bind_param(local, None)
    assert stored == datetime(2026, 10, 20, 4, 30)
    assert stored.tzinfo is None

    loaded = UTCDateTime().process_result_value(stored, None)
    assert loaded == local
    assert loaded.tzinfo is not None

    assert UTCDateTime().process_bind_param(None, None) is None
    assert UTCDateTime().process_result_value(None, None) is None


def test_json_coerces_none() -> None:
    assert JSON().process_bind_param(None, None) == {}
    assert JSON().process_result_value(None, None) == {}
    assert JSON().process_result_value({'a': 1}, None) == {'a': 1}
