from __future__ import annotations

from datetime import datetime, timezone

import mongomock
import pytest

from adapters.mongo_storage import MongoStorage
from adapters.sqlite_storage import SQLiteStorage

FIXED_NOW = datetime(2024, 1, 2, 9, 30, tzinfo=timezone.utc)


def fixed_clock() -> datetime:
    return FIXED_NOW


@pytest.fixture(params=["sqlite", "mongo"])
def store(request, tmp_path):
    if request.param == "sqlite":
        backend = SQLiteStorage(str(tmp_path / "attendance.db"), clock=fixed_clock)
    else:
        backend = MongoStorage(
            client=mongomock.MongoClient(tz_aware=True),
            database="attendance_test",
            clock=fixed_clock,
        )
    backend.init_db()
    yield backend
    backend.close()
