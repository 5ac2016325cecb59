"""Calendar-day helpers.

The ``date`` field written with each record and the "today" used by the stats
aggregate must agree, so both go through ``local_day``. Naive datetimes are
taken to be deployment-local time everywhere except when read back from a
store, where they are UTC.
"""

from __future__ import annotations

from datetime import datetime, timezone


def now_local() -> datetime:
    return datetime.now().astimezone()


def local_day(moment: datetime) -> str:
    """Return the deployment-local calendar day of ``moment`` as YYYY-MM-DD."""

    return moment.astimezone().date().isoformat()


def as_utc(moment: datetime) -> datetime:
    return moment.astimezone(timezone.utc)


def from_storage(moment: datetime) -> datetime:
    """Attach UTC to datetimes a backend hands back without tzinfo."""

    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment
