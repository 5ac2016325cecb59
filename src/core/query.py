"""Attendance query normalization (core domain).

Presentation layers hand over loosely typed filters (query-string values,
blank fields, unknown sort keys). ``AttendanceQuery.from_filters`` turns them
into one validated object so every storage backend applies the same
semantics.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Optional

SORTABLE_FIELDS = ("studentName", "rollNo", "groupName", "date", "timestamp")
DEFAULT_SORT_FIELD = "timestamp"


def _clean_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _positive_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = int(str(value).strip())
    except ValueError:
        return None
    return number if number >= 1 else None


@dataclass(frozen=True)
class AttendanceQuery:
    """Conjunctive filters plus sort and pagination.

    - ``date``: exact calendar day (YYYY-MM-DD)
    - ``group_name``: case-insensitive substring, taken literally
    - ``roll_no``: exact
    - ``limit`` of ``None`` means no limit; ``page`` is 1-based
    """

    date: Optional[str] = None
    group_name: Optional[str] = None
    roll_no: Optional[str] = None
    sort_by: str = DEFAULT_SORT_FIELD
    ascending: bool = False
    page: int = 1
    limit: Optional[int] = None

    @classmethod
    def from_filters(cls, filters: Optional[Mapping[str, Any]] = None) -> "AttendanceQuery":
        """Build a query from raw camelCase filters, dropping anything invalid."""

        filters = filters or {}
        sort_by = _clean_text(filters.get("sortBy"))
        sort_dir = (_clean_text(filters.get("sortDir")) or "").lower()
        if sort_by not in SORTABLE_FIELDS:
            # Unknown sort keys fall back to newest-first.
            sort_by, sort_dir = DEFAULT_SORT_FIELD, "desc"
        return cls(
            date=_clean_text(filters.get("date")),
            group_name=_clean_text(filters.get("groupName")),
            roll_no=_clean_text(filters.get("rollNo")),
            sort_by=sort_by,
            ascending=sort_dir == "asc",
            page=_positive_int(filters.get("page")) or 1,
            limit=_positive_int(filters.get("limit")),
        )

    @property
    def skip(self) -> int:
        if self.limit is None:
            return 0
        return (self.page - 1) * self.limit


def group_key(group_name: Optional[str]) -> str:
    """Folded form of a group name, stored next to it and matched by substring.

    Both backends filter on this value with a plain substring test, so the
    case folding happens here once instead of in each database.
    """

    return (group_name or "").casefold()
