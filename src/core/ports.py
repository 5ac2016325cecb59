"""Ports (interfaces) used by the core.

Ports define the minimal contracts for storage and browser adapters so that
the core can be reused with different backends. Both the SQLite and MongoDB
stores satisfy ``AttendanceStorePort`` with identical semantics.
"""

from __future__ import annotations

from typing import Any, Callable, Iterable, Optional, Protocol

from core.models import (
    AttendanceRecord,
    AttendanceStats,
    AttendanceWrite,
    StudentRecord,
    WriteOutcome,
)
from core.query import AttendanceQuery


class AttendanceStorePort(Protocol):
    """Roster and attendance operations required by the agents.

    Connectivity failures surface as ``core.errors.StoreUnavailable``.
    """

    def upsert_students(self, students: Iterable[StudentRecord]) -> int:
        ...

    def get_student_by_roll(self, roll_no: str) -> Optional[StudentRecord]:
        ...

    def get_all_students(self) -> list[StudentRecord]:
        ...

    def record_attendance(self, data: AttendanceWrite) -> WriteOutcome:
        ...

    def query_attendance(self, query: AttendanceQuery) -> list[AttendanceRecord]:
        ...

    def get_stats(self) -> AttendanceStats:
        ...


class BrowserSessionPort(Protocol):
    """A controllable, visibly rendered page on the external portal.

    Waits raise ``PortalTimeout`` when their bound expires and ``PortalError``
    for any other navigation failure.
    """

    def on_close(self, callback: Callable[[], None]) -> None:
        """Register a callback fired when the session is closed externally."""
        ...

    async def open_page(self, url: str, timeout: float) -> None:
        ...

    async def navigate(self, url: str, timeout: float) -> None:
        ...

    async def wait_for_navigation(self, timeout: float) -> None:
        ...

    async def fill(self, selector: str, value: str, timeout: float) -> None:
        ...

    async def click_selector(self, selector: str, timeout: float) -> None:
        ...

    async def find_element(self, selector: str, timeout_ms: int = 0) -> Optional[Any]:
        ...

    async def highlight(self, element: Any) -> None:
        ...

    async def click(self, element: Any) -> None:
        ...

    async def close(self) -> None:
        ...
