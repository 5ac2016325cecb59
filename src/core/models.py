"""Core domain models.

These dataclasses are shared across the core and adapters to avoid tight
coupling to any integration-specific types. Field names are snake_case here;
``to_dict`` produces the camelCase shape that is persisted and handed to the
presentation layer.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from core.errors import ErrorKind


@dataclass(frozen=True)
class StudentRecord:
    """Roster entry; ``roll_no`` is the stable identity."""

    roll_no: str
    name: str
    course_name: str = ""
    semester: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "rollNo": self.roll_no,
            "name": self.name,
            "courseName": self.course_name,
            "semester": self.semester,
        }


@dataclass(frozen=True)
class Candidate:
    """Unconfirmed (name, roll number) pair extracted from one message."""

    name: Optional[str]
    roll_no: str
    original_message: str


@dataclass(frozen=True)
class AttendanceWrite:
    """Input to ``record_attendance``."""

    roll_no: str
    message_id: str
    student_name: Optional[str] = None
    group_name: str = ""
    message: str = ""
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class AttendanceRecord:
    """Persisted attendance event."""

    id: str
    student_name: str
    roll_no: str
    group_name: str
    message: str
    timestamp: datetime
    date: str
    message_id: str
    created_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "studentName": self.student_name,
            "rollNo": self.roll_no,
            "groupName": self.group_name,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
            "date": self.date,
            "messageId": self.message_id,
            "createdAt": self.created_at.isoformat(),
        }


class WriteOutcome(str, Enum):
    """Result of an idempotent attendance write."""

    CREATED = "created"
    UPDATED = "updated"

    @property
    def is_new(self) -> bool:
        return self is WriteOutcome.CREATED


@dataclass(frozen=True)
class GroupCount:
    group_name: str
    count: int


@dataclass(frozen=True)
class AttendanceStats:
    """Dashboard aggregate returned by ``get_stats``."""

    total: int
    today: int
    groups: list[GroupCount]
    students: int
    recent: list[AttendanceRecord]

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "today": self.today,
            "groups": [{"groupName": g.group_name, "count": g.count} for g in self.groups],
            "students": self.students,
            "recent": [record.to_dict() for record in self.recent],
        }


@dataclass(frozen=True)
class ChatMessage:
    """Minimal inbound chat event used by the ingestion agent."""

    is_group: bool
    group_name: str
    body: str
    message_id: str
    received_at: datetime


@dataclass(frozen=True)
class IngestReport:
    """Per-message summary produced by the ingestion agent."""

    candidates: int = 0
    created: int = 0
    updated: int = 0
    failed: int = 0
    skipped: Optional[str] = None


class PortalStatus(str, Enum):
    IDLE = "idle"
    LAUNCHING = "launching"
    AWAITING_AUTHENTICATION = "awaiting_authentication"
    READY = "ready"
    MARKING = "marking"
    STOPPED = "stopped"
    FAILED = "failed"


@dataclass(frozen=True)
class PortalResult:
    """Outcome of a portal agent operation.

    ``success`` and ``message`` are what an operator sees; ``error`` is the
    typed failure kind when ``success`` is false.
    """

    success: bool
    message: str
    status: PortalStatus
    error: Optional[ErrorKind] = None
    attempted: int = 0
    marked: int = 0
    unmatched: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "message": self.message,
            "status": self.status.value,
            "error": self.error.value if self.error else None,
            "attempted": self.attempted,
            "marked": self.marked,
            "unmatched": list(self.unmatched),
        }
