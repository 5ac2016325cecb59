"""Attendance write preparation shared by every storage backend."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from core.dates import as_utc, local_day
from core.models import AttendanceWrite, StudentRecord
from core.query import group_key


@dataclass(frozen=True)
class PreparedAttendance:
    """Normalized values ready to be upserted under (message_id, roll_no)."""

    student_name: str
    roll_no: str
    group_name: str
    group_key: str
    message: str
    timestamp: datetime
    date: str
    message_id: str


def prepare_attendance(
    data: AttendanceWrite,
    lookup_student: Callable[[str], Optional[StudentRecord]],
    now: Callable[[], datetime],
) -> PreparedAttendance:
    """Validate a write, backfill the name from the roster and derive ``date``."""

    roll_no = (data.roll_no or "").strip()
    message_id = (data.message_id or "").strip()
    if not roll_no:
        raise ValueError("roll_no is required to record attendance")
    if not message_id:
        raise ValueError("message_id is required to record attendance")

    name = (data.student_name or "").strip()
    if not name:
        student = lookup_student(roll_no)
        if student and student.name:
            name = student.name

    timestamp = data.timestamp or now()
    return PreparedAttendance(
        student_name=name,
        roll_no=roll_no,
        group_name=data.group_name or "",
        group_key=group_key(data.group_name),
        message=data.message or "",
        timestamp=as_utc(timestamp),
        date=local_day(timestamp),
        message_id=message_id,
    )
