"""SQLite storage adapter.

Implements the core AttendanceStorePort using a local SQLite database.
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime
import sqlite3
from typing import Callable, Iterable, Iterator, Optional

from core.dates import as_utc, local_day, now_local
from core.errors import StoreUnavailable
from core.models import (
    AttendanceRecord,
    AttendanceStats,
    AttendanceWrite,
    GroupCount,
    StudentRecord,
    WriteOutcome,
)
from core.query import AttendanceQuery, group_key
from core.records import prepare_attendance

RECENT_LIMIT = 10


def _student_from_row(row: sqlite3.Row) -> StudentRecord:
    return StudentRecord(
        roll_no=row["rollNo"],
        name=row["name"],
        course_name=row["courseName"] or "",
        semester=row["semester"] or "",
    )


def _record_from_row(row: sqlite3.Row) -> AttendanceRecord:
    return AttendanceRecord(
        id=str(row["id"]),
        student_name=row["studentName"] or "",
        roll_no=row["rollNo"],
        group_name=row["groupName"] or "",
        message=row["message"] or "",
        timestamp=datetime.fromisoformat(row["timestamp"]),
        date=row["date"],
        message_id=row["messageId"],
        created_at=datetime.fromisoformat(row["createdAt"]),
    )


class SQLiteStorage:
    """Thin SQLite wrapper that satisfies the AttendanceStorePort contract."""

    def __init__(self, db_path: str, clock: Callable[[], datetime] = now_local) -> None:
        self._db_path = db_path
        self._clock = clock

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = sqlite3.connect(self._db_path)
        except sqlite3.DatabaseError as exc:
            raise StoreUnavailable(f"Cannot open SQLite database {self._db_path}: {exc}") from exc
        conn.row_factory = sqlite3.Row
        try:
            with conn:
                yield conn
        except sqlite3.DatabaseError as exc:
            raise StoreUnavailable(f"SQLite operation failed: {exc}") from exc
        finally:
            conn.close()

    def init_db(self) -> None:
        """Create tables and indexes if they do not exist.

        Tables:
        - students: roster keyed by rollNo
        - attendance: one row per (messageId, rollNo)
        """

        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS students (
                    rollNo TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    courseName TEXT,
                    semester TEXT,
                    createdAt TIMESTAMP NOT NULL
                )
                """
            )
            # Column names follow the persisted record shape read by the
            # dashboard, so they stay camelCase.
            # Fields:
            # - date: deployment-local calendar day derived from timestamp
            # - messageId: chat message id suffixed with the roll number
            # - groupKey: casefolded groupName, target of the group filter
            # - createdAt: first write; re-deliveries leave it untouched
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS attendance (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    studentName TEXT NOT NULL DEFAULT '',
                    rollNo TEXT NOT NULL,
                    groupName TEXT NOT NULL DEFAULT '',
                    groupKey TEXT NOT NULL DEFAULT '',
                    message TEXT NOT NULL DEFAULT '',
                    timestamp TIMESTAMP NOT NULL,
                    date TEXT NOT NULL,
                    messageId TEXT NOT NULL,
                    createdAt TIMESTAMP NOT NULL,
                    UNIQUE (messageId, rollNo)
                )
                """
            )
            conn.execute("CREATE INDEX IF NOT EXISTS idx_attendance_roll ON attendance(rollNo)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_attendance_date ON attendance(date)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_attendance_group ON attendance(groupName)")

    def upsert_students(self, students: Iterable[StudentRecord]) -> int:
        """Insert or replace roster entries keyed by rollNo."""

        rows = [
            (s.roll_no, s.name or "", s.course_name or "", s.semester or "", as_utc(self._clock()).isoformat())
            for s in students
        ]
        if not rows:
            return 0
        with self._connect() as conn:
            conn.executemany(
                """
                INSERT INTO students (rollNo, name, courseName, semester, createdAt)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(rollNo) DO UPDATE SET
                    name = excluded.name,
                    courseName = excluded.courseName,
                    semester = excluded.semester
                """,
                rows,
            )
        return len(rows)

    def get_student_by_roll(self, roll_no: str) -> Optional[StudentRecord]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM students WHERE rollNo = ?",
                (roll_no,),
            ).fetchone()
        return _student_from_row(row) if row else None

    def get_all_students(self) -> list[StudentRecord]:
        with self._connect() as conn:
            rows = conn.execute("SELECT * FROM students ORDER BY rollNo").fetchall()
        return [_student_from_row(row) for row in rows]

    def record_attendance(self, data: AttendanceWrite) -> WriteOutcome:
        """Upsert one attendance row under (messageId, rollNo).

        The INSERT OR IGNORE / UPDATE pair runs in one transaction, so the
        outcome tells a fresh insert apart from a re-delivery.
        """

        prepared = prepare_attendance(data, self.get_student_by_roll, self._clock)
        created_at = as_utc(self._clock()).isoformat()
        values = (
            prepared.student_name,
            prepared.group_name,
            prepared.group_key,
            prepared.message,
            prepared.timestamp.isoformat(timespec="microseconds"),
            prepared.date,
        )
        with self._connect() as conn:
            cur = conn.execute(
                """
                INSERT OR IGNORE INTO attendance (
                    studentName, groupName, groupKey, message, timestamp, date,
                    messageId, rollNo, createdAt
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                values + (prepared.message_id, prepared.roll_no, created_at),
            )
            if cur.rowcount == 1:
                return WriteOutcome.CREATED
            conn.execute(
                """
                UPDATE attendance
                SET studentName = ?, groupName = ?, groupKey = ?, message = ?, timestamp = ?, date = ?
                WHERE messageId = ? AND rollNo = ?
                """,
                values + (prepared.message_id, prepared.roll_no),
            )
        return WriteOutcome.UPDATED

    def query_attendance(self, query: AttendanceQuery) -> list[AttendanceRecord]:
        conditions: list[str] = []
        params: list[object] = []
        if query.date:
            conditions.append("date = ?")
            params.append(query.date)
        if query.group_name:
            conditions.append("instr(groupKey, ?) > 0")
            params.append(group_key(query.group_name))
        if query.roll_no:
            conditions.append("rollNo = ?")
            params.append(query.roll_no)

        sql = "SELECT * FROM attendance"
        if conditions:
            sql += " WHERE " + " AND ".join(conditions)
        # sort_by is restricted to SORTABLE_FIELDS by AttendanceQuery.
        direction = "ASC" if query.ascending else "DESC"
        sql += f" ORDER BY {query.sort_by} {direction}, id {direction}"
        if query.limit is not None:
            sql += " LIMIT ? OFFSET ?"
            params.extend([query.limit, query.skip])

        with self._connect() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [_record_from_row(row) for row in rows]

    def get_stats(self) -> AttendanceStats:
        today = local_day(self._clock())
        with self._connect() as conn:
            total = conn.execute("SELECT COUNT(*) AS count FROM attendance").fetchone()["count"]
            today_count = conn.execute(
                "SELECT COUNT(*) AS count FROM attendance WHERE date = ?",
                (today,),
            ).fetchone()["count"]
            groups = conn.execute(
                """
                SELECT groupName, COUNT(*) AS count FROM attendance
                GROUP BY groupName
                ORDER BY count DESC, groupName ASC
                """
            ).fetchall()
            students = conn.execute("SELECT COUNT(*) AS count FROM students").fetchone()["count"]
            recent = conn.execute(
                "SELECT * FROM attendance ORDER BY timestamp DESC, id DESC LIMIT ?",
                (RECENT_LIMIT,),
            ).fetchall()
        return AttendanceStats(
            total=int(total),
            today=int(today_count),
            groups=[GroupCount(group_name=row["groupName"], count=int(row["count"])) for row in groups],
            students=int(students),
            recent=[_record_from_row(row) for row in recent],
        )

    def close(self) -> None:
        """Connections are per call; nothing is held open."""
