"""MongoDB storage adapter.

Implements the core AttendanceStorePort on a document store. Documents use
the same camelCase field names as the SQLite columns, and the unique index on
(messageId, rollNo) carries the idempotency guarantee.
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime
import re
from typing import Any, Callable, Iterable, Iterator, Optional

from pymongo import ASCENDING, DESCENDING, MongoClient, UpdateOne
from pymongo.errors import ConnectionFailure, DuplicateKeyError

from core.dates import as_utc, from_storage, local_day, now_local
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

DEFAULT_DATABASE = "attendance"
RECENT_LIMIT = 10


def _student_from_doc(doc: dict[str, Any]) -> StudentRecord:
    return StudentRecord(
        roll_no=doc["rollNo"],
        name=doc.get("name") or "",
        course_name=doc.get("courseName") or "",
        semester=doc.get("semester") or "",
    )


def _record_from_doc(doc: dict[str, Any]) -> AttendanceRecord:
    return AttendanceRecord(
        id=str(doc["_id"]),
        student_name=doc.get("studentName") or "",
        roll_no=doc["rollNo"],
        group_name=doc.get("groupName") or "",
        message=doc.get("message") or "",
        timestamp=from_storage(doc["timestamp"]),
        date=doc["date"],
        message_id=doc["messageId"],
        created_at=from_storage(doc["createdAt"]),
    )


class MongoStorage:
    """pymongo wrapper that satisfies the AttendanceStorePort contract."""

    def __init__(
        self,
        uri: Optional[str] = None,
        database: Optional[str] = None,
        client: Optional[MongoClient] = None,
        clock: Callable[[], datetime] = now_local,
        timeout_ms: int = 5000,
    ) -> None:
        if client is None:
            if not uri:
                raise RuntimeError("MONGODB_URI is required for the mongo storage backend")
            # The client connects lazily; connectivity errors surface on first use.
            client = MongoClient(uri, tz_aware=True, serverSelectionTimeoutMS=timeout_ms)
        self._client = client
        if database:
            self._db = client[database]
        else:
            self._db = client.get_default_database(DEFAULT_DATABASE)
        self._students = self._db["students"]
        self._attendance = self._db["attendance"]
        self._clock = clock

    @contextmanager
    def _translate_errors(self) -> Iterator[None]:
        try:
            yield
        except ConnectionFailure as exc:
            raise StoreUnavailable(f"MongoDB is unreachable: {exc}") from exc

    def init_db(self) -> None:
        """Create the unique and lookup indexes if they do not exist."""

        with self._translate_errors():
            self._students.create_index("rollNo", unique=True, name="rollNo_unique")
            self._attendance.create_index(
                [("messageId", ASCENDING), ("rollNo", ASCENDING)],
                unique=True,
                name="messageId_rollNo_unique",
            )
            self._attendance.create_index("rollNo")
            self._attendance.create_index("date")
            self._attendance.create_index("groupName")
            self._attendance.create_index("groupKey")
            self._attendance.create_index([("timestamp", DESCENDING)])

    def upsert_students(self, students: Iterable[StudentRecord]) -> int:
        now = as_utc(self._clock())
        operations = [
            UpdateOne(
                {"rollNo": student.roll_no},
                {
                    "$set": {
                        "name": student.name or "",
                        "courseName": student.course_name or "",
                        "semester": student.semester or "",
                    },
                    "$setOnInsert": {"createdAt": now},
                },
                upsert=True,
            )
            for student in students
        ]
        if not operations:
            return 0
        with self._translate_errors():
            self._students.bulk_write(operations, ordered=False)
        return len(operations)

    def get_student_by_roll(self, roll_no: str) -> Optional[StudentRecord]:
        with self._translate_errors():
            doc = self._students.find_one({"rollNo": roll_no})
        return _student_from_doc(doc) if doc else None

    def get_all_students(self) -> list[StudentRecord]:
        with self._translate_errors():
            docs = list(self._students.find({}).sort("rollNo", ASCENDING))
        return [_student_from_doc(doc) for doc in docs]

    def record_attendance(self, data: AttendanceWrite) -> WriteOutcome:
        """Upsert one attendance document under (messageId, rollNo)."""

        prepared = prepare_attendance(data, self.get_student_by_roll, self._clock)
        key = {"messageId": prepared.message_id, "rollNo": prepared.roll_no}
        fields = {
            "studentName": prepared.student_name,
            "groupName": prepared.group_name,
            "groupKey": prepared.group_key,
            "message": prepared.message,
            "timestamp": prepared.timestamp,
            "date": prepared.date,
        }
        with self._translate_errors():
            try:
                result = self._attendance.update_one(
                    key,
                    {"$set": fields, "$setOnInsert": {"createdAt": as_utc(self._clock())}},
                    upsert=True,
                )
            except DuplicateKeyError:
                # A concurrent writer inserted the same key first.
                self._attendance.update_one(key, {"$set": fields})
                return WriteOutcome.UPDATED
        if result.upserted_id is not None:
            return WriteOutcome.CREATED
        return WriteOutcome.UPDATED

    def query_attendance(self, query: AttendanceQuery) -> list[AttendanceRecord]:
        criteria: dict[str, Any] = {}
        if query.date:
            criteria["date"] = query.date
        if query.group_name:
            # Literal substring of the stored folded key; no regex case folding.
            criteria["groupKey"] = {"$regex": re.escape(group_key(query.group_name))}
        if query.roll_no:
            criteria["rollNo"] = query.roll_no

        direction = ASCENDING if query.ascending else DESCENDING
        with self._translate_errors():
            cursor = self._attendance.find(criteria).sort([(query.sort_by, direction), ("_id", direction)])
            if query.limit is not None:
                cursor = cursor.skip(query.skip).limit(query.limit)
            docs = list(cursor)
        return [_record_from_doc(doc) for doc in docs]

    def get_stats(self) -> AttendanceStats:
        today = local_day(self._clock())
        with self._translate_errors():
            total = self._attendance.count_documents({})
            today_count = self._attendance.count_documents({"date": today})
            groups = list(
                self._attendance.aggregate(
                    [
                        {"$group": {"_id": "$groupName", "count": {"$sum": 1}}},
                        {"$sort": {"count": -1, "_id": 1}},
                    ]
                )
            )
            students = self._students.count_documents({})
            recent = list(
                self._attendance.find({})
                .sort([("timestamp", DESCENDING), ("_id", DESCENDING)])
                .limit(RECENT_LIMIT)
            )
        return AttendanceStats(
            total=int(total),
            today=int(today_count),
            groups=[GroupCount(group_name=doc["_id"] or "", count=int(doc["count"])) for doc in groups],
            students=int(students),
            recent=[_record_from_doc(doc) for doc in recent],
        )

    def close(self) -> None:
        self._client.close()
