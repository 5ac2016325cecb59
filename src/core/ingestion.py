"""Chat-to-attendance ingestion (core domain).

This module is integration-agnostic. It receives ``ChatMessage`` values from
whatever chat adapter is wired in, parses them and writes candidates through
the store port.
"""

from __future__ import annotations

import logging
from typing import Callable, Iterable, List, Optional

from core.connection import ConnectionState, ConnectionStatus
from core.models import AttendanceWrite, Candidate, ChatMessage, IngestReport
from core.parser import parse
from core.ports import AttendanceStorePort

LOGGER = logging.getLogger(__name__)


def attendance_message_id(message_id: str, roll_no: str) -> str:
    """Idempotency key part: one per (chat message, roll number)."""

    return f"{message_id}-{roll_no}"


def _unique_by_roll(candidates: Iterable[Candidate]) -> List[Candidate]:
    seen: set[str] = set()
    unique: List[Candidate] = []
    for candidate in candidates:
        if candidate.roll_no in seen:
            continue
        seen.add(candidate.roll_no)
        unique.append(candidate)
    return unique


class IngestionAgent:
    """Parses group chat messages and records one attendance row per roll number."""

    def __init__(
        self,
        store: AttendanceStorePort,
        connection: Optional[ConnectionState] = None,
        parser: Callable[[str], List[Candidate]] = parse,
    ) -> None:
        self._store = store
        self._connection = connection or ConnectionState()
        self._parse = parser

    @property
    def connection(self) -> ConnectionState:
        return self._connection

    def status(self) -> ConnectionStatus:
        return self._connection.snapshot()

    async def handle(self, message: ChatMessage) -> IngestReport:
        """Process one inbound chat message.

        A failure while storing one candidate is logged and counted; sibling
        candidates from the same message are still written.
        """

        # Only group chats carry attendance; direct messages are ignored.
        if not message.is_group:
            return IngestReport(skipped="not_group")

        try:
            # A message that says "Jane 2210" twice is still one attendance.
            candidates = _unique_by_roll(self._parse(message.body))
        except Exception:
            LOGGER.exception("Parser failed for message %s", message.message_id)
            return IngestReport(failed=1, skipped="parse_error")
        if not candidates:
            return IngestReport(skipped="no_match")

        created = updated = failed = 0
        for candidate in candidates:
            write = AttendanceWrite(
                roll_no=candidate.roll_no,
                student_name=candidate.name,
                group_name=message.group_name,
                message=message.body,
                timestamp=message.received_at,
                message_id=attendance_message_id(message.message_id, candidate.roll_no),
            )
            try:
                outcome = self._store.record_attendance(write)
            except Exception:
                failed += 1
                LOGGER.exception(
                    "Failed to record %s from %s (%s)",
                    candidate.roll_no,
                    message.group_name,
                    message.message_id,
                )
                continue

            if outcome.is_new:
                created += 1
                LOGGER.info(
                    "Recorded %s (%s) in %s",
                    candidate.name or "-",
                    candidate.roll_no,
                    message.group_name,
                )
            else:
                updated += 1
                LOGGER.info("Duplicate delivery for %s updated in place", write.message_id)

        return IngestReport(
            candidates=len(candidates),
            created=created,
            updated=updated,
            failed=failed,
        )
