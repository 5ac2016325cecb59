from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Optional

from core.errors import StoreUnavailable
from core.ingestion import IngestionAgent, attendance_message_id
from core.models import AttendanceWrite, ChatMessage, WriteOutcome

RECEIVED = datetime(2024, 1, 1, 8, 15, tzinfo=timezone.utc)


class FakeStore:
    def __init__(self, fail_rolls: Optional[set[str]] = None) -> None:
        self.writes: list[AttendanceWrite] = []
        self.keys: set[tuple[str, str]] = set()
        self._fail_rolls = fail_rolls or set()

    def record_attendance(self, data: AttendanceWrite) -> WriteOutcome:
        if data.roll_no in self._fail_rolls:
            raise StoreUnavailable("connection lost")
        self.writes.append(data)
        key = (data.message_id, data.roll_no)
        if key in self.keys:
            return WriteOutcome.UPDATED
        self.keys.add(key)
        return WriteOutcome.CREATED


def _message(body: str, *, is_group: bool = True, message_id: str = "-100123:42") -> ChatMessage:
    return ChatMessage(
        is_group=is_group,
        group_name="CSE Batch A",
        body=body,
        message_id=message_id,
        received_at=RECEIVED,
    )


def test_group_message_is_recorded() -> None:
    store = FakeStore()
    agent = IngestionAgent(store)

    report = asyncio.run(agent.handle(_message("Asha Rao 221099")))

    assert report.created == 1
    (write,) = store.writes
    assert write.roll_no == "221099"
    assert write.student_name == "Asha Rao"
    assert write.group_name == "CSE Batch A"
    assert write.message == "Asha Rao 221099"
    assert write.timestamp == RECEIVED
    assert write.message_id == "-100123:42-221099"


def test_direct_messages_are_ignored() -> None:
    store = FakeStore()
    agent = IngestionAgent(store)

    report = asyncio.run(agent.handle(_message("Asha 221099", is_group=False)))

    assert report.skipped == "not_group"
    assert store.writes == []


def test_message_without_roll_numbers_is_skipped() -> None:
    store = FakeStore()

    report = asyncio.run(IngestionAgent(store).handle(_message("good morning")))

    assert report.skipped == "no_match"
    assert store.writes == []


def test_each_roll_number_gets_its_own_key() -> None:
    store = FakeStore()

    report = asyncio.run(IngestionAgent(store).handle(_message("Asha 221099\n221100")))

    assert report.created == 2
    assert [w.message_id for w in store.writes] == ["-100123:42-221099", "-100123:42-221100"]
    assert store.writes[1].student_name is None


def test_redelivery_is_reported_as_update() -> None:
    store = FakeStore()
    agent = IngestionAgent(store)

    asyncio.run(agent.handle(_message("Asha 221099")))
    report = asyncio.run(agent.handle(_message("Asha 221099")))

    assert report.created == 0
    assert report.updated == 1


def test_failed_write_does_not_stop_siblings() -> None:
    store = FakeStore(fail_rolls={"221099"})

    report = asyncio.run(IngestionAgent(store).handle(_message("Asha 221099\nBela 221100")))

    assert report.failed == 1
    assert report.created == 1
    assert [w.roll_no for w in store.writes] == ["221100"]


def test_duplicate_roll_in_one_message_is_written_once() -> None:
    store = FakeStore()

    report = asyncio.run(IngestionAgent(store).handle(_message("Asha 221099\n221099")))

    assert report.candidates == 1
    assert len(store.writes) == 1


def test_parser_failure_is_contained() -> None:
    def broken_parser(text: str):
        raise RuntimeError("boom")

    store = FakeStore()
    agent = IngestionAgent(store, parser=broken_parser)

    report = asyncio.run(agent.handle(_message("Asha 221099")))

    assert report.skipped == "parse_error"
    assert store.writes == []


def test_status_reflects_connection_state() -> None:
    agent = IngestionAgent(FakeStore())

    agent.connection.set_login_token("tg://login?token=abc")
    assert agent.status().has_login_token
    assert not agent.status().connected

    agent.connection.mark_connected()
    assert agent.status().connected
    assert agent.status().login_token is None


def test_attendance_message_id_suffixes_roll() -> None:
    assert attendance_message_id("chat:1", "2210") == "chat:1-2210"
