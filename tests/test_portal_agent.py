from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Optional

from core.config import PortalConfig, PortalLoginConfig
from core.errors import ErrorKind, PortalError, PortalTimeout, StoreUnavailable
from core.models import AttendanceRecord, PortalStatus
from core.portal import PortalAgent
from core.query import AttendanceQuery

CONFIG = PortalConfig(
    entry_url="https://portal.example/login",
    attendance_url="https://portal.example/mark?group={group}&date={date}",
    roll_selector="#roll-{roll_no}",
    login_timeout_seconds=1,
    navigation_timeout_seconds=1,
    mark_delay_ms=300,
)


def _record(roll_no: str) -> AttendanceRecord:
    moment = datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc)
    return AttendanceRecord(
        id=roll_no,
        student_name="",
        roll_no=roll_no,
        group_name="CSE A",
        message=roll_no,
        timestamp=moment,
        date="2024-01-01",
        message_id=f"chat:1-{roll_no}",
        created_at=moment,
    )


class FakeStore:
    def __init__(self, rolls: tuple[str, ...] = (), error: Optional[Exception] = None) -> None:
        self._records = [_record(roll) for roll in rolls]
        self._error = error
        self.queries: list[AttendanceQuery] = []

    def query_attendance(self, query: AttendanceQuery) -> list[AttendanceRecord]:
        self.queries.append(query)
        if self._error:
            raise self._error
        return list(self._records)


class FakeSession:
    def __init__(
        self,
        on_page: tuple[str, ...] = (),
        broken: tuple[str, ...] = (),
        login_error: Optional[Exception] = None,
        navigate_error: Optional[Exception] = None,
        block_login: bool = False,
    ) -> None:
        self.on_page = {f"#roll-{roll}" for roll in on_page + broken}
        self.broken = {f"#roll-{roll}" for roll in broken}
        self.login_error = login_error
        self.navigate_error = navigate_error
        self.login_gate = asyncio.Event() if block_login else None
        self.calls: list[tuple] = []
        self.clicked: list[str] = []
        self.highlighted: list[str] = []
        self.closed = False
        self.close_calls = 0
        self._callbacks = []

    def on_close(self, callback) -> None:
        self._callbacks.append(callback)

    def close_externally(self) -> None:
        for callback in self._callbacks:
            callback()

    async def open_page(self, url: str, timeout: float) -> None:
        self.calls.append(("open", url))

    async def navigate(self, url: str, timeout: float) -> None:
        self.calls.append(("navigate", url))
        if self.navigate_error:
            raise self.navigate_error

    async def wait_for_navigation(self, timeout: float) -> None:
        self.calls.append(("wait_for_navigation",))
        if self.login_gate is not None:
            await self.login_gate.wait()
        if self.login_error:
            raise self.login_error

    async def fill(self, selector: str, value: str, timeout: float) -> None:
        self.calls.append(("fill", selector, value))

    async def click_selector(self, selector: str, timeout: float) -> None:
        self.calls.append(("click_selector", selector))

    async def find_element(self, selector: str, timeout_ms: int = 0):
        return selector if selector in self.on_page else None

    async def highlight(self, element) -> None:
        self.highlighted.append(element)

    async def click(self, element) -> None:
        if element in self.broken:
            raise PortalError("element is detached")
        self.clicked.append(element)

    async def close(self) -> None:
        self.closed = True
        self.close_calls += 1


class Factory:
    def __init__(self, *sessions: FakeSession) -> None:
        self._sessions = list(sessions)
        self.created: list[FakeSession] = []

    def __call__(self) -> FakeSession:
        session = self._sessions.pop(0)
        self.created.append(session)
        return session


async def _no_sleep(seconds: float) -> None:
    return None


def _agent(store=None, *sessions: FakeSession, config: PortalConfig = CONFIG):
    factory = Factory(*(sessions or (FakeSession(),)))
    agent = PortalAgent(store or FakeStore(), factory, config, sleep=_no_sleep)
    return agent, factory


def test_mark_before_start_is_rejected() -> None:
    agent, _ = _agent()

    result = asyncio.run(agent.mark_attendance("2024-01-01", "CSE A"))

    assert not result.success
    assert result.error is ErrorKind.INVALID_STATE
    assert agent.status is PortalStatus.IDLE


def test_start_reaches_ready_and_is_reentrant() -> None:
    session = FakeSession()
    agent, factory = _agent(None, session)

    async def scenario():
        first = await agent.start()
        second = await agent.start()
        return first, second

    first, second = asyncio.run(scenario())

    assert first.success and second.success
    assert agent.status is PortalStatus.READY
    assert len(factory.created) == 1
    assert session.calls == [("open", "https://portal.example/login"), ("wait_for_navigation",)]


def test_login_timeout_fails_and_releases_session() -> None:
    broken = FakeSession(login_error=PortalTimeout("no navigation within 1s"))
    retry = FakeSession()
    agent, factory = _agent(None, broken, retry)

    async def scenario():
        failed = await agent.start()
        status_after_failure = agent.status
        retried = await agent.start()
        return failed, status_after_failure, retried

    failed, status_after_failure, retried = asyncio.run(scenario())

    assert not failed.success
    assert failed.error is ErrorKind.PORTAL_TIMEOUT
    assert status_after_failure is PortalStatus.FAILED
    assert broken.closed
    assert retried.success
    assert factory.created == [broken, retry]


def test_auto_login_fills_credentials() -> None:
    config = PortalConfig(
        entry_url=CONFIG.entry_url,
        attendance_url=CONFIG.attendance_url,
        auto_login=PortalLoginConfig(
            username_selector="#user",
            password_selector="#pass",
            submit_selector="#go",
            username="faculty01",
            password="secret",
        ),
    )
    session = FakeSession()
    agent, _ = _agent(None, session, config=config)

    result = asyncio.run(agent.start())

    assert result.success
    assert ("fill", "#user", "faculty01") in session.calls
    assert ("fill", "#pass", "secret") in session.calls
    assert ("click_selector", "#go") in session.calls
    assert ("wait_for_navigation",) in session.calls


def test_mark_replays_each_roll_once_and_counts_misses() -> None:
    store = FakeStore(rolls=("1001", "1002", "1003", "1001"))
    session = FakeSession(on_page=("1001", "1003"))
    agent, _ = _agent(store, session)

    async def scenario():
        await agent.start()
        return await agent.mark_attendance("2024-01-01", "CSE A")

    result = asyncio.run(scenario())

    assert result.success
    assert (result.attempted, result.marked) == (3, 2)
    assert result.unmatched == ["1002"]
    assert session.clicked == ["#roll-1001", "#roll-1003"]
    assert session.highlighted == ["#roll-1001", "#roll-1003"]
    assert ("navigate", "https://portal.example/mark?group=CSE%20A&date=2024-01-01") in session.calls
    assert store.queries == [AttendanceQuery(date="2024-01-01", group_name="CSE A")]
    assert agent.status is PortalStatus.READY


def test_click_failure_counts_as_unmatched() -> None:
    store = FakeStore(rolls=("1001", "1002"))
    session = FakeSession(on_page=("1001",), broken=("1002",))
    agent, _ = _agent(store, session)

    async def scenario():
        await agent.start()
        return await agent.mark_attendance("2024-01-01", "CSE A")

    result = asyncio.run(scenario())

    assert result.success
    assert result.marked == 1
    assert result.unmatched == ["1002"]


def test_no_records_keeps_agent_ready() -> None:
    session = FakeSession()
    agent, _ = _agent(FakeStore(), session)

    async def scenario():
        await agent.start()
        return await agent.mark_attendance("2024-01-01", "CSE A")

    result = asyncio.run(scenario())

    assert not result.success
    assert result.error is ErrorKind.NO_RECORDS
    assert agent.status is PortalStatus.READY
    assert not any(call[0] == "navigate" for call in session.calls)


def test_store_outage_is_reported_and_agent_stays_ready() -> None:
    agent, _ = _agent(FakeStore(error=StoreUnavailable("db down")), FakeSession())

    async def scenario():
        await agent.start()
        return await agent.mark_attendance("2024-01-01", "CSE A")

    result = asyncio.run(scenario())

    assert result.error is ErrorKind.STORE_UNAVAILABLE
    assert agent.status is PortalStatus.READY


def test_navigation_timeout_returns_to_ready() -> None:
    session = FakeSession(navigate_error=PortalTimeout("attendance page did not load"))
    agent, _ = _agent(FakeStore(rolls=("1001",)), session)

    async def scenario():
        await agent.start()
        return await agent.mark_attendance("2024-01-01", "CSE A")

    result = asyncio.run(scenario())

    assert not result.success
    assert result.error is ErrorKind.PORTAL_TIMEOUT
    assert result.attempted == 1 and result.marked == 0
    assert agent.status is PortalStatus.READY


def test_stop_is_idempotent_and_blocks_marking() -> None:
    session = FakeSession()
    agent, _ = _agent(FakeStore(rolls=("1001",)), session)

    async def scenario():
        await agent.start()
        await agent.stop()
        await agent.stop()
        return await agent.mark_attendance("2024-01-01", "CSE A")

    result = asyncio.run(scenario())

    assert session.closed
    assert agent.status is PortalStatus.STOPPED
    assert not agent.has_session
    assert result.error is ErrorKind.INVALID_STATE


def test_stop_before_start_is_harmless() -> None:
    agent, factory = _agent()

    result = asyncio.run(agent.stop())

    assert result.success
    assert agent.status is PortalStatus.STOPPED
    assert factory.created == []


def test_external_close_forces_stopped() -> None:
    session = FakeSession()
    agent, _ = _agent(FakeStore(rolls=("1001",)), session)

    async def scenario():
        await agent.start()
        session.close_externally()
        return await agent.mark_attendance("2024-01-01", "CSE A")

    result = asyncio.run(scenario())

    assert agent.status is PortalStatus.STOPPED
    assert not agent.has_session
    assert result.error is ErrorKind.INVALID_STATE


def test_external_close_releases_browser_before_stop() -> None:
    session = FakeSession()
    agent, _ = _agent(None, session)

    async def scenario():
        await agent.start()
        session.close_externally()
        for _ in range(5):
            await asyncio.sleep(0)
        closed_before_stop = session.closed
        await agent.stop()
        return closed_before_stop

    closed_before_stop = asyncio.run(scenario())

    assert closed_before_stop
    assert session.close_calls == 1
    assert agent.status is PortalStatus.STOPPED


def test_external_close_interrupts_login_wait() -> None:
    session = FakeSession(block_login=True)
    agent, _ = _agent(None, session)

    async def scenario():
        task = asyncio.create_task(agent.start())
        for _ in range(20):
            await asyncio.sleep(0)
            if agent.status is PortalStatus.AWAITING_AUTHENTICATION:
                break
        session.close_externally()
        result = await task
        await agent.stop()
        return result

    result = asyncio.run(scenario())

    assert not result.success
    assert result.error is ErrorKind.SESSION_CLOSED
    assert agent.status is PortalStatus.STOPPED
    assert session.close_calls == 1


def test_concurrent_mark_is_rejected() -> None:
    store = FakeStore(rolls=("1001", "1002"))
    session = FakeSession(on_page=("1001", "1002"))
    agent, _ = _agent(store, session)

    async def scenario():
        await agent.start()
        return await asyncio.gather(
            agent.mark_attendance("2024-01-01", "CSE A"),
            agent.mark_attendance("2024-01-01", "CSE A"),
        )

    first, second = asyncio.run(scenario())

    assert first.success
    assert second.error is ErrorKind.INVALID_STATE
    assert session.clicked == ["#roll-1001", "#roll-1002"]


def test_result_to_dict() -> None:
    agent, _ = _agent()

    payload = asyncio.run(agent.mark_attendance("2024-01-01", "CSE A")).to_dict()

    assert payload["success"] is False
    assert payload["status"] == "idle"
    assert payload["error"] == "invalid_state"
