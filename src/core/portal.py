"""Portal replay state machine (core domain).

The agent drives one visible browser session against the external portal and
replays already-stored attendance onto it. Every public operation is gated by
the current ``PortalStatus`` and returns a ``PortalResult``; nothing is raised
to the caller.

Closing the browser window from outside is delivered through the session's
``on_close`` callback. It forces ``STOPPED`` immediately and sets a per-session
event that aborts whatever wait is in flight.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, List, Optional, Set
from urllib.parse import quote

from core.config import PortalConfig
from core.errors import ErrorKind, PortalError, PortalTimeout
from core.models import PortalResult, PortalStatus
from core.ports import AttendanceStorePort, BrowserSessionPort
from core.query import AttendanceQuery

LOGGER = logging.getLogger(__name__)


class _SessionClosed(Exception):
    """Raised internally when the session goes away mid-operation."""


class PortalAgent:
    """Single-session portal replay agent."""

    def __init__(
        self,
        store: AttendanceStorePort,
        browser_factory: Callable[[], BrowserSessionPort],
        config: PortalConfig,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._store = store
        self._browser_factory = browser_factory
        self._config = config
        self._sleep = sleep
        self._status = PortalStatus.IDLE
        self._session: Optional[BrowserSessionPort] = None
        self._closed: Optional[asyncio.Event] = None
        # Cleanup of sessions that were closed from the outside.
        self._cleanup: Set[asyncio.Future] = set()

    @property
    def status(self) -> PortalStatus:
        return self._status

    @property
    def has_session(self) -> bool:
        return self._session is not None

    async def start(self) -> PortalResult:
        """Open the portal and wait for the login to complete."""

        if self._status in (PortalStatus.READY, PortalStatus.MARKING):
            return self._result(True, "Portal agent already running.")
        if self._status in (PortalStatus.LAUNCHING, PortalStatus.AWAITING_AUTHENTICATION):
            return self._result(False, "Portal agent is already starting.", ErrorKind.INVALID_STATE)

        session = self._browser_factory()
        self._session = session
        self._closed = asyncio.Event()
        session.on_close(lambda: self._on_session_closed(session))

        self._set_status(PortalStatus.LAUNCHING)
        try:
            await self._until_closed(
                session.open_page(self._config.entry_url, self._config.navigation_timeout_seconds)
            )
            self._set_status(PortalStatus.AWAITING_AUTHENTICATION)
            await self._until_closed(self._authenticate(session))
        except _SessionClosed:
            return self._result(
                False,
                "Browser session was closed before login completed.",
                ErrorKind.SESSION_CLOSED,
            )
        except Exception as exc:
            if self._session is not session:
                return self._result(
                    False,
                    "Browser session was closed before login completed.",
                    ErrorKind.SESSION_CLOSED,
                )
            kind = getattr(exc, "kind", ErrorKind.PORTAL_ERROR)
            LOGGER.error("Portal start failed (%s): %s", kind.value, exc)
            await self._release(session)
            self._set_status(PortalStatus.FAILED)
            return self._result(False, f"Portal login failed: {exc}", kind)

        self._set_status(PortalStatus.READY)
        return self._result(True, "Portal session started and logged in.")

    async def mark_attendance(self, date: str, group_name: str) -> PortalResult:
        """Replay stored attendance for one group and day onto the portal."""

        session = self._session
        if self._status is not PortalStatus.READY or session is None:
            return self._result(
                False,
                f"Portal agent is {self._status.value}; start it before marking attendance.",
                ErrorKind.INVALID_STATE,
            )

        try:
            records = self._store.query_attendance(
                AttendanceQuery(date=date, group_name=group_name)
            )
        except Exception as exc:
            kind = getattr(exc, "kind", ErrorKind.STORE_UNAVAILABLE)
            LOGGER.error("Could not load attendance for %s on %s: %s", group_name, date, exc)
            return self._result(False, f"Could not load attendance: {exc}", kind)

        roll_numbers = _unique_roll_numbers(record.roll_no for record in records)
        if not roll_numbers:
            return self._result(
                False,
                "No attendance records found for that date/group.",
                ErrorKind.NO_RECORDS,
            )

        self._set_status(PortalStatus.MARKING)
        marked = 0
        unmatched: List[str] = []
        try:
            await self._until_closed(
                session.navigate(
                    self._attendance_url(date, group_name),
                    self._config.navigation_timeout_seconds,
                )
            )
            for roll_no in roll_numbers:
                if await self._mark_one(session, roll_no):
                    marked += 1
                    await self._until_closed(self._sleep(self._config.mark_delay_ms / 1000))
                else:
                    unmatched.append(roll_no)
        except _SessionClosed:
            return self._result(
                False,
                f"Browser session was closed after marking {marked} of {len(roll_numbers)} students.",
                ErrorKind.SESSION_CLOSED,
                attempted=len(roll_numbers),
                marked=marked,
                unmatched=unmatched,
            )
        except Exception as exc:
            if self._session is not session:
                return self._result(
                    False,
                    "Browser session was closed while marking attendance.",
                    ErrorKind.SESSION_CLOSED,
                    attempted=len(roll_numbers),
                    marked=marked,
                    unmatched=unmatched,
                )
            kind = getattr(exc, "kind", ErrorKind.PORTAL_ERROR)
            LOGGER.error("Marking attendance failed (%s): %s", kind.value, exc)
            self._set_status(PortalStatus.READY)
            return self._result(
                False,
                f"Marking attendance failed: {exc}",
                kind,
                attempted=len(roll_numbers),
                marked=marked,
                unmatched=unmatched,
            )

        self._set_status(PortalStatus.READY)
        return self._result(
            True,
            f"Marked {marked} of {len(roll_numbers)} students.",
            attempted=len(roll_numbers),
            marked=marked,
            unmatched=unmatched,
        )

    async def stop(self) -> PortalResult:
        """Close the browser session if open. Safe to call in any state."""

        session = self._session
        self._session = None
        if self._closed is not None:
            self._closed.set()
        if session is not None:
            await self._close_quietly(session)
        if self._cleanup:
            await asyncio.gather(*self._cleanup)
        self._set_status(PortalStatus.STOPPED)
        return self._result(True, "Portal agent stopped.")

    async def _authenticate(self, session: BrowserSessionPort) -> None:
        timeout = self._config.login_timeout_seconds
        login = self._config.auto_login
        if login is None:
            LOGGER.info("Waiting up to %ss for the portal login", timeout)
            await session.wait_for_navigation(timeout)
            return

        # Listen before submitting so the post-login navigation is not missed.
        navigation = asyncio.ensure_future(session.wait_for_navigation(timeout))
        step_timeout = self._config.navigation_timeout_seconds
        try:
            await session.fill(login.username_selector, login.username, step_timeout)
            await session.fill(login.password_selector, login.password, step_timeout)
            await session.click_selector(login.submit_selector, step_timeout)
        except BaseException:
            navigation.cancel()
            await asyncio.gather(navigation, return_exceptions=True)
            raise
        await navigation

    async def _mark_one(self, session: BrowserSessionPort, roll_no: str) -> bool:
        selector = self._config.roll_selector.format(roll_no=roll_no.replace('"', '\\"'))
        try:
            element = await self._until_closed(
                session.find_element(selector, self._config.element_timeout_ms)
            )
            if element is None:
                LOGGER.warning("No portal control for roll number %s", roll_no)
                return False
            await self._until_closed(session.highlight(element))
            await self._until_closed(session.click(element))
        except (PortalError, PortalTimeout) as exc:
            if self._session is not session:
                raise _SessionClosed() from exc
            LOGGER.warning("Could not mark roll number %s: %s", roll_no, exc)
            return False
        return True

    def _attendance_url(self, date: str, group_name: str) -> str:
        template = self._config.attendance_url or self._config.entry_url
        return template.format(group=quote(group_name, safe=""), date=quote(date, safe=""))

    async def _until_closed(self, awaitable: Awaitable[Any]) -> Any:
        """Await ``awaitable`` unless the current session is closed first."""

        closed_event = self._closed
        if closed_event is None:
            return await awaitable
        if closed_event.is_set():
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise _SessionClosed()

        task = asyncio.ensure_future(awaitable)
        closed = asyncio.ensure_future(closed_event.wait())
        try:
            done, _ = await asyncio.wait({task, closed}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            closed.cancel()
        if task in done:
            return task.result()
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        raise _SessionClosed()

    def _on_session_closed(self, session: BrowserSessionPort) -> None:
        if session is not self._session:
            return
        LOGGER.warning("Portal browser was closed externally")
        self._session = None
        if self._closed is not None:
            self._closed.set()
        self._set_status(PortalStatus.STOPPED)
        # The window is gone but the browser process and driver are not.
        cleanup = asyncio.ensure_future(self._close_quietly(session))
        self._cleanup.add(cleanup)
        cleanup.add_done_callback(self._cleanup.discard)

    async def _release(self, session: BrowserSessionPort) -> None:
        if self._session is session:
            self._session = None
        await self._close_quietly(session)

    async def _close_quietly(self, session: BrowserSessionPort) -> None:
        try:
            await session.close()
        except Exception as exc:
            LOGGER.warning("Closing the portal browser failed: %s", exc)

    def _set_status(self, status: PortalStatus) -> None:
        if status is not self._status:
            LOGGER.info("Portal agent %s -> %s", self._status.value, status.value)
        self._status = status

    def _result(
        self,
        success: bool,
        message: str,
        error: Optional[ErrorKind] = None,
        *,
        attempted: int = 0,
        marked: int = 0,
        unmatched: Optional[List[str]] = None,
    ) -> PortalResult:
        return PortalResult(
            success=success,
            message=message,
            status=self._status,
            error=error,
            attempted=attempted,
            marked=marked,
            unmatched=list(unmatched or []),
        )


def _unique_roll_numbers(roll_numbers) -> List[str]:
    # Clicking a checkbox twice would untick it, so each roll number is replayed once.
    seen: set[str] = set()
    ordered: List[str] = []
    for roll_no in roll_numbers:
        if roll_no and roll_no not in seen:
            seen.add(roll_no)
            ordered.append(roll_no)
    return ordered
