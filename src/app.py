"""Application entry point for the rollcall attendance agent."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
from logging.handlers import RotatingFileHandler
from typing import Optional

from art import tprint
from dotenv import load_dotenv
from telethon import events

import settings
from adapters.mongo_storage import MongoStorage
from adapters.playwright_browser import PlaywrightSession
from adapters.sqlite_storage import SQLiteStorage
from adapters.telegram_client import authorize, build_client
from adapters.telegram_mapper import build_chat_message
from core.config import PortalConfig, PortalLoginConfig
from core.connection import ConnectionState, ConnectionStatus
from core.errors import AuthFailure, StoreUnavailable
from core.ingestion import IngestionAgent
from core.models import AttendanceRecord, PortalResult, PortalStatus
from core.portal import PortalAgent
from core.query import AttendanceQuery

NAME = "ROLLCALL"
FONT = "tarty-1"

LOGGER = logging.getLogger(__name__)


def _print_banner() -> None:
    tprint(NAME, FONT, space=1)


class _RedactingFormatter(logging.Formatter):
    def __init__(self, secrets: list[str], fmt: str, datefmt: Optional[str] = None) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt)
        self._secrets = [secret for secret in secrets if secret]

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        for secret in self._secrets:
            message = message.replace(secret, "***")
        return message


def _collect_redaction_values(config: dict) -> list[str]:
    redact_cfg = config.get("redact", {}) if config else {}
    if not redact_cfg.get("enabled", False):
        return []
    values = []
    for name in redact_cfg.get("patterns", []):
        value = os.getenv(name)
        if value:
            values.append(value)
    return sorted(set(values), key=len, reverse=True)


def _configure_logging() -> None:
    load_dotenv()
    config = settings.LOGGING or {}
    if not config.get("enabled", False):
        return

    level_name = str(config.get("level", "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)

    fmt = "%(asctime)s %(levelname)s %(name)s: %(message)s"
    datefmt = "%Y-%m-%d %H:%M:%S"
    formatter = _RedactingFormatter(_collect_redaction_values(config), fmt=fmt, datefmt=datefmt)

    handlers: list[logging.Handler] = []

    if config.get("console", True):
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        handlers.append(console_handler)

    file_cfg = config.get("file", {})
    if file_cfg.get("enabled", False):
        path = file_cfg.get("path", "logs/rollcall.log")
        if not os.path.isabs(path):
            path = os.path.join(settings.PROJECT_ROOT, path)
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        file_handler = RotatingFileHandler(
            path,
            maxBytes=int(file_cfg.get("max_bytes", 5 * 1024 * 1024)),
            backupCount=int(file_cfg.get("backup_count", 5)),
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    if not handlers:
        return

    logging.basicConfig(level=level, handlers=handlers)


def _build_store():
    """Open the configured storage backend and make sure its schema exists."""

    if settings.STORAGE_BACKEND == "mongo":
        store = MongoStorage(
            uri=os.getenv("MONGODB_URI"),
            database=settings.MONGO_DATABASE,
            timeout_ms=settings.MONGO_TIMEOUT_MS,
        )
    elif settings.STORAGE_BACKEND == "sqlite":
        store = SQLiteStorage(settings.SQLITE_PATH)
    else:
        raise RuntimeError("storage.backend must be 'sqlite' or 'mongo'")
    store.init_db()
    LOGGER.info("Using %s storage", settings.STORAGE_BACKEND)
    return store


def _portal_config() -> PortalConfig:
    auto_login = None
    login_cfg = settings.PORTAL_AUTO_LOGIN or {}
    username = os.getenv("PORTAL_USERNAME")
    password = os.getenv("PORTAL_PASSWORD")
    if login_cfg.get("enabled", False):
        if not username or not password:
            raise RuntimeError("PORTAL_USERNAME and PORTAL_PASSWORD are required for portal auto_login")
        auto_login = PortalLoginConfig(
            username_selector=login_cfg["username_selector"],
            password_selector=login_cfg["password_selector"],
            submit_selector=login_cfg["submit_selector"],
            username=username,
            password=password,
        )
    if not settings.PORTAL_ENTRY_URL:
        raise RuntimeError("portal.entry_url is required")
    return PortalConfig(
        entry_url=settings.PORTAL_ENTRY_URL,
        attendance_url=settings.PORTAL_ATTENDANCE_URL,
        roll_selector=settings.PORTAL_ROLL_SELECTOR,
        login_timeout_seconds=settings.PORTAL_LOGIN_TIMEOUT_SECONDS,
        navigation_timeout_seconds=settings.PORTAL_NAVIGATION_TIMEOUT_SECONDS,
        element_timeout_ms=settings.PORTAL_ELEMENT_TIMEOUT_MS,
        mark_delay_ms=settings.PORTAL_MARK_DELAY_MS,
        auto_login=auto_login,
    )


def _log_connection(status: ConnectionStatus) -> None:
    if status.connected:
        LOGGER.info("Telegram connected")
    elif status.auth_error:
        LOGGER.error("Telegram authorization failed: %s", status.auth_error)
    elif status.has_login_token:
        LOGGER.info("Waiting for the QR login to be scanned")
    else:
        LOGGER.info("Telegram disconnected")


def _run() -> int:
    _print_banner()
    _configure_logging()
    LOGGER.info("Starting rollcall")

    store = _build_store()
    connection = ConnectionState()
    connection.subscribe(_log_connection)
    agent = IngestionAgent(store, connection)

    client = build_client()
    client.loop.run_until_complete(client.connect())
    try:
        client.loop.run_until_complete(
            authorize(client, connection, settings.QR_TIMEOUT_SECONDS, settings.QR_ATTEMPTS)
        )
    except AuthFailure as exc:
        LOGGER.error("%s", exc)
        client.loop.run_until_complete(client.disconnect())
        return 1

    # Single handler keeps Telethon integration minimal and defers all filtering
    # to the ingestion agent for consistency and testability.
    @client.on(events.NewMessage(incoming=True))
    async def handler(event) -> None:
        try:
            message = await build_chat_message(event.message)
            await agent.handle(message)
        except Exception:
            LOGGER.exception("Error while processing message")

    LOGGER.info("Listening for attendance in group chats...")
    try:
        client.run_until_disconnected()
    finally:
        connection.mark_disconnected()
        store.close()
    return 0


def _login() -> int:
    _print_banner()
    _configure_logging()
    connection = ConnectionState()
    connection.subscribe(_log_connection)
    client = build_client()

    async def _run_login() -> int:
        await client.connect()
        try:
            await authorize(client, connection, settings.QR_TIMEOUT_SECONDS, settings.QR_ATTEMPTS)
            me = await client.get_me()
        except AuthFailure as exc:
            LOGGER.error("%s", exc)
            return 1
        finally:
            await client.disconnect()
        LOGGER.info("Logged in as: %s", getattr(me, "first_name", None) or "unknown")
        return 0

    return client.loop.run_until_complete(_run_login())


def _print_portal_result(result: PortalResult) -> None:
    flag = "OK" if result.success else "FAILED"
    print(f"[{flag}] {result.message}")
    if result.unmatched:
        print(f"Not found on the portal: {', '.join(result.unmatched)}")


async def _replay(store, date: str, group_name: str) -> int:
    agent = PortalAgent(
        store,
        lambda: PlaywrightSession(headless=settings.PORTAL_HEADLESS),
        _portal_config(),
    )
    result = await agent.start()
    _print_portal_result(result)
    if not result.success:
        return 1
    try:
        result = await agent.mark_attendance(date, group_name)
        _print_portal_result(result)
        if agent.status is PortalStatus.READY:
            await asyncio.to_thread(input, "Review the portal, then press Enter to close the browser... ")
    finally:
        await agent.stop()
    return 0 if result.success else 1


def _portal(date: str, group_name: str) -> int:
    _print_banner()
    _configure_logging()
    store = _build_store()
    try:
        return asyncio.run(_replay(store, date, group_name))
    finally:
        store.close()


def _format_record(record: AttendanceRecord) -> str:
    received = record.timestamp.astimezone().strftime("%H:%M:%S")
    name = record.student_name or "-"
    return f"{record.date} {received} | {record.group_name} | {record.roll_no} | {name}"


def _query(args: argparse.Namespace) -> int:
    _configure_logging()
    store = _build_store()
    try:
        query = AttendanceQuery.from_filters(
            {
                "date": args.date,
                "groupName": args.group,
                "rollNo": args.roll,
                "sortBy": args.sort_by,
                "sortDir": args.sort_dir,
                "page": args.page,
                "limit": args.limit,
            }
        )
        records = store.query_attendance(query)
    finally:
        store.close()
    for record in records:
        print(_format_record(record))
    print(f"{len(records)} record(s)")
    return 0


def _stats() -> int:
    _configure_logging()
    store = _build_store()
    try:
        stats = store.get_stats()
    finally:
        store.close()
    print(f"Total records: {stats.total}")
    print(f"Today: {stats.today}")
    print(f"Students on roster: {stats.students}")
    for group in stats.groups:
        print(f"  {group.group_name or '(no group)'}: {group.count}")
    if stats.recent:
        print("Most recent:")
        for record in stats.recent:
            print(f"  {_format_record(record)}")
    return 0


def _students() -> int:
    _configure_logging()
    store = _build_store()
    try:
        students = store.get_all_students()
    finally:
        store.close()
    for student in students:
        print(f"{student.roll_no} | {student.name} | {student.course_name or '-'} | {student.semester or '-'}")
    print(f"{len(students)} student(s)")
    return 0


def main(argv: Optional[list[str]] = None) -> None:
    parser = argparse.ArgumentParser(prog="rollcall")
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("run", help="Listen to group chats and record attendance")
    subparsers.add_parser("login", help="Log the Telegram account in and exit")

    portal_parser = subparsers.add_parser("portal", help="Replay stored attendance onto the portal")
    portal_parser.add_argument("--date", required=True, help="Day to replay (YYYY-MM-DD)")
    portal_parser.add_argument("--group", required=True, help="Group name (substring match)")

    query_parser = subparsers.add_parser("query", help="List stored attendance")
    query_parser.add_argument("--date")
    query_parser.add_argument("--group")
    query_parser.add_argument("--roll")
    query_parser.add_argument("--sort-by")
    query_parser.add_argument("--sort-dir", choices=["asc", "desc"])
    query_parser.add_argument("--page")
    query_parser.add_argument("--limit")

    subparsers.add_parser("stats", help="Show attendance totals")
    subparsers.add_parser("students", help="List the roster")

    args = parser.parse_args(argv)
    try:
        if args.command == "login":
            code = _login()
        elif args.command == "portal":
            code = _portal(args.date, args.group)
        elif args.command == "query":
            code = _query(args)
        elif args.command == "stats":
            code = _stats()
        elif args.command == "students":
            code = _students()
        else:
            code = _run()
    except StoreUnavailable as exc:
        LOGGER.error("Storage unavailable: %s", exc)
        code = 1
    raise SystemExit(code)


if __name__ == "__main__":
    main()
