"""Telegram client factory and login flow.

The Telethon session file keeps the account authorized across restarts, so
``authorize`` only prompts when that file is missing or revoked. Progress is
published through ``ConnectionState``: the QR login URL while waiting for a
scan, then the connected flag.
"""

from __future__ import annotations

import asyncio
from getpass import getpass
import logging
import os

from dotenv import load_dotenv
import qrcode
from telethon import TelegramClient, errors

from core.connection import ConnectionState
from core.errors import AuthFailure

LOGGER = logging.getLogger(__name__)


def build_client() -> TelegramClient:
    """Create a Telethon client from environment variables.

    API_ID/API_HASH are read via python-dotenv to keep secrets out of the repo.
    The session name defaults to "rollcall" to create a local .session file.
    Updates are dispatched one at a time so messages are ingested in arrival
    order even though mapping a message may await the chat lookup.
    """

    load_dotenv()

    api_id = os.getenv("API_ID")
    api_hash = os.getenv("API_HASH")
    session_name = os.getenv("SESSION_NAME", "rollcall")

    if not api_id or not api_hash:
        raise RuntimeError("Missing API_ID or API_HASH in environment")

    LOGGER.info("Initializing Telegram client")
    return TelegramClient(session_name, int(api_id), api_hash, sequential_updates=True)


def _print_qr(url: str) -> None:
    qr = qrcode.QRCode(border=1)
    qr.add_data(url)
    qr.make(fit=True)
    qr.print_ascii(invert=True)


def _resolve_2fa_password() -> str:
    password = os.getenv("2FA")
    if password:
        return password
    return getpass("2FA password: ")


async def _authorize_with_qr(
    client: TelegramClient,
    state: ConnectionState,
    timeout: int,
    attempts: int,
) -> None:
    qr = await client.qr_login()
    for attempt in range(1, attempts + 1):
        state.set_login_token(qr.url)
        _print_qr(qr.url)
        try:
            await qr.wait(timeout=timeout)
            return
        except asyncio.TimeoutError:
            if attempt == attempts:
                raise
            LOGGER.info("QR code expired, issuing a new one (%s/%s)", attempt + 1, attempts)
            await qr.recreate()


async def _authorize_with_phone(client: TelegramClient) -> None:
    phone = os.getenv("PHONE") or input("Phone number (international format): ").strip()
    await client.send_code_request(phone)
    code = input("Login code: ").strip()
    await client.sign_in(phone=phone, code=code)


def _pick_login_method() -> str:
    method = (os.getenv("LOGIN_METHOD") or "").strip().lower()
    if method in {"qr", "phone"}:
        return method
    while True:
        print("")
        print("Login methods:")
        print("[1] QR code")
        print("[2] Phone code")
        print("[3] Exit")
        print("Select a login method: \n")
        choice = input("rollcall > ").strip()
        if choice == "1":
            return "qr"
        if choice == "2":
            return "phone"
        if choice == "3":
            raise SystemExit(0)
        print("Invalid option. Please choose 1, 2, or 3.")


async def authorize(
    client: TelegramClient,
    state: ConnectionState,
    qr_timeout: int = 120,
    qr_attempts: int = 3,
) -> None:
    """Make sure ``client`` is logged in, raising ``AuthFailure`` otherwise."""

    if await client.is_user_authorized():
        LOGGER.info("Restored Telegram session")
        state.mark_connected()
        return

    try:
        try:
            if _pick_login_method() == "phone":
                await _authorize_with_phone(client)
            else:
                await _authorize_with_qr(client, state, qr_timeout, qr_attempts)
        except errors.SessionPasswordNeededError:
            await client.sign_in(password=_resolve_2fa_password())
    except (errors.RPCError, asyncio.TimeoutError) as exc:
        reason = str(exc) or type(exc).__name__
        state.mark_auth_failed(reason)
        raise AuthFailure(f"Telegram login failed: {reason}") from exc

    state.mark_connected()
