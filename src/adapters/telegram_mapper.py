"""Telegram-to-core message mapping adapter.

This keeps Telethon-specific details out of the ingestion agent.
"""

from __future__ import annotations

from typing import Any, Optional

from telethon.tl.custom import Message

from core.models import ChatMessage


def external_message_id(message: Message) -> str:
    """Return a globally unique id; Telegram message ids are only unique per chat."""

    return f"{message.chat_id}:{message.id}"


def _chat_title(chat: Any, fallback: str) -> str:
    title = getattr(chat, "title", None)
    if title:
        return str(title)
    first = getattr(chat, "first_name", None)
    last = getattr(chat, "last_name", None)
    if first or last:
        return " ".join(part for part in [first, last] if part)
    return fallback


async def _resolve_chat(message: Message) -> Optional[Any]:
    chat = getattr(message, "chat", None)
    if chat is not None:
        return chat
    get_chat = getattr(message, "get_chat", None)
    if get_chat is None:
        return None
    return await get_chat()


async def build_chat_message(message: Message) -> ChatMessage:
    """Build a core ChatMessage from a Telethon Message."""

    chat = await _resolve_chat(message)
    return ChatMessage(
        # Telethon reports megagroups and basic groups as groups; broadcast
        # channels and private chats are not.
        is_group=bool(getattr(message, "is_group", False)),
        group_name=_chat_title(chat, fallback=str(message.chat_id)),
        body=message.raw_text or "",
        message_id=external_message_id(message),
        received_at=message.date,
    )
