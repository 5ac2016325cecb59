"""Chat connection state owned by the ingestion side.

The chat client publishes two artifacts: a scannable login token while the
account is not yet authorized, and a connected flag once it is. Both are kept
here instead of module globals, and readers only ever get an immutable
snapshot.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Any, Callable, Optional

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConnectionStatus:
    connected: bool = False
    login_token: Optional[str] = None
    auth_error: Optional[str] = None

    @property
    def has_login_token(self) -> bool:
        return self.login_token is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "connected": self.connected,
            "hasLoginToken": self.has_login_token,
            "loginToken": self.login_token,
            "authError": self.auth_error,
        }


class ConnectionState:
    """Mutable owner of ``ConnectionStatus``; reads never block."""

    def __init__(self) -> None:
        self._status = ConnectionStatus()
        self._listeners: list[Callable[[ConnectionStatus], None]] = []

    def snapshot(self) -> ConnectionStatus:
        return self._status

    def subscribe(self, listener: Callable[[ConnectionStatus], None]) -> None:
        """Push every future snapshot to ``listener``."""

        self._listeners.append(listener)

    def set_login_token(self, token: str) -> None:
        self._publish(ConnectionStatus(connected=False, login_token=token))

    def mark_connected(self) -> None:
        # The token is single-use; drop it once the session is authorized.
        self._publish(ConnectionStatus(connected=True))

    def mark_disconnected(self) -> None:
        self._publish(ConnectionStatus(connected=False))

    def mark_auth_failed(self, reason: str) -> None:
        self._publish(ConnectionStatus(connected=False, auth_error=reason))

    def _publish(self, status: ConnectionStatus) -> None:
        self._status = status
        for listener in list(self._listeners):
            try:
                listener(status)
            except Exception:
                LOGGER.exception("Connection status listener failed")
