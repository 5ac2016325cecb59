from __future__ import annotations

from core.connection import ConnectionState, ConnectionStatus


def test_initial_snapshot_is_disconnected_without_token() -> None:
    status = ConnectionState().snapshot()

    assert status == ConnectionStatus()
    assert status.to_dict() == {
        "connected": False,
        "hasLoginToken": False,
        "loginToken": None,
        "authError": None,
    }


def test_listeners_receive_each_transition() -> None:
    state = ConnectionState()
    seen: list[ConnectionStatus] = []
    state.subscribe(seen.append)

    state.set_login_token("tg://login?token=abc")
    state.mark_connected()
    state.mark_disconnected()

    assert [s.connected for s in seen] == [False, True, False]
    assert seen[0].login_token == "tg://login?token=abc"
    assert seen[1].login_token is None


def test_auth_failure_is_visible_and_clears_token() -> None:
    state = ConnectionState()
    state.set_login_token("tg://login?token=abc")

    state.mark_auth_failed("PASSWORD_HASH_INVALID")

    status = state.snapshot()
    assert status.auth_error == "PASSWORD_HASH_INVALID"
    assert not status.has_login_token


def test_broken_listener_does_not_block_others() -> None:
    state = ConnectionState()
    seen: list[ConnectionStatus] = []

    def broken(status: ConnectionStatus) -> None:
        raise RuntimeError("listener bug")

    state.subscribe(broken)
    state.subscribe(seen.append)

    state.mark_connected()

    assert seen and seen[0].connected
    assert state.snapshot().connected
