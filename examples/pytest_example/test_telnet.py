"""
Tests for TelnetConnection against a throwaway local TCP server.
"""

import queue
import socket
import threading

import pytest

from botfleet import (
    ConnectFailure,
    ConnectOptions,
    EventKind,
    Identity,
    LoginConfig,
    OfflineAuth,
    SessionManager,
    SessionState,
    Target,
    TelnetConnection,
)

TIMEOUT = 5


@pytest.fixture
def listener():
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    sock.bind(("127.0.0.1", 0))
    sock.listen(1)
    sock.settimeout(TIMEOUT)
    yield sock
    sock.close()


def serve(listener, handler):
    """Accept one client on a background thread and run handler on it."""
    def run():
        client, _ = listener.accept()
        with client:
            client.settimeout(TIMEOUT)
            handler(client)

    thread = threading.Thread(target=run, daemon=True)
    thread.start()
    return thread


def read_line(client):
    data = b""
    while not data.endswith(b"\n"):
        try:
            chunk = client.recv(1)
        except OSError:
            break
        if not chunk:
            break
        data += chunk
    return data.decode("utf-8").strip()


def options_for(listener, **kwargs):
    host, port = listener.getsockname()
    return ConnectOptions(host=host, port=port, username="alice", **kwargs)


def record(conn):
    events = queue.Queue()
    for name in ("login", "spawn", "chat", "kicked", "end", "error"):
        conn.on(name, lambda *args, name=name: events.put((name,) + args))
    return events


def test_login_spawn_chat_and_disconnect(listener):
    received = []

    def handler(client):
        client.sendall(b"\xff\xfb\x01Enter your name: ")
        received.append(read_line(client))
        client.sendall(b"Welcome, alice!\r\n")
        received.append(read_line(client))
        client.sendall(b"\x1b[1;32mBob says hi\x1b[0m\r\n")
        read_line(client)

    server = serve(listener, handler)
    conn = TelnetConnection(options_for(listener))
    events = record(conn)
    conn.start()

    assert events.get(timeout=TIMEOUT) == ("login",)
    assert events.get(timeout=TIMEOUT) == ("spawn", None)
    conn.send_chat("look")
    assert events.get(timeout=TIMEOUT) == ("chat", "Bob says hi")
    conn.disconnect()
    assert events.get(timeout=TIMEOUT) == ("end", "disconnect.quitting")

    server.join(TIMEOUT)
    assert received == ["alice", "look"]
    assert not conn.is_connected


def test_server_close_reports_end(listener):
    def handler(client):
        client.sendall(b"Name: ")
        read_line(client)

    serve(listener, handler)
    conn = TelnetConnection(options_for(listener))
    events = record(conn)
    conn.start()

    assert events.get(timeout=TIMEOUT) == ("login",)
    assert events.get(timeout=TIMEOUT) == ("end", "socket closed")


def test_failure_pattern_reports_kicked(listener):
    def handler(client):
        client.sendall(b"Login: ")
        read_line(client)
        client.sendall(b"Invalid name.\r\n")
        read_line(client)

    serve(listener, handler)
    conn = TelnetConnection(options_for(listener))
    events = record(conn)
    conn.start()

    assert events.get(timeout=TIMEOUT) == ("login",)
    assert events.get(timeout=TIMEOUT) == ("kicked", "Invalid name.")
    assert events.get(timeout=TIMEOUT) == ("end", "disconnect.quitting")


def test_custom_login_steps_and_success_pattern(listener):
    received = []

    def handler(client):
        client.sendall(b"Account? ")
        received.append(read_line(client))
        client.sendall(b"Password? ")
        received.append(read_line(client))
        client.sendall(b"Loading...\r\n")
        client.sendall(b"You are in the Hall.\r\n")
        read_line(client)

    serve(listener, handler)
    login = LoginConfig(
        steps=[(r"account\?", "{username}"), (r"password\?", "hunter2")],
        success_patterns=[r"You are in"],
    )
    conn = TelnetConnection(options_for(listener), login_config=login)
    events = record(conn)
    conn.start()

    assert events.get(timeout=TIMEOUT) == ("login",)
    assert events.get(timeout=TIMEOUT) == ("spawn", None)
    conn.disconnect()
    assert events.get(timeout=TIMEOUT)[0] == "end"
    assert received == ["alice", "hunter2"]


def closed_port():
    sock = socket.socket()
    sock.bind(("127.0.0.1", 0))
    host, port = sock.getsockname()
    sock.close()
    return host, port


def test_construction_does_not_connect():
    host, port = closed_port()

    conn = TelnetConnection(ConnectOptions(host=host, port=port, username="alice"), timeout=1)

    assert not conn.is_connected


def test_refused_connection_reports_error_then_end():
    host, port = closed_port()
    conn = TelnetConnection(ConnectOptions(host=host, port=port, username="alice"), timeout=1)
    events = record(conn)

    conn.start()

    name, err = events.get(timeout=TIMEOUT)
    assert name == "error"
    assert isinstance(err, ConnectFailure)
    name, reason = events.get(timeout=TIMEOUT)
    assert name == "end"
    assert reason == err.reason


def test_managed_auth_not_supported():
    options = ConnectOptions(host="127.0.0.1", port=1, username="me", auth="microsoft")

    with pytest.raises(ConnectFailure, match="not supported"):
        TelnetConnection(options)


def test_disconnect_before_start_reports_end_once(listener):
    conn = TelnetConnection(options_for(listener))
    events = record(conn)

    conn.disconnect()
    conn.disconnect()
    conn.start()

    assert events.get(timeout=TIMEOUT) == ("end", "disconnect.quitting")
    assert events.empty()
    conn.send_chat("ignored")


def test_session_goes_online_over_telnet(listener, scheduler):
    def handler(client):
        client.sendall(b"What is your name? ")
        read_line(client)
        client.sendall(b"Hello alice.\r\n")
        read_line(client)

    serve(listener, handler)
    host, port = listener.getsockname()
    online = threading.Event()

    with SessionManager(scheduler=scheduler) as manager:
        manager.events.subscribe(EventKind.ONLINE, lambda s: online.set())
        session = manager.start(
            Identity("acc1", "Alice", OfflineAuth("alice")),
            Target("srv1", "Local", host, port),
        )
        assert online.wait(TIMEOUT)
        assert session.state is SessionState.ONLINE

    assert session.state is SessionState.ENDED
    assert scheduler.handles == []


def test_lines_after_spawn_line_in_same_chunk_are_chat(listener):
    def handler(client):
        client.sendall(b"Name: ")
        read_line(client)
        client.sendall(b"Welcome, alice!\r\nBob waves.\r\nCarol says hi\r\n")
        read_line(client)

    serve(listener, handler)
    conn = TelnetConnection(options_for(listener))
    events = record(conn)
    conn.start()

    assert events.get(timeout=TIMEOUT) == ("login",)
    assert events.get(timeout=TIMEOUT) == ("spawn", None)
    assert events.get(timeout=TIMEOUT) == ("chat", "Bob waves.")
    assert events.get(timeout=TIMEOUT) == ("chat", "Carol says hi")
    conn.disconnect()


def test_unreachable_target_does_not_block_start(scheduler):
    host, port = closed_port()
    retrying = threading.Event()

    with SessionManager(scheduler=scheduler) as manager:
        manager.events.subscribe(
            EventKind.LOG,
            lambda line: "Reconnecting in" in line and retrying.set(),
        )
        session = manager.start(
            Identity("acc1", "Alice", OfflineAuth("alice")),
            Target("srv1", "Local", host, port),
        )
        assert session.state in (SessionState.CONNECTING, SessionState.ERROR, SessionState.ENDED)
        assert retrying.wait(TIMEOUT)

        assert session.reconnect_count == 1
        assert len(scheduler.pending) == 1
        assert session.last_error
