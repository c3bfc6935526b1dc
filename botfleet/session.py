"""
Session - One managed, reconnecting connection.

A Session pairs an identity with a target, opens a connection through
the connection factory as soon as it is constructed, and keeps
reconnecting with exponential backoff until stop() is called.

States:
    init -> connecting -> online -> ended/error -> connecting -> ...
    any -> ended (stop(), terminal)
"""

import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional

from . import config
from .connection import Connection, ConnectionFactory
from .errors import (
    ConnectFailure,
    ConnectionRuntimeError,
    ForcedRemoval,
    RemoteDisconnect,
    SessionFailure,
)
from .events import EventBus, EventKind
from .models import Identity, Target, build_connect_options


class SessionState(str, Enum):
    """Lifecycle state of a session."""
    INIT = "init"
    CONNECTING = "connecting"
    ONLINE = "online"
    ENDED = "ended"
    ERROR = "error"


def reconnect_delay(reconnect_count: int) -> int:
    """
    Backoff before the next connection attempt, in milliseconds.

    1000 * 2**n, with the exponent capped at 5 and the result capped
    at 30000: 1s, 2s, 4s, 8s, 16s, then 30s from n=5 onwards.
    """
    exponent = min(max(reconnect_count, 0), config.BACKOFF_MAX_EXPONENT)
    return min(config.BACKOFF_CAP_MS, config.BACKOFF_BASE_MS * 2 ** exponent)


def format_uptime(ms: float) -> str:
    """Render a duration like "450ms", "12s" or "1h 2m 3s"."""
    ms = int(ms)
    if ms < 1000:
        return f"{ms}ms"
    s = ms // 1000 % 60
    m = ms // 60000 % 60
    h = ms // 3600000
    parts = []
    if h:
        parts.append(f"{h}h")
    if m:
        parts.append(f"{m}m")
    parts.append(f"{s}s")
    return " ".join(parts)


class ThreadingScheduler:
    """Runs delayed callbacks on daemon threading.Timer threads."""

    def call_later(self, delay: float, callback: Callable[[], Any]) -> threading.Timer:
        timer = threading.Timer(delay, callback)
        timer.daemon = True
        timer.start()
        return timer


@dataclass(frozen=True)
class SessionInfo:
    """Read-only snapshot of a session, as returned by Session.info()."""
    session_id: str
    identity_id: str
    target_id: str
    identity: str
    target: str
    state: str
    uptime: str
    reconnect_count: int
    last_error: Optional[str]


class Session:
    """
    Lifecycle owner for one identity/target connection.

    Usage:
        session = Session("a-s-1", identity, target, TelnetConnection)
        session.events.subscribe("chat", lambda s, text: print(text))
        session.say("hello")
        session.stop()

    Connection callbacks arrive on the connection's own thread. Every
    callback checks that it comes from the current connection and that
    the session is still running; anything else is ignored, so a late
    callback cannot revive a stopped session. Events are published
    outside the session lock.
    """

    def __init__(
        self,
        session_id: str,
        identity: Identity,
        target: Target,
        connection_factory: ConnectionFactory,
        scheduler: Optional[Any] = None,
        events: Optional[EventBus] = None,
        logger: Optional[logging.Logger] = None,
    ):
        """
        Create the session and start connecting.

        Args:
            session_id: Unique id, allocated by the SessionManager
            identity: Who to log in as
            target: Where to connect
            connection_factory: Callable turning ConnectOptions into a Connection
            scheduler: Object with call_later(seconds, callback) returning a
                cancellable handle (default: ThreadingScheduler)
            events: Bus to publish on; pass one to subscribe before the
                first connection attempt
            logger: Optional logger instance
        """
        self.session_id = session_id
        self.identity = identity
        self.target = target
        self.logger = logger or logging.getLogger(__name__)
        self.events = events or EventBus(kinds=EventKind, logger=self.logger)
        self.start_time = time.time()

        self._factory = connection_factory
        self._scheduler = scheduler or ThreadingScheduler()
        self._lock = threading.RLock()
        self._state = SessionState.INIT
        self._connection: Optional[Connection] = None
        self._timer: Optional[Any] = None
        self._should_run = True
        self._reconnect_count = 0
        self._last_failure: Optional[SessionFailure] = None

        self._connect()

    def __repr__(self) -> str:
        return f"<Session {self.session_id} {self.label()} [{self._state.value}]>"

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def reconnect_count(self) -> int:
        return self._reconnect_count

    @property
    def last_failure(self) -> Optional[SessionFailure]:
        return self._last_failure

    @property
    def last_error(self) -> Optional[str]:
        if self._last_failure is None:
            return None
        return self._last_failure.reason

    @property
    def should_run(self) -> bool:
        return self._should_run

    @property
    def connection(self) -> Optional[Connection]:
        return self._connection

    @property
    def has_pending_reconnect(self) -> bool:
        return self._timer is not None

    def label(self) -> str:
        return f"{self.identity.label}→{self.target.label}"

    def info(self) -> SessionInfo:
        """Snapshot for listings. Uptime counts from construction."""
        with self._lock:
            return SessionInfo(
                session_id=self.session_id,
                identity_id=self.identity.id,
                target_id=self.target.id,
                identity=self.identity.label,
                target=self.target.label,
                state=self._state.value,
                uptime=format_uptime((time.time() - self.start_time) * 1000),
                reconnect_count=self._reconnect_count,
                last_error=self.last_error,
            )

    def say(self, text: str) -> None:
        """Send a chat message if a connection is attached; otherwise drop it."""
        conn = self._connection
        if conn is None:
            self.logger.debug(f"[{self.label()}] No connection, dropping chat")
            return
        try:
            conn.send_chat(text)
        except Exception as e:
            self.logger.warning(f"[{self.label()}] Chat send failed: {e}")

    def command(self, text: str) -> None:
        """Send a slash-command (with or without the leading slash)."""
        conn = self._connection
        if conn is None:
            self.logger.debug(f"[{self.label()}] No connection, dropping command")
            return
        if text.startswith("/"):
            text = text[1:]
        try:
            conn.send_command(text)
        except Exception as e:
            self.logger.warning(f"[{self.label()}] Command send failed: {e}")

    def stop(self) -> None:
        """
        Stop for good: cancel any pending reconnect and drop the connection.

        Idempotent. When it returns, no further connection attempt will be
        made and the state stays ended.
        """
        with self._lock:
            was_running = self._should_run
            self._should_run = False
            self._state = SessionState.ENDED
            timer, self._timer = self._timer, None
            conn, self._connection = self._connection, None
            if timer is not None:
                timer.cancel()

        if conn is not None:
            try:
                conn.disconnect()
            except Exception as e:
                self.logger.warning(f"[{self.label()}] Disconnect failed: {e}")
        if was_running:
            self._log("Stopped.")

    def _log(self, message: str) -> None:
        line = f"[{self.label()}] {message}"
        self.logger.info(line)
        self.events.publish(EventKind.LOG, line)

    def _is_current(self, conn: Connection) -> bool:
        return self._should_run and conn is self._connection

    def _on_device_code(self, verification_uri: str, user_code: str) -> None:
        self._log(f"Managed login: visit {verification_uri} and enter code {user_code}")

    def _connect(self) -> None:
        with self._lock:
            self._timer = None
            if not self._should_run:
                return
            self._state = SessionState.CONNECTING
        self._log(f"Connecting to {self.target.address}...")

        try:
            options = build_connect_options(self.identity, self.target, self._on_device_code)
            conn = self._factory(options)
        except Exception as e:
            self._on_connect_failure(e)
            return

        with self._lock:
            stale = not self._should_run
            if not stale:
                self._connection = conn
        if stale:
            # stop() ran while the factory was working
            try:
                conn.disconnect()
            except Exception as e:
                self.logger.warning(f"[{self.label()}] Disconnect failed: {e}")
            return

        conn.once("login", lambda *args: self._on_login(conn))
        conn.once("spawn", lambda position=None, *args: self._on_spawn(conn, position))
        conn.on("end", lambda reason=None, *args: self._on_end(conn, reason))
        conn.on("kicked", lambda reason=None, *args: self._on_kicked(conn, reason))
        conn.on("error", lambda err=None, *args: self._on_error(conn, err))
        conn.on("chat", lambda text, *args: self._on_chat(conn, text))

        start = getattr(conn, "start", None)
        if callable(start):
            start()

    def _on_connect_failure(self, error: Exception) -> None:
        failure = error if isinstance(error, ConnectFailure) else ConnectFailure(error)
        with self._lock:
            if not self._should_run:
                return
            self._state = SessionState.ERROR
            self._last_failure = failure
        self.logger.error(f"[{self.label()}] Failed to connect: {failure.reason}")
        self.events.publish(EventKind.LOG, f"[{self.label()}] Failed to connect: {failure.reason}")
        self._schedule_reconnect()

    def _on_login(self, conn: Connection) -> None:
        with self._lock:
            if not self._is_current(conn):
                return
            self._state = SessionState.ONLINE
        self._log("Logged in.")

    def _on_spawn(self, conn: Connection, position: Any) -> None:
        with self._lock:
            if not self._is_current(conn):
                return
            self._state = SessionState.ONLINE
        self._log(f"Spawned at {position}" if position is not None else "Spawned.")
        self.events.publish(EventKind.ONLINE, self)

    def _on_end(self, conn: Connection, reason: Any) -> None:
        with self._lock:
            if not self._is_current(conn):
                return
            self._state = SessionState.ENDED
            self._last_failure = RemoteDisconnect(reason)
            self._connection = None
        self._log(f"Disconnected: {reason}")
        self.events.publish(EventKind.END, self)
        self._schedule_reconnect()

    def _on_kicked(self, conn: Connection, reason: Any) -> None:
        with self._lock:
            if not self._is_current(conn):
                return
            self._state = SessionState.ERROR
            self._last_failure = ForcedRemoval(reason)
            self._connection = None
        self._log(f"Kicked: {reason}")
        self.events.publish(EventKind.KICKED, self)
        self._schedule_reconnect()

    def _on_error(self, conn: Connection, err: Any) -> None:
        message = getattr(err, "message", None) or str(err)
        with self._lock:
            if not self._is_current(conn):
                return
            self._state = SessionState.ERROR
            self._last_failure = ConnectionRuntimeError(message)
        self._log(f"Error: {message}")

    def _on_chat(self, conn: Connection, text: str) -> None:
        if not self._is_current(conn):
            return
        self.events.publish(EventKind.CHAT, self, text)

    def _schedule_reconnect(self) -> None:
        with self._lock:
            if not self._should_run or self._timer is not None:
                return
            self._reconnect_count += 1
            delay = reconnect_delay(self._reconnect_count)
            self._timer = self._scheduler.call_later(delay / 1000, self._connect)
        self._log(f"Reconnecting in {delay // 1000}s...")
