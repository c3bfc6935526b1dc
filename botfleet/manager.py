"""
SessionManager - Registry of live sessions.

Starts sessions for identity/target pairs, forwards every session's
events onto one shared bus, and stops sessions by id or by predicate.
"""

import itertools
import logging
import threading
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from .connection import ConnectionFactory
from .events import EventBus, EventKind, Subscription
from .models import Identity, Target
from .session import Session, SessionInfo


Pair = Tuple[Identity, Target]


class SessionManager:
    """
    Manages a pool of concurrently running sessions.

    Usage:
        manager = SessionManager()
        manager.events.subscribe("online", lambda s: print(s.label()))

        session = manager.start(identity, target)
        manager.start_many([(identity, other_target), (alt, target)])

        for info in manager.list():
            print(info.session_id, info.state)

        # Cascade when an identity is deleted
        manager.stop_all(lambda s: s.identity.id == identity.id)

        manager.stop_all()

    Thread-safe: the session map is guarded by a lock, and an entry is
    gone from the map by the time stop()/stop_all() return, even if the
    underlying connection is still closing.
    """

    def __init__(
        self,
        connection_factory: Optional[ConnectionFactory] = None,
        scheduler: Optional[Any] = None,
        logger: Optional[logging.Logger] = None,
    ):
        """
        Initialize the session manager.

        Args:
            connection_factory: Builds a Connection from ConnectOptions
                (default: TelnetConnection)
            scheduler: Reconnect scheduler handed to every session
            logger: Optional logger instance
        """
        if connection_factory is None:
            from .telnet import TelnetConnection
            connection_factory = TelnetConnection
        self.connection_factory = connection_factory
        self.scheduler = scheduler
        self.logger = logger or logging.getLogger(__name__)
        self.events = EventBus(kinds=EventKind, logger=self.logger)
        self._sessions: Dict[str, Session] = {}
        self._forwarders: Dict[str, List[Subscription]] = {}
        self._seq = itertools.count(1)
        self._lock = threading.RLock()

    def start(self, identity: Identity, target: Target) -> Session:
        """
        Start a session for one identity/target pair.

        The session begins connecting immediately; connection failures
        show up in its state and on the bus, never as an exception here.

        Returns:
            The new Session
        """
        with self._lock:
            session_id = f"{identity.id}-{target.id}-{next(self._seq)}"

        bus = EventBus(kinds=EventKind, logger=self.logger)
        forwarders = [bus.subscribe(kind, self._forward(kind)) for kind in EventKind]

        session = Session(
            session_id,
            identity,
            target,
            self.connection_factory,
            scheduler=self.scheduler,
            events=bus,
            logger=self.logger,
        )

        with self._lock:
            self._sessions[session_id] = session
            self._forwarders[session_id] = forwarders
        self.logger.info(f"Started session '{session_id}'")
        return session

    def start_many(self, pairs: Iterable[Pair]) -> List[Session]:
        """Start a session for each (identity, target) pair."""
        return [self.start(identity, target) for identity, target in pairs]

    def get(self, session_id: str) -> Optional[Session]:
        with self._lock:
            return self._sessions.get(session_id)

    def list(self) -> List[SessionInfo]:
        """Snapshots of every live session, in start order."""
        with self._lock:
            sessions = list(self._sessions.values())
        return [s.info() for s in sessions]

    def list_by_identity(self, identity_id: str) -> List[SessionInfo]:
        with self._lock:
            sessions = [s for s in self._sessions.values() if s.identity.id == identity_id]
        return [s.info() for s in sessions]

    def list_by_target(self, target_id: str) -> List[SessionInfo]:
        with self._lock:
            sessions = [s for s in self._sessions.values() if s.target.id == target_id]
        return [s.info() for s in sessions]

    def stop(self, session_id: str) -> bool:
        """
        Stop and remove a session.

        Returns:
            True if the session was found, False otherwise
        """
        with self._lock:
            session = self._sessions.pop(session_id, None)
            if session is None:
                return False
        self._teardown(session)
        return True

    def stop_all(self, predicate: Optional[Callable[[Session], bool]] = None) -> int:
        """
        Stop and remove every session matching predicate (all if None).

        Returns:
            Number of sessions stopped
        """
        with self._lock:
            matched = [
                s for s in self._sessions.values()
                if predicate is None or predicate(s)
            ]
            for session in matched:
                del self._sessions[session.session_id]

        for session in matched:
            self._teardown(session)
        if matched:
            self.logger.info(f"Stopped {len(matched)} sessions")
        return len(matched)

    def _teardown(self, session: Session) -> None:
        session.stop()
        with self._lock:
            forwarders = self._forwarders.pop(session.session_id, [])
        for sub in forwarders:
            sub.cancel()
        self.logger.info(f"Stopped session '{session.session_id}'")

    def _forward(self, kind: EventKind) -> Callable[..., None]:
        def handler(*args):
            self.events.publish(kind, *args)
        return handler

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._sessions

    def __enter__(self) -> "SessionManager":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Context manager exit - stops all sessions."""
        self.stop_all()
        return None
