"""
EventBus - In-process publish/subscribe for session events.

Sessions publish lifecycle and chat events on their own bus; the
SessionManager forwards them onto one shared bus. Subscribers come and
go at any time without affecting each other's delivery.
"""

import itertools
import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Union


class EventKind(str, Enum):
    """Events carried from sessions to subscribers."""
    LOG = "log"
    ONLINE = "online"
    END = "end"
    KICKED = "kicked"
    CHAT = "chat"


Handler = Callable[..., Any]
Kind = Union[EventKind, str]


def _kind_name(kind: Kind) -> str:
    if isinstance(kind, EventKind):
        return kind.value
    return str(kind)


@dataclass
class Subscription:
    """
    Token returned by EventBus.subscribe().

    Attributes:
        kind: Event kind the handler listens to
        handler: The subscribed callable
        once: Whether the handler is removed after its first delivery
    """
    kind: str
    handler: Handler
    once: bool = False
    id: int = 0
    bus: Optional["EventBus"] = field(default=None, repr=False, compare=False)
    active: bool = field(default=True, repr=False, compare=False)

    def cancel(self) -> bool:
        """Unsubscribe. Safe to call more than once."""
        if self.bus is None:
            return False
        return self.bus.unsubscribe(self)


class EventBus:
    """
    Callback table keyed by event kind.

    Usage:
        bus = EventBus(kinds=EventKind)
        sub = bus.subscribe("chat", lambda session, text: print(text))
        bus.publish("chat", session, "hello")
        sub.cancel()

    Handlers run on the publishing thread, outside the bus lock, against a
    snapshot of the subscribers taken at publish time. A subscription
    cancelled before its turn in that snapshot is skipped; one cancelled
    while its handler is already running is not interrupted. A handler
    that raises is logged and the remaining handlers still run.
    """

    def __init__(
        self,
        kinds: Optional[Iterable[Kind]] = None,
        logger: Optional[logging.Logger] = None,
    ):
        """
        Initialize the bus.

        Args:
            kinds: Optional whitelist of event kinds; others raise ValueError
            logger: Optional logger instance
        """
        self.logger = logger or logging.getLogger(__name__)
        self._kinds = {_kind_name(k) for k in kinds} if kinds is not None else None
        self._handlers: Dict[str, List[Subscription]] = {}
        self._ids = itertools.count(1)
        self._lock = threading.RLock()

    def _check(self, kind: Kind) -> str:
        name = _kind_name(kind)
        if self._kinds is not None and name not in self._kinds:
            raise ValueError(f"Unknown event kind: {name!r}")
        return name

    def subscribe(self, kind: Kind, handler: Handler, once: bool = False) -> Subscription:
        """
        Register a handler for an event kind.

        Args:
            kind: Event kind
            handler: Called with the published arguments
            once: Remove the handler after its first delivery

        Returns:
            Subscription token for unsubscribe()
        """
        name = self._check(kind)
        with self._lock:
            sub = Subscription(name, handler, once=once, id=next(self._ids), bus=self)
            self._handlers.setdefault(name, []).append(sub)
            return sub

    def unsubscribe(self, subscription: Subscription) -> bool:
        """
        Remove a subscription.

        Returns:
            True if it was registered, False otherwise
        """
        with self._lock:
            subs = self._handlers.get(subscription.kind, [])
            for i, sub in enumerate(subs):
                if sub.id == subscription.id and sub.bus is self:
                    sub.active = False
                    del subs[i]
                    return True
            return False

    def publish(self, kind: Kind, *args: Any) -> int:
        """
        Deliver an event to every current subscriber of its kind.

        Returns:
            Number of handlers invoked
        """
        name = self._check(kind)
        with self._lock:
            subs = list(self._handlers.get(name, []))
            once = [s for s in subs if s.once]
            if once:
                self._handlers[name] = [s for s in self._handlers[name] if not s.once]

        invoked = 0
        for sub in subs:
            if not sub.once and not sub.active:
                continue
            invoked += 1
            try:
                sub.handler(*args)
            except Exception:
                self.logger.exception(f"Handler for '{name}' event raised")
        return invoked

    def subscriber_count(self, kind: Kind) -> int:
        """Number of handlers currently subscribed to a kind."""
        with self._lock:
            return len(self._handlers.get(self._check(kind), []))

    def clear(self) -> None:
        """Drop every subscription."""
        with self._lock:
            for subs in self._handlers.values():
                for sub in subs:
                    sub.active = False
            self._handlers.clear()


def attach(bus: EventBus, session_id: str, handler: Callable[[Any, str], Any]) -> Subscription:
    """
    Subscribe to the chat stream of a single session.

    Args:
        bus: Bus carrying chat(session, text) events
        session_id: Session to follow
        handler: Called with (session, text) for that session only

    Returns:
        Subscription; cancel it to detach
    """
    def on_chat(session, text):
        if session.session_id == session_id:
            handler(session, text)

    return bus.subscribe(EventKind.CHAT, on_chat)
