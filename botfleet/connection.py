"""
Protocol client boundary.

A Session never speaks the game protocol itself. It asks a connection
factory for a Connection and listens to the events the connection emits:

    login               authentication complete
    spawn(position)     in the world and ready
    end(reason)         connection closed
    kicked(reason)      removed by the server
    error(err)          runtime error
    chat(text)          one received chat line

Factories take a ConnectOptions and may raise if the connection cannot
be opened.
"""

import logging
from typing import Any, Callable, Optional

from .events import EventBus, Handler, Subscription
from .models import ConnectOptions


CONNECTION_EVENTS = ("login", "spawn", "end", "kicked", "error", "chat")


class Connection:
    """
    Base class for protocol clients.

    Subclasses implement send_chat(), send_command() and disconnect(),
    and call emit() from whatever thread receives data.
    """

    def __init__(self, options: ConnectOptions, logger: Optional[logging.Logger] = None):
        self.options = options
        self.logger = logger or logging.getLogger(__name__)
        self._events = EventBus(kinds=CONNECTION_EVENTS, logger=self.logger)

    def on(self, event: str, handler: Handler) -> Subscription:
        """Call handler every time event is emitted."""
        return self._events.subscribe(event, handler)

    def once(self, event: str, handler: Handler) -> Subscription:
        """Call handler the next time event is emitted, then forget it."""
        return self._events.subscribe(event, handler, once=True)

    def emit(self, event: str, *args: Any) -> int:
        return self._events.publish(event, *args)

    def remove_all_listeners(self) -> None:
        self._events.clear()

    def send_chat(self, text: str) -> None:
        raise NotImplementedError

    def send_command(self, text: str) -> None:
        """Send a slash-command. text excludes the leading slash."""
        raise NotImplementedError

    def disconnect(self) -> None:
        raise NotImplementedError


ConnectionFactory = Callable[[ConnectOptions], Connection]
