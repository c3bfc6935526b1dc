"""
Failure taxonomy for botfleet sessions.

None of these are fatal to the process. A session records the failure,
publishes an event and schedules a reconnect unless it has been stopped.
"""

from typing import Any


class BotfleetError(Exception):
    """Base class for all botfleet errors."""
    pass


class SessionFailure(BotfleetError):
    """
    A failed or ended connection attempt.

    Attributes:
        reason: Human-readable reason reported by the connection
    """

    def __init__(self, reason: Any):
        self.reason = str(reason)
        super().__init__(self.reason)


class ConnectFailure(SessionFailure):
    """Connection construction or handshake failed before going online."""
    pass


class RemoteDisconnect(SessionFailure):
    """The server closed the connection (``end``)."""
    pass


class ForcedRemoval(SessionFailure):
    """The server kicked the client (``kicked``)."""
    pass


class ConnectionRuntimeError(SessionFailure):
    """The connection reported an ``error`` event."""
    pass


class StoreError(BotfleetError):
    """The account/server store could not be read or written."""
    pass
