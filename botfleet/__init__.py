"""
botfleet - Pool of long-lived, auto-reconnecting game server sessions.

Start sessions for identity/target pairs, follow their lifecycle and
chat through one event bus, and stop them by id or by predicate.
"""

__version__ = "0.1.0"

from .connection import Connection, ConnectionFactory
from .errors import (
    BotfleetError,
    SessionFailure,
    ConnectFailure,
    RemoteDisconnect,
    ForcedRemoval,
    ConnectionRuntimeError,
    StoreError,
)
from .events import EventBus, EventKind, Subscription, attach
from .manager import SessionManager
from .models import (
    AuthKind,
    ConnectOptions,
    Identity,
    ManagedAuth,
    OfflineAuth,
    Target,
    build_connect_options,
)
from .session import Session, SessionInfo, SessionState, reconnect_delay
from .store import Store
from .telnet import LoginConfig, TelnetConnection

__all__ = [
    "Connection",
    "ConnectionFactory",
    "BotfleetError",
    "SessionFailure",
    "ConnectFailure",
    "RemoteDisconnect",
    "ForcedRemoval",
    "ConnectionRuntimeError",
    "StoreError",
    "EventBus",
    "EventKind",
    "Subscription",
    "attach",
    "SessionManager",
    "AuthKind",
    "ConnectOptions",
    "Identity",
    "ManagedAuth",
    "OfflineAuth",
    "Target",
    "build_connect_options",
    "Session",
    "SessionInfo",
    "SessionState",
    "reconnect_delay",
    "Store",
    "LoginConfig",
    "TelnetConnection",
]
