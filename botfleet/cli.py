#!/usr/bin/env python3
"""
CLI for botfleet.

Usage:
    botfleet accounts [list]                              List accounts
    botfleet accounts add LABEL AUTH USERNAME [CACHE_DIR] Add an account (AUTH: offline|microsoft)
    botfleet accounts remove ID                           Remove an account
    botfleet accounts edit ID FIELD VALUE                 Edit an account (label, username, cache-dir)
    botfleet servers [list]                               List servers
    botfleet servers add LABEL HOST [PORT] [VERSION]      Add a server (--no-keepalive to disable)
    botfleet servers remove ID                            Remove a server
    botfleet servers edit ID FIELD VALUE                  Edit a server (label, host, port, version, keepalive)
    botfleet run [--account ID ...] [--server ID ...]     Start sessions and open the console

`run` starts one session per account/server pair (all of them by default)
and reads console lines from stdin; type :help there for the commands.

Set BOTFLEET_DATA to change the data directory, BOTFLEET_LOG to log to a
file and BOTFLEET_LOG_LEVEL to change the log level.
"""

import logging
import sys
from typing import Callable, List, Optional, TextIO

from . import config
from .errors import StoreError
from .events import EventKind, Subscription, attach
from .manager import SessionManager
from .models import AuthKind
from .session import SessionInfo
from .store import Store

CONSOLE_HELP = """\
:list                        list active sessions
:start ACCOUNT_ID SERVER_ID  start a session for a pair
:attach SESSION_ID           follow one session's chat and send to it
:detach                      stop following
:stop SESSION_ID             stop a session
:rm-account ID               remove an account and stop its sessions
:rm-server ID                remove a server and stop its sessions
:help                        this help
:exit                        stop everything and quit
/command                     send a command to the attached session
anything else                chat on the attached session"""


def setup_logging() -> None:
    """Configure the root logger from BOTFLEET_LOG / BOTFLEET_LOG_LEVEL."""
    kwargs = {}
    if config.log_file():
        kwargs["filename"] = config.log_file()
    logging.basicConfig(
        level=getattr(logging, config.log_level(), logging.WARNING),
        format=config.LOG_FORMAT,
        **kwargs,
    )


def sessions_table(rows: List[SessionInfo]) -> str:
    """Render session snapshots as a plain text table."""
    if not rows:
        return "No active sessions."
    lines = [" | ".join(["ID", "Account", "Server", "State", "Uptime", "Reconn", "LastError"])]
    for r in rows:
        lines.append(" | ".join([
            r.session_id,
            r.identity,
            r.target,
            r.state,
            r.uptime,
            str(r.reconnect_count),
            (r.last_error or "")[:60],
        ]))
    return "\n".join(lines)


class Console:
    """
    Line-driven front end over a SessionManager.

    Prints bus events as they arrive and routes typed lines either to a
    console command (":...") or to the attached session.
    """

    def __init__(
        self,
        manager: SessionManager,
        store: Store,
        write: Callable[[str], None] = print,
    ):
        self.manager = manager
        self.store = store
        self.write = write
        self.attached: Optional[str] = None
        self._attachment: Optional[Subscription] = None
        self._subs = [
            manager.events.subscribe(EventKind.LOG, self.write),
            manager.events.subscribe(EventKind.ONLINE, lambda s: self.write(f"[ONLINE] {s.label()}")),
            manager.events.subscribe(EventKind.END, lambda s: self.write(f"[END] {s.label()}")),
            manager.events.subscribe(EventKind.KICKED, lambda s: self.write(f"[KICKED] {s.label()}")),
            manager.events.subscribe(EventKind.CHAT, self._on_chat),
        ]

    def _on_chat(self, session, text: str) -> None:
        if self.attached is None:
            self.write(f"[CHAT {session.label()}] {text}")

    def attach(self, session_id: str) -> bool:
        session = self.manager.get(session_id)
        if session is None:
            self.write("Session not found")
            return False
        self.detach()
        self.attached = session_id
        self._attachment = attach(
            self.manager.events,
            session_id,
            lambda s, text: self.write(f"[CHAT] {text}"),
        )
        self.write(f"Attached: {session.label()}")
        return True

    def detach(self) -> None:
        if self._attachment is not None:
            self._attachment.cancel()
            self._attachment = None
            self.attached = None
            self.write("Detached.")

    def close(self) -> None:
        self.detach()
        for sub in self._subs:
            sub.cancel()

    def handle(self, line: str) -> bool:
        """
        Process one console line.

        Returns:
            False when the console should exit
        """
        line = line.strip()
        if not line:
            return True

        if line.startswith(":"):
            cmd, _, arg = line[1:].partition(" ")
            arg = arg.strip()
            if cmd == "exit":
                return False
            if cmd == "help":
                self.write(CONSOLE_HELP)
            elif cmd == "list":
                self.write(sessions_table(self.manager.list()))
            elif cmd == "start":
                self._start(arg.split())
            elif cmd == "attach":
                self.attach(arg)
            elif cmd == "detach":
                self.detach()
            elif cmd == "stop":
                if arg == self.attached:
                    self.detach()
                self.write("Stopped." if self.manager.stop(arg) else "Session not found")
            elif cmd == "rm-account":
                self._remove_identity(arg)
            elif cmd == "rm-server":
                self._remove_target(arg)
            else:
                self.write(f"Unknown command: {line} (try :help)")
            return True

        session = self.manager.get(self.attached) if self.attached else None
        if session is None:
            self.write("Not attached (use :attach SESSION_ID)")
        elif line.startswith("/"):
            session.command(line[1:])
        else:
            session.say(line)
        return True

    def _start(self, args: List[str]) -> None:
        if len(args) != 2:
            self.write("Usage: :start ACCOUNT_ID SERVER_ID")
            return
        identity = self.store.get_identity(args[0])
        if identity is None:
            self.write("Account not found")
            return
        target = self.store.get_target(args[1])
        if target is None:
            self.write("Server not found")
            return
        session = self.manager.start(identity, target)
        self.write(f"Started {session.session_id}")

    def _remove_identity(self, identity_id: str) -> None:
        current = self.manager.get(self.attached) if self.attached else None
        if current is not None and current.identity.id == identity_id:
            self.detach()
        stopped = self.manager.stop_all(lambda s: s.identity.id == identity_id)
        removed = self.store.remove_identity(identity_id)
        self.write(f"Removed account, stopped {stopped} session(s)." if removed else "Account not found")

    def _remove_target(self, target_id: str) -> None:
        current = self.manager.get(self.attached) if self.attached else None
        if current is not None and current.target.id == target_id:
            self.detach()
        stopped = self.manager.stop_all(lambda s: s.target.id == target_id)
        removed = self.store.remove_target(target_id)
        self.write(f"Removed server, stopped {stopped} session(s)." if removed else "Server not found")

    def run(self, stdin: TextIO) -> None:
        self.write("Type :help for commands, :exit to quit.")
        for line in stdin:
            if not self.handle(line):
                break


def _pick(args: List[str], flag: str) -> List[str]:
    """Collect every value given as `flag VALUE`."""
    values = []
    for i, arg in enumerate(args):
        if arg == flag and i + 1 < len(args):
            values.append(args[i + 1])
    return values


def _parse_bool(value: str) -> bool:
    lowered = value.lower()
    if lowered in ("on", "yes", "true", "1"):
        return True
    if lowered in ("off", "no", "false", "0"):
        return False
    raise ValueError(f"expected on/off, got {value!r}")


# CLI field name -> (store key, parser); a parser returning None clears the field
ACCOUNT_FIELDS = {
    "label": ("label", str),
    "username": ("username", str),
    "cache-dir": ("cacheDir", lambda v: None if v == "-" else v),
}

SERVER_FIELDS = {
    "label": ("label", str),
    "host": ("host", str),
    "port": ("port", int),
    "version": ("version", lambda v: None if v == "-" else v),
    "keepalive": ("keepAlive", _parse_bool),
}


def _edit(update: Callable[..., bool], noun: str, fields: dict, rest: List[str]) -> int:
    """Apply `edit ID FIELD VALUE` through a store update method."""
    if len(rest) < 4:
        print(f"Usage: botfleet {noun}s edit ID FIELD VALUE ({', '.join(fields)})")
        return 1
    record_id, name, raw = rest[1], rest[2], " ".join(rest[3:])
    if name not in fields:
        print(f"error: field must be one of {', '.join(fields)}")
        return 1
    key, parse = fields[name]
    try:
        value = parse(raw)
    except ValueError as e:
        print(f"error: invalid {name}: {e}")
        return 1
    print("Updated." if update(record_id, **{key: value}) else "Not found")
    return 0


def cmd_accounts(store: Store, rest: List[str]) -> int:
    action = rest[0] if rest else "list"

    if action == "list":
        accounts = store.list_identities()
        if not accounts:
            print("No accounts.")
        for a in accounts:
            print(f"{a.id}  {a.label} [{a.auth_kind.value}] ({a.username})")
        return 0

    if action == "add":
        if len(rest) < 4:
            print("Usage: botfleet accounts add LABEL AUTH USERNAME [CACHE_DIR]")
            return 1
        label, auth, username = rest[1], rest[2], rest[3]
        if auth not in [k.value for k in AuthKind]:
            print(f"error: auth must be one of {', '.join(k.value for k in AuthKind)}")
            return 1
        cache_dir = rest[4] if len(rest) > 4 else None
        print(f"Added account {store.add_identity(label, auth, username, cache_dir)}")
        return 0

    if action == "remove":
        if len(rest) < 2:
            print("Usage: botfleet accounts remove ID")
            return 1
        print("Removed." if store.remove_identity(rest[1]) else "Not found")
        return 0

    if action == "edit":
        return _edit(store.update_identity, "account", ACCOUNT_FIELDS, rest)

    print(f"Unknown accounts action: {action}")
    return 1


def cmd_servers(store: Store, rest: List[str]) -> int:
    action = rest[0] if rest else "list"

    if action == "list":
        servers = store.list_targets()
        if not servers:
            print("No servers.")
        for s in servers:
            version = f" v{s.version}" if s.version else ""
            print(f"{s.id}  {s.label} ({s.address}{version})")
        return 0

    if action == "add":
        keep_alive = "--no-keepalive" not in rest
        args = [a for a in rest if a != "--no-keepalive"]
        if len(args) < 3:
            print("Usage: botfleet servers add LABEL HOST [PORT] [VERSION] [--no-keepalive]")
            return 1
        port = args[3] if len(args) > 3 else None
        version = args[4] if len(args) > 4 else None
        print(f"Added server {store.add_target(args[1], args[2], port, version, keep_alive)}")
        return 0

    if action == "remove":
        if len(rest) < 2:
            print("Usage: botfleet servers remove ID")
            return 1
        print("Removed." if store.remove_target(rest[1]) else "Not found")
        return 0

    if action == "edit":
        return _edit(store.update_target, "server", SERVER_FIELDS, rest)

    print(f"Unknown servers action: {action}")
    return 1


def cmd_run(
    store: Store,
    rest: List[str],
    manager: Optional[SessionManager] = None,
    stdin: Optional[TextIO] = None,
) -> int:
    account_ids = _pick(rest, "--account")
    server_ids = _pick(rest, "--server")
    accounts = [a for a in store.list_identities() if not account_ids or a.id in account_ids]
    servers = [s for s in store.list_targets() if not server_ids or s.id in server_ids]
    if not accounts or not servers:
        print("Add at least one account and one server first.")
        return 1

    manager = manager or SessionManager()
    console = Console(manager, store)
    with manager:
        manager.start_many([(a, s) for a in accounts for s in servers])
        try:
            console.run(stdin or sys.stdin)
        except KeyboardInterrupt:
            pass
        finally:
            console.close()
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = sys.argv[1:] if argv is None else argv

    if not args:
        print("Usage: botfleet <command> [args]")
        print("Commands: accounts, servers, run")
        return 1

    setup_logging()
    cmd = args[0]
    rest = args[1:]

    try:
        store = Store()
        if cmd == "accounts":
            return cmd_accounts(store, rest)
        if cmd == "servers":
            return cmd_servers(store, rest)
        if cmd == "run":
            return cmd_run(store, rest)
    except StoreError as e:
        print(f"error: {e}")
        return 1

    print(f"Unknown command: {cmd}")
    return 1


if __name__ == "__main__":
    sys.exit(main())
