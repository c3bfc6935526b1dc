"""
Basic example of running a small bot pool with botfleet.

This example shows:
1. Building identities and targets in code
2. Starting one session per pair with a SessionManager
3. Following chat and lifecycle events on the shared bus
4. Stopping everything on exit

Adapt HOST, PORT and the login steps to match your server.
"""

import time

from botfleet import (
    EventKind,
    Identity,
    LoginConfig,
    OfflineAuth,
    SessionManager,
    Target,
    TelnetConnection,
)

# Configure for your server
HOST = "localhost"
PORT = 4000


def main():
    # Login flow for the server: (pattern to wait for, text to send)
    login_config = LoginConfig(
        steps=[
            (r"name", "{username}"),
            (r"password", "testpass"),
        ],
        success_patterns=[r"Welcome", r">\s*$"],
    )

    def factory(options):
        return TelnetConnection(options, login_config=login_config)

    identities = [
        Identity("bot1", "Bot One", OfflineAuth("botone")),
        Identity("bot2", "Bot Two", OfflineAuth("bottwo")),
    ]
    target = Target("local", "Local", HOST, PORT)

    with SessionManager(connection_factory=factory) as manager:
        manager.events.subscribe(EventKind.LOG, print)
        manager.events.subscribe(EventKind.ONLINE, lambda s: s.command("look"))
        manager.events.subscribe(EventKind.CHAT, lambda s, text: print(f"[{s.label()}] {text}"))

        sessions = manager.start_many([(identity, target) for identity in identities])
        print(f"Started {len(sessions)} session(s). Ctrl-C to stop.")

        try:
            while True:
                time.sleep(10)
                for info in manager.list():
                    print(f"{info.session_id}: {info.state} up {info.uptime}, reconnects {info.reconnect_count}")
        except KeyboardInterrupt:
            pass

    print("\nDone!")


if __name__ == "__main__":
    main()
