"""
pytest fixtures for botfleet tests.

Sessions are driven by FakeConnection objects and a ManualScheduler, so
tests trigger connection events and reconnect timers by hand instead of
talking to a server or sleeping.
"""

import pytest

from botfleet import Connection, Identity, OfflineAuth, SessionManager, Store, Target


class FakeConnection(Connection):
    """Connection that records what the session sends to it."""

    def __init__(self, options):
        super().__init__(options)
        self.chats = []
        self.commands = []
        self.disconnects = 0
        self.started = False

    def start(self):
        self.started = True

    def send_chat(self, text):
        self.chats.append(text)

    def send_command(self, text):
        self.commands.append(text)

    def disconnect(self):
        self.disconnects += 1
        # Like real clients, closing reports end straight away
        self.emit("end", "disconnect.quitting")


class FakeFactory:
    """Connection factory that keeps every connection it creates."""

    def __init__(self):
        self.created = []
        self.options = []
        self.fail_with = None

    def __call__(self, options):
        self.options.append(options)
        if self.fail_with is not None:
            raise self.fail_with
        conn = FakeConnection(options)
        self.created.append(conn)
        return conn

    @property
    def last(self):
        return self.created[-1]


class Handle:
    def __init__(self, delay, callback):
        self.delay = delay
        self.callback = callback
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class ManualScheduler:
    """Scheduler whose timers only fire when the test says so."""

    def __init__(self):
        self.handles = []

    def call_later(self, delay, callback):
        handle = Handle(delay, callback)
        self.handles.append(handle)
        return handle

    @property
    def pending(self):
        return [h for h in self.handles if not h.cancelled]

    @property
    def delays(self):
        return [h.delay for h in self.handles]

    def fire(self):
        """Run the most recent pending timer."""
        handle = self.pending[-1]
        handle.cancelled = True
        handle.callback()


@pytest.fixture
def factory():
    return FakeFactory()


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def identity():
    return Identity(id="acc1", label="Alice", auth=OfflineAuth("alice"))


@pytest.fixture
def other_identity():
    return Identity(id="acc2", label="Bob", auth=OfflineAuth("bob"))


@pytest.fixture
def target():
    return Target(id="srv1", label="Local", host="localhost", port=25565)


@pytest.fixture
def manager(factory, scheduler):
    """A SessionManager wired to fakes; stops everything afterwards."""
    with SessionManager(connection_factory=factory, scheduler=scheduler) as m:
        yield m


@pytest.fixture
def store(tmp_path):
    return Store(tmp_path / "store.json")


@pytest.fixture(autouse=True)
def data_dir(tmp_path, monkeypatch):
    """Keep credential caches and the default store out of the home dir."""
    monkeypatch.setenv("BOTFLEET_DATA", str(tmp_path / "data"))
    return tmp_path / "data"
