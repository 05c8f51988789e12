import json

import psycopg2
import pytest

from vera_sync.errors import FatalSyncError
from vera_sync.services.listener import NotificationListener

CHANNEL = "new_verified_contract"


class FakeNotify:
    def __init__(self, payload, channel=CHANNEL):
        self.channel = channel
        self.payload = payload if isinstance(payload, str) else json.dumps(payload)


class FakeCursor:
    def __init__(self, conn):
        self.conn = conn

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def execute(self, query):
        self.conn.executed.append(query)


class FakeConnection:
    """Delivers one list of notifications per poll(), then drops like a lost server."""

    def __init__(self, *batches):
        self.batches = list(batches)
        self.notifies = []
        self.executed = []
        self.isolation_level = None
        self.closed = False

    def set_isolation_level(self, level):
        self.isolation_level = level

    def cursor(self):
        return FakeCursor(self)

    def poll(self):
        if not self.batches:
            raise psycopg2.OperationalError("server closed the connection unexpectedly")
        self.notifies.extend(self.batches.pop(0))

    def close(self):
        self.closed = True


@pytest.fixture(autouse=True)
def always_readable(monkeypatch):
    monkeypatch.setattr(NotificationListener, "_wait", lambda self, conn: True)


def _listener(connections, received, stop_after, **kwargs):
    pending = list(connections)

    def connect():
        conn = pending.pop(0)
        if isinstance(conn, Exception):
            raise conn
        return conn

    sleeps = []
    listener = NotificationListener(
        connect=connect,
        channel=CHANNEL,
        handler=received.append,
        should_stop=lambda: len(received) >= stop_after,
        sleep=sleeps.append,
        **kwargs,
    )
    return listener, sleeps


def test_dispatches_in_arrival_order():
    conn = FakeConnection([FakeNotify({"id": 1}), FakeNotify({"id": 2})], [FakeNotify({"id": 3})])
    received = []
    listener, _ = _listener([conn], received, stop_after=3)

    listener.run()

    assert [p["id"] for p in received] == [1, 2, 3]
    assert listener.handled == 3
    assert len(conn.executed) == 1
    assert conn.closed


def test_invalid_payload_and_other_channels_are_dropped():
    conn = FakeConnection([
        FakeNotify("{not json"),
        FakeNotify({"id": 9}, channel="other"),
        FakeNotify({"id": 1}),
    ])
    received = []
    listener, _ = _listener([conn], received, stop_after=1)

    listener.run()

    assert received == [{"id": 1}]


def test_handler_errors_do_not_stop_listening():
    conn = FakeConnection([FakeNotify({"id": 1}), FakeNotify({"id": 2})])
    received = []

    def handler(payload):
        received.append(payload)
        if payload["id"] == 1:
            raise RuntimeError("boom")

    listener, _ = _listener([conn], received, stop_after=2)
    listener.handler = handler
    listener.run()

    assert [p["id"] for p in received] == [1, 2]


def test_reconnects_after_connection_loss():
    first = FakeConnection([FakeNotify({"id": 1})])
    second = FakeConnection([FakeNotify({"id": 2})])
    received = []
    listener, sleeps = _listener([first, second], received, stop_after=2, reconnect_delay=2.0)

    listener.run()

    assert [p["id"] for p in received] == [1, 2]
    assert first.closed
    assert sleeps == [2.0]
    assert len(second.executed) == 1


def test_gives_up_after_reconnect_attempts():
    lost = psycopg2.OperationalError("could not connect to server")
    received = []
    listener, sleeps = _listener([lost] * 3, received, stop_after=1, reconnect_attempts=2, reconnect_delay=1.0)

    with pytest.raises(FatalSyncError):
        listener.run()
    assert sleeps == [1.0, 2.0]
