"""Shared fixtures for the relay test suite."""
import itertools
from collections import defaultdict

import pytest

from matchmaking import Relay
from relay_state import RoomTable


class Outbox:
    """Records everything the relay sends, per connection id."""

    def __init__(self):
        self.sent = defaultdict(list)

    def handle_for(self, conn_id):
        def send(event, payload=None):
            self.sent[conn_id].append((event, payload))
        return send

    def events(self, conn_id):
        return [event for event, _ in self.sent[conn_id]]

    def last(self, conn_id):
        return self.sent[conn_id][-1]

    def total(self):
        return sum(len(messages) for messages in self.sent.values())

    def clear(self):
        self.sent.clear()


def sequential_room_ids():
    counter = itertools.count(1)
    return lambda: f"R{next(counter)}"


@pytest.fixture
def outbox():
    return Outbox()


@pytest.fixture
def relay():
    return Relay(rooms=RoomTable(id_factory=sequential_room_ids()))


@pytest.fixture
def connect(relay, outbox):
    """Register connection ids against the relay, wired to the outbox."""
    def _connect(*conn_ids):
        for conn_id in conn_ids:
            relay.connect(conn_id, outbox.handle_for(conn_id))
    return _connect


@pytest.fixture
def paired(relay, outbox, connect):
    """A and B matched in room R1, outbox cleared."""
    connect('A', 'B')
    relay.seek('A')
    room = relay.seek('B')
    outbox.clear()
    return room


@pytest.fixture
def server():
    from relay_server import create_app

    app, socketio = create_app({'TESTING': True, 'SECRET_KEY': 'test'})
    return app, socketio


@pytest.fixture
def socket_client(server):
    app, socketio = server
    clients = []

    def _client():
        client = socketio.test_client(app)
        clients.append(client)
        return client

    yield _client

    for client in clients:
        if client.is_connected():
            client.disconnect()
