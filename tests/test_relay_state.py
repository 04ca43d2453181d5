import pytest

from relay_state import (
    STATUS_CONNECTING, ConnectionRegistry, DuplicateIdentifier, RelayError, Room, RoomTable,
    WaitingQueue, new_room_id,
)


def noop(event, payload=None):
    pass


class TestConnectionRegistry:

    def test_register_and_lookup(self):
        registry = ConnectionRegistry()
        registry.register('a', noop)
        assert registry.lookup('a') is noop
        assert 'a' in registry
        assert len(registry) == 1

    def test_lookup_missing_returns_none(self):
        assert ConnectionRegistry().lookup('ghost') is None

    def test_duplicate_register_raises(self):
        registry = ConnectionRegistry()
        registry.register('a', noop)
        with pytest.raises(DuplicateIdentifier) as exc_info:
            registry.register('a', noop)
        assert exc_info.value.conn_id == 'a'
        assert isinstance(exc_info.value, RelayError)

    def test_deregister_is_idempotent(self):
        registry = ConnectionRegistry()
        registry.register('a', noop)
        registry.deregister('a')
        registry.deregister('a')
        assert 'a' not in registry
        assert len(registry) == 0


class TestWaitingQueue:

    def test_fifo_order(self):
        queue = WaitingQueue()
        for conn_id in ('a', 'b', 'c'):
            queue.enqueue(conn_id)
        assert [queue.dequeue_head() for _ in range(3)] == ['a', 'b', 'c']

    def test_dequeue_empty_returns_none(self):
        assert WaitingQueue().dequeue_head() is None

    def test_enqueue_twice_keeps_one_entry_and_position(self):
        queue = WaitingQueue()
        queue.enqueue('a')
        queue.enqueue('b')
        queue.enqueue('a')
        assert len(queue) == 2
        assert list(queue) == ['a', 'b']

    def test_remove(self):
        queue = WaitingQueue()
        queue.enqueue('a')
        queue.enqueue('b')
        assert queue.remove('a') is True
        assert queue.remove('a') is False
        assert 'a' not in queue
        assert queue.dequeue_head() == 'b'


class TestRoomTable:

    def test_create_and_find(self):
        table = RoomTable()
        room = table.create('a', 'b')
        assert table.find(room.room_id) is room
        assert room.participants == ('a', 'b')
        assert room.status == STATUS_CONNECTING
        assert room.room_id in table

    def test_find_by_participant(self):
        table = RoomTable()
        room = table.create('a', 'b')
        assert table.find_by_participant('a') is room
        assert table.find_by_participant('b') is room
        assert table.find_by_participant('c') is None

    def test_destroy_is_idempotent(self):
        table = RoomTable()
        room = table.create('a', 'b')
        assert table.destroy(room.room_id) is room
        assert table.destroy(room.room_id) is None
        assert table.find(room.room_id) is None
        assert table.find_by_participant('a') is None
        assert len(table) == 0

    def test_regenerates_colliding_ids(self):
        ids = iter(['same', 'same', 'other'])
        table = RoomTable(id_factory=lambda: next(ids))
        first = table.create('a', 'b')
        second = table.create('c', 'd')
        assert first.room_id == 'same'
        assert second.room_id == 'other'

    def test_generated_ids_are_distinct(self):
        assert len({new_room_id() for _ in range(500)}) == 500


class TestRoom:

    def test_other(self):
        room = Room(room_id='r', participants=('a', 'b'))
        assert room.other('a') == 'b'
        assert room.other('b') == 'a'
        assert room.other('c') is None

    def test_membership(self):
        room = Room(room_id='r', participants=('a', 'b'))
        assert 'a' in room
        assert 'c' not in room
