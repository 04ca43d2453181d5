"""In-memory state for the relay: live connections, the waiting queue and rooms.

None of these classes lock anything themselves; `matchmaking.Relay` owns one
instance of each and serializes access to all three.
"""
import logging
import time
import uuid
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional, Tuple

logger = logging.getLogger(__name__)

STATUS_CONNECTING = 'connecting'
STATUS_ACTIVE = 'active'


class RelayError(Exception):
    """Base class for relay errors."""


class DuplicateIdentifier(RelayError):
    def __init__(self, conn_id):
        super().__init__(f"connection {conn_id!r} is already registered")
        self.conn_id = conn_id


# --- CONNECTIONS ---

class ConnectionRegistry:
    """Maps connection id -> send handle for every connected client."""

    def __init__(self):
        self._handles: Dict[str, Callable] = {}

    def register(self, conn_id: str, handle: Callable) -> None:
        if conn_id in self._handles:
            raise DuplicateIdentifier(conn_id)
        self._handles[conn_id] = handle

    def lookup(self, conn_id: str) -> Optional[Callable]:
        return self._handles.get(conn_id)

    def deregister(self, conn_id: str) -> None:
        self._handles.pop(conn_id, None)

    def __contains__(self, conn_id):
        return conn_id in self._handles

    def __len__(self):
        return len(self._handles)


# --- WAITING QUEUE ---

class WaitingQueue:
    """FIFO of connection ids waiting for a partner.

    An OrderedDict keeps arrival order while giving O(1) membership checks
    and removal of a client that leaves before being matched.
    """

    def __init__(self):
        self._waiting: 'OrderedDict[str, float]' = OrderedDict()

    def enqueue(self, conn_id: str) -> None:
        if conn_id in self._waiting:
            return
        self._waiting[conn_id] = time.time()

    def dequeue_head(self) -> Optional[str]:
        if not self._waiting:
            return None
        conn_id, _ = self._waiting.popitem(last=False)
        return conn_id

    def remove(self, conn_id: str) -> bool:
        return self._waiting.pop(conn_id, None) is not None

    def __contains__(self, conn_id):
        return conn_id in self._waiting

    def __len__(self):
        return len(self._waiting)

    def __iter__(self):
        return iter(list(self._waiting))


# --- ROOMS ---

@dataclass
class Room:
    room_id: str
    participants: Tuple[str, str]
    created_at: float = field(default_factory=time.time)
    status: str = STATUS_CONNECTING

    def other(self, conn_id: str) -> Optional[str]:
        first, second = self.participants
        if conn_id == first:
            return second
        if conn_id == second:
            return first
        return None

    def __contains__(self, conn_id):
        return conn_id in self.participants


def new_room_id() -> str:
    return f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:9]}"


class RoomTable:
    """Active rooms, indexed both by room id and by participant."""

    def __init__(self, id_factory: Callable[[], str] = new_room_id):
        self._rooms: Dict[str, Room] = {}
        self._by_participant: Dict[str, str] = {}
        self._id_factory = id_factory

    def create(self, conn_a: str, conn_b: str) -> Room:
        room_id = self._id_factory()
        while room_id in self._rooms:
            room_id = self._id_factory()
        room = Room(room_id=room_id, participants=(conn_a, conn_b))
        self._rooms[room_id] = room
        self._by_participant[conn_a] = room_id
        self._by_participant[conn_b] = room_id
        return room

    def find(self, room_id: str) -> Optional[Room]:
        return self._rooms.get(room_id)

    def find_by_participant(self, conn_id: str) -> Optional[Room]:
        room_id = self._by_participant.get(conn_id)
        if room_id is None:
            return None
        return self._rooms.get(room_id)

    def destroy(self, room_id: str) -> Optional[Room]:
        room = self._rooms.pop(room_id, None)
        if room is None:
            return None
        for conn_id in room.participants:
            # only drop index entries that still point at this room
            if self._by_participant.get(conn_id) == room_id:
                del self._by_participant[conn_id]
        return room

    def __contains__(self, room_id):
        return room_id in self._rooms

    def __len__(self):
        return len(self._rooms)

    def __iter__(self):
        return iter(list(self._rooms.values()))
