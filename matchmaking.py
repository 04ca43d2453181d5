"""Matchmaking, signaling relay and session teardown.

`Relay` is the single owner of the connection registry, waiting queue and
room table. Every public method takes the same lock, so a check followed by a
mutation (queue not empty -> pop head -> create room) can never interleave
with another client's event.
"""
import logging
import threading
import time

from messages import (
    SIGNAL_FIELDS, CancelSearch, ChatText, Disconnect, EndChat, FindChat, Signal, Typing,
)
from relay_state import (
    STATUS_ACTIVE, ConnectionRegistry, RoomTable, WaitingQueue,
)

logger = logging.getLogger(__name__)

ROLE_OFFERER = 'offerer'
ROLE_ANSWERER = 'answerer'


class Relay:

    def __init__(self, rooms=None):
        self.connections = ConnectionRegistry()
        self.queue = WaitingQueue()
        self.rooms = rooms if rooms is not None else RoomTable()
        self._lock = threading.RLock()
        self._handlers = {
            FindChat: lambda conn_id, msg: self.seek(conn_id),
            CancelSearch: lambda conn_id, msg: self.cancel(conn_id),
            Signal: lambda conn_id, msg: self.relay_signal(conn_id, msg.kind, msg.room_id, msg.payload),
            ChatText: lambda conn_id, msg: self.relay_chat(conn_id, msg.room_id, msg.text),
            Typing: lambda conn_id, msg: self.relay_typing(conn_id, msg.room_id, msg.is_typing),
            EndChat: lambda conn_id, msg: self.end_chat(conn_id, msg.room_id),
            Disconnect: lambda conn_id, msg: self.disconnect(conn_id),
        }

    def _send(self, conn_id, event, payload=None):
        handle = self.connections.lookup(conn_id)
        if handle is None:
            logger.debug("Dropping %s for unknown connection %s", event, conn_id)
            return
        handle(event, payload)

    def _partner_room(self, sender, room_id, event):
        """Room and partner for a message the sender addressed to room_id.

        Returns (None, None) when the room is gone or the sender is not in it.
        """
        room = self.rooms.find(room_id)
        if room is None or sender not in room:
            logger.debug("Dropping %s from %s: no room %s", event, sender, room_id)
            return None, None
        return room, room.other(sender)

    # --- CONNECTIONS ---

    def connect(self, conn_id, handle):
        with self._lock:
            self.connections.register(conn_id, handle)
        logger.info("User connected: %s", conn_id)

    def dispatch(self, conn_id, message):
        """Run the operation for one inbound message."""
        handler = self._handlers.get(type(message))
        if handler is None:
            raise TypeError(f"unsupported message {message!r}")
        return handler(conn_id, message)

    # --- MATCHMAKING ---

    def seek(self, conn_id):
        with self._lock:
            if conn_id not in self.connections:
                logger.warning("Ignoring find-chat from unregistered connection %s", conn_id)
                return None

            # a client may search again before its previous session is torn down
            self.queue.remove(conn_id)
            previous = self.rooms.find_by_participant(conn_id)
            if previous is not None:
                self._end_room(previous, conn_id, 'chat-ended')

            partner = self.queue.dequeue_head()
            if partner is None:
                self.queue.enqueue(conn_id)
                self._send(conn_id, 'waiting-for-match')
                logger.info("User added to waiting list: %s", conn_id)
                return None

            room = self.rooms.create(conn_id, partner)
            self._send(conn_id, 'chat-matched',
                       {'roomId': room.room_id, 'partnerId': partner, 'role': ROLE_OFFERER})
            self._send(partner, 'chat-matched',
                       {'roomId': room.room_id, 'partnerId': conn_id, 'role': ROLE_ANSWERER})
            logger.info("Matched users: %s and %s in room %s", conn_id, partner, room.room_id)
            return room

    def cancel(self, conn_id):
        with self._lock:
            if self.queue.remove(conn_id):
                logger.info("User left waiting list: %s", conn_id)

    # --- SIGNALING ---

    def relay_signal(self, sender, kind, room_id, payload):
        field = SIGNAL_FIELDS[kind]
        with self._lock:
            room, partner = self._partner_room(sender, room_id, kind)
            if room is None:
                return
            if kind == 'answer' and room.status != STATUS_ACTIVE:
                room.status = STATUS_ACTIVE
                logger.info("Room %s negotiated", room.room_id)
            self._send(partner, kind, {field: payload, 'from': sender})

    def relay_chat(self, sender, room_id, text):
        with self._lock:
            room, partner = self._partner_room(sender, room_id, 'chat-message')
            if room is None:
                return
            self._send(partner, 'chat-message', {
                'message': text,
                'from': sender,
                'timestamp': int(time.time() * 1000),
            })

    def relay_typing(self, sender, room_id, is_typing):
        with self._lock:
            room, partner = self._partner_room(sender, room_id, 'typing')
            if room is None:
                return
            self._send(partner, 'partner-typing', {'isTyping': is_typing, 'from': sender})

    # --- LIFECYCLE ---

    def _end_room(self, room, leaver, event):
        self.rooms.destroy(room.room_id)
        partner = room.other(leaver)
        if partner is not None:
            self._send(partner, event)
        logger.info("Room %s closed (%s by %s)", room.room_id, event, leaver)

    def end_chat(self, sender, room_id):
        with self._lock:
            room, _ = self._partner_room(sender, room_id, 'end-chat')
            if room is None:
                return
            self._end_room(room, sender, 'chat-ended')

    def disconnect(self, conn_id):
        with self._lock:
            self.queue.remove(conn_id)
            room = self.rooms.find_by_participant(conn_id)
            if room is not None:
                self._end_room(room, conn_id, 'partner-disconnected')
            self.connections.deregister(conn_id)
        logger.info("User disconnected: %s", conn_id)

    def snapshot(self):
        with self._lock:
            return {
                'connections': len(self.connections),
                'waiting': len(self.queue),
                'rooms': len(self.rooms),
            }
