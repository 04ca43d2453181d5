"""Inbound Socket.IO events, parsed into one message type per kind."""
from dataclasses import dataclass
from typing import Any, Union

from relay_state import RelayError

# signal event name -> payload field carrying the negotiation blob
SIGNAL_FIELDS = {
    'offer': 'offer',
    'answer': 'answer',
    'ice-candidate': 'candidate',
}


class InvalidMessage(RelayError):
    """An inbound event that cannot be turned into a relay message."""


@dataclass(frozen=True)
class FindChat:
    pass


@dataclass(frozen=True)
class CancelSearch:
    pass


@dataclass(frozen=True)
class Signal:
    kind: str
    room_id: str
    payload: Any


@dataclass(frozen=True)
class ChatText:
    room_id: str
    text: str


@dataclass(frozen=True)
class Typing:
    room_id: str
    is_typing: bool


@dataclass(frozen=True)
class EndChat:
    room_id: str


@dataclass(frozen=True)
class Disconnect:
    pass


InboundMessage = Union[FindChat, CancelSearch, Signal, ChatText, Typing, EndChat, Disconnect]


def _room_id(event, data):
    if not isinstance(data, dict):
        raise InvalidMessage(f"{event}: expected an object payload, got {type(data).__name__}")
    room_id = data.get('roomId')
    if not isinstance(room_id, str) or not room_id:
        raise InvalidMessage(f"{event}: missing roomId")
    return room_id


def parse_inbound(event: str, data: Any = None) -> InboundMessage:
    """Build the message for a Socket.IO event name and its payload.

    Negotiation payloads are carried as-is and never looked into.
    """
    if event == 'find-chat':
        return FindChat()
    if event == 'cancel-search':
        return CancelSearch()
    if event in SIGNAL_FIELDS:
        room_id = _room_id(event, data)
        return Signal(kind=event, room_id=room_id, payload=data.get(SIGNAL_FIELDS[event]))
    if event == 'chat-message':
        room_id = _room_id(event, data)
        text = data.get('message')
        if not isinstance(text, str):
            raise InvalidMessage(f"{event}: message must be a string")
        return ChatText(room_id=room_id, text=text)
    if event == 'typing':
        room_id = _room_id(event, data)
        return Typing(room_id=room_id, is_typing=bool(data.get('isTyping')))
    if event == 'end-chat':
        return EndChat(room_id=_room_id(event, data))
    raise InvalidMessage(f"unknown event {event!r}")
