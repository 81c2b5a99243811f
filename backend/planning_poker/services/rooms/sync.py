"""Realtime event catalog, sanitized room views and the room broadcaster.

A member's ``point`` only ever leaves the server in plaintext once the room is
revealed. Every payload sent to a room channel is built by the helpers in this
module so that rule holds for all broadcasts.
"""

from decimal import ROUND_HALF_UP, Decimal
from numbers import Real
from typing import Iterable, List, Optional

from planning_poker.services.rooms.types import MemberSnapshot, RoomSnapshot

# Client -> server
ROOM_JOIN = 'room:join'
ROOM_JOIN_WITH_NAME = 'room:joinWithName'
VOTE_SUBMIT = 'vote:submit'
VOTES_REVEAL = 'votes:reveal'
VOTES_RESET = 'votes:reset'
ROOM_END = 'room:end'

# Server -> client
CONNECTED = 'connected'
ROOM_JOINED = 'room:joined'
ROOM_NEEDS_JOIN = 'room:needsJoin'
MEMBER_JOINED = 'room:memberJoined'
MEMBER_RECONNECTED = 'room:memberReconnected'
MEMBER_DISCONNECTED = 'room:memberDisconnected'
VOTE_UPDATED = 'vote:updated'
VOTES_REVEALED = 'votes:revealed'
VOTES_WERE_RESET = 'votes:reset'
ROOM_ENDED = 'room:ended'
ROOM_EXPIRED = 'room:expired'
ROOM_ERROR = 'room:error'

ROOM_ENDED_MESSAGE = 'The session has been ended by the admin.'


def expired_message(duration_sec: int) -> str:
    minutes = max(1, int(duration_sec) // 60)
    return f"Room has expired after {minutes} minute{'s' if minutes != 1 else ''}."


def sanitize_member(member: MemberSnapshot, revealed: bool) -> dict:
    return {
        'name': member.name,
        'has_voted': member.has_voted,
        'point': member.point if revealed else None,
        'connected': member.connected,
    }


def sanitize_members(room: RoomSnapshot) -> List[dict]:
    return [sanitize_member(m, room.revealed) for m in room.members]


def sanitize_room(room: RoomSnapshot, duration_sec: Optional[int] = None) -> dict:
    return {
        'id': room.id,
        'task_title': room.task_title,
        'task_description': room.task_description,
        'admin_name': room.admin_name,
        'revealed': room.revealed,
        'members': sanitize_members(room),
        'created_at': room.created_at,
        'expires_at': room.created_at + duration_sec if duration_sec is not None else None,
    }


def is_numeric_vote(point) -> bool:
    return isinstance(point, Real) and not isinstance(point, bool)


def compute_average(points: Iterable) -> Optional[float]:
    """Mean of the numeric votes rounded half up to one decimal, or None without any."""
    numeric = [float(p) for p in points if is_numeric_vote(p)]
    if not numeric:
        return None
    mean = sum(numeric) / len(numeric)
    return float(Decimal(str(mean)).quantize(Decimal('0.1'), rounding=ROUND_HALF_UP))


def revealed_view(room: RoomSnapshot) -> dict:
    return {
        'members': [
            {'name': m.name, 'point': m.point, 'has_voted': m.has_voted}
            for m in room.members
        ],
        'average': compute_average(m.point for m in room.members),
    }


def previous_vote(member: MemberSnapshot, revealed: bool):
    """What a rejoining member is told about their own vote."""
    return member.point if revealed else member.has_voted


class Broadcaster:
    """Thin wrapper over the Socket.IO server for one namespace.

    Usable from request handlers and background tasks alike since it never
    relies on the request context.
    """

    def __init__(self, socketio=None, namespace: str = '/ws'):
        self.socketio = socketio
        self.namespace = namespace

    def to_room(self, room_id: str, event: str, payload: dict, skip_sid: Optional[str] = None) -> None:
        self.socketio.emit(event, payload, to=room_id, skip_sid=skip_sid, namespace=self.namespace)

    def to_connection(self, sid: str, event: str, payload: dict) -> None:
        self.socketio.emit(event, payload, to=sid, namespace=self.namespace)

    def enter(self, sid: str, room_id: str) -> None:
        self.socketio.server.enter_room(sid, room_id, namespace=self.namespace)

    def close(self, room_id: str) -> None:
        self.socketio.close_room(room_id, namespace=self.namespace)
