"""Immutable views of a room as read from the store.

Store reads hand these out instead of ORM instances so that a caller holds a
complete, point-in-time copy of the room and its members.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Tuple


@dataclass(frozen=True)
class MemberSnapshot:
    id: int
    room_id: str
    name: str
    session_identifier: Optional[str]
    connection_identifier: Optional[str]
    point: Any
    connected: bool
    joined_at: float
    last_connected_at: Optional[float] = None

    @property
    def has_voted(self) -> bool:
        return self.point is not None

    @property
    def has_ever_connected(self) -> bool:
        return self.last_connected_at is not None


@dataclass(frozen=True)
class RoomSnapshot:
    id: str
    task_title: str
    task_description: str
    admin_name: str
    revealed: bool
    created_at: float
    members: Tuple[MemberSnapshot, ...] = ()

    def age(self, now: float) -> float:
        return now - self.created_at

    def member_by_id(self, member_id: int) -> Optional[MemberSnapshot]:
        for member in self.members:
            if member.id == member_id:
                return member
        return None

    @property
    def connected_count(self) -> int:
        return sum(1 for m in self.members if m.connected)


class ResolutionKind(str, Enum):
    EXISTING_SESSION = 'existing_session'
    EXISTING_NAME = 'existing_name'
    NEW_JOIN = 'new_join'
    NEEDS_NAME = 'needs_name'


@dataclass(frozen=True)
class Resolution:
    kind: ResolutionKind
    name: Optional[str] = None
    member: Optional[MemberSnapshot] = None

    @property
    def is_rejoin(self) -> bool:
        return self.kind in (ResolutionKind.EXISTING_SESSION, ResolutionKind.EXISTING_NAME)


@dataclass(frozen=True)
class JoinOutcome:
    resolution: Resolution
    room: RoomSnapshot
    member: Optional[MemberSnapshot] = None
    is_admin: bool = False
    is_reconnecting: bool = False
