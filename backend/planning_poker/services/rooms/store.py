"""Keyed storage of rooms and their members.

Every write commits before returning. Reads return ``RoomSnapshot`` /
``MemberSnapshot`` copies so a caller never observes a half-loaded member
list. Serialization of concurrent writers is the job of ``RoomLocks``; the
``(room_id, name)`` unique constraint backs it up at the database level.
"""

import threading
import time
import uuid
from contextlib import contextmanager
from typing import Dict, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import selectinload

from planning_poker import db
from planning_poker.errors import DuplicateName, RoomFull, RoomNotFound
from planning_poker.models import Member, Room
from planning_poker.services.rooms.types import MemberSnapshot, RoomSnapshot


class RoomLocks:
    """One re-entrant lock per room id; different rooms never contend."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.RLock] = {}

    @contextmanager
    def hold(self, room_id: str):
        with self._guard:
            lock = self._locks.setdefault(room_id, threading.RLock())
        with lock:
            yield

    def discard(self, room_id: str) -> None:
        with self._guard:
            self._locks.pop(room_id, None)

    def __contains__(self, room_id: str) -> bool:
        return room_id in self._locks

    def __len__(self) -> int:
        return len(self._locks)


def generate_admin_token() -> str:
    return str(uuid.uuid4())


class RoomStore:

    # ---- rooms ----

    def create(self, task_title: str, task_description: str, admin_name: str) -> Tuple[RoomSnapshot, str]:
        """Create a room and return it with its freshly generated admin token.

        The token is only ever returned here; the room keeps a bcrypt hash.
        """
        admin_token = generate_admin_token()
        room = Room(
            task_title=task_title or '',
            task_description=task_description or '',
            admin_name=admin_name,
            created_at=time.time(),
        )
        room.set_admin_token(admin_token)
        db.session.add(room)
        db.session.commit()
        return room.to_snapshot(), admin_token

    def get(self, room_id: str) -> Optional[RoomSnapshot]:
        room = self._load(room_id)
        return room.to_snapshot() if room else None

    def delete(self, room_id: str) -> bool:
        room = self._load(room_id)
        if not room:
            return False
        db.session.delete(room)
        db.session.commit()
        return True

    def list_expired(self, max_age_sec: float, now: Optional[float] = None) -> List[str]:
        cutoff = (now if now is not None else time.time()) - max_age_sec
        rows = Room.query.with_entities(Room.id).filter(Room.created_at < cutoff).all()
        return [row[0] for row in rows]

    def set_revealed(self, room_id: str, revealed: bool) -> None:
        room = Room.query.filter_by(id=room_id).first()
        if not room:
            raise RoomNotFound()
        room.revealed = bool(revealed)
        db.session.commit()

    def verify_admin_token(self, room_id: str, token: Optional[str]) -> bool:
        room = Room.query.filter_by(id=room_id).first()
        if not room:
            return False
        return room.check_admin_token(token)

    # ---- members ----

    def add_member(
        self,
        room_id: str,
        name: str,
        session_identifier: Optional[str],
        connection_identifier: Optional[str],
        connected: bool = True,
        capacity: Optional[int] = None,
    ) -> MemberSnapshot:
        if not Room.query.filter_by(id=room_id).first():
            raise RoomNotFound()
        if Member.query.filter_by(room_id=room_id, name=name).first():
            raise DuplicateName()
        if capacity is not None and Member.query.filter_by(room_id=room_id).count() >= capacity:
            raise RoomFull(f'Room is full. Maximum {capacity} users allowed.')
        now = time.time()
        member = Member(
            room_id=room_id,
            name=name,
            session_identifier=session_identifier,
            connection_identifier=connection_identifier,
            connected=connected,
            point=None,
            joined_at=now,
            last_connected_at=now if connected else None,
        )
        db.session.add(member)
        try:
            db.session.commit()
        except IntegrityError:
            # Lost a race for the same name
            db.session.rollback()
            raise DuplicateName()
        return member.to_snapshot()

    def get_member(self, member_id: int) -> Optional[MemberSnapshot]:
        member = Member.query.filter_by(id=member_id).first()
        return member.to_snapshot() if member else None

    def find_member_by_session(self, room_id: str, session_identifier: Optional[str]) -> Optional[MemberSnapshot]:
        if not session_identifier:
            return None
        return self._first(room_id, session_identifier=session_identifier)

    def find_member_by_name(self, room_id: str, name: Optional[str]) -> Optional[MemberSnapshot]:
        if not name:
            return None
        return self._first(room_id, name=name)

    def find_member_by_connection(self, room_id: str, connection_identifier: Optional[str]) -> Optional[MemberSnapshot]:
        if not connection_identifier:
            return None
        return self._first(room_id, connection_identifier=connection_identifier)

    def set_vote(self, member_id: int, point) -> None:
        member = self._member_or_raise(member_id)
        member.point = point
        db.session.commit()

    def reset_votes(self, room_id: str) -> None:
        room = Room.query.filter_by(id=room_id).first()
        if not room:
            raise RoomNotFound()
        Member.query.filter_by(room_id=room_id).update({Member.point: None}, synchronize_session=False)
        room.revealed = False
        db.session.commit()

    def update_connection(
        self,
        member_id: int,
        connection_identifier: Optional[str],
        connected: bool,
        session_identifier: Optional[str] = None,
    ) -> None:
        member = self._member_or_raise(member_id)
        member.connection_identifier = connection_identifier
        member.connected = bool(connected)
        if connected:
            member.last_connected_at = time.time()
        if session_identifier:
            member.session_identifier = session_identifier
        db.session.commit()

    def count_connected(self, room_id: str) -> int:
        return Member.query.filter_by(room_id=room_id, connected=True).count()

    # ---- helpers ----

    def _load(self, room_id: str) -> Optional[Room]:
        if not room_id:
            return None
        return Room.query.options(selectinload(Room.members)).filter_by(id=room_id).first()

    def _first(self, room_id: str, **criteria) -> Optional[MemberSnapshot]:
        member = Member.query.filter_by(room_id=room_id, **criteria).order_by(Member.id).first()
        return member.to_snapshot() if member else None

    def _member_or_raise(self, member_id: int) -> Member:
        member = Member.query.filter_by(id=member_id).first()
        if not member:
            raise RoomNotFound('Member not found.')
        return member
