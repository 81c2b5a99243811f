import time
from contextlib import nullcontext
from typing import List, Optional

from flask import current_app, has_app_context

from planning_poker import db
from planning_poker.errors import (
    DuplicateName,
    InvalidName,
    RoomExpired,
    RoomNotFound,
    Unauthorized,
)
from planning_poker.models import NAME_MAX_LENGTH
from planning_poker.services.rooms.sessions import is_admin, normalize_name, resolve_member
from planning_poker.services.rooms.store import RoomLocks, RoomStore
from planning_poker.services.rooms.sync import (
    MEMBER_DISCONNECTED,
    MEMBER_JOINED,
    MEMBER_RECONNECTED,
    ROOM_ENDED,
    ROOM_ENDED_MESSAGE,
    ROOM_EXPIRED,
    ROOM_JOINED,
    ROOM_NEEDS_JOIN,
    Broadcaster,
    expired_message,
    previous_vote,
    sanitize_members,
    sanitize_room,
)
from planning_poker.services.rooms.timers import PendingDeletions
from planning_poker.services.rooms.types import JoinOutcome, Resolution, ResolutionKind, RoomSnapshot


class RoomLifecycle:
    """Room expiry, capacity, abandonment and explicit end.

    Every state-changing operation runs under the room's lock and broadcasts
    before releasing it, so observers of one room see events in the order the
    store accepted them.
    """

    def __init__(self, store=None):
        self.app = None
        self.socketio = None
        self.store = store or RoomStore()
        self.locks = RoomLocks()
        self.timers = PendingDeletions()
        self.broadcaster = Broadcaster()
        self.clock = time.time
        self._sweeper_started = False

    def init_app(self, app, socketio) -> None:
        self.app = app
        self.socketio = socketio
        self.locks = RoomLocks()
        self.timers = PendingDeletions(spawn=socketio.start_background_task, sleep=socketio.sleep)
        self.broadcaster = Broadcaster(socketio, app.config.get('SOCKETIO_NAMESPACE', '/ws'))
        self.clock = time.time
        self._sweeper_started = False
        app.extensions['rooms'] = self

    # ---- settings ----

    @property
    def logger(self):
        return self.app.logger

    @property
    def max_members(self) -> int:
        return int(self.app.config.get('ROOM_MAX_MEMBERS', 10))

    @property
    def room_duration(self) -> int:
        return int(self.app.config.get('ROOM_DURATION_SEC', 600))

    @property
    def grace_period(self) -> float:
        return float(self.app.config.get('DISCONNECT_GRACE_SEC', 30))

    @property
    def cleanup_interval(self) -> float:
        return float(self.app.config.get('CLEANUP_INTERVAL_SEC', 60))

    @property
    def name_max_length(self) -> int:
        # Never longer than the column that stores it
        return min(int(self.app.config.get('MEMBER_NAME_MAX_LENGTH', 32)), NAME_MAX_LENGTH)

    # ---- expiry ----

    def _app_context(self):
        """Reuse the active context of this app, or push one for background tasks."""
        if has_app_context() and current_app._get_current_object() is self.app:
            return nullcontext()
        return self.app.app_context()

    def is_expired(self, room: RoomSnapshot, now: Optional[float] = None) -> bool:
        return room.age(now if now is not None else self.clock()) > self.room_duration

    def ensure_active(self, room_id: str) -> RoomSnapshot:
        """Return the live room or raise; an expired room is announced and deleted first."""
        if not room_id or not isinstance(room_id, str):
            raise RoomNotFound()
        with self.locks.hold(room_id):
            room = self.store.get(room_id)
            if room is None:
                self.locks.discard(room_id)
                raise RoomNotFound()
            if self.is_expired(room):
                self._expire(room_id)
                raise RoomExpired()
            return room

    def sweep(self) -> List[str]:
        """Expire every room past its lifetime; failures are logged per room."""
        expired = []
        with self._app_context():
            try:
                candidates = self.store.list_expired(self.room_duration, now=self.clock())
            except Exception:
                self.logger.exception('[cleanup] could not list expired rooms')
                db.session.rollback()
                return expired
            for room_id in candidates:
                try:
                    with self.locks.hold(room_id):
                        room = self.store.get(room_id)
                        if room is None:
                            self.locks.discard(room_id)
                            continue
                        if not self.is_expired(room):
                            continue
                        self._expire(room_id)
                        expired.append(room_id)
                except Exception:
                    self.logger.exception(f"[cleanup] failed to expire room {room_id}")
                    db.session.rollback()
        if expired:
            self.logger.info(f"[cleanup] expired {len(expired)} room(s)")
        return expired

    def start_sweeper(self) -> None:
        if self._sweeper_started:
            return
        self._sweeper_started = True
        self.socketio.start_background_task(self._sweep_forever)
        self.logger.info(f"[cleanup] sweeping every {self.cleanup_interval}s")

    def _sweep_forever(self) -> None:
        while True:
            self.socketio.sleep(self.cleanup_interval)
            try:
                self.sweep()
            except Exception:
                self.logger.exception('[cleanup] sweep failed')

    # ---- membership ----

    def join(self, room_id: str, session_identifier: Optional[str], name: Optional[str],
             connection_id: str, admin_token: Optional[str] = None) -> JoinOutcome:
        """Handle a live connection asking to enter a room.

        Rejoins (by session or by name) rebind the existing member; a new name
        creates a member subject to capacity; no name at all prompts the
        client for one without touching room state.
        """
        name = normalize_name(name, self.name_max_length)
        with self.locks.hold(room_id):
            room = self.ensure_active(room_id)
            resolution = resolve_member(self.store, room_id, session_identifier, name)
            if resolution.kind is ResolutionKind.NEEDS_NAME:
                self.broadcaster.to_connection(connection_id, ROOM_NEEDS_JOIN, {
                    'room_id': room.id,
                    'task_title': room.task_title,
                    'admin_name': room.admin_name,
                })
                return JoinOutcome(resolution=resolution, room=room)
            return self._admit(room, resolution, session_identifier, connection_id, admin_token)

    def join_with_name(self, room_id: str, session_identifier: Optional[str], name: Optional[str],
                       connection_id: str, admin_token: Optional[str] = None) -> JoinOutcome:
        """First join after a name prompt; a taken name is rejected, never taken over."""
        name = normalize_name(name, self.name_max_length)
        if not name:
            raise InvalidName()
        with self.locks.hold(room_id):
            room = self.ensure_active(room_id)
            resolution = resolve_member(self.store, room_id, session_identifier, name)
            if resolution.kind is ResolutionKind.EXISTING_NAME:
                raise DuplicateName()
            return self._admit(room, resolution, session_identifier, connection_id, admin_token)

    def preregister(self, room_id: str, name: Optional[str], session_identifier: Optional[str]):
        """Create a member ahead of its first live connection.

        The member counts toward capacity straight away so the name is
        reserved. A browser that already holds a member in the room gets
        that member back.
        """
        name = normalize_name(name, self.name_max_length)
        if not name:
            raise InvalidName()
        with self.locks.hold(room_id):
            self.ensure_active(room_id)
            existing = self.store.find_member_by_session(room_id, session_identifier)
            if existing:
                return existing
            member = self.store.add_member(
                room_id, name, session_identifier, None, connected=False, capacity=self.max_members,
            )
            self.timers.cancel(room_id)
            room = self.store.get(room_id)
            self.broadcaster.to_room(room_id, MEMBER_JOINED, {
                'member': {'name': member.name, 'has_voted': False},
                'members': sanitize_members(room),
            })
            self.logger.info(f"[join] {member.name} pre-registered in room {room_id}. Members: {len(room.members)}")
            return member

    def _admit(self, room: RoomSnapshot, resolution: Resolution, session_identifier: Optional[str],
               connection_id: str, admin_token: Optional[str]) -> JoinOutcome:
        if resolution.is_rejoin:
            member = resolution.member
            self.store.update_connection(member.id, connection_id, True, session_identifier=session_identifier)
            is_reconnecting = member.has_ever_connected
        else:
            member = self.store.add_member(
                room.id, resolution.name, session_identifier, connection_id,
                connected=True, capacity=self.max_members,
            )
            is_reconnecting = False

        if self.timers.cancel(room.id):
            self.logger.info(f"[join] cancelled pending deletion of room {room.id}")
        self.broadcaster.enter(connection_id, room.id)

        fresh = self.store.get(room.id)
        member = fresh.member_by_id(member.id)
        admin = is_admin(self.store, room.id, admin_token)

        self.broadcaster.to_connection(connection_id, ROOM_JOINED, {
            'room': sanitize_room(fresh, self.room_duration),
            'is_admin': admin,
            'user_name': member.name,
            'is_reconnecting': is_reconnecting,
            'previous_vote': previous_vote(member, fresh.revealed),
        })
        members = sanitize_members(fresh)
        if is_reconnecting:
            self.broadcaster.to_room(room.id, MEMBER_RECONNECTED, {
                'member_name': member.name,
                'members': members,
            }, skip_sid=connection_id)
            self.logger.info(f"[join] {member.name} reconnected to room {room.id}")
        else:
            self.broadcaster.to_room(room.id, MEMBER_JOINED, {
                'member': {'name': member.name, 'has_voted': member.has_voted},
                'members': members,
            }, skip_sid=connection_id)
            self.logger.info(f"[join] {member.name} joined room {room.id}. Members: {len(fresh.members)}")

        return JoinOutcome(
            resolution=resolution,
            room=fresh,
            member=member,
            is_admin=admin,
            is_reconnecting=is_reconnecting,
        )

    def disconnect(self, room_id: str, member_id: int, connection_id: str) -> Optional[RoomSnapshot]:
        """Mark a member offline and start the grace period once nobody is left."""
        with self.locks.hold(room_id):
            try:
                self.ensure_active(room_id)
            except RoomNotFound:
                return None
            member = self.store.get_member(member_id)
            if not member or member.room_id != room_id:
                return None
            if member.connection_identifier != connection_id:
                # The member already came back on a newer connection
                self.logger.debug(f"[disconnect] stale connection {connection_id} for {member.name}")
                return None

            self.store.update_connection(member.id, None, False)
            room = self.store.get(room_id)
            self.broadcaster.to_room(room_id, MEMBER_DISCONNECTED, {
                'member_name': member.name,
                'members': sanitize_members(room),
            })
            self.logger.info(f"[disconnect] {member.name} disconnected from room {room_id}")

            if self.store.count_connected(room_id) == 0:
                self.timers.schedule(room_id, self.grace_period, self._abandon_if_empty)
                self.logger.info(f"[disconnect] room {room_id} empty, deleting in {self.grace_period}s")
            return room

    def _abandon_if_empty(self, room_id: str) -> None:
        with self._app_context():
            try:
                with self.locks.hold(room_id):
                    if self.store.get(room_id) is None:
                        self.locks.discard(room_id)
                        return
                    if self.store.count_connected(room_id) > 0:
                        self.logger.info(f"[disconnect] room {room_id} kept, a member is back")
                        return
                    self._delete(room_id)
                    self.logger.info(f"[disconnect] room {room_id} deleted (all members disconnected)")
            except Exception:
                self.logger.exception(f"[disconnect] failed to delete abandoned room {room_id}")
                db.session.rollback()

    # ---- end ----

    def end(self, room_id: str, admin_token: Optional[str]) -> None:
        with self.locks.hold(room_id):
            self.ensure_active(room_id)
            if not is_admin(self.store, room_id, admin_token):
                raise Unauthorized('Only the admin can end the session.')
            self.broadcaster.to_room(room_id, ROOM_ENDED, {'message': ROOM_ENDED_MESSAGE})
            self._delete(room_id)
            self.logger.info(f"[room:end] room {room_id} ended by admin")

    def _expire(self, room_id: str) -> None:
        self.broadcaster.to_room(room_id, ROOM_EXPIRED, {'message': expired_message(self.room_duration)})
        self._delete(room_id)
        self.logger.info(f"[expire] room {room_id} expired and deleted")

    def _delete(self, room_id: str) -> None:
        self.timers.cancel(room_id)
        self.store.delete(room_id)
        self.broadcaster.close(room_id)
        self.locks.discard(room_id)
