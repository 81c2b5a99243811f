from flask_socketio import emit, leave_room
from planning_poker import socketio, db, rooms
from flask import current_app, request, session
from planning_poker.errors import InvalidRequest, RoomError
from planning_poker.services.rooms import voting
from planning_poker.services.rooms.sync import (
    CONNECTED,
    ROOM_END,
    ROOM_ERROR,
    ROOM_JOIN,
    ROOM_JOIN_WITH_NAME,
    VOTE_SUBMIT,
    VOTES_REVEAL,
    VOTES_RESET,
)
from typing import Dict, Any
import time
import uuid


def handle_connect():
    emit(CONNECTED, {'message': 'Connected to /ws'})


def handle_disconnect(reason=None):
    # Disconnect only flips the member offline; the room survives the grace period
    ctx = _sid_to_ctx.pop(_get_sid(), None)
    if not ctx:
        return
    current_app.logger.info(f"[disconnect] socket {_get_sid()} left room {ctx['room_id']} ({reason})")
    rooms.disconnect(ctx['room_id'], ctx['member_id'], _get_sid())


def handle_join(data):
    data = data or {}
    room_id = _require_room_id(data)
    entry = _room_entry(room_id)
    # A session entry for this room wins over whatever name the client sent
    name = entry.get('name') if entry else data.get('name')
    admin_token = _admin_token(room_id, data)
    outcome = rooms.join(room_id, _session_identifier(), name, _get_sid(), admin_token)
    if outcome.member:
        _bind(room_id, outcome, admin_token)


def handle_join_with_name(data):
    data = data or {}
    room_id = _require_room_id(data)
    admin_token = _admin_token(room_id, data)
    outcome = rooms.join_with_name(room_id, _session_identifier(), data.get('name'), _get_sid(), admin_token)
    _bind(room_id, outcome, admin_token)


def handle_vote(data):
    data = data or {}
    room_id = _require_room_id(data)
    voting.submit_vote(rooms, room_id, _get_sid(), data.get('point'))


def handle_reveal(data):
    data = data or {}
    room_id = _require_room_id(data)
    voting.reveal_votes(rooms, room_id, _admin_token(room_id, data))


def handle_reset(data):
    data = data or {}
    room_id = _require_room_id(data)
    voting.reset_votes(rooms, room_id, _admin_token(room_id, data))


def handle_end(data):
    data = data or {}
    room_id = _require_room_id(data)
    rooms.end(room_id, _admin_token(room_id, data))


def handle_ping(data):
    emit('pong', data or {})


def handle_error(exc):
    """Report a failed event to the connection that sent it, and only to it."""
    if isinstance(exc, RoomError):
        current_app.logger.info(f"[room:error] {type(exc).__name__}: {exc.message}")
        emit(ROOM_ERROR, {'message': exc.message})
        return
    db.session.rollback()
    current_app.logger.exception('[socket] unexpected error while handling event')
    emit(ROOM_ERROR, {'message': 'Something went wrong. Please try again.'})

# ---- Connection context helpers ----

_sid_to_ctx: Dict[str, Dict[str, Any]] = {}


def _get_sid() -> str:
    # type: ignore: request.sid exists in Socket.IO context
    return request.sid  # type: ignore


def _session_identifier() -> str:
    """Durable per-browser identifier shared with the HTTP session cookie."""
    sid = session.get('sid')
    if not sid:
        # No cookie on the handshake: identity only lasts for this connection
        sid = uuid.uuid4().hex
        session['sid'] = sid
    return sid


def _room_entry(room_id: str) -> Dict[str, Any]:
    return (session.get('rooms') or {}).get(room_id) or {}


def _admin_token(room_id: str, data: Dict[str, Any]):
    return _room_entry(room_id).get('admin_token') or data.get('admin_token')


def _require_room_id(data: Dict[str, Any]) -> str:
    room_id = data.get('room_id')
    if not room_id or not isinstance(room_id, str):
        raise InvalidRequest('room_id is required')
    return room_id


def _bind(room_id: str, outcome, admin_token) -> None:
    sid = _get_sid()
    previous = _sid_to_ctx.get(sid)
    if previous and previous['room_id'] != room_id:
        leave_room(previous['room_id'])
        rooms.disconnect(previous['room_id'], previous['member_id'], sid)
    _sid_to_ctx[sid] = {
        'room_id': room_id,
        'member_id': outcome.member.id,
        'name': outcome.member.name,
    }
    session_rooms = dict(session.get('rooms') or {})
    if room_id not in session_rooms:
        session_rooms[room_id] = {
            'name': outcome.member.name,
            'admin_token': admin_token if outcome.is_admin else None,
            'joined_at': time.time(),
        }
        session['rooms'] = session_rooms


def register_socketio_handlers(namespace: str = '/ws') -> None:
    """Register Socket.IO event handlers on ``namespace``."""
    socketio.on_event('connect', handle_connect, namespace=namespace)
    socketio.on_event('disconnect', handle_disconnect, namespace=namespace)
    socketio.on_event(ROOM_JOIN, handle_join, namespace=namespace)
    socketio.on_event(ROOM_JOIN_WITH_NAME, handle_join_with_name, namespace=namespace)
    socketio.on_event(VOTE_SUBMIT, handle_vote, namespace=namespace)
    socketio.on_event(VOTES_REVEAL, handle_reveal, namespace=namespace)
    socketio.on_event(VOTES_RESET, handle_reset, namespace=namespace)
    socketio.on_event(ROOM_END, handle_end, namespace=namespace)
    socketio.on_event('ping', handle_ping, namespace=namespace)
    socketio.on_error(namespace)(handle_error)
