from flask import Blueprint, current_app, jsonify, redirect, request, session, url_for
from planning_poker import rooms
from planning_poker.errors import InvalidName, InvalidRequest, RoomError, RoomNotFound
from planning_poker.models import TASK_TITLE_MAX_LENGTH
from planning_poker.services.rooms.sessions import normalize_name
from planning_poker.services.rooms.sync import sanitize_room
import time

rooms_bp = Blueprint('rooms', __name__)


def _payload():
    if request.is_json:
        return request.get_json(silent=True) or {}
    return request.form


def _remember(room_id, **entry):
    session_rooms = dict(session.get('rooms') or {})
    session_rooms[room_id] = dict(entry, joined_at=time.time())
    session['rooms'] = session_rooms


@rooms_bp.errorhandler(RoomError)
def handle_room_error(exc):
    return jsonify(exc.to_dict()), exc.status_code


@rooms_bp.route('/play', methods=['GET'])
def new_room():
    return jsonify({'room': None, 'user_session': None})


@rooms_bp.route('/register', methods=['POST'])
def register():
    data = _payload()
    name = normalize_name(data.get('name'), rooms.name_max_length)
    if not name:
        raise InvalidName()
    task_title = data.get('task_title') or ''
    task_description = data.get('task_description') or ''
    if not isinstance(task_title, str) or not isinstance(task_description, str):
        raise InvalidRequest('Task title and description must be text.')
    task_title = task_title.strip()
    if len(task_title) > TASK_TITLE_MAX_LENGTH:
        raise InvalidRequest(f'Task titles can be at most {TASK_TITLE_MAX_LENGTH} characters long.')
    room, admin_token = rooms.store.create(
        task_title=task_title,
        task_description=task_description.strip(),
        admin_name=name,
    )
    # Reserve the admin's name before anyone else can claim it
    rooms.preregister(room.id, name, session.get('sid'))
    _remember(room.id, name=name, admin_token=admin_token)
    current_app.logger.info(f"[register] created room {room.id} for {name}")

    url = url_for('rooms.show_room', room_id=room.id)
    if request.is_json:
        return jsonify({'room_id': room.id, 'admin_token': admin_token, 'url': url}), 201
    return redirect(url)


@rooms_bp.route('/play/<string:room_id>', methods=['GET'])
def show_room(room_id):
    try:
        room = rooms.ensure_active(room_id)
    except RoomNotFound:
        return redirect(url_for('rooms.new_room'))

    entry = (session.get('rooms') or {}).get(room_id)
    user_session = None
    if entry:
        user_session = {
            'name': entry.get('name'),
            'is_admin': rooms.store.verify_admin_token(room_id, entry.get('admin_token')),
            'joined_at': entry.get('joined_at'),
        }
    return jsonify({
        'room': sanitize_room(room, rooms.room_duration),
        'user_session': user_session,
    })


@rooms_bp.route('/play/<string:room_id>/join', methods=['POST'])
def join_room(room_id):
    data = _payload()
    member = rooms.preregister(room_id, data.get('name'), session.get('sid'))
    entry = (session.get('rooms') or {}).get(room_id) or {}
    if entry.get('name') != member.name:
        _remember(room_id, name=member.name, admin_token=entry.get('admin_token'))
    return jsonify({'success': True, 'user_name': member.name})
