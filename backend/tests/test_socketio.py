import time

from planning_poker import rooms, socketio
from helpers import events, names, payloads


def _join(sio, room_id, **extra):
    sio.emit('room:join', dict(extra, room_id=room_id), namespace='/ws')
    return sio.get_received('/ws')


def _join_with_name(sio, room_id, name, **extra):
    sio.emit('room:joinWithName', dict(extra, room_id=room_id, name=name), namespace='/ws')
    return sio.get_received('/ws')


def _points(value):
    """Every value stored under a 'point' key anywhere in ``value``."""
    if isinstance(value, dict):
        found = [v for k, v in value.items() if k == 'point']
        for v in value.values():
            found.extend(_points(v))
        return found
    if isinstance(value, (list, tuple)):
        found = []
        for v in value:
            found.extend(_points(v))
        return found
    return []


def _room_with_admin(make_room, connect, client):
    created = make_room()
    admin = connect(client)
    _join(admin, created['room_id'])
    return created, admin


def _guest(flask_app, connect, room_id, name):
    """A guest that joined over HTTP first, so its browser session knows the room."""
    http = flask_app.test_client()
    assert http.post(f'/play/{room_id}/join', json={'name': name}).status_code == 200
    sio = connect(http)
    received = _join(sio, room_id)
    return http, sio, received


def test_connect_greets_the_client(flask_app):
    sio = socketio.test_client(flask_app, namespace='/ws')
    assert sio.is_connected('/ws')
    assert 'connected' in names(sio.get_received('/ws'))
    sio.disconnect(namespace='/ws')


def test_admin_joins_own_room(make_room, connect, client):
    created = make_room()
    admin = connect(client)
    joined = payloads(_join(admin, created['room_id']), 'room:joined')
    assert len(joined) == 1
    assert joined[0]['is_admin'] is True
    assert joined[0]['user_name'] == 'Ada'
    assert joined[0]['is_reconnecting'] is False
    assert joined[0]['previous_vote'] is False
    assert joined[0]['room']['members'][0]['connected'] is True
    assert rooms.store.get(created['room_id']).connected_count == 1


def test_unknown_visitor_is_asked_for_a_name(flask_app, make_room, connect):
    created = make_room()
    visitor = connect()
    received = _join(visitor, created['room_id'])
    assert names(received) == ['room:needsJoin']
    prompt = payloads(received, 'room:needsJoin')[0]
    assert prompt['room_id'] == created['room_id']
    assert prompt['admin_name'] == 'Ada'
    # Nothing changed in the room
    assert len(rooms.store.get(created['room_id']).members) == 1


def test_join_with_name_is_announced_to_the_room(make_room, connect, client):
    created, admin = _room_with_admin(make_room, connect, client)
    admin.get_received('/ws')

    visitor = connect()
    joined = payloads(_join_with_name(visitor, created['room_id'], '  Bob '), 'room:joined')
    assert joined[0]['user_name'] == 'Bob'
    assert joined[0]['is_admin'] is False

    announced = events(admin, 'room:memberJoined')
    assert announced[0]['member'] == {'name': 'Bob', 'has_voted': False}
    assert [m['name'] for m in announced[0]['members']] == ['Ada', 'Bob']


def test_join_with_a_taken_name_is_rejected(make_room, connect, client):
    created, _ = _room_with_admin(make_room, connect, client)
    first = connect()
    _join_with_name(first, created['room_id'], 'Bob')

    second = connect()
    received = _join_with_name(second, created['room_id'], 'Bob')
    assert names(received) == ['room:error']
    assert received[0]['args'][0]['message'] == 'This name is already taken in the room.'

    received = _join_with_name(second, created['room_id'], 'Ada')
    assert names(received) == ['room:error']
    assert len(rooms.store.get(created['room_id']).members) == 2


def test_full_room_rejects_realtime_join(make_room, connect, client):
    created, _ = _room_with_admin(make_room, connect, client)
    for i in range(9):
        rooms.preregister(created['room_id'], f'Guest {i}', f'device-{i}')

    late = connect()
    received = _join_with_name(late, created['room_id'], 'Late')
    assert names(received) == ['room:error']
    assert received[0]['args'][0]['message'] == 'Room is full. Maximum 10 users allowed.'


def test_votes_stay_hidden_until_reveal(flask_app, make_room, connect, client):
    created, admin = _room_with_admin(make_room, connect, client)
    room_id = created['room_id']
    _, bob, _ = _guest(flask_app, connect, room_id, 'Bob')
    _, cara, _ = _guest(flask_app, connect, room_id, 'Cara')
    _, dan, _ = _guest(flask_app, connect, room_id, 'Dan')
    for sio in (admin, bob, cara, dan):
        sio.get_received('/ws')

    bob.emit('vote:submit', {'room_id': room_id, 'point': 5}, namespace='/ws')
    cara.emit('vote:submit', {'room_id': room_id, 'point': 8}, namespace='/ws')

    before_reveal = [events(sio) for sio in (admin, bob, cara, dan)]
    for received in before_reveal:
        assert all(point is None for point in _points(received))
        updates = payloads(received, 'vote:updated')
        assert [u['voter_name'] for u in updates] == ['Bob', 'Cara']
        voted = {m['name']: m['has_voted'] for m in updates[-1]['members']}
        assert voted == {'Ada': False, 'Bob': True, 'Cara': True, 'Dan': False}

    admin.emit('votes:reveal', {'room_id': room_id}, namespace='/ws')
    revealed = events(dan, 'votes:revealed')[0]
    assert revealed['average'] == 6.5
    assert {m['name']: m['point'] for m in revealed['members']} == {
        'Ada': None, 'Bob': 5, 'Cara': 8, 'Dan': None,
    }

    admin.emit('votes:reset', {'room_id': room_id}, namespace='/ws')
    reset = events(bob, 'votes:reset')[0]
    assert all(not m['has_voted'] and m['point'] is None for m in reset['members'])
    room = rooms.store.get(room_id)
    assert room.revealed is False
    assert all(m.point is None for m in room.members)


def test_vote_accepts_card_labels_and_rejects_garbage(flask_app, make_room, connect, client):
    created, _ = _room_with_admin(make_room, connect, client)
    room_id = created['room_id']
    _, bob, _ = _guest(flask_app, connect, room_id, 'Bob')

    bob.emit('vote:submit', {'room_id': room_id, 'point': '?'}, namespace='/ws')
    assert 'vote:updated' in names(bob.get_received('/ws'))

    bob.emit('vote:submit', {'room_id': room_id, 'point': {'not': 'a card'}}, namespace='/ws')
    assert names(bob.get_received('/ws')) == ['room:error']
    assert rooms.store.find_member_by_name(room_id, 'Bob').point == '?'


def test_only_the_admin_can_reveal(flask_app, make_room, connect, client):
    created, admin = _room_with_admin(make_room, connect, client)
    room_id = created['room_id']
    _, bob, _ = _guest(flask_app, connect, room_id, 'Bob')
    admin.get_received('/ws')

    bob.emit('votes:reveal', {'room_id': room_id}, namespace='/ws')
    received = bob.get_received('/ws')
    assert names(received) == ['room:error']
    assert received[0]['args'][0]['message'] == 'Only the admin can reveal votes.'
    assert admin.get_received('/ws') == []
    assert rooms.store.get(room_id).revealed is False

    bob.emit('votes:reset', {'room_id': room_id}, namespace='/ws')
    assert payloads(bob.get_received('/ws'), 'room:error')[0]['message'] == 'Only the admin can reset votes.'


def test_admin_token_in_payload_grants_admin(make_room, connect, client):
    created, _ = _room_with_admin(make_room, connect, client)
    room_id = created['room_id']
    # Same admin on another device without the browser session
    other_device = connect()
    joined = payloads(
        _join_with_name(other_device, room_id, 'Ada laptop', admin_token=created['admin_token']),
        'room:joined',
    )
    assert joined[0]['is_admin'] is True

    other_device.emit('votes:reveal', {'room_id': room_id, 'admin_token': created['admin_token']}, namespace='/ws')
    assert 'votes:revealed' in names(other_device.get_received('/ws'))


def test_vote_from_a_non_member_is_rejected(make_room, connect, client):
    created, _ = _room_with_admin(make_room, connect, client)
    stranger = connect()
    stranger.emit('vote:submit', {'room_id': created['room_id'], 'point': 3}, namespace='/ws')
    received = stranger.get_received('/ws')
    assert names(received) == ['room:error']
    assert received[0]['args'][0]['message'] == 'You are not a member of this room.'


def test_missing_room_id_is_reported(connect):
    sio = connect()
    sio.emit('vote:submit', {'point': 3}, namespace='/ws')
    received = sio.get_received('/ws')
    assert names(received) == ['room:error']
    assert received[0]['args'][0]['message'] == 'room_id is required'


def test_reconnect_within_grace_keeps_vote(flask_app, make_room, connect, client, scheduler):
    created, admin = _room_with_admin(make_room, connect, client)
    room_id = created['room_id']
    bob_http, bob, _ = _guest(flask_app, connect, room_id, 'Bob')
    bob.emit('vote:submit', {'room_id': room_id, 'point': 13}, namespace='/ws')
    admin.get_received('/ws')

    admin.disconnect(namespace='/ws')
    bob.disconnect(namespace='/ws')
    assert rooms.timers.is_pending(room_id)
    assert rooms.store.get(room_id).connected_count == 0

    bob_again = connect(bob_http)
    joined = payloads(_join(bob_again, room_id), 'room:joined')[0]
    assert joined['user_name'] == 'Bob'
    assert joined['is_reconnecting'] is True
    assert joined['previous_vote'] is True
    assert not rooms.timers.is_pending(room_id)

    scheduler.run_all()
    room = rooms.store.get(room_id)
    assert room is not None
    assert room.member_by_id(rooms.store.find_member_by_name(room_id, 'Bob').id).point == 13


def test_reconnect_is_announced_to_the_room(flask_app, make_room, connect, client):
    created, admin = _room_with_admin(make_room, connect, client)
    room_id = created['room_id']
    bob_http, bob, _ = _guest(flask_app, connect, room_id, 'Bob')
    bob.disconnect(namespace='/ws')

    offline = events(admin, 'room:memberDisconnected')
    assert offline[-1]['member_name'] == 'Bob'
    assert {m['name']: m['connected'] for m in offline[-1]['members']}['Bob'] is False

    _join(connect(bob_http), room_id)
    back = events(admin, 'room:memberReconnected')
    assert back[0]['member_name'] == 'Bob'


def test_rejoin_by_name_from_another_device(make_room, connect, client):
    created, _ = _room_with_admin(make_room, connect, client)
    room_id = created['room_id']
    phone = connect()
    _join_with_name(phone, room_id, 'Bob')
    phone.disconnect(namespace='/ws')

    laptop = connect()
    joined = payloads(_join(laptop, room_id, name='Bob'), 'room:joined')[0]
    assert joined['user_name'] == 'Bob'
    assert joined['is_reconnecting'] is True
    assert len(rooms.store.get(room_id).members) == 2


def test_abandoned_room_is_deleted_after_grace(make_room, connect, client, scheduler):
    created, admin = _room_with_admin(make_room, connect, client)
    room_id = created['room_id']
    admin.disconnect(namespace='/ws')
    assert len(scheduler.tasks) == 1

    scheduler.run_all()
    assert rooms.store.get(room_id) is None
    assert client.get(f'/play/{room_id}').status_code == 302


def test_one_pending_deletion_per_room(flask_app, make_room, connect, client, scheduler):
    created, admin = _room_with_admin(make_room, connect, client)
    room_id = created['room_id']
    _, bob, _ = _guest(flask_app, connect, room_id, 'Bob')

    admin.disconnect(namespace='/ws')
    assert len(scheduler.tasks) == 0
    bob.disconnect(namespace='/ws')
    assert len(scheduler.tasks) == 1
    assert len(rooms.timers) == 1


def test_admin_ends_the_room(flask_app, make_room, connect, client):
    created, admin = _room_with_admin(make_room, connect, client)
    room_id = created['room_id']
    _, bob, _ = _guest(flask_app, connect, room_id, 'Bob')
    bob.get_received('/ws')

    bob.emit('room:end', {'room_id': room_id}, namespace='/ws')
    assert payloads(bob.get_received('/ws'), 'room:error')[0]['message'] == 'Only the admin can end the session.'
    assert rooms.store.get(room_id) is not None

    admin.emit('room:end', {'room_id': room_id}, namespace='/ws')
    ended = events(bob, 'room:ended')
    assert ended == [{'message': 'The session has been ended by the admin.'}]
    assert rooms.store.get(room_id) is None

    bob.emit('vote:submit', {'room_id': room_id, 'point': 1}, namespace='/ws')
    assert payloads(bob.get_received('/ws'), 'room:error')[0]['message'] == 'Room not found or has expired.'


def test_expired_room_is_announced_on_next_event(flask_app, make_room, connect, client, monkeypatch):
    created, admin = _room_with_admin(make_room, connect, client)
    room_id = created['room_id']
    _, bob, _ = _guest(flask_app, connect, room_id, 'Bob')
    admin.get_received('/ws')
    bob.get_received('/ws')

    monkeypatch.setattr(rooms, 'clock', lambda: time.time() + 601)
    bob.emit('vote:submit', {'room_id': room_id, 'point': 3}, namespace='/ws')

    received = bob.get_received('/ws')
    assert names(received) == ['room:expired', 'room:error']
    assert received[0]['args'][0]['message'] == 'Room has expired after 10 minutes.'
    assert events(admin, 'room:expired') == [{'message': 'Room has expired after 10 minutes.'}]
    assert client.get(f'/play/{room_id}').status_code == 302


def test_sweep_notifies_connected_clients(make_room, connect, client, monkeypatch):
    created, admin = _room_with_admin(make_room, connect, client)
    admin.get_received('/ws')

    monkeypatch.setattr(rooms, 'clock', lambda: time.time() + 601)
    assert rooms.sweep() == [created['room_id']]
    assert names(admin.get_received('/ws')) == ['room:expired']


def test_ping(connect):
    sio = connect()
    sio.emit('ping', {'n': 1}, namespace='/ws')
    assert payloads(sio.get_received('/ws'), 'pong') == [{'n': 1}]
