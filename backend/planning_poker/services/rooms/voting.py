import math
from numbers import Real

from planning_poker.errors import InvalidVote, NotAMember, Unauthorized
from planning_poker.services.rooms.sessions import is_admin
from planning_poker.services.rooms.sync import (
    VOTE_UPDATED,
    VOTES_REVEALED,
    VOTES_WERE_RESET,
    revealed_view,
    sanitize_members,
)

MAX_CARD_LABEL_LENGTH = 16


def validate_point(point):
    """Accept a numeric card, a short card label, or None to withdraw a vote."""
    if point is None:
        return None
    if isinstance(point, bool):
        raise InvalidVote()
    if isinstance(point, Real):
        if not math.isfinite(point):
            raise InvalidVote()
        return point
    if isinstance(point, str):
        label = point.strip()
        if not label or len(label) > MAX_CARD_LABEL_LENGTH:
            raise InvalidVote()
        return label
    raise InvalidVote()


def submit_vote(manager, room_id, connection_id, point):
    """Record the vote of the member bound to ``connection_id``.

    Everyone in the room learns that the member voted; the value itself stays
    hidden until the admin reveals.
    """
    point = validate_point(point)
    with manager.locks.hold(room_id):
        manager.ensure_active(room_id)
        member = manager.store.find_member_by_connection(room_id, connection_id)
        if not member:
            raise NotAMember()
        manager.store.set_vote(member.id, point)
        room = manager.store.get(room_id)
        manager.broadcaster.to_room(room_id, VOTE_UPDATED, {
            'members': sanitize_members(room),
            'voter_name': member.name,
        })
        manager.logger.info(f"[vote:submit] {member.name} voted in room {room_id}")
        return room


def reveal_votes(manager, room_id, admin_token):
    with manager.locks.hold(room_id):
        manager.ensure_active(room_id)
        if not is_admin(manager.store, room_id, admin_token):
            raise Unauthorized('Only the admin can reveal votes.')
        manager.store.set_revealed(room_id, True)
        room = manager.store.get(room_id)
        view = revealed_view(room)
        manager.broadcaster.to_room(room_id, VOTES_REVEALED, view)
        manager.logger.info(f"[votes:reveal] votes revealed in room {room_id}. Average: {view['average']}")
        return room, view['average']


def reset_votes(manager, room_id, admin_token):
    """Start a new round: clear every vote and hide values again."""
    with manager.locks.hold(room_id):
        manager.ensure_active(room_id)
        if not is_admin(manager.store, room_id, admin_token):
            raise Unauthorized('Only the admin can reset votes.')
        manager.store.reset_votes(room_id)
        room = manager.store.get(room_id)
        manager.broadcaster.to_room(room_id, VOTES_WERE_RESET, {'members': sanitize_members(room)})
        manager.logger.info(f"[votes:reset] votes reset in room {room_id}")
        return room
