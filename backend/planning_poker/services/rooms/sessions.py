"""Map an inbound connection to a room membership.

The durable session identifier comes from the signed session cookie shared by
the HTTP and Socket.IO layers. It is compared for equality only.
"""

from typing import Optional

from planning_poker.errors import InvalidName
from planning_poker.services.rooms.types import Resolution, ResolutionKind


def normalize_name(name, max_length: int = 32) -> Optional[str]:
    """Trim a requested display name; returns None for blank input."""
    if name is None:
        return None
    if not isinstance(name, str):
        raise InvalidName()
    name = name.strip()
    if not name:
        return None
    if len(name) > max_length:
        raise InvalidName(f'Names can be at most {max_length} characters long.')
    return name


def resolve_member(store, room_id: str, session_identifier: Optional[str], requested_name: Optional[str]) -> Resolution:
    """Decide whether a connection rejoins an existing member or needs a new one.

    - session identifier matches a member: rejoin as that member, ignoring the name
    - otherwise a supplied name matches a member: rejoin as that member
    - otherwise a name was supplied: new member
    - otherwise: the caller has to ask for a name first
    """
    member = store.find_member_by_session(room_id, session_identifier)
    if member:
        return Resolution(ResolutionKind.EXISTING_SESSION, name=member.name, member=member)

    if requested_name:
        member = store.find_member_by_name(room_id, requested_name)
        if member:
            return Resolution(ResolutionKind.EXISTING_NAME, name=member.name, member=member)
        return Resolution(ResolutionKind.NEW_JOIN, name=requested_name)

    return Resolution(ResolutionKind.NEEDS_NAME)


def is_admin(store, room_id: str, presented_token: Optional[str]) -> bool:
    """True iff ``presented_token`` matches the room's admin token.

    Called on every privileged operation; admin status is never cached.
    """
    if not presented_token:
        return False
    return store.verify_admin_token(room_id, presented_token)
