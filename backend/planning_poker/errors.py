"""Recoverable room errors.

Each error ends the single operation that raised it and is reported to the
initiating client only: as a ``room:error`` event on the realtime channel or
as a JSON body with ``status_code`` over HTTP.
"""


class RoomError(Exception):
    status_code = 400
    message = 'Something went wrong with this room.'

    def __init__(self, message=None):
        if message:
            self.message = message
        super().__init__(self.message)

    def to_dict(self):
        return {'error': self.message}


class RoomNotFound(RoomError):
    status_code = 404
    message = 'Room not found or has expired.'


class RoomExpired(RoomNotFound):
    status_code = 410
    message = 'Room has expired.'


class RoomFull(RoomError):
    status_code = 403
    message = 'Room is full.'


class DuplicateName(RoomError):
    status_code = 409
    message = 'This name is already taken in the room.'


class Unauthorized(RoomError):
    status_code = 403
    message = 'Only the admin can do that.'


class NotAMember(RoomError):
    status_code = 403
    message = 'You are not a member of this room.'


class InvalidName(RoomError):
    message = 'Please enter your name.'


class InvalidVote(RoomError):
    message = 'That card is not a valid vote.'


class InvalidRequest(RoomError):
    message = 'Invalid request.'
