import time
import uuid

from planning_poker import db, bcrypt
from planning_poker.services.rooms.types import MemberSnapshot, RoomSnapshot

# bcrypt only looks at the first 72 bytes of a secret
_BCRYPT_MAX_BYTES = 72

# Column widths; free-text input is validated against these before it is stored
NAME_MAX_LENGTH = 64
TASK_TITLE_MAX_LENGTH = 200


def generate_room_id():
    return str(uuid.uuid4())


class Room(db.Model):
    __tablename__ = 'room'
    id = db.Column(db.String(36), primary_key=True, default=generate_room_id)
    task_title = db.Column(db.String(TASK_TITLE_MAX_LENGTH), nullable=False, default='')
    task_description = db.Column(db.Text, nullable=False, default='')
    admin_name = db.Column(db.String(NAME_MAX_LENGTH), nullable=False)
    admin_token_hash = db.Column(db.String(128), nullable=False)
    revealed = db.Column(db.Boolean, default=False, nullable=False)
    created_at = db.Column(db.Float, nullable=False, default=time.time, index=True)
    members = db.relationship(
        'Member',
        back_populates='room',
        order_by='Member.id',
        cascade='all, delete-orphan',
    )

    def set_admin_token(self, token):
        self.admin_token_hash = bcrypt.generate_password_hash(token).decode('utf-8')

    def check_admin_token(self, token):
        if not token or not isinstance(token, str):
            return False
        if len(token.encode('utf-8')) > _BCRYPT_MAX_BYTES:
            return False
        return bcrypt.check_password_hash(self.admin_token_hash, token)

    def to_snapshot(self):
        return RoomSnapshot(
            id=self.id,
            task_title=self.task_title,
            task_description=self.task_description,
            admin_name=self.admin_name,
            revealed=bool(self.revealed),
            created_at=self.created_at,
            members=tuple(m.to_snapshot() for m in self.members),
        )


class Member(db.Model):
    __tablename__ = 'member'
    __table_args__ = (
        db.UniqueConstraint('room_id', 'name', name='uq_member_room_name'),
        {'sqlite_autoincrement': True},
    )
    id = db.Column(db.Integer, primary_key=True)
    room_id = db.Column(db.String(36), db.ForeignKey('room.id', ondelete='CASCADE'), nullable=False, index=True)
    name = db.Column(db.String(NAME_MAX_LENGTH), nullable=False)
    session_identifier = db.Column(db.String(64), nullable=True, index=True)
    connection_identifier = db.Column(db.String(64), nullable=True)
    point = db.Column(db.JSON(none_as_null=True), nullable=True)
    connected = db.Column(db.Boolean, default=False, nullable=False)
    joined_at = db.Column(db.Float, nullable=False, default=time.time)
    last_connected_at = db.Column(db.Float, nullable=True)
    room = db.relationship('Room', back_populates='members')

    def to_snapshot(self):
        return MemberSnapshot(
            id=self.id,
            room_id=self.room_id,
            name=self.name,
            session_identifier=self.session_identifier,
            connection_identifier=self.connection_identifier,
            point=self.point,
            connected=bool(self.connected),
            joined_at=self.joined_at,
            last_connected_at=self.last_connected_at,
        )
