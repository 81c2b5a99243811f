"""create room and member tables

Revision ID: 3a9c1d7e5b20
Revises:
Create Date: 2026-10-17 00:00:00

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '3a9c1d7e5b20'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'room',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('task_title', sa.String(length=200), nullable=False),
        sa.Column('task_description', sa.Text(), nullable=False),
        sa.Column('admin_name', sa.String(length=64), nullable=False),
        sa.Column('admin_token_hash', sa.String(length=128), nullable=False),
        sa.Column('revealed', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.Float(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_room_created_at'), 'room', ['created_at'], unique=False)

    op.create_table(
        'member',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('room_id', sa.String(length=36), nullable=False),
        sa.Column('name', sa.String(length=64), nullable=False),
        sa.Column('session_identifier', sa.String(length=64), nullable=True),
        sa.Column('connection_identifier', sa.String(length=64), nullable=True),
        sa.Column('point', sa.JSON(none_as_null=True), nullable=True),
        sa.Column('connected', sa.Boolean(), nullable=False),
        sa.Column('joined_at', sa.Float(), nullable=False),
        sa.Column('last_connected_at', sa.Float(), nullable=True),
        sa.ForeignKeyConstraint(['room_id'], ['room.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('room_id', 'name', name='uq_member_room_name'),
        sqlite_autoincrement=True,
    )
    op.create_index(op.f('ix_member_room_id'), 'member', ['room_id'], unique=False)
    op.create_index(op.f('ix_member_session_identifier'), 'member', ['session_identifier'], unique=False)


def downgrade():
    op.drop_index(op.f('ix_member_session_identifier'), table_name='member')
    op.drop_index(op.f('ix_member_room_id'), table_name='member')
    op.drop_table('member')
    op.drop_index(op.f('ix_room_created_at'), table_name='room')
    op.drop_table('room')
