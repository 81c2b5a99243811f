import logging

from flask import Flask
from flask_sqlalchemy import SQLAlchemy
from flask_bcrypt import Bcrypt
from flask_cors import CORS
from flask_migrate import Migrate
from flask_socketio import SocketIO
import click
from config import Config

db = SQLAlchemy()
bcrypt = Bcrypt()
migrate = Migrate()
socketio = SocketIO(async_mode=None)

# Imported after the extensions exist: the rooms services bind to `db` and `socketio`
from planning_poker.services.rooms.lifecycle import RoomLifecycle  # noqa: E402

rooms = RoomLifecycle()


def create_app(config_class=Config):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)
    flask_app.logger.setLevel(getattr(logging, str(flask_app.config.get('LOG_LEVEL', 'INFO')).upper(), logging.INFO))

    allowed_origins = flask_app.config.get('CORS_ORIGINS') or []

    db.init_app(flask_app)
    bcrypt.init_app(flask_app)
    migrate.init_app(flask_app, db)
    CORS(flask_app, supports_credentials=True, origins=allowed_origins)

    # Initialize Socket.IO after app is created
    socketio.init_app(flask_app, cors_allowed_origins=allowed_origins)
    rooms.init_app(flask_app, socketio)

    from planning_poker.main import main
    flask_app.register_blueprint(main)

    from planning_poker.api.rooms import rooms_bp
    flask_app.register_blueprint(rooms_bp)

    from planning_poker.socketio_events import register_socketio_handlers
    register_socketio_handlers(flask_app.config.get('SOCKETIO_NAMESPACE', '/ws'))

    @click.command('db-reset')
    def db_reset_command():
        """Drops and recreates the room tables."""
        import planning_poker.models  # noqa: F401
        with flask_app.app_context():
            db.drop_all()
            db.create_all()
            print('Database has been reset!')

    @click.command('rooms-sweep')
    def rooms_sweep_command():
        """Expires every room that has outlived ROOM_DURATION_SEC."""
        expired = rooms.sweep()
        print(f'Expired {len(expired)} room(s).')

    flask_app.cli.add_command(db_reset_command)
    flask_app.cli.add_command(rooms_sweep_command)

    if not flask_app.config.get('TESTING'):
        rooms.start_sweeper()

    return flask_app
