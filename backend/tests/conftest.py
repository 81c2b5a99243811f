import os
import sys
import pytest

# Ensure the backend root (containing the `planning_poker` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from planning_poker import create_app, db, socketio, rooms

from helpers import FakeScheduler


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SESSION_COOKIE_SECURE = False
    PERMANENT_SESSION_LIFETIME = 600
    BCRYPT_LOG_ROUNDS = 4
    LOG_LEVEL = 'DEBUG'
    CORS_ORIGINS = ['http://localhost:5173']
    SOCKETIO_NAMESPACE = '/ws'
    ROOM_MAX_MEMBERS = 10
    MEMBER_NAME_MAX_LENGTH = 32
    ROOM_DURATION_SEC = 600
    DISCONNECT_GRACE_SEC = 30
    CLEANUP_INTERVAL_SEC = 60


@pytest.fixture()
def flask_app():
    application = create_app(TestConfig)
    with application.app_context():
        # Ensure models are imported so tables are created
        import planning_poker.models  # noqa: F401
        db.create_all()
        yield application
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def file_app(tmp_path):
    """App backed by an on-disk database so worker threads get their own connections."""

    class FileConfig(TestConfig):
        SQLALCHEMY_DATABASE_URI = f"sqlite:///{tmp_path / 'rooms.db'}"

    application = create_app(FileConfig)
    with application.app_context():
        import planning_poker.models  # noqa: F401
        db.create_all()
        yield application
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def scheduler(flask_app):
    fake = FakeScheduler()
    rooms.timers.spawn = fake.spawn
    rooms.timers.sleep = lambda seconds: None
    return fake


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def connect(flask_app, scheduler):
    """Open a Socket.IO connection that shares cookies with a Flask test client."""
    opened = []

    def _connect(http_client=None):
        http_client = http_client or flask_app.test_client()
        sio = socketio.test_client(flask_app, flask_test_client=http_client, namespace='/ws')
        sio.get_received('/ws')  # drop the 'connected' greeting
        opened.append(sio)
        return sio

    yield _connect
    for sio in opened:
        try:
            if sio.is_connected('/ws'):
                sio.disconnect(namespace='/ws')
        except Exception:
            pass


@pytest.fixture()
def make_room(client):
    """Register a room as admin through the HTTP surface."""

    def _make_room(name='Ada', task_title='Login page', task_description='OAuth flow', http_client=None):
        http_client = http_client or client
        res = http_client.post('/register', json={
            'name': name,
            'task_title': task_title,
            'task_description': task_description,
        })
        assert res.status_code == 201
        return res.get_json()

    return _make_room

