import pytest

from app import create_app
from models import db
from directory import UserDirectory
from rooms import RoomRegistry
from helpers import TEST_CONFIG


@pytest.fixture
def app():
    app = create_app(dict(TEST_CONFIG))
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def ctx(app):
    with app.app_context():
        yield


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def gateway(app):
    return app.extensions['chat_gateway']


@pytest.fixture
def make_user(app):
    def _make(name='Alice', email=None):
        with app.app_context():
            user = UserDirectory().create(name, email or f"{name.lower()}@example.com")
            return user.id
    return _make


@pytest.fixture
def make_room(app):
    def _make(name, member_ids=()):
        with app.app_context():
            return RoomRegistry().create_room(name, member_ids=list(member_ids)).id
    return _make


@pytest.fixture
def connect(app):
    """Open Socket.IO test clients bound to users; all are closed afterwards."""
    socketio = app.extensions['socketio']
    clients = []

    def _connect(user_id=None, drain=True, **kwargs):
        if user_id is not None:
            kwargs.setdefault('auth', {'userId': user_id})
        sio_client = socketio.test_client(app, **kwargs)
        clients.append(sio_client)
        if drain and sio_client.is_connected():
            sio_client.get_received()
        return sio_client

    yield _connect

    for sio_client in clients:
        if sio_client.is_connected():
            sio_client.disconnect()
