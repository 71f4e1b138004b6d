import os
import random
import sys
import pytest

# Ensure the backend root (containing the `phasesort` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from phasesort import create_app, db, socketio
from phasesort.services.rooms.protocol import Dispatcher


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    CORS_ORIGINS = ['http://localhost:5173']
    BCRYPT_LOG_ROUNDS = 4
    MAX_FAILED_ATTEMPTS = 5
    LOCKOUT_SEC = 60
    LEADERBOARD_SIZE = 20
    BOOST_TIME_MS = 10000


class FakeClock:
    def __init__(self, start=1_700_000_000_000):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, ms):
        self.now += ms


class Outbox:
    """Records every envelope the dispatcher sends."""

    def __init__(self):
        self.sent = []
        self.failing = set()

    def send(self, sid, envelope):
        if sid in self.failing:
            raise ConnectionError(f'{sid} is gone')
        self.sent.append((sid, envelope))

    def to(self, sid, kind=None):
        return [e for s, e in self.sent if s == sid and (kind is None or e['type'] == kind)]

    def kinds(self, sid):
        return [e['type'] for e in self.to(sid)]

    def clear(self):
        self.sent.clear()


class Harness:
    """Drives a dispatcher directly, one fake connection per sid."""

    def __init__(self, dispatcher, outbox, clock):
        self.dispatcher = dispatcher
        self.outbox = outbox
        self.clock = clock

    @property
    def store(self):
        return self.dispatcher.store

    def send(self, sid, kind, **payload):
        session = self.dispatcher.directory.get(sid) or self.dispatcher.connect(sid)
        self.dispatcher.dispatch(session, {'type': kind, 'payload': payload})

    def create_room(self, sid='gm', name='Ada', config=None, **extra):
        self.send(sid, 'host:create', name=name, config=config or {}, **extra)
        created = self.outbox.to(sid, 'host:created')[-1]['payload']
        return self.store.get(created['code']), created

    def join(self, room, sid, identity=None, name=None, pin=None, **extra):
        identity = identity or f'id-{sid}'
        self.send(sid, 'player:join', code=room.code, identity=identity, name=name or sid.title(),
                  pin=room.pin if pin is None else pin, **extra)
        return room.players.get(identity)

    def errors(self, sid):
        return [e['message'] for e in self.outbox.to(sid, 'error')]


@pytest.fixture()
def flask_app():
    application = create_app(TestConfig)
    with application.app_context():
        yield application
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def sio_client(flask_app):
    test_client = socketio.test_client(
        flask_app,
        flask_test_client=flask_app.test_client(),
        namespace='/ws'
    )
    yield test_client
    try:
        test_client.disconnect(namespace='/ws')
    except Exception:
        pass


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def outbox():
    return Outbox()


@pytest.fixture()
def harness(flask_app, clock, outbox):
    dispatcher = Dispatcher.from_config(flask_app.config, outbox.send, clock=clock, rng=random.Random(7))
    return Harness(dispatcher, outbox, clock)
