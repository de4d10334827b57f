import os
import sys
import pytest

# Ensure the backend root (containing the `arena` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from arena import EXTENSION_KEY, create_app, socketio
from arena.services.combat.scheduler import Scheduler
from arena.services.combat.sequencer import PatternSequencer
from arena.services.combat.store import SessionStore


class ManualClock:
    """Monotonic clock that only moves when a test says so."""

    def __init__(self, start=0.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds
        return self.now


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    STATIC_DIR = os.path.join(CURRENT_DIR, 'static')
    CORS_ORIGINS = '*'
    SOCKETIO_NAMESPACE = '/'
    DEFAULT_GRID_ROWS = 10
    DEFAULT_GRID_COLS = 10
    MAX_GRID_SIZE = 50
    DEFAULT_SPEED = 3
    SPEED_REGEN_INTERVAL_SEC = 6
    WARNING_DURATION_SEC = 1
    DEFAULT_SQUARE_DURATION_SEC = 3
    MAX_IMAGE_BYTES = 1024
    ALLOW_DM_TAKEOVER = True


@pytest.fixture()
def clock():
    return ManualClock()


@pytest.fixture()
def store():
    return SessionStore(rows=10, cols=10, max_grid_size=50, max_image_bytes=1024)


@pytest.fixture()
def snapshots(store):
    published = []
    store.subscribe(published.append)
    return published


@pytest.fixture()
def scheduler(clock):
    return Scheduler(clock=clock)


@pytest.fixture()
def sequencer(store, scheduler):
    return PatternSequencer(store, scheduler, warning_sec=1, default_duration=3)


@pytest.fixture()
def make_app():
    """Build an app from TestConfig with per-test overrides; stops its timer loop on teardown."""
    apps = []

    def _make(**overrides):
        config = type('OverriddenTestConfig', (TestConfig,), overrides)
        application = create_app(config)
        apps.append(application)
        return application

    yield _make
    for application in apps:
        application.extensions[EXTENSION_KEY]['scheduler'].stop()


@pytest.fixture()
def flask_app(make_app, clock):
    application = make_app(SCHEDULER_CLOCK=clock)
    with application.app_context():
        yield application


@pytest.fixture()
def arena(flask_app):
    return flask_app.extensions[EXTENSION_KEY]


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def connect(flask_app):
    """Factory for Socket.IO test clients; all are disconnected on teardown."""
    clients = []

    def _connect():
        test_client = socketio.test_client(
            flask_app,
            flask_test_client=flask_app.test_client(),
            namespace='/'
        )
        clients.append(test_client)
        return test_client

    yield _connect
    for test_client in clients:
        try:
            if test_client.is_connected('/'):
                test_client.disconnect(namespace='/')
        except Exception:
            pass


@pytest.fixture()
def sio_client(connect):
    return connect()
