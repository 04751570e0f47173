import os
import sys
import pytest

# Ensure the backend root (containing the `impostor` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from impostor import create_app, db, socketio


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    MIN_PLAYERS = 2
    MAX_PLAYERS = 10
    ROOM_CODE_LENGTH = 6
    ROOM_CODE_ATTEMPTS = 5
    STRICT_STAGE_ORDER = True
    STATE_POLL_INTERVAL_SEC = 0.01
    STORE_TIMEOUT_SEC = 10
    TRANSIENT_RETRY_ATTEMPTS = 3
    TRANSIENT_RETRY_BACKOFF_SEC = 0


@pytest.fixture()
def flask_app():
    application = create_app(TestConfig)
    with application.app_context():
        # Ensure models are imported so tables are created
        import impostor.models  # noqa: F401
        db.create_all()
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
def prompts(flask_app):
    from impostor.models import Prompt
    from impostor.services.game.prompts import seed_prompts
    seed_prompts()
    return Prompt.query.order_by(Prompt.id.asc()).all()


@pytest.fixture()
def make_room(flask_app):
    """Create a room hosted by the first name and joined by the rest.

    Returns (room_id, code, {name: player_id}).
    """
    from impostor.services.game import rooms

    def _make(*names):
        created = rooms.create_room(names[0])
        ids = {names[0]: created['player_id']}
        for name in names[1:]:
            ids[name] = rooms.join_room(name, created['code'])['player_id']
        return created['room_id'], created['code'], ids
    return _make


@pytest.fixture()
def started_room(make_room, prompts):
    """Alice, Bob and Carol in a room that has started round 1."""
    from impostor.services.game import rooms

    room_id, code, ids = make_room('Alice', 'Bob', 'Carol')
    rooms.start_game(code)
    return room_id, code, ids
