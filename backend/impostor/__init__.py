from flask import Flask, jsonify
from flask_sqlalchemy import SQLAlchemy
from flask_cors import CORS
from flask_migrate import Migrate
from flask_socketio import SocketIO
from werkzeug.exceptions import HTTPException
import click
from config import Config

db = SQLAlchemy()
migrate = Migrate()
allowed_origins = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
    "http://localhost:5173",
    "http://127.0.0.1:5173",
]
socketio = SocketIO(cors_allowed_origins=allowed_origins, async_mode=None)


def _engine_options(uri, timeout):
    """Bound every store round-trip by the configured timeout."""
    if uri.startswith('sqlite'):
        return {'connect_args': {'timeout': timeout}}
    if uri.startswith('postgresql'):
        return {
            'pool_timeout': timeout,
            'connect_args': {
                'connect_timeout': int(timeout),
                'options': f'-c statement_timeout={int(timeout * 1000)}',
            },
        }
    return {'pool_timeout': timeout}


def create_app(config_class=Config):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)
    flask_app.config.setdefault(
        'SQLALCHEMY_ENGINE_OPTIONS',
        _engine_options(flask_app.config['SQLALCHEMY_DATABASE_URI'],
                        float(flask_app.config.get('STORE_TIMEOUT_SEC', 10))),
    )

    db.init_app(flask_app)
    migrate.init_app(flask_app, db)
    CORS(flask_app, supports_credentials=True, origins=allowed_origins)

    # Initialize Socket.IO after app is created
    socketio.init_app(flask_app, cors_allowed_origins=allowed_origins)

    from impostor.main import main
    flask_app.register_blueprint(main)

    from impostor.api.rooms import rooms
    from impostor.api.players import players
    flask_app.register_blueprint(rooms, url_prefix='/api/rooms')
    flask_app.register_blueprint(players, url_prefix='/api/players')

    from impostor.socketio_events import register_socketio_handlers
    register_socketio_handlers(testing=flask_app.config.get('TESTING', False))

    from impostor.errors import GameError

    @flask_app.errorhandler(GameError)
    def handle_game_error(exc):
        flask_app.logger.info(f"[error] {exc.code}: {exc.message}")
        return jsonify(exc.to_dict()), exc.status_code

    @flask_app.errorhandler(Exception)
    def handle_unexpected_error(exc):
        if isinstance(exc, HTTPException):
            return jsonify({'error': exc.description}), exc.code
        flask_app.logger.exception(f"[error] unhandled: {exc!r}")
        db.session.rollback()
        return jsonify({'error': 'Something went wrong, please retry', 'retryable': True}), 500

    @click.command('db-reset')
    def db_reset_command():
        """Drops, recreates, and seeds the prompt table."""
        from impostor.services.game.prompts import seed_prompts
        with flask_app.app_context():
            db.drop_all()
            db.create_all()
            count = seed_prompts()
            print(f'Database has been reset and seeded with {count} prompts!')

    flask_app.cli.add_command(db_reset_command)

    return flask_app
