import time

from flask import Flask
from flask_cors import CORS
from flask_socketio import SocketIO
from config import Config

socketio = SocketIO(async_mode=None)

EXTENSION_KEY = 'arena'


def _origins(value):
    if not value or value == '*':
        return '*'
    return [o.strip() for o in value.split(',') if o.strip()]


def create_app(config_class=Config):
    flask_app = Flask(__name__, static_folder=None)
    flask_app.config.from_object(config_class)
    cfg = flask_app.config

    allowed_origins = _origins(cfg.get('CORS_ORIGINS', '*'))
    CORS(flask_app, origins=allowed_origins)
    socketio.init_app(
        flask_app,
        cors_allowed_origins=allowed_origins,
        max_http_buffer_size=int(cfg.get('MAX_IMAGE_BYTES', 5 * 1024 * 1024)) + 64 * 1024,
    )

    # One session per app; handlers reach it through app.extensions
    from arena.services.combat.scheduler import Scheduler
    from arena.services.combat.sequencer import PatternSequencer
    from arena.services.combat.store import SessionStore

    store = SessionStore(
        rows=int(cfg.get('DEFAULT_GRID_ROWS', 10)),
        cols=int(cfg.get('DEFAULT_GRID_COLS', 10)),
        default_speed=int(cfg.get('DEFAULT_SPEED', 3)),
        max_grid_size=int(cfg.get('MAX_GRID_SIZE', 100)),
        max_image_bytes=int(cfg.get('MAX_IMAGE_BYTES', 5 * 1024 * 1024)),
        allow_dm_takeover=bool(cfg.get('ALLOW_DM_TAKEOVER', True)),
        logger=flask_app.logger,
    )
    scheduler = Scheduler(
        clock=cfg.get('SCHEDULER_CLOCK') or time.monotonic,
        poll_interval=float(cfg.get('SCHEDULER_POLL_SEC', 0.05)),
        logger=flask_app.logger,
    )
    sequencer = PatternSequencer(
        store,
        scheduler,
        warning_sec=float(cfg.get('WARNING_DURATION_SEC', 1)),
        default_duration=float(cfg.get('DEFAULT_SQUARE_DURATION_SEC', 3)),
        logger=flask_app.logger,
    )
    flask_app.extensions[EXTENSION_KEY] = {
        'store': store,
        'scheduler': scheduler,
        'sequencer': sequencer,
    }

    namespace = cfg.get('SOCKETIO_NAMESPACE', '/')

    def _broadcast(snapshot):
        socketio.emit('gameState', snapshot, namespace=namespace)

    store.subscribe(_broadcast)
    scheduler.call_every(float(cfg.get('SPEED_REGEN_INTERVAL_SEC', 6)), store.regenerate_speed)

    from arena.main import main
    flask_app.register_blueprint(main)

    from arena.socketio_events import register_socketio_handlers
    register_socketio_handlers(namespace=namespace)

    # Timers run on one background task; tests drive the scheduler by hand
    if not cfg.get('TESTING') or cfg.get('ENABLE_SCHEDULER_IN_TESTS'):
        socketio.start_background_task(scheduler.run_forever, socketio.sleep)
        flask_app.logger.info(f"[timer-set] regen every {cfg.get('SPEED_REGEN_INTERVAL_SEC')}s")

    return flask_app
