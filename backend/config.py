import os


def _flag(name, default):
    return os.environ.get(name, default).strip().lower() in ('1', 'true', 'yes', 'on')


class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'you-will-never-guess'
    # Browser client (index.html and scripts) served at /. The client is
    # deployed separately; leave unset to serve only the JSON welcome.
    STATIC_DIR = os.environ.get('STATIC_DIR') or None
    CORS_ORIGINS = os.environ.get('CORS_ORIGINS', '*')
    SOCKETIO_NAMESPACE = os.environ.get('SOCKETIO_NAMESPACE', '/')
    # Grid used until the DM creates a game
    DEFAULT_GRID_ROWS = int(os.environ.get('DEFAULT_GRID_ROWS', '10'))
    DEFAULT_GRID_COLS = int(os.environ.get('DEFAULT_GRID_COLS', '10'))
    MAX_GRID_SIZE = int(os.environ.get('MAX_GRID_SIZE', '100'))
    # Movement budget and regeneration sweep (seconds)
    DEFAULT_SPEED = int(os.environ.get('DEFAULT_SPEED', '3'))
    SPEED_REGEN_INTERVAL_SEC = float(os.environ.get('SPEED_REGEN_INTERVAL_SEC', '6'))
    # Attack square phases (seconds)
    WARNING_DURATION_SEC = float(os.environ.get('WARNING_DURATION_SEC', '1'))
    DEFAULT_SQUARE_DURATION_SEC = float(os.environ.get('DEFAULT_SQUARE_DURATION_SEC', '3'))
    # Uploaded token/background images (bytes of the encoded payload)
    MAX_IMAGE_BYTES = int(os.environ.get('MAX_IMAGE_BYTES', str(5 * 1024 * 1024)))
    # A second createGame hands the DM slot to the new caller when enabled
    ALLOW_DM_TAKEOVER = _flag('ALLOW_DM_TAKEOVER', 'true')
    # Longest idle sleep of the timer loop (sec)
    SCHEDULER_POLL_SEC = float(os.environ.get('SCHEDULER_POLL_SEC', '0.05'))
