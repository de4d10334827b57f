import os

from flask import Blueprint, abort, current_app, jsonify, send_from_directory

main = Blueprint('main', __name__)


def _static_dir():
    """The configured client directory, or None when no client is deployed."""
    static_dir = current_app.config.get('STATIC_DIR')
    if static_dir and os.path.isdir(static_dir):
        return static_dir
    return None


@main.route('/')
def index():
    static_dir = _static_dir()
    if static_dir and os.path.isfile(os.path.join(static_dir, 'index.html')):
        return send_from_directory(static_dir, 'index.html')
    return jsonify({'message': 'Welcome to the DM Arena server!'})


@main.route('/<path:filename>')
def static_asset(filename):
    static_dir = _static_dir()
    if static_dir is None:
        abort(404)
    return send_from_directory(static_dir, filename)
