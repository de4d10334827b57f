import click

from arena import EXTENSION_KEY, create_app, socketio


@click.command()
@click.option('--host', default='0.0.0.0', show_default=True, help='Interface to bind.')
@click.option('--port', default=3001, show_default=True, type=int, envvar='PORT', help='Port to listen on.')
@click.option('--debug', is_flag=True, help='Enable Flask debug mode.')
def serve(host, port, debug):
    """Run the DM Arena game server."""
    app = create_app()
    # Use SocketIO server to enable websockets in dev
    try:
        socketio.run(app, host=host, port=port, debug=debug, use_reloader=False, allow_unsafe_werkzeug=True)
    finally:
        app.extensions[EXTENSION_KEY]['scheduler'].stop()


if __name__ == '__main__':
    serve()
