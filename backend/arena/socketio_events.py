import functools
from typing import Any, Callable, Dict, Optional

from flask import current_app, request
from flask_socketio import emit

from arena import EXTENSION_KEY, socketio
from arena.services.combat.errors import CommandRejected, MalformedInput


def _get_sid() -> str:
    # type: ignore: request.sid exists in Socket.IO context
    return request.sid  # type: ignore


def _arena() -> Dict[str, Any]:
    return current_app.extensions[EXTENSION_KEY]


def _fields(data: Any, *names: str) -> Dict[str, Any]:
    if not isinstance(data, dict):
        raise MalformedInput(f"expected an object with {', '.join(names)}")
    return {name: data.get(name) for name in names}


def _unwrap(data: Any, key: str) -> Any:
    """Accept either a bare value or ``{key: value}``."""
    if isinstance(data, dict):
        return data.get(key)
    return data


def command(event: str) -> Callable:
    """Wrap a handler so rejections become an ack instead of an error.

    The wrapped handler receives ``(sid, data)``. Its return value (a dict
    or None) is merged into the ``{'ok': True}`` acknowledgement.
    """
    def decorator(fn: Callable[[str, Any], Optional[dict]]):
        @functools.wraps(fn)
        def wrapper(data=None):
            sid = _get_sid()
            try:
                extra = fn(sid, data)
            except CommandRejected as exc:
                current_app.logger.warning(f"[reject] event={event} sid={sid} kind={exc.kind} reason={exc.message}")
                return exc.to_ack()
            ack = {'ok': True}
            if extra:
                ack.update(extra)
            return ack
        return wrapper
    return decorator


def handle_connect(auth=None):
    # Late viewers render straight away instead of waiting for the next mutation
    emit('gameState', _arena()['store'].snapshot())


def handle_disconnect(reason=None):
    sid = _get_sid()
    store = _arena()['store']
    current_app.logger.info(f"[disconnect] sid={sid} reason={reason}")
    store.remove_player(sid)
    store.release_dm(sid)


@command('createGame')
def handle_create_game(sid, data):
    store = _arena()['store']
    f = _fields(data, 'rows', 'cols')

    def _announce(previous):
        if previous == sid:
            return
        if previous:
            emit('dmStatus', False, to=previous)
        emit('dmStatus', True)

    previous = store.create_session(f['rows'], f['cols'], sid, on_assigned=_announce)
    return {'dm': sid, 'previousDm': previous}


@command('joinGame')
def handle_join_game(sid, data):
    f = _fields(data, 'name')
    player = _arena()['store'].add_player(sid, f['name'])
    emit('playerId', sid)
    return {'playerId': player.id, 'color': player.color}


@command('movePlayer')
def handle_move_player(sid, data):
    f = _fields(data, 'row', 'col')
    player = _arena()['store'].move_player(sid, f['row'], f['col'])
    return {'speedRemaining': player.speed_remaining}


@command('updateTokenImage')
def handle_update_token_image(sid, data):
    _arena()['store'].set_token_image(sid, _unwrap(data, 'imageData'))


@command('updateSpeed')
def handle_update_speed(sid, data):
    f = _fields(data, 'playerId', 'speed')
    _arena()['store'].set_speed(sid, f['playerId'], f['speed'])


@command('updateGridSize')
def handle_update_grid_size(sid, data):
    f = _fields(data, 'rows', 'cols')
    _arena()['store'].resize_grid(sid, f['rows'], f['cols'])


@command('updateBackground')
def handle_update_background(sid, data):
    _arena()['store'].set_background(sid, _unwrap(data, 'imageData'))


@command('savePattern')
def handle_save_pattern(sid, data):
    arena = _arena()
    arena['store'].require_dm(sid, 'save patterns')
    pattern = arena['sequencer'].parse(data)
    index = arena['store'].save_pattern(sid, pattern)
    return {'index': index}


@command('launchPattern')
def handle_launch_pattern(sid, data):
    arena = _arena()
    store, sequencer = arena['store'], arena['sequencer']
    store.require_dm(sid, 'launch patterns')
    if isinstance(data, dict) and 'squares' not in data and 'index' in data:
        pattern = store.saved_pattern(data['index'])
    else:
        pattern = sequencer.parse(data)
    activations = sequencer.launch(sid, pattern)
    return {'instances': [a.id for a in activations]}


@command('deletePattern')
def handle_delete_pattern(sid, data):
    _arena()['store'].delete_pattern(sid, _unwrap(data, 'index'))


EVENT_HANDLERS = {
    'createGame': handle_create_game,
    'joinGame': handle_join_game,
    'movePlayer': handle_move_player,
    'updateTokenImage': handle_update_token_image,
    'updateSpeed': handle_update_speed,
    'updateGridSize': handle_update_grid_size,
    'updateBackground': handle_update_background,
    'savePattern': handle_save_pattern,
    'launchPattern': handle_launch_pattern,
    'deletePattern': handle_delete_pattern,
}


def register_socketio_handlers(namespace: str = '/') -> None:
    """Register the game protocol on ``namespace``."""
    socketio.on_event('connect', handle_connect, namespace=namespace)
    socketio.on_event('disconnect', handle_disconnect, namespace=namespace)
    for event, handler in EVENT_HANDLERS.items():
        socketio.on_event(event, handler, namespace=namespace)
