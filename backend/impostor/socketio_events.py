from flask_socketio import join_room, leave_room, emit
from impostor import socketio
from impostor.errors import GameError
from impostor.services.game.observers import room_channel
from impostor.services.game.state import get_game_state


def _room_id(data):
    try:
        return int((data or {}).get('room_id'))
    except (TypeError, ValueError):
        return None


def handle_connect():
    emit('connected', {'message': 'Connected to /ws'})


def handle_join_room(data):
    room_id = _room_id(data)
    if room_id is None:
        emit('error', {'message': 'room_id is required'})
        return
    channel = room_channel(room_id)
    join_room(channel)
    emit('joined', {'room': channel})


def handle_leave_room(data):
    room_id = _room_id(data)
    if room_id is None:
        emit('error', {'message': 'room_id is required'})
        return
    channel = room_channel(room_id)
    leave_room(channel)
    emit('left', {'room': channel})


def handle_get_state(data):
    """Poll path over the socket: same read the push path announces."""
    room_id = _room_id(data)
    if room_id is None:
        emit('error', {'message': 'room_id is required'})
        return
    round_number = (data or {}).get('round')
    try:
        state = get_game_state(room_id, int(round_number) if round_number is not None else None)
    except GameError as exc:
        emit('error', {'message': exc.message, 'code': exc.code})
        return
    emit('state_update', state)


def handle_ping(data=None):
    emit('pong', data or {})


def register_socketio_handlers(testing: bool = False) -> None:
    """Register Socket.IO event handlers.

    Always register on namespace '/ws'. When testing is True, also mirror
    handlers on the default namespace '/' to accommodate the test harness.
    """
    handlers = {
        'connect': handle_connect,
        'join_room': handle_join_room,
        'leave_room': handle_leave_room,
        'get_state': handle_get_state,
        'ping': handle_ping,
    }
    namespaces = ['/ws', '/'] if testing else ['/ws']
    for namespace in namespaces:
        for event, handler in handlers.items():
            socketio.on_event(event, handler, namespace=namespace)
