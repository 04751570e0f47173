"""Game error taxonomy.

Every error a game operation can surface to a client derives from
``GameError``. The HTTP and Socket.IO adapters turn these into
``{'error': ..., 'code': ...}`` payloads using ``status_code``.
"""


class GameError(Exception):
    status_code = 400
    code = 'invalid'
    default_message = 'Invalid request'
    retryable = False

    def __init__(self, message=None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message

    def to_dict(self):
        payload = {'error': self.message, 'code': self.code}
        if self.retryable:
            payload['retryable'] = True
        return payload


class Invalid(GameError):
    pass


class NotFound(GameError):
    status_code = 404
    code = 'not_found'
    default_message = 'Not found'


class RoomNotFound(NotFound):
    code = 'room_not_found'
    default_message = 'Room not found'


class PlayerNotFound(NotFound):
    code = 'player_not_found'
    default_message = 'Player not found'


class Forbidden(GameError):
    status_code = 403
    code = 'forbidden'
    default_message = 'Player does not belong to this room'


class Conflict(GameError):
    """Duplicate key on insert. Keyed writes absorb this; it should not reach clients."""
    status_code = 409
    code = 'conflict'
    default_message = 'Already exists'


class InsufficientPlayers(GameError):
    code = 'insufficient_players'
    default_message = 'Not enough players to start the game (minimum 2)'


class RoomFull(GameError):
    status_code = 409
    code = 'room_full'
    default_message = 'Game room is full'


class CodeGenerationExhausted(GameError):
    status_code = 503
    code = 'code_generation_exhausted'
    default_message = 'Could not generate a unique room code, please retry'
    retryable = True


class Transient(GameError):
    status_code = 503
    code = 'transient'
    default_message = 'Storage temporarily unavailable, please retry'
    retryable = True
