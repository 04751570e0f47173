"""Room lifecycle: create, join, start the game, start new rounds.

Round numbers only move forward through compare-and-set updates, so
duplicate start requests from several clients advance a room at most once.
"""

from typing import List, Optional, Tuple

from flask import current_app
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from impostor import db
from impostor.errors import (
    CodeGenerationExhausted,
    Forbidden,
    InsufficientPlayers,
    PlayerNotFound,
    RoomFull,
    RoomNotFound,
)
from impostor.models import Answer, Player, Room, RoundPrompt, Vote, generate_room_code
from impostor.store import retry_transient
from .observers import publish_players_change, publish_state_change
from .prompts import select_prompt
from .roles import assign_imposter
from .state import WAITING, reset_stage


def players_in_join_order(room_id: int) -> List[Player]:
    return (
        Player.query.filter_by(room_id=room_id)
        .order_by(Player.joined_at.asc(), Player.id.asc())
        .all()
    )


def list_players(room_id: int) -> List[dict]:
    return [p.to_dict() for p in players_in_join_order(room_id)]


def require_member(player_id: int, room_id: int) -> Tuple[Player, Room]:
    """Load a player and their room. A player whose room is gone reads as RoomNotFound."""
    player = db.session.get(Player, player_id)
    if not player:
        raise PlayerNotFound()
    if player.room_id != room_id:
        raise Forbidden()
    room = db.session.get(Room, room_id)
    if not room:
        raise RoomNotFound()
    return player, room


def _room_by_code(code: str, active_only: bool = False) -> Optional[Room]:
    if not code:
        return None
    query = Room.query.filter_by(code=code.strip().upper())
    if active_only:
        query = query.filter_by(is_active=True)
    return query.first()


def create_room(host_name: str) -> dict:
    cfg = current_app.config
    attempts = int(cfg.get('ROOM_CODE_ATTEMPTS', 5))
    length = int(cfg.get('ROOM_CODE_LENGTH', 6))

    room = None
    for attempt in range(1, attempts + 1):
        code = generate_room_code(length)
        if Room.query.filter_by(code=code).first():
            current_app.logger.info(f"[create_room] code {code} taken (attempt {attempt}/{attempts})")
            continue
        room = Room(code=code, round_number=0, is_active=True)
        db.session.add(room)
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            room = None
            current_app.logger.info(f"[create_room] code {code} raced (attempt {attempt}/{attempts})")
            continue
        break
    if room is None:
        raise CodeGenerationExhausted()

    room_id, room_code = room.id, room.code
    try:
        host = Player(name=host_name, room_id=room_id, is_host=True)
        db.session.add(host)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.error(f"[create_room] host creation failed, removing room={room_id}")
        Room.query.filter_by(id=room_id).delete()
        db.session.commit()
        raise

    current_app.logger.info(f"[create_room] room={room_id} code={room_code} host={host.id}")
    return {'room_id': room_id, 'code': room_code, 'player_id': host.id}


@retry_transient
def get_room(code: str) -> dict:
    room = _room_by_code(code)
    if not room:
        raise RoomNotFound()
    return room.to_dict()


def join_room(player_name: str, code: str) -> dict:
    room = _room_by_code(code, active_only=True)
    if not room:
        raise RoomNotFound()
    max_players = int(current_app.config.get('MAX_PLAYERS', 10))
    if Player.query.filter_by(room_id=room.id).count() >= max_players:
        raise RoomFull()

    room_id, room_code = room.id, room.code
    player = Player(name=player_name, room_id=room_id)
    db.session.add(player)
    db.session.commit()
    current_app.logger.info(f"[join_room] room={room_id} player={player.id} name={player_name!r}")
    publish_players_change(room_id)
    return {'room_id': room_id, 'code': room_code, 'player_id': player.id}


def _require_enough_players(room_id: int) -> List[Player]:
    players = players_in_join_order(room_id)
    min_players = max(2, int(current_app.config.get('MIN_PLAYERS', 2)))
    if len(players) < min_players:
        raise InsufficientPlayers(f'Not enough players to start the game (minimum {min_players})')
    return players


def _claim_round(room_id: int, expected: int) -> bool:
    """Move the room from round ``expected`` to ``expected + 1`` unless someone already did.

    Not committed here; the round setup commits with it.
    """
    claimed = Room.query.filter_by(id=room_id, round_number=expected).update(
        {'round_number': expected + 1}
    )
    return claimed == 1


def purge_round_data(room_id: int) -> None:
    """Drop answers, votes and prompt selections for every round of the room. Does not commit."""
    Vote.query.filter_by(room_id=room_id).delete()
    Answer.query.filter_by(room_id=room_id).delete()
    RoundPrompt.query.filter_by(room_id=room_id).delete()
    current_app.logger.info(f"[new_round] room={room_id} clearing answers, votes and prompt selections")


def _open_round(room_id: int, current: int, players: List[Player], purge: bool = False) -> bool:
    """Claim round ``current + 1`` and set it up in a single transaction.

    Other clients see the new round number only together with its cleared
    data, its impostor and its ``waiting`` stage. The prompt is chosen after
    the commit; selection is first-writer-wins, so an early prompt fetch may
    make it instead.
    """
    new_round = current + 1
    try:
        if not _claim_round(room_id, current):
            db.session.rollback()
            return False
        if purge:
            purge_round_data(room_id)
        reset_stage(room_id, new_round)
        assign_imposter(players, commit=False)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        raise
    publish_state_change(room_id, new_round, WAITING)
    select_prompt(room_id, new_round)
    return True


def start_game(room_code: str) -> dict:
    room = _room_by_code(room_code)
    if not room:
        raise RoomNotFound()
    room_id, code = room.id, room.code
    if room.round_number > 0:
        current_app.logger.info(f"[start_game] room={room_id} already started round={room.round_number}")
        return {'room_id': room_id, 'code': code, 'round': room.round_number, 'started': False}

    players = _require_enough_players(room_id)
    if not _open_round(room_id, 0, players):
        room = db.session.get(Room, room_id)
        return {'room_id': room_id, 'code': code, 'round': room.round_number, 'started': False}

    current_app.logger.info(f"[start_game] room={room_id} started with {len(players)} players")
    return {'room_id': room_id, 'code': code, 'round': 1, 'started': True}


def start_new_round(room_id: int, expected_round: Optional[int] = None) -> dict:
    room = db.session.get(Room, room_id)
    if not room:
        raise RoomNotFound()
    current = room.round_number
    if expected_round is not None and current != expected_round:
        current_app.logger.info(
            f"[new_round] room={room_id} expected round {expected_round}, already at {current}"
        )
        return {'room_id': room_id, 'round': current, 'started': False}

    players = _require_enough_players(room_id)
    if not _open_round(room_id, current, players, purge=True):
        room = db.session.get(Room, room_id)
        return {'room_id': room_id, 'round': room.round_number, 'started': False}

    current_app.logger.info(f"[new_round] room={room_id} round {current} -> {current + 1}")
    return {'room_id': room_id, 'round': current + 1, 'started': True}
