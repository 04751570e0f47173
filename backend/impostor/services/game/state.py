"""Round stage bookkeeping.

One ``RoundState`` row per (room, round) holds the authoritative stage.
Transitions never check the stage they come from: each trigger computes its
target from durable evidence and upserts it. With ``STRICT_STAGE_ORDER`` the
upsert only replaces a row holding an earlier stage, so repeated and late
triggers cannot move a round backwards.
"""

from datetime import datetime, timezone
from typing import Optional

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from impostor import db
from impostor.errors import Conflict, Invalid, RoomNotFound
from impostor.models import Room, RoundState
from impostor.store import retry_transient, upsert
from .observers import publish_state_change

WAITING = 'waiting'
PROMPT = 'prompt'
ANSWERING = 'answering'
DISCUSSION_VOTING = 'discussion_voting'
RESULTS = 'results'

STAGES = (WAITING, PROMPT, ANSWERING, DISCUSSION_VOTING, RESULTS)


def stage_index(stage: str) -> int:
    try:
        return STAGES.index(stage)
    except ValueError:
        raise Invalid(f"Unknown stage: {stage}") from None


def read_state(room_id: int, round_number: int) -> Optional[RoundState]:
    return RoundState.query.filter_by(room_id=room_id, round=round_number).first()


def current_stage(room_id: int, round_number: int) -> str:
    row = read_state(room_id, round_number)
    return row.current_stage if row else WAITING


def set_stage(room_id: int, round_number: int, stage: str, force: bool = False) -> str:
    """Upsert the stage for (room, round) and return the stage now stored.

    ``force`` bypasses the ordering guard; only a round reset uses it.
    """
    index = stage_index(stage)
    strict = bool(current_app.config.get('STRICT_STAGE_ORDER', True)) and not force
    where = (lambda excluded: RoundState.stage_index < excluded.stage_index) if strict else None
    changed = upsert(
        RoundState,
        {'room_id': room_id, 'round': round_number},
        {'current_stage': stage, 'stage_index': index, 'last_updated': datetime.now(timezone.utc)},
        where=where,
    )
    stored = current_stage(room_id, round_number)
    if changed:
        current_app.logger.info(f"[stage] room={room_id} round={round_number} -> {stored}")
        publish_state_change(room_id, round_number, stored)
    elif stored != stage:
        current_app.logger.info(
            f"[stage-skip] room={room_id} round={round_number} kept {stored}, refused {stage}"
        )
    return stored


def reset_stage(room_id: int, round_number: int) -> None:
    """Write ``waiting`` for a round inside the caller's transaction.

    The caller commits and then announces the change with
    ``publish_state_change``.
    """
    upsert(
        RoundState,
        {'room_id': room_id, 'round': round_number},
        {'current_stage': WAITING, 'stage_index': stage_index(WAITING),
         'last_updated': datetime.now(timezone.utc)},
        commit=False,
    )


def advance_stage(room_id: int, round_number: int, stage: str) -> Optional[str]:
    """Transition trigger used as a side effect of answers, votes and prompt fetches.

    Storage failures are logged and swallowed; the next poll re-evaluates the
    same predicate and retries the write.
    """
    try:
        return set_stage(room_id, round_number, stage)
    except (SQLAlchemyError, Conflict) as exc:
        db.session.rollback()
        current_app.logger.error(
            f"[stage-error] room={room_id} round={round_number} target={stage} error={exc!r}"
        )
        return None


@retry_transient
def get_game_state(room_id: int, round_number: Optional[int] = None) -> dict:
    if round_number is None:
        room = db.session.get(Room, room_id)
        if not room:
            raise RoomNotFound()
        round_number = room.round_number
    row = read_state(room_id, round_number)
    if row:
        return row.to_dict()
    return {'room_id': room_id, 'round': round_number, 'current_stage': WAITING, 'last_updated': None}
