import random
from datetime import datetime, timezone
from typing import Optional, Tuple

from flask import current_app

from impostor import db
from impostor.errors import Invalid, RoomNotFound
from impostor.models import Answer, Player, Room
from impostor.store import retry_transient, upsert
from .rooms import require_member
from .state import DISCUSSION_VOTING, advance_stage, current_stage


def answer_progress(room_id: int, round_number: int) -> Tuple[int, int]:
    """Fresh (answers, players) counts. Never cache these; other players write concurrently."""
    answered = Answer.query.filter_by(room_id=room_id, round=round_number).count()
    total = Player.query.filter_by(room_id=room_id).count()
    return answered, total


def _open_voting_if_complete(room_id: int, round_number: int) -> Tuple[bool, int, int]:
    answered, total = answer_progress(room_id, round_number)
    all_submitted = total > 0 and answered == total
    if all_submitted and answered >= 2:
        advance_stage(room_id, round_number, DISCUSSION_VOTING)
    return all_submitted, answered, total


@retry_transient
def submit_answer(player_id: int, room_id: int, prompt_id: Optional[int], text: str) -> dict:
    if not text or not str(text).strip():
        raise Invalid('Answer text is required')
    player, room = require_member(player_id, room_id)
    if room.round_number < 1:
        raise Invalid('The game has not started yet')
    round_number = room.round_number

    upsert(
        Answer,
        {'player_id': player.id, 'room_id': room.id, 'round': round_number},
        {'prompt_id': prompt_id, 'answer': str(text).strip(), 'updated_at': datetime.now(timezone.utc)},
    )
    answer_id = db.session.query(Answer.id).filter_by(
        player_id=player_id, room_id=room_id, round=round_number
    ).scalar()

    all_submitted, answered, total = _open_voting_if_complete(room_id, round_number)
    current_app.logger.info(
        f"[answer] room={room_id} round={round_number} player={player_id} submitted={answered}/{total}"
    )
    return {
        'answer_id': answer_id,
        'round': round_number,
        'all_submitted': all_submitted,
        'submitted': answered,
        'total': total,
    }


@retry_transient
def check_answers(room_id: int, round_number: Optional[int] = None) -> dict:
    room = db.session.get(Room, room_id)
    if not room:
        raise RoomNotFound()
    if round_number is None:
        round_number = room.round_number

    answers = (
        Answer.query.filter_by(room_id=room_id, round=round_number)
        .order_by(Answer.id.asc())
        .all()
    )
    answer_list = [a.to_dict() for a in answers]
    all_submitted, answered, total = _open_voting_if_complete(room_id, round_number)
    return {
        'round': round_number,
        'answers': answer_list,
        'all_submitted': all_submitted,
        'submitted': answered,
        'total': total,
        'current_stage': current_stage(room_id, round_number),
    }


@retry_transient
def get_answers(room_id: int, rng=random) -> dict:
    """Anonymised answers for the current round, in random order."""
    room = db.session.get(Room, room_id)
    if not room:
        raise RoomNotFound()
    round_number = room.round_number
    answers = [
        {'id': a.id, 'answer': a.answer}
        for a in Answer.query.filter_by(room_id=room_id, round=round_number).all()
    ]
    rng.shuffle(answers)
    _, total = answer_progress(room_id, round_number)
    return {
        'round': round_number,
        'answers': answers,
        'waiting_for_answers': total > len(answers),
    }
