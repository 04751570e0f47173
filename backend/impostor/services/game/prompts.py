from typing import List, Optional

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from impostor import db
from impostor.errors import Conflict, Forbidden, Invalid, PlayerNotFound, RoomNotFound
from impostor.models import Answer, Player, Prompt, Room, RoundPrompt
from impostor.store import insert_or_ignore, retry_transient, upsert
from .state import ANSWERING, PROMPT, WAITING, advance_stage, current_stage

FALLBACK_REAL_PROMPT = 'Draw a smiling face'
FALLBACK_IMPOSTER_PROMPT = 'Draw a frowning face'

DEFAULT_PROMPTS = [
    ('Name a food you would bring to a picnic', 'Name a food you would bring to a wedding'),
    ('Describe your ideal weekend', 'Describe your worst Monday'),
    ('Name something you find at the beach', 'Name something you find in a desert'),
    ('What would you take to a desert island?', 'What would you take to a space station?'),
    ('Name a famous movie villain', 'Name a famous movie hero'),
    ('Describe a winter holiday', 'Describe a summer holiday'),
    ('Name an animal you would keep as a pet', 'Name an animal you would see at the zoo'),
    ('What is the best topping for pizza?', 'What is the best topping for ice cream?'),
]


def fallback_prompt() -> Prompt:
    """Built-in prompt pair used when no reference prompts exist. Never persisted."""
    return Prompt(id=None, real_prompt=FALLBACK_REAL_PROMPT, imposter_prompt=FALLBACK_IMPOSTER_PROMPT)


def stable_hash(value: str) -> int:
    """32-bit polynomial rolling hash (h * 31 + c), made non-negative."""
    h = 0
    for ch in value:
        h = ((h << 5) - h + ord(ch)) & 0xFFFFFFFF
    if h & 0x80000000:
        h -= 0x100000000
    return abs(h)


def pick_index(room_id, round_number: int, count: int) -> int:
    return stable_hash(f"{room_id}_{round_number}") % count


def available_prompts() -> List[Prompt]:
    return Prompt.query.order_by(Prompt.id.asc()).all()


def seed_prompts(pairs=None) -> int:
    """Insert prompt pairs that are not already present. Returns the number added."""
    existing = {(p.real_prompt, p.imposter_prompt) for p in Prompt.query.all()}
    added = 0
    for real, imposter in (pairs or DEFAULT_PROMPTS):
        if (real, imposter) in existing:
            continue
        db.session.add(Prompt(real_prompt=real, imposter_prompt=imposter))
        added += 1
    db.session.commit()
    return added


def stored_selection(room_id: int, round_number: int) -> Optional[int]:
    row = RoundPrompt.query.filter_by(room_id=room_id, round=round_number).first()
    return row.prompt_id if row else None


def select_prompt(room_id: int, round_number: int, prompts: Optional[List[Prompt]] = None) -> Prompt:
    """Return the prompt for (room, round); every caller gets the same one.

    A stored selection wins, then the prompt of any answer already recorded
    for the round, then the hash of ``"{room_id}_{round}"``. A hash choice is
    stored with insert-or-ignore and re-read, so the first writer wins.
    """
    if prompts is None:
        prompts = available_prompts()
    if not prompts:
        current_app.logger.warning(f"[prompt] no prompts available, using fallback room={room_id}")
        return fallback_prompt()
    by_id = {p.id: p for p in prompts}

    stored_id = stored_selection(room_id, round_number)
    if stored_id in by_id:
        return by_id[stored_id]

    answered = (
        Answer.query.filter_by(room_id=room_id, round=round_number)
        .filter(Answer.prompt_id.isnot(None))
        .order_by(Answer.id.asc())
        .first()
    )
    if answered and answered.prompt_id in by_id:
        current_app.logger.info(
            f"[prompt] room={room_id} round={round_number} reusing prompt={answered.prompt_id} from answers"
        )
        chosen = by_id[answered.prompt_id]
    else:
        chosen = prompts[pick_index(room_id, round_number, len(prompts))]

    key = {'room_id': room_id, 'round': round_number}
    try:
        if stored_id is None:
            if not insert_or_ignore(RoundPrompt, key, {'prompt_id': chosen.id}):
                stored_id = stored_selection(room_id, round_number)
                if stored_id in by_id:
                    return by_id[stored_id]
        else:
            # Stored selection points at a prompt that no longer exists
            upsert(RoundPrompt, key, {'prompt_id': chosen.id})
    except (SQLAlchemyError, Conflict) as exc:
        db.session.rollback()
        current_app.logger.error(
            f"[prompt] failed to store selection room={room_id} round={round_number}: {exc!r}"
        )
    current_app.logger.info(f"[prompt] room={room_id} round={round_number} selected prompt={chosen.id}")
    return chosen


@retry_transient
def get_player_prompt(player_id: int, room_id: int) -> dict:
    player = db.session.get(Player, player_id)
    if not player:
        raise PlayerNotFound()
    room = db.session.get(Room, room_id)
    if not room:
        raise RoomNotFound()
    if player.room_id != room.id:
        raise Forbidden()
    if room.round_number < 1:
        raise Invalid('The game has not started yet')

    prompt = select_prompt(room.id, room.round_number)
    if current_stage(room.id, room.round_number) in (WAITING, PROMPT):
        advance_stage(room.id, room.round_number, ANSWERING)

    return {
        'round': room.round_number,
        'prompt': prompt.imposter_prompt if player.is_imposter else prompt.real_prompt,
        'prompt_id': prompt.id,
        'role': 'imposter' if player.is_imposter else 'regular',
    }
