import random
from typing import Optional, Sequence

from flask import current_app

from impostor import db
from impostor.errors import InsufficientPlayers, Invalid
from impostor.models import Player


def assign_imposter(players: Sequence[Player], rng=random, commit: bool = True) -> int:
    """Make exactly one of ``players`` the impostor and return their id.

    The room's previous flags are cleared and the new one set in the same
    transaction, so readers never see zero or two impostors after commit.
    With ``commit=False`` the caller owns that transaction.
    """
    if len(players) < 2:
        raise InsufficientPlayers()
    room_ids = {p.room_id for p in players}
    if len(room_ids) != 1:
        raise Invalid('Players must all belong to the same room')
    room_id = room_ids.pop()

    chosen_id = rng.choice(list(players)).id
    Player.query.filter_by(room_id=room_id).update({'is_imposter': False})
    Player.query.filter_by(id=chosen_id).update({'is_imposter': True})
    if commit:
        db.session.commit()
    current_app.logger.info(f"[roles] room={room_id} imposter={chosen_id} of {len(players)} players")
    return chosen_id


def current_imposter(room_id: int) -> Optional[Player]:
    return Player.query.filter_by(room_id=room_id, is_imposter=True).order_by(Player.id.asc()).first()
