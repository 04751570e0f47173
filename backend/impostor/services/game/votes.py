"""Vote recording and tallying.

The tally is a pure function of the room's players (in join order) and the
round's votes, recomputed from a fresh read on every call.
"""

from collections import OrderedDict
from typing import Iterable, Optional, Sequence

from flask import current_app

from impostor import db
from impostor.errors import Forbidden, Invalid, PlayerNotFound, RoomNotFound
from impostor.models import Player, Room, Vote
from impostor.store import retry_transient, upsert
from .roles import current_imposter
from .rooms import players_in_join_order, require_member
from .state import RESULTS, advance_stage, current_stage


def majority_threshold(total_players: int) -> int:
    return total_players // 2 + 1


def compute_tally(players: Sequence[Player], votes: Iterable[Vote]) -> dict:
    """Count votes per player and decide whether voting is concluded.

    The first player in join order reaching the threshold is the majority
    target. When everyone has voted (at least two votes) and nobody reached
    the threshold, the highest count wins, first seen on ties.
    """
    names = {p.id: p.name for p in players}
    counts = OrderedDict((p.id, 0) for p in players)
    voter_map = OrderedDict((p.id, []) for p in players)
    voters = set()
    total_votes = 0
    for vote in votes:
        total_votes += 1
        counts[vote.voted_for_id] = counts.get(vote.voted_for_id, 0) + 1
        voter_map.setdefault(vote.voted_for_id, [])
        if vote.voter_id in names:
            voters.add(vote.voter_id)
            voter_map[vote.voted_for_id].append({'id': vote.voter_id, 'name': names[vote.voter_id]})

    total_players = len(players)
    threshold = majority_threshold(total_players)
    majority_target = None
    highest_count, highest_target = 0, None
    for player_id, count in counts.items():
        if count > highest_count:
            highest_count, highest_target = count, player_id
        if majority_target is None and count >= threshold:
            majority_target = player_id

    all_voted = total_players > 0 and len(voters) == total_players
    majority_reached = majority_target is not None
    forced = False
    if not majority_reached and all_voted and total_votes >= 2 and highest_target is not None:
        majority_reached, majority_target, forced = True, highest_target, True

    return {
        'per_player_count': counts,
        'voter_map': voter_map,
        'all_voted': all_voted,
        'total_players': total_players,
        'total_votes': total_votes,
        'majority_threshold': threshold,
        'majority_reached': majority_reached,
        'majority_target': majority_target,
        'forced': forced,
        'highest_count': highest_count,
        'highest_target': highest_target,
    }


def imposter_caught(result: dict, imposter_id: Optional[int]) -> Optional[bool]:
    """Verdict of a concluded vote. A forced target counts as the accused player."""
    if imposter_id is None or not result['majority_reached']:
        return None
    return result['majority_target'] == imposter_id


def tally(room_id: int, round_number: int) -> dict:
    players = players_in_join_order(room_id)
    votes = Vote.query.filter_by(room_id=room_id, round=round_number).order_by(Vote.id.asc()).all()
    result = compute_tally(players, votes)
    imposter = current_imposter(room_id)
    result['round'] = round_number
    result['imposter'] = {'id': imposter.id, 'name': imposter.name} if imposter else None
    result['imposter_caught'] = imposter_caught(result, imposter.id if imposter else None)
    return result


def _conclude_if_decided(room_id: int, round_number: int, result: dict) -> None:
    if result['majority_reached'] and result['imposter']:
        if result['forced']:
            current_app.logger.info(
                f"[votes] room={room_id} round={round_number} no majority, forcing highest={result['majority_target']}"
            )
        advance_stage(room_id, round_number, RESULTS)


@retry_transient
def submit_vote(voter_id: int, room_id: int, voted_for_id: int) -> dict:
    voter, room = require_member(voter_id, room_id)
    target = db.session.get(Player, voted_for_id)
    if not target:
        raise PlayerNotFound('Voted player not found')
    if target.room_id != room.id:
        raise Forbidden('Voted player does not belong to this room')
    if room.round_number < 1:
        raise Invalid('The game has not started yet')
    round_number = room.round_number

    upsert(
        Vote,
        {'voter_id': voter.id, 'room_id': room.id, 'round': round_number},
        {'voted_for_id': target.id},
    )
    result = tally(room_id, round_number)
    current_app.logger.info(
        f"[vote] room={room_id} round={round_number} voter={voter_id} -> {voted_for_id} "
        f"votes={result['total_votes']}/{result['total_players']} majority={result['majority_reached']}"
    )
    _conclude_if_decided(room_id, round_number, result)
    return result


@retry_transient
def check_votes(room_id: int, round_number: Optional[int] = None) -> dict:
    room = db.session.get(Room, room_id)
    if not room:
        raise RoomNotFound()
    if round_number is None:
        round_number = room.round_number
    already_in_results = current_stage(room_id, round_number) == RESULTS
    result = tally(room_id, round_number)
    if not already_in_results:
        _conclude_if_decided(room_id, round_number, result)
    result['already_in_results'] = already_in_results
    result['current_stage'] = current_stage(room_id, round_number)
    return result


@retry_transient
def get_vote_results(room_id: int) -> dict:
    """Reveal view for the results screen."""
    room = db.session.get(Room, room_id)
    if not room:
        raise RoomNotFound()
    round_number = room.round_number
    players = players_in_join_order(room_id)
    votes = Vote.query.filter_by(room_id=room_id, round=round_number).order_by(Vote.id.asc()).all()
    result = compute_tally(players, votes)
    if not result['all_voted']:
        return {
            'round': round_number,
            'player_count': result['total_players'],
            'vote_count': result['total_votes'],
            'waiting_for_votes': True,
            'all_voted': False,
        }

    imposter = next((p for p in players if p.is_imposter), None)
    if not imposter:
        raise Invalid('No imposter found for this round')

    by_id = {p.id: p for p in players}
    counts = result['per_player_count']
    top = max(counts.values()) if counts else 0
    leaders = [pid for pid, count in counts.items() if count == top and count > 0]
    # Display only; a tie is still decided by the forced target
    is_tie = len(leaders) > 1
    caught = bool(imposter_caught(result, imposter.id))
    formatted_votes = []
    for vote in votes:
        voter = by_id.get(vote.voter_id)
        voted_for = by_id.get(vote.voted_for_id)
        formatted_votes.append({
            'voter_name': voter.name if voter else 'Unknown',
            'voted_for_name': voted_for.name if voted_for else 'Unknown',
            'is_imposter': bool(voted_for and voted_for.is_imposter),
        })
    vote_tally = sorted(
        (
            {'id': p.id, 'name': p.name, 'is_imposter': p.is_imposter, 'votes': counts.get(p.id, 0)}
            for p in players
        ),
        key=lambda row: row['votes'],
        reverse=True,
    )
    most_voted = by_id.get(result['majority_target'])
    return {
        'round': round_number,
        'player_count': result['total_players'],
        'vote_count': result['total_votes'],
        'waiting_for_votes': False,
        'all_voted': True,
        'imposter': {'id': imposter.id, 'name': imposter.name},
        'most_voted': {'id': most_voted.id, 'name': most_voted.name} if most_voted else None,
        'is_tie': is_tie,
        'imposter_caught': caught,
        'winner': 'players' if caught else 'imposter',
        'votes': formatted_votes,
        'vote_tally': vote_tally,
    }
