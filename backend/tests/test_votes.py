from types import SimpleNamespace

import pytest

from impostor import db
from impostor.errors import Forbidden, PlayerNotFound, RoomNotFound
from impostor.models import Player, Vote
from impostor.services.game.state import DISCUSSION_VOTING, RESULTS, current_stage, set_stage
from impostor.services.game.votes import (
    check_votes,
    compute_tally,
    get_vote_results,
    majority_threshold,
    submit_vote,
)


def _players(count):
    return [SimpleNamespace(id=i, name=f'p{i}') for i in range(1, count + 1)]


def _votes(*pairs):
    return [SimpleNamespace(voter_id=voter, voted_for_id=target) for voter, target in pairs]


def _roles(room_id, ids):
    imposter = Player.query.filter_by(room_id=room_id, is_imposter=True).one()
    crew = [pid for pid in ids.values() if pid != imposter.id]
    return imposter.id, crew


def test_majority_threshold():
    assert majority_threshold(2) == 2
    assert majority_threshold(3) == 2
    assert majority_threshold(4) == 3
    assert majority_threshold(5) == 3
    assert majority_threshold(10) == 6


def test_three_of_five_is_a_majority():
    result = compute_tally(_players(5), _votes((1, 2), (3, 2), (4, 2)))
    assert result['majority_threshold'] == 3
    assert result['majority_reached'] is True
    assert result['majority_target'] == 2
    assert result['forced'] is False
    assert result['all_voted'] is False


def test_three_two_split_with_everyone_voted():
    result = compute_tally(_players(5), _votes((1, 2), (2, 3), (3, 2), (4, 3), (5, 2)))
    assert result['all_voted'] is True
    assert result['majority_target'] == 2
    assert result['forced'] is False
    assert dict(result['per_player_count']) == {1: 0, 2: 3, 3: 2, 4: 0, 5: 0}


def test_tied_vote_forces_first_highest_in_join_order():
    result = compute_tally(_players(5), _votes((1, 3), (2, 3), (3, 2), (4, 2), (5, 4)))
    assert result['all_voted'] is True
    assert result['majority_reached'] is True
    assert result['forced'] is True
    assert result['majority_target'] == 2
    assert result['highest_count'] == 2


def test_even_split_forces_deterministically():
    votes = _votes((1, 2), (2, 3), (3, 1))
    first = compute_tally(_players(3), votes)
    second = compute_tally(_players(3), list(reversed(votes)))
    assert first['forced'] is True
    assert first['majority_target'] == second['majority_target'] == 1


def test_no_forcing_until_everyone_voted():
    result = compute_tally(_players(5), _votes((1, 2), (2, 3), (3, 4), (4, 5)))
    assert result['all_voted'] is False
    assert result['majority_reached'] is False
    assert result['majority_target'] is None


def test_voter_map_lists_voters_per_target():
    result = compute_tally(_players(3), _votes((1, 3), (2, 3)))
    assert [v['id'] for v in result['voter_map'][3]] == [1, 2]
    assert result['voter_map'][1] == []


def test_vote_changes_replace_the_previous_vote(started_room):
    room_id, _, ids = started_room
    submit_vote(ids['Alice'], room_id, ids['Bob'])
    result = submit_vote(ids['Alice'], room_id, ids['Carol'])
    assert result['total_votes'] == 1
    assert result['per_player_count'][ids['Carol']] == 1
    assert result['per_player_count'][ids['Bob']] == 0
    assert Vote.query.filter_by(room_id=room_id, round=1).count() == 1


def test_majority_moves_round_to_results(started_room):
    room_id, _, ids = started_room
    set_stage(room_id, 1, DISCUSSION_VOTING)
    imposter_id, crew = _roles(room_id, ids)

    first = submit_vote(crew[0], room_id, imposter_id)
    assert first['majority_reached'] is False
    assert current_stage(room_id, 1) == DISCUSSION_VOTING

    second = submit_vote(crew[1], room_id, imposter_id)
    assert second['majority_reached'] is True
    assert second['imposter_caught'] is True
    assert current_stage(room_id, 1) == RESULTS


def test_check_votes_is_a_no_op_once_in_results(started_room):
    room_id, _, ids = started_room
    imposter_id, crew = _roles(room_id, ids)
    submit_vote(crew[0], room_id, imposter_id)
    submit_vote(crew[1], room_id, imposter_id)

    for _ in range(3):
        result = check_votes(room_id)
        assert result['already_in_results'] is True
        assert result['current_stage'] == RESULTS
        assert result['majority_target'] == imposter_id


def test_check_votes_concludes_a_decided_round(started_room, monkeypatch):
    room_id, _, ids = started_room
    imposter_id, crew = _roles(room_id, ids)
    from impostor.services.game import votes as vote_module
    # Simulate a lost transition write on the vote path
    monkeypatch.setattr(vote_module, '_conclude_if_decided', lambda *args: None)
    submit_vote(crew[0], room_id, imposter_id)
    submit_vote(crew[1], room_id, imposter_id)
    monkeypatch.undo()

    assert current_stage(room_id, 1) != RESULTS
    result = check_votes(room_id)
    assert result['already_in_results'] is False
    assert result['current_stage'] == RESULTS


def test_vote_target_must_exist_in_same_room(started_room, make_room):
    room_id, _, ids = started_room
    _, _, other_ids = make_room('Dave', 'Erin')
    with pytest.raises(PlayerNotFound):
        submit_vote(ids['Alice'], room_id, 9999)
    with pytest.raises(Forbidden):
        submit_vote(ids['Alice'], room_id, other_ids['Dave'])
    with pytest.raises(Forbidden):
        submit_vote(other_ids['Dave'], room_id, ids['Alice'])


def test_vote_results_wait_for_everyone(started_room):
    room_id, _, ids = started_room
    submit_vote(ids['Alice'], room_id, ids['Bob'])
    result = get_vote_results(room_id)
    assert result['waiting_for_votes'] is True
    assert result['vote_count'] == 1
    assert result['player_count'] == 3


def test_vote_results_reveal(started_room):
    room_id, _, ids = started_room
    imposter_id, crew = _roles(room_id, ids)
    submit_vote(crew[0], room_id, imposter_id)
    submit_vote(crew[1], room_id, imposter_id)
    submit_vote(imposter_id, room_id, crew[0])

    result = get_vote_results(room_id)
    assert result['waiting_for_votes'] is False
    assert result['imposter']['id'] == imposter_id
    assert result['most_voted']['id'] == imposter_id
    assert result['is_tie'] is False
    assert result['imposter_caught'] is True
    assert result['winner'] == 'players'
    assert result['vote_tally'][0] == {
        'id': imposter_id,
        'name': {v: k for k, v in ids.items()}[imposter_id],
        'is_imposter': True,
        'votes': 2,
    }
    assert len(result['votes']) == 3


def test_imposter_wins_when_crew_is_voted_out(started_room):
    room_id, _, ids = started_room
    imposter_id, crew = _roles(room_id, ids)
    submit_vote(crew[0], room_id, crew[1])
    submit_vote(imposter_id, room_id, crew[1])
    submit_vote(crew[1], room_id, imposter_id)

    result = get_vote_results(room_id)
    assert result['most_voted']['id'] == crew[1]
    assert result['imposter_caught'] is False
    assert result['winner'] == 'imposter'


def test_vote_results_unknown_room(flask_app):
    with pytest.raises(RoomNotFound):
        get_vote_results(9999)


def test_forced_tie_on_the_imposter_is_a_catch_in_every_view(started_room):
    room_id, _, ids = started_room
    Player.query.filter_by(room_id=room_id).update({'is_imposter': False})
    Player.query.filter_by(id=ids['Alice']).update({'is_imposter': True})
    db.session.commit()

    submit_vote(ids['Alice'], room_id, ids['Bob'])
    submit_vote(ids['Bob'], room_id, ids['Carol'])
    submit_vote(ids['Carol'], room_id, ids['Alice'])

    checked = check_votes(room_id)
    assert checked['forced'] is True
    assert checked['majority_target'] == ids['Alice']
    assert checked['imposter_caught'] is True

    revealed = get_vote_results(room_id)
    assert revealed['is_tie'] is True
    assert revealed['most_voted']['id'] == ids['Alice']
    assert revealed['imposter_caught'] is True
    assert revealed['winner'] == 'players'
