from flask import Blueprint, jsonify

from impostor.api.rooms import _int_field, _payload
from impostor.services.game import answers as answer_ledger
from impostor.services.game import votes as vote_tally
from impostor.services.game.prompts import get_player_prompt


players = Blueprint('players', __name__)


@players.route('/get-prompt', methods=['POST'])
def get_prompt():
    data = _payload()
    return jsonify(get_player_prompt(_int_field(data, 'player_id'), _int_field(data, 'room_id')))


@players.route('/submit-answer', methods=['POST'])
def submit_answer():
    data = _payload()
    player_id = _int_field(data, 'player_id')
    room_id = _int_field(data, 'room_id')
    prompt_id = _int_field(data, 'prompt_id', required=False)
    text = (data.get('answer') or '').strip()
    if not text:
        return jsonify({'error': 'Answer is required'}), 400
    return jsonify(answer_ledger.submit_answer(player_id, room_id, prompt_id, text))


@players.route('/check-answers', methods=['POST'])
def check_answers():
    data = _payload()
    return jsonify(answer_ledger.check_answers(
        _int_field(data, 'room_id'),
        _int_field(data, 'round', required=False),
    ))


@players.route('/vote', methods=['POST'])
def vote():
    data = _payload()
    return jsonify(vote_tally.submit_vote(
        _int_field(data, 'player_id'),
        _int_field(data, 'room_id'),
        _int_field(data, 'voted_for_id'),
    ))


@players.route('/check-votes', methods=['POST'])
def check_votes():
    data = _payload()
    return jsonify(vote_tally.check_votes(
        _int_field(data, 'room_id'),
        _int_field(data, 'round', required=False),
    ))
