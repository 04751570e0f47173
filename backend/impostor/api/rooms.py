from flask import Blueprint, jsonify, request

from impostor.errors import Invalid
from impostor.services.game import answers as answer_ledger
from impostor.services.game import rooms as room_lifecycle
from impostor.services.game import votes as vote_tally
from impostor.services.game.state import get_game_state


rooms = Blueprint('rooms', __name__)


def _payload():
    return request.get_json(silent=True) or {}


def _int_field(data, name, required=True):
    value = data.get(name)
    if value is None or value == '':
        if required:
            raise Invalid(f'{name} is required')
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise Invalid(f'{name} must be an integer') from None


@rooms.route('', methods=['POST'])
def create_room():
    data = _payload()
    host_name = (data.get('host_name') or '').strip()
    if not host_name:
        return jsonify({'error': 'Host name is required'}), 400
    return jsonify(room_lifecycle.create_room(host_name)), 201


@rooms.route('/join', methods=['POST'])
def join_room():
    data = _payload()
    code = (data.get('code') or '').strip()
    name = (data.get('player_name') or '').strip()
    if not all([code, name]):
        return jsonify({'error': 'Room code and player name are required'}), 400
    return jsonify(room_lifecycle.join_room(name, code)), 201


@rooms.route('/<string:code>', methods=['GET'])
def get_room(code):
    return jsonify(room_lifecycle.get_room(code))


@rooms.route('/<int:room_id>/state', methods=['GET'])
def get_state(room_id):
    round_number = request.args.get('round', type=int)
    return jsonify(get_game_state(room_id, round_number))


@rooms.route('/start-game', methods=['POST'])
def start_game():
    code = (_payload().get('code') or '').strip()
    if not code:
        return jsonify({'error': 'Room code is required'}), 400
    return jsonify(room_lifecycle.start_game(code))


@rooms.route('/start-new-round', methods=['POST'])
def start_new_round():
    data = _payload()
    room_id = _int_field(data, 'room_id')
    expected_round = _int_field(data, 'expected_round', required=False)
    return jsonify(room_lifecycle.start_new_round(room_id, expected_round=expected_round))


@rooms.route('/get-answers', methods=['POST'])
def get_answers():
    return jsonify(answer_ledger.get_answers(_int_field(_payload(), 'room_id')))


@rooms.route('/get-vote-results', methods=['POST'])
def get_vote_results():
    return jsonify(vote_tally.get_vote_results(_int_field(_payload(), 'room_id')))
