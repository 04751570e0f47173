from impostor import db
from datetime import datetime, timezone
import random

ROOM_CODE_ALPHABET = 'ABCDEFGHJKLMNPQRSTUVWXYZ23456789'


def _utcnow():
    return datetime.now(timezone.utc)


def _iso(value):
    return value.isoformat() if value else None


def generate_room_code(length=6):
    """Random, easily readable room code. Uniqueness is the caller's job."""
    return ''.join(random.choices(ROOM_CODE_ALPHABET, k=length))


class Room(db.Model):
    __tablename__ = 'room'
    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(16), unique=True, nullable=False, index=True)
    round_number = db.Column(db.Integer, default=0, nullable=False)  # 0 = lobby
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow, nullable=False)
    players = db.relationship(
        'Player',
        back_populates='room',
        order_by=lambda: [Player.joined_at, Player.id],
    )

    def to_dict(self, include_players=True):
        data = {
            'id': self.id,
            'code': self.code,
            'round_number': self.round_number,
            'is_active': self.is_active,
            'created_at': _iso(self.created_at),
        }
        if include_players:
            data['players'] = [p.to_dict() for p in self.players]
        return data


class Player(db.Model):
    __tablename__ = 'player'
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(64), nullable=False)
    room_id = db.Column(db.Integer, db.ForeignKey('room.id'), nullable=False, index=True)
    is_imposter = db.Column(db.Boolean, default=False, nullable=False)
    is_host = db.Column(db.Boolean, default=False, nullable=False)
    joined_at = db.Column(db.DateTime(timezone=True), default=_utcnow, nullable=False)
    room = db.relationship('Room', back_populates='players')

    def to_dict(self, reveal_role=False):
        data = {
            'id': self.id,
            'name': self.name,
            'room_id': self.room_id,
            'is_host': self.is_host,
            'joined_at': _iso(self.joined_at),
        }
        if reveal_role:
            data['is_imposter'] = self.is_imposter
        return data


class Prompt(db.Model):
    __tablename__ = 'prompt'
    id = db.Column(db.Integer, primary_key=True)
    real_prompt = db.Column(db.Text, nullable=False)
    imposter_prompt = db.Column(db.Text, nullable=False)

    def to_dict(self):
        return {
            'id': self.id,
            'real_prompt': self.real_prompt,
            'imposter_prompt': self.imposter_prompt,
        }


class RoundPrompt(db.Model):
    __tablename__ = 'round_prompt'
    id = db.Column(db.Integer, primary_key=True)
    room_id = db.Column(db.Integer, db.ForeignKey('room.id'), nullable=False)
    round = db.Column(db.Integer, nullable=False)
    prompt_id = db.Column(db.Integer, db.ForeignKey('prompt.id'), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow, nullable=False)

    __table_args__ = (
        db.UniqueConstraint('room_id', 'round', name='uq_round_prompt_room_round'),
    )


class Answer(db.Model):
    __tablename__ = 'answer'
    id = db.Column(db.Integer, primary_key=True)
    player_id = db.Column(db.Integer, db.ForeignKey('player.id'), nullable=False)
    room_id = db.Column(db.Integer, db.ForeignKey('room.id'), nullable=False, index=True)
    round = db.Column(db.Integer, nullable=False)
    prompt_id = db.Column(db.Integer, nullable=True)  # null for the built-in fallback prompt
    answer = db.Column(db.Text, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, nullable=False)
    player = db.relationship('Player')

    __table_args__ = (
        db.UniqueConstraint('player_id', 'room_id', 'round', name='uq_answer_player_room_round'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'player_id': self.player_id,
            'player_name': self.player.name if self.player else 'Unknown Player',
            'round': self.round,
            'prompt_id': self.prompt_id,
            'answer': self.answer,
        }


class Vote(db.Model):
    __tablename__ = 'vote'
    id = db.Column(db.Integer, primary_key=True)
    voter_id = db.Column(db.Integer, db.ForeignKey('player.id'), nullable=False)
    voted_for_id = db.Column(db.Integer, db.ForeignKey('player.id'), nullable=False)
    room_id = db.Column(db.Integer, db.ForeignKey('room.id'), nullable=False, index=True)
    round = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow, nullable=False)

    __table_args__ = (
        db.UniqueConstraint('voter_id', 'room_id', 'round', name='uq_vote_voter_room_round'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'voter_id': self.voter_id,
            'voted_for_id': self.voted_for_id,
            'round': self.round,
        }


class RoundState(db.Model):
    __tablename__ = 'round_state'
    id = db.Column(db.Integer, primary_key=True)
    room_id = db.Column(db.Integer, db.ForeignKey('room.id'), nullable=False, index=True)
    round = db.Column(db.Integer, nullable=False)
    current_stage = db.Column(db.String(32), nullable=False, default='waiting')
    stage_index = db.Column(db.Integer, nullable=False, default=0)
    last_updated = db.Column(db.DateTime(timezone=True), default=_utcnow, nullable=False)

    __table_args__ = (
        db.UniqueConstraint('room_id', 'round', name='uq_round_state_room_round'),
    )

    def to_dict(self):
        return {
            'room_id': self.room_id,
            'round': self.round,
            'current_stage': self.current_stage,
            'last_updated': _iso(self.last_updated),
        }
