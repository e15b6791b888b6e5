from livequiz import db
import random
import string
import time

PHASE_WAITING = 'waiting'
PHASE_VOTING = 'voting'
PHASE_RESULT = 'result'
PHASE_RANKING = 'ranking'
PHASES = (PHASE_WAITING, PHASE_VOTING, PHASE_RESULT, PHASE_RANKING)

SESSION_STATE_ID = 1


def generate_participant_id(length=10):
    """Generate a participant id that is not taken yet."""
    alphabet = string.ascii_lowercase + string.digits
    while True:
        pid = 'user_' + ''.join(random.choices(alphabet, k=length))
        if not db.session.get(Participant, pid):
            return pid


class Question(db.Model):
    __tablename__ = 'question'
    id = db.Column(db.Integer, primary_key=True)
    prompt = db.Column(db.Text, nullable=False)
    option_1 = db.Column(db.String(255), nullable=False)
    option_2 = db.Column(db.String(255), nullable=False)
    option_3 = db.Column(db.String(255), nullable=False)
    option_4 = db.Column(db.String(255), nullable=False)
    correct_option = db.Column(db.Integer, nullable=False)  # 1-4
    position = db.Column(db.Integer, nullable=False, default=0, index=True)

    @property
    def options(self):
        return [self.option_1, self.option_2, self.option_3, self.option_4]

    def to_dict(self, include_answer=True):
        data = {
            'id': self.id,
            'prompt': self.prompt,
            'options': self.options,
            'position': self.position,
        }
        if include_answer:
            data['correct_option'] = self.correct_option
        return data


class SessionState(db.Model):
    """The single session row. Only the host controller writes it."""
    __tablename__ = 'session_state'
    id = db.Column(db.Integer, primary_key=True)
    phase = db.Column(db.String(16), nullable=False, default=PHASE_WAITING)
    active_question_id = db.Column(db.Integer, db.ForeignKey('question.id'), nullable=True)
    voting_started_at = db.Column(db.Float, nullable=True)
    revision = db.Column(db.Integer, nullable=False, default=0)
    updated_at = db.Column(db.Float, nullable=True)

    active_question = db.relationship('Question')

    def to_dict(self):
        return {
            'phase': self.phase,
            'active_question_id': self.active_question_id,
            'voting_started_at': self.voting_started_at,
            'revision': self.revision,
            'updated_at': self.updated_at,
        }


class Participant(db.Model):
    __tablename__ = 'participant'
    id = db.Column(db.String(64), primary_key=True)
    name = db.Column(db.String(64), nullable=False)
    score = db.Column(db.Integer, nullable=False, default=0)
    joined_at = db.Column(db.Float, nullable=False, default=time.time, index=True)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'score': self.score,
            'joined_at': self.joined_at,
        }


class Response(db.Model):
    __tablename__ = 'response'
    __table_args__ = (
        db.UniqueConstraint('participant_id', 'question_id', name='uq_response_participant_question'),
    )
    id = db.Column(db.Integer, primary_key=True)
    participant_id = db.Column(db.String(64), db.ForeignKey('participant.id'), nullable=False, index=True)
    participant_name = db.Column(db.String(64), nullable=False)
    question_id = db.Column(db.Integer, db.ForeignKey('question.id'), nullable=False, index=True)
    selected_option = db.Column(db.Integer, nullable=False)
    response_time_ms = db.Column(db.Float, nullable=False)
    is_correct = db.Column(db.Boolean, nullable=False, default=False)
    points = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.Float, nullable=False, default=time.time)

    def to_dict(self):
        return {
            'participant_id': self.participant_id,
            'participant_name': self.participant_name,
            'question_id': self.question_id,
            'selected_option': self.selected_option,
            'response_time_ms': self.response_time_ms,
            'is_correct': self.is_correct,
            'points': self.points,
        }
