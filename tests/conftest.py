import os
import sys
import time
import pytest

# Ensure the project root (containing the `livequiz` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
PROJECT_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from livequiz import create_app, db, socketio, get_host_controller
from livequiz.channels import NAMESPACE
from livequiz.models import Participant, generate_participant_id
from livequiz.services.quiz.catalog import load_catalog, list_questions
from livequiz.services.quiz.scoring import calculate_score


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    CORS_ORIGINS = ['http://localhost:5173']
    VOTING_DURATION_SEC = 10
    RANKING_LIMIT = 10
    DISPLAY_NAME_MAX_LENGTH = 20
    AUTO_ADVANCE = False
    SERVER_SIDE_SCORING = False
    TIMER_HEARTBEAT_SEC = 0


SAMPLE_QUESTIONS = [
    {'prompt': 'Capital of France?', 'options': ['Berlin', 'Paris', 'Rome', 'Madrid'], 'correct_option': 2, 'position': 1},
    {'prompt': '2 + 2?', 'options': ['3', '4', '5', '22'], 'correct_option': 2, 'position': 2},
    {'prompt': 'Largest planet?', 'options': ['Jupiter', 'Mars', 'Venus', 'Earth'], 'correct_option': 1, 'position': 3},
]


@pytest.fixture()
def flask_app():
    application = create_app(TestConfig)
    with application.app_context():
        # Ensure models are imported so tables are created
        import livequiz.models  # noqa: F401
        db.create_all()
        yield application
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def host(flask_app):
    return get_host_controller(flask_app)


@pytest.fixture()
def questions(flask_app):
    load_catalog(SAMPLE_QUESTIONS)
    return list_questions()


@pytest.fixture()
def make_participant(flask_app):
    def _make(name, score=0, joined_at=None):
        participant = Participant(
            id=generate_participant_id(),
            name=name,
            score=score,
            joined_at=time.time() if joined_at is None else joined_at,
        )
        db.session.add(participant)
        db.session.commit()
        return participant
    return _make


@pytest.fixture()
def answer():
    """Build the payload a participant device publishes for an answer."""
    def _answer(participant, question, option, elapsed_ms):
        correct = option == question.correct_option
        return {
            'participant_id': participant.id,
            'participant_name': participant.name,
            'question_id': question.id,
            'selected_option': option,
            'response_time_ms': elapsed_ms,
            'is_correct': correct,
            'points': calculate_score(correct, elapsed_ms),
        }
    return _answer


@pytest.fixture()
def sio_client(flask_app):
    test_client = socketio.test_client(
        flask_app,
        flask_test_client=flask_app.test_client(),
        namespace=NAMESPACE,
    )
    yield test_client
    try:
        test_client.disconnect(namespace=NAMESPACE)
    except Exception:
        pass
