from flask import Blueprint, jsonify, request
from livequiz import get_host_controller
from livequiz.services.quiz.catalog import list_questions
from livequiz.services.quiz.errors import QuizError


host_api = Blueprint('host_api', __name__)


@host_api.errorhandler(QuizError)
def handle_quiz_error(exc):
    return jsonify(exc.to_dict()), exc.status_code


def _confirmed(data):
    return data.get('confirm') is True


@host_api.route('/questions', methods=['GET'])
def get_questions():
    return jsonify([q.to_dict() for q in list_questions()])


@host_api.route('/progress', methods=['GET'])
def get_progress():
    return jsonify(get_host_controller().progress())


@host_api.route('/start', methods=['POST'])
def start_question():
    data = request.get_json(silent=True) or {}
    question_id = data.get('question_id')
    if question_id is None:
        return jsonify({'error': 'question_id is required'}), 400
    host = get_host_controller()
    host.start(question_id)
    return jsonify(host.snapshot())


@host_api.route('/next', methods=['POST'])
def start_next_question():
    host = get_host_controller()
    host.start_next()
    return jsonify(host.snapshot())


@host_api.route('/reveal', methods=['POST'])
def reveal_result():
    data = request.get_json(silent=True) or {}
    host = get_host_controller()
    host.reveal_result(force=bool(data.get('force')))
    payload = host.snapshot()
    payload['ranking'] = [e.to_dict() for e in host.ranking()]
    return jsonify(payload)


@host_api.route('/flush', methods=['POST'])
def flush_pending():
    written = get_host_controller().flush_pending()
    return jsonify({'written': written})


@host_api.route('/ranking', methods=['POST'])
def show_ranking():
    host = get_host_controller()
    host.show_ranking()
    payload = host.snapshot()
    payload['ranking'] = [e.to_dict() for e in host.ranking()]
    return jsonify(payload)


@host_api.route('/waiting', methods=['POST'])
def return_to_waiting():
    host = get_host_controller()
    host.return_to_waiting()
    return jsonify(host.snapshot())


@host_api.route('/reset', methods=['POST'])
def reset_session():
    data = request.get_json(silent=True) or {}
    host = get_host_controller()
    host.reset_session(confirmed=_confirmed(data))
    return jsonify(host.snapshot())


@host_api.route('/purge', methods=['POST'])
def purge_participants():
    data = request.get_json(silent=True) or {}
    host = get_host_controller()
    host.purge_participants(confirmed=_confirmed(data))
    return jsonify(host.snapshot())
