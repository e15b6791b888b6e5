from flask import Blueprint, jsonify, request, current_app
from livequiz import db, get_host_controller
from livequiz.models import Participant, generate_participant_id
from livequiz.services.quiz.errors import QuizError
from livequiz.services.quiz.validation import validate_display_name


session_api = Blueprint('session_api', __name__)


@session_api.errorhandler(QuizError)
def handle_quiz_error(exc):
    return jsonify(exc.to_dict()), exc.status_code


@session_api.route('/participants', methods=['POST'])
def join_session():
    data = request.get_json(silent=True) or {}
    name = validate_display_name(
        data.get('name'),
        int(current_app.config.get('DISPLAY_NAME_MAX_LENGTH', 20)),
    )
    participant = Participant(id=generate_participant_id(), name=name, score=0)
    db.session.add(participant)
    db.session.commit()
    current_app.logger.info(f"[join] participant={participant.id} name={participant.name}")
    return jsonify(participant.to_dict()), 201


@session_api.route('/participants/<string:participant_id>', methods=['GET'])
def get_participant(participant_id):
    participant = db.session.get(Participant, participant_id)
    if participant is None:
        return jsonify({'error': 'Participant not found'}), 404
    return jsonify(participant.to_dict())


@session_api.route('/session/state', methods=['GET'])
def get_session_state():
    return jsonify(get_host_controller().snapshot())


@session_api.route('/ranking', methods=['GET'])
def get_ranking():
    host = get_host_controller()
    limit = request.args.get('limit', type=int)
    if limit is not None and limit < 0:
        return jsonify({'error': 'limit must not be negative'}), 400
    return jsonify({'ranking': [e.to_dict() for e in host.ranking(limit)]})
