import pytest
from sqlalchemy.exc import OperationalError

from livequiz import db
from livequiz.models import Participant, Response, SessionState
from livequiz.services.quiz import batch_writer
from livequiz.services.quiz.errors import (
    BatchFlushError, ConfirmationRequired, InvalidTransition, UnknownQuestion,
)


def _state():
    db.session.expire_all()
    return db.session.get(SessionState, 1)


def _scores():
    db.session.expire_all()
    return {p.name: p.score for p in Participant.query.all()}


def test_initial_state_is_waiting(host):
    snap = host.snapshot()
    assert snap['phase'] == 'waiting'
    assert snap['active_question_id'] is None
    assert snap['voting_started_at'] is None
    assert snap['question'] is None
    assert snap['voting_duration_sec'] == 10


def test_start_opens_voting(host, questions):
    q1 = questions[0]
    before = host.snapshot()['revision']
    host.start(q1.id)
    state = _state()
    assert state.phase == 'voting'
    assert state.active_question_id == q1.id
    assert state.voting_started_at is not None
    assert state.revision > before
    assert host.buffer.question_id == q1.id
    assert host.buffer.accepting
    assert host.countdown.remaining() > 9


def test_start_only_from_waiting_or_result(host, questions):
    host.start(questions[0].id)
    with pytest.raises(InvalidTransition):
        host.start(questions[1].id)
    host.reveal_result()
    host.start(questions[1].id)
    host.show_ranking()
    with pytest.raises(InvalidTransition):
        host.start(questions[2].id)


def test_start_unknown_question(host, questions):
    with pytest.raises(UnknownQuestion):
        host.start(9999)
    assert _state().phase == 'waiting'


def test_reveal_only_from_voting(host, questions):
    with pytest.raises(InvalidTransition):
        host.reveal_result()
    host.start(questions[0].id)
    host.reveal_result()
    with pytest.raises(InvalidTransition):
        host.reveal_result()


def test_round_scores_and_responses(host, questions, make_participant, answer):
    q1 = questions[0]
    alice, bob, cara = make_participant('Alice'), make_participant('Bob'), make_participant('Cara')
    host.start(q1.id)
    assert host.ingest_answer(answer(alice, q1, q1.correct_option, 1000))
    assert host.ingest_answer(answer(bob, q1, q1.correct_option, 9000))
    assert host.ingest_answer(answer(cara, q1, q1.correct_option, 11000))
    assert host.buffer.observed_count == 3

    host.reveal_result()

    assert _scores() == {'Alice': 1900, 'Bob': 1100, 'Cara': 1000}
    assert Response.query.filter_by(question_id=q1.id).count() == 3
    assert len(host.buffer) == 0
    state = _state()
    assert state.phase == 'result'
    assert state.active_question_id == q1.id
    assert state.voting_started_at is None


def test_duplicate_answers_count_once(host, questions, make_participant, answer):
    q1 = questions[0]
    alice = make_participant('Alice')
    host.start(q1.id)
    payload = answer(alice, q1, q1.correct_option, 2000)
    assert host.ingest_answer(payload) is True
    assert host.ingest_answer(payload) is False
    assert host.ingest_answer(answer(alice, q1, 4, 3000)) is False
    host.reveal_result()
    assert _scores() == {'Alice': 1800}
    assert Response.query.count() == 1


def test_wrong_answers_are_stored_without_points(host, questions, make_participant, answer):
    q1 = questions[0]
    alice = make_participant('Alice')
    host.start(q1.id)
    host.ingest_answer(answer(alice, q1, 4, 500))
    host.reveal_result()
    assert _scores() == {'Alice': 0}
    row = Response.query.one()
    assert row.is_correct is False
    assert row.points == 0


def test_answer_for_other_question_is_ignored(host, questions, make_participant, answer):
    q1, q2 = questions[0], questions[1]
    alice = make_participant('Alice')
    host.start(q1.id)
    assert host.ingest_answer(answer(alice, q2, 2, 1000)) is False
    assert len(host.buffer) == 0


def test_answers_after_the_reveal_are_ignored(host, questions, make_participant, answer):
    q1 = questions[0]
    alice = make_participant('Alice')
    host.start(q1.id)
    host.reveal_result()
    assert host.ingest_answer(answer(alice, q1, q1.correct_option, 1000)) is False
    assert len(host.buffer) == 0


def test_malformed_answer_is_dropped(host, questions):
    host.start(questions[0].id)
    assert host.ingest_answer({'participant_id': 'x'}) is False
    assert host.ingest_answer(None) is False


def test_next_round_starts_a_fresh_buffer(host, questions, make_participant, answer):
    q1, q2 = questions[0], questions[1]
    alice = make_participant('Alice')
    host.start(q1.id)
    host.ingest_answer(answer(alice, q1, q1.correct_option, 0))
    host.reveal_result()
    host.start_next()
    assert _state().active_question_id == q2.id
    assert host.buffer.observed_count == 0
    host.ingest_answer(answer(alice, q2, q2.correct_option, 10000))
    host.reveal_result()
    assert _scores() == {'Alice': 3000}
    assert Response.query.count() == 2


def test_start_next_without_more_questions(host, questions):
    host.start(questions[-1].id)
    host.reveal_result()
    with pytest.raises(InvalidTransition):
        host.start_next()


def test_flush_failure_blocks_the_reveal(host, questions, make_participant, answer, monkeypatch):
    q1 = questions[0]
    alice = make_participant('Alice')
    host.start(q1.id)
    host.ingest_answer(answer(alice, q1, q1.correct_option, 1000))

    def broken(rows):
        raise OperationalError('INSERT INTO response', {}, Exception('database is locked'))

    monkeypatch.setattr(batch_writer, '_response_upsert', broken)
    with pytest.raises(BatchFlushError) as info:
        host.reveal_result()
    assert info.value.extra['pending'] == 1
    assert _state().phase == 'voting'
    assert len(host.buffer) == 1
    assert host.buffer.accepting
    assert _scores() == {'Alice': 0}

    # the store recovers and the retry commits the retained answer once
    monkeypatch.undo()
    host.reveal_result()
    assert _state().phase == 'result'
    assert _scores() == {'Alice': 1900}
    assert Response.query.count() == 1


def test_forced_reveal_keeps_answers_for_retry(host, questions, make_participant, answer, monkeypatch):
    q1 = questions[0]
    alice = make_participant('Alice')
    host.start(q1.id)
    host.ingest_answer(answer(alice, q1, q1.correct_option, 1000))

    def broken(rows):
        raise OperationalError('INSERT INTO response', {}, Exception('disk I/O error'))

    monkeypatch.setattr(batch_writer, '_response_upsert', broken)
    host.reveal_result(force=True)
    assert _state().phase == 'result'
    assert len(host.buffer) == 1
    assert _scores() == {'Alice': 0}

    monkeypatch.undo()
    assert host.flush_pending() == 1
    assert len(host.buffer) == 0
    assert _scores() == {'Alice': 1900}


def test_answer_during_a_failed_flush_is_kept(host, questions, make_participant, answer, monkeypatch):
    q1 = questions[0]
    alice, bob = make_participant('Alice'), make_participant('Bob')
    host.start(q1.id)
    host.ingest_answer(answer(alice, q1, q1.correct_option, 1000))
    late = {}

    def failing_flush(events):
        late['accepted'] = host.ingest_answer(answer(bob, q1, q1.correct_option, 9000))
        raise BatchFlushError('Could not save the pending answers', pending=len(events))

    monkeypatch.setattr('livequiz.services.quiz.controller.flush_answers', failing_flush)
    with pytest.raises(BatchFlushError):
        host.reveal_result()
    assert late['accepted'] is True
    assert len(host.buffer) == 2
    assert _state().phase == 'voting'

    monkeypatch.undo()
    host.reveal_result()
    assert _scores() == {'Alice': 1900, 'Bob': 1100}
    assert Response.query.count() == 2


def test_answer_during_a_successful_flush_is_committed_once(host, questions, make_participant, answer, monkeypatch):
    q1 = questions[0]
    alice, bob = make_participant('Alice'), make_participant('Bob')
    host.start(q1.id)
    host.ingest_answer(answer(alice, q1, q1.correct_option, 1000))
    real_flush = batch_writer.flush_answers
    batches = []

    def flush_with_late_answer(events):
        if not batches:
            host.ingest_answer(answer(bob, q1, q1.correct_option, 9000))
        batches.append([e.participant_id for e in events])
        return real_flush(events)

    monkeypatch.setattr('livequiz.services.quiz.controller.flush_answers', flush_with_late_answer)
    host.reveal_result()
    assert batches == [[alice.id], [bob.id]]
    assert len(host.buffer) == 0
    assert _scores() == {'Alice': 1900, 'Bob': 1100}


def test_flush_pending_not_during_voting(host, questions):
    host.start(questions[0].id)
    with pytest.raises(InvalidTransition):
        host.flush_pending()


def test_show_ranking_from_any_phase(host, questions):
    host.show_ranking()
    assert _state().phase == 'ranking'
    host.return_to_waiting()
    host.start(questions[0].id)
    host.show_ranking()
    state = _state()
    assert state.phase == 'ranking'
    assert state.active_question_id is None
    assert host.countdown.deadline is None


def test_return_to_waiting_keeps_scores(host, questions, make_participant, answer):
    q1 = questions[0]
    alice = make_participant('Alice')
    host.start(q1.id)
    host.ingest_answer(answer(alice, q1, q1.correct_option, 1000))
    host.reveal_result()
    host.return_to_waiting()
    state = _state()
    assert state.phase == 'waiting'
    assert state.active_question_id is None
    assert _scores() == {'Alice': 1900}


def test_reset_session_needs_confirmation(host, make_participant):
    make_participant('Alice', score=500)
    with pytest.raises(ConfirmationRequired):
        host.reset_session()
    assert _scores() == {'Alice': 500}


def test_reset_session(host, questions, make_participant, answer):
    q1 = questions[0]
    alice, bob = make_participant('Alice', joined_at=1.0), make_participant('Bob', joined_at=2.0)
    host.start(q1.id)
    host.ingest_answer(answer(alice, q1, q1.correct_option, 1000))
    host.ingest_answer(answer(bob, q1, q1.correct_option, 4000))
    host.reveal_result()

    host.reset_session(confirmed=True)

    assert Response.query.count() == 0
    assert _scores() == {'Alice': 0, 'Bob': 0}
    assert _state().phase == 'waiting'
    # participants stay listed with zero points, earliest joiner first
    assert [(e.name, e.score, e.rank) for e in host.ranking()] == [('Alice', 0, 1), ('Bob', 0, 2)]


def test_purge_participants(host, questions, make_participant, answer):
    q1 = questions[0]
    alice = make_participant('Alice')
    host.start(q1.id)
    host.ingest_answer(answer(alice, q1, q1.correct_option, 1000))
    host.reveal_result()
    with pytest.raises(ConfirmationRequired):
        host.purge_participants()

    host.purge_participants(confirmed=True)

    assert Participant.query.count() == 0
    assert Response.query.count() == 0
    assert host.ranking() == []
    assert _state().phase == 'waiting'


def test_every_transition_bumps_the_revision(host, questions):
    seen = [host.snapshot()['revision']]
    host.start(questions[0].id)
    seen.append(_state().revision)
    host.reveal_result()
    seen.append(_state().revision)
    host.show_ranking()
    seen.append(_state().revision)
    host.return_to_waiting()
    seen.append(_state().revision)
    assert seen == sorted(set(seen))


def test_answer_is_hidden_with_server_side_scoring(flask_app, host, questions):
    flask_app.config['SERVER_SIDE_SCORING'] = True
    host.start(questions[0].id)
    assert 'correct_option' not in host.snapshot()['question']
    host.reveal_result()
    assert host.snapshot()['question']['correct_option'] == questions[0].correct_option


def test_server_side_scoring_ignores_client_points(flask_app, host, questions, make_participant, answer):
    flask_app.config['SERVER_SIDE_SCORING'] = True
    q1 = questions[0]
    alice, bob = make_participant('Alice'), make_participant('Bob')
    host.start(q1.id)
    started = _state().voting_started_at

    forged = answer(alice, q1, 4, 0)
    forged.update(is_correct=True, points=2000)
    host.ingest_answer(forged, received_at=started + 1.0)
    host.ingest_answer(answer(bob, q1, q1.correct_option, 0), received_at=started + 3.0)
    host.reveal_result()

    assert _scores() == {'Alice': 0, 'Bob': 1700}
    bob_row = Response.query.filter_by(participant_id=bob.id).one()
    assert bob_row.response_time_ms == pytest.approx(3000.0)
