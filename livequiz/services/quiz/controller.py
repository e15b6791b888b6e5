"""The host side of a quiz session.

HostController is the only writer of the SessionState row. It drives the
phase machine (waiting -> voting -> result -> ranking, result -> voting for
the next question, any -> waiting), owns the answer buffer and the
countdown, and publishes every state change on the bus.
"""

from dataclasses import replace
from typing import Optional
import threading
import time

from livequiz import db, socketio
from livequiz import channels
from livequiz.models import (
    Participant, Response,
    PHASE_WAITING, PHASE_VOTING, PHASE_RESULT, PHASE_RANKING,
)
from .answer_buffer import AnswerEvent, PendingAnswerBuffer
from .batch_writer import flush_answers
from .catalog import get_question, next_question
from .countdown import Countdown
from .errors import BatchFlushError, ConfirmationRequired, InvalidTransition
from .ranking import top_ranking
from .scoring import calculate_score
from .state import load_state, write_state


class HostController:

    def __init__(self, app) -> None:
        self.app = app
        self.buffer = PendingAnswerBuffer()
        self.countdown = Countdown(app)
        # Serializes transitions between HTTP handlers and the countdown worker
        self._lock = threading.RLock()
        # Host-local copy of the active question, so intake never reads the db
        self._correct_option: Optional[int] = None
        self._voting_started_at: Optional[float] = None

    @property
    def logger(self):
        return self.app.logger

    @property
    def voting_duration(self) -> int:
        return int(self.app.config.get('VOTING_DURATION_SEC', 10))

    @property
    def ranking_limit(self) -> int:
        return int(self.app.config.get('RANKING_LIMIT', 10))

    # ---- Reads ----

    def snapshot(self) -> dict:
        """Full state payload as published on the bus."""
        state = load_state()
        question = state.active_question
        # With host-side scoring the answer stays hidden until the reveal
        show_answer = state.phase == PHASE_RESULT or not self.app.config.get('SERVER_SIDE_SCORING')
        payload = state.to_dict()
        payload['server_time'] = time.time()
        payload['voting_duration_sec'] = self.voting_duration
        payload['question'] = question.to_dict(include_answer=show_answer) if question else None
        return payload

    def progress(self) -> dict:
        state = load_state()
        return {
            'phase': state.phase,
            'question_id': self.buffer.question_id,
            'answered': self.buffer.observed_count,
            'pending': len(self.buffer),
            'participants': Participant.query.count(),
            'distribution': {str(k): v for k, v in self.buffer.distribution().items()},
            'remaining_sec': round(self.countdown.remaining(), 1),
        }

    def ranking(self, limit: Optional[int] = None):
        return top_ranking(self.ranking_limit if limit is None else limit)

    # ---- Transitions ----

    def start(self, question_id):
        """waiting|result -> voting on ``question_id``."""
        with self._lock:
            state = load_state()
            if state.phase not in (PHASE_WAITING, PHASE_RESULT):
                raise InvalidTransition(f'Cannot start a question while {state.phase}')
            question = get_question(question_id)
            if len(self.buffer):
                self.logger.warning(
                    f"[buffer-discard] question={self.buffer.question_id} unflushed={len(self.buffer)}"
                )
            started_at = time.time()
            state = write_state(PHASE_VOTING, question.id, started_at)
            self._correct_option = question.correct_option
            self._voting_started_at = started_at
            self.buffer.open(question.id)
            self.logger.info(f"[phase] voting question={question.id} revision={state.revision}")
            self._publish_state()
            self.countdown.schedule(question.id, started_at, self.voting_duration, self._on_countdown_expired)
            return state

    def start_next(self):
        """Start the question after the active one, or the first one from waiting."""
        with self._lock:
            state = load_state()
            question = next_question(state.active_question_id)
            if question is None:
                raise InvalidTransition('There is no next question')
            return self.start(question.id)

    def reveal_result(self, force: bool = False):
        """voting -> result, after committing every buffered answer.

        Intake stays open while the first batch is committed; answers that
        arrive meanwhile are committed in a second batch after sealing.
        A failed commit keeps the phase at voting and re-raises, unless
        ``force`` is set: then the failure is logged, the phase advances and
        the sealed buffer is kept for ``flush_pending``.
        """
        with self._lock:
            state = load_state()
            if state.phase != PHASE_VOTING:
                raise InvalidTransition(f'Cannot reveal the result while {state.phase}')
            question_id = state.active_question_id
            try:
                events = self.buffer.pending()
                flush_answers(events)
                self.buffer.discard(events)
                late = self.buffer.seal()
                if late:
                    flush_answers(late)
                    self.buffer.discard(late)
            except BatchFlushError as exc:
                self._notify_host(channels.FLUSH_FAILED, exc.to_dict())
                if not force:
                    self.buffer.unseal()
                    raise
                self.buffer.seal()
                self.logger.error(
                    f"[flush-override] question={question_id} retained={len(self.buffer)}"
                )
            self.countdown.cancel()
            state = write_state(PHASE_RESULT, question_id)
            self.logger.info(f"[phase] result question={question_id} revision={state.revision}")
            self._publish_state()
            self._publish_ranking()
            return state

    def flush_pending(self) -> int:
        """Retry committing answers kept after a forced reveal."""
        with self._lock:
            state = load_state()
            if state.phase == PHASE_VOTING:
                raise InvalidTransition('Answers are committed when the result is revealed')
            events = self.buffer.seal()
            written = flush_answers(events)
            self.buffer.clear()
            self._publish_ranking()
            return written

    def show_ranking(self):
        """any -> ranking."""
        with self._lock:
            self._leave_voting()
            state = write_state(PHASE_RANKING)
            self.logger.info(f"[phase] ranking revision={state.revision}")
            self._publish_state()
            self._publish_ranking()
            return state

    def return_to_waiting(self):
        """any -> waiting. Scores are kept."""
        with self._lock:
            self._leave_voting()
            state = write_state(PHASE_WAITING)
            self.logger.info(f"[phase] waiting revision={state.revision}")
            self._publish_state()
            return state

    def reset_session(self, confirmed: bool = False):
        """Delete every response, zero every score, then return to waiting."""
        if not confirmed:
            raise ConfirmationRequired('Resetting the session needs confirmation')
        with self._lock:
            Response.query.delete(synchronize_session=False)
            Participant.query.update({Participant.score: 0}, synchronize_session=False)
            db.session.commit()
            self.buffer.reset()
            self.logger.warning("[reset] responses deleted, scores zeroed")
            state = self.return_to_waiting()
            self._publish_ranking()
            return state

    def purge_participants(self, confirmed: bool = False):
        """Delete every response and participant, then return to waiting."""
        if not confirmed:
            raise ConfirmationRequired('Removing all participants needs confirmation')
        with self._lock:
            Response.query.delete(synchronize_session=False)
            Participant.query.delete(synchronize_session=False)
            db.session.commit()
            self.buffer.reset()
            self.logger.warning("[purge] responses and participants deleted")
            socketio.emit(channels.SESSION_CLEARED, {}, to=channels.SESSION_ROOM, namespace=channels.NAMESPACE)
            state = self.return_to_waiting()
            self._publish_ranking()
            return state

    # ---- Answer intake ----

    def ingest_answer(self, payload, received_at: Optional[float] = None) -> bool:
        """Buffer one answer event from the bus. Returns True if it was kept.

        Malformed, stale and duplicate events are dropped without error.
        """
        try:
            event = AnswerEvent.from_payload(payload)
        except ValueError as exc:
            self.logger.debug(f"[answer-drop] malformed: {exc}")
            return False
        if self.app.config.get('SERVER_SIDE_SCORING'):
            event = self._rescore(event, time.time() if received_at is None else received_at)
        if not self.buffer.offer(event):
            self.logger.debug(
                f"[answer-drop] participant={event.participant_id} question={event.question_id} stale-or-duplicate"
            )
            return False
        self._notify_host(channels.ANSWER_PROGRESS, {
            'question_id': event.question_id,
            'answered': self.buffer.observed_count,
            'distribution': {str(k): v for k, v in self.buffer.distribution().items()},
        })
        return True

    def _rescore(self, event: AnswerEvent, received_at: float) -> AnswerEvent:
        if event.question_id != self.buffer.question_id or self._voting_started_at is None:
            return event
        elapsed_ms = max(0.0, (received_at - self._voting_started_at) * 1000.0)
        is_correct = event.selected_option == self._correct_option
        return replace(
            event,
            response_time_ms=elapsed_ms,
            is_correct=is_correct,
            points=calculate_score(is_correct, elapsed_ms),
        )

    # ---- Internals ----

    def _leave_voting(self) -> None:
        self.countdown.cancel()
        if self.buffer.accepting:
            self.buffer.seal()
            if len(self.buffer):
                self.logger.warning(
                    f"[buffer-hold] question={self.buffer.question_id} unflushed={len(self.buffer)}"
                )

    def _on_countdown_expired(self, question_id: int) -> None:
        self._notify_host('countdown_ended', {'question_id': question_id})
        if not self.app.config.get('AUTO_ADVANCE'):
            return
        with self._lock:
            # The host may have revealed by hand while the timer was firing
            state = load_state()
            if state.phase != PHASE_VOTING or state.active_question_id != question_id:
                return
            try:
                self.reveal_result()
            except BatchFlushError as exc:
                self.logger.error(f"[auto-advance] question={question_id} blocked: {exc.message}")

    def _publish_state(self) -> None:
        socketio.emit(channels.STATE_UPDATE, self.snapshot(), to=channels.SESSION_ROOM, namespace=channels.NAMESPACE)

    def _publish_ranking(self) -> None:
        entries = [e.to_dict() for e in self.ranking()]
        socketio.emit(channels.RANKING_UPDATE, {'ranking': entries}, to=channels.SESSION_ROOM, namespace=channels.NAMESPACE)

    def _notify_host(self, event: str, payload: dict) -> None:
        socketio.emit(event, payload, to=channels.HOST_ROOM, namespace=channels.NAMESPACE)
