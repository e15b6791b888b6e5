"""A participant device.

The client registers once per device, follows the session over Socket.IO
and answers at most once per voting round. The bus may drop, repeat or
reorder notifications, so every snapshot is applied by revision and the
state is polled over HTTP whenever the connection (re)opens.
"""

from typing import Callable, Dict, List, Optional
import logging
import threading
import time

import requests
import socketio
from socketio.exceptions import SocketIOError

from livequiz import channels
from livequiz.models import PHASE_VOTING, PHASE_WAITING
from livequiz.services.quiz.answer_buffer import AnswerEvent
from livequiz.services.quiz.errors import InvalidDisplayName
from livequiz.services.quiz.scoring import calculate_score
from livequiz.services.quiz.validation import validate_display_name, DEFAULT_MAX_LENGTH
from .identity import Identity, IdentityStore

logger = logging.getLogger('livequiz.client')

DEFAULT_VOTING_DURATION_SEC = 10
HTTP_TIMEOUT_SEC = 10


class ParticipantClient:

    def __init__(self, base_url: str, identity_store: Optional[IdentityStore] = None,
                 sio=None, http=None, clock: Callable[[], float] = time.time,
                 max_name_length: int = DEFAULT_MAX_LENGTH,
                 on_state: Optional[Callable[[dict], None]] = None,
                 on_ranking: Optional[Callable[[List[dict]], None]] = None,
                 on_cleared: Optional[Callable[[], None]] = None) -> None:
        self.base_url = base_url.rstrip('/')
        self.identity_store = identity_store or IdentityStore()
        self.sio = sio if sio is not None else socketio.Client(reconnection=True)
        self.http = http if http is not None else requests.Session()
        self.clock = clock
        self.max_name_length = max_name_length
        self.on_state = on_state
        self.on_ranking = on_ranking
        self.on_cleared = on_cleared

        self.identity: Optional[Identity] = None
        self.state: Optional[dict] = None
        self.ranking: List[dict] = []
        # server clock minus local clock, refreshed with every snapshot
        self.clock_offset = 0.0
        self._answers: Dict[int, AnswerEvent] = {}
        # (question_id, voting_started_at) of the round the answers belong to
        self._round: Optional[tuple] = None
        self._lock = threading.RLock()
        self._handlers_bound = False

    # ---- Identity ----

    def register(self, name: Optional[str] = None) -> Identity:
        """Reuse the stored identity if the server still knows it, else join as ``name``."""
        if name is not None:
            name = validate_display_name(name, self.max_name_length)
        stored = self.identity_store.get()
        if stored is not None:
            if self._is_registered(stored.participant_id):
                self.identity = stored
                return stored
            logger.info("stored identity %s is gone, registering again", stored.participant_id)
            self.identity_store.clear()
        if name is None:
            raise InvalidDisplayName('Please enter a display name')
        resp = self.http.post(f'{self.base_url}/api/participants', json={'name': name}, timeout=HTTP_TIMEOUT_SEC)
        resp.raise_for_status()
        data = resp.json()
        self.identity = Identity(participant_id=data['id'], name=data['name'])
        self.identity_store.set(self.identity)
        return self.identity

    def _is_registered(self, participant_id: str) -> bool:
        resp = self.http.get(f'{self.base_url}/api/participants/{participant_id}', timeout=HTTP_TIMEOUT_SEC)
        if resp.status_code == 404:
            return False
        resp.raise_for_status()
        return True

    # ---- Connection ----

    def connect(self) -> None:
        if self.identity is None:
            raise RuntimeError('register() must succeed before connect()')
        self._bind_handlers()
        self.sio.connect(self.base_url, namespaces=[channels.NAMESPACE])

    def wait(self) -> None:
        self.sio.wait()

    def close(self) -> None:
        try:
            self.sio.disconnect()
        finally:
            self.http.close()

    def _bind_handlers(self) -> None:
        if self._handlers_bound:
            return
        ns = channels.NAMESPACE
        self.sio.on('connect', self._on_connect, namespace=ns)
        self.sio.on('disconnect', self._on_disconnect, namespace=ns)
        self.sio.on(channels.STATE_UPDATE, self.apply_state, namespace=ns)
        self.sio.on(channels.RANKING_UPDATE, self._on_ranking, namespace=ns)
        self.sio.on(channels.SESSION_CLEARED, self._on_session_cleared, namespace=ns)
        self._handlers_bound = True

    def _on_connect(self) -> None:
        logger.info("connected to %s", self.base_url)
        self.sio.emit(channels.JOIN_SESSION, {'role': 'participant'}, namespace=channels.NAMESPACE)
        # Notifications sent while we were away are lost; poll instead
        self.refresh_state()

    def _on_disconnect(self, *args) -> None:
        logger.warning("disconnected from %s, waiting for reconnect", self.base_url)

    def _on_ranking(self, payload) -> None:
        self.ranking = list((payload or {}).get('ranking') or [])
        if self.on_ranking:
            self.on_ranking(self.ranking)

    def _on_session_cleared(self, payload=None) -> None:
        logger.info("session cleared by the host, forgetting identity")
        with self._lock:
            self.identity_store.clear()
            self.identity = None
            self.state = None
            self._answers.clear()
            self._round = None
        if self.on_cleared:
            self.on_cleared()

    # ---- State ----

    def refresh_state(self) -> bool:
        try:
            resp = self.http.get(f'{self.base_url}/api/session/state', timeout=HTTP_TIMEOUT_SEC)
            resp.raise_for_status()
        except requests.RequestException as exc:
            logger.warning("state poll failed: %s", exc)
            return False
        return self.apply_state(resp.json())

    def apply_state(self, snapshot) -> bool:
        """Apply a state snapshot unless an equal or newer one was seen already."""
        if not isinstance(snapshot, dict):
            return False
        with self._lock:
            revision = int(snapshot.get('revision') or 0)
            if self.state is not None and revision <= int(self.state.get('revision') or 0):
                return False
            server_time = snapshot.get('server_time')
            if server_time is not None:
                self.clock_offset = float(server_time) - self.clock()
            self.state = snapshot
            self._track_round(snapshot)
        if self.on_state:
            self.on_state(snapshot)
        return True

    def _track_round(self, snapshot: dict) -> None:
        """Forget answers that belong to an earlier round.

        The host may run a question again (from result, or after a reset),
        so the one-answer rule holds per voting round, not per question.
        """
        phase = snapshot.get('phase')
        if phase == PHASE_WAITING:
            self._answers.clear()
            self._round = None
        elif phase == PHASE_VOTING:
            round_key = (snapshot.get('active_question_id'), snapshot.get('voting_started_at'))
            if round_key != self._round:
                self._answers.pop(round_key[0], None)
                self._round = round_key

    @property
    def phase(self) -> Optional[str]:
        return self.state.get('phase') if self.state else None

    @property
    def question(self) -> Optional[dict]:
        return self.state.get('question') if self.state else None

    def server_now(self) -> float:
        return self.clock() + self.clock_offset

    def remaining_seconds(self) -> float:
        """Time left to answer, counted from the host's voting start."""
        with self._lock:
            state = self.state
            if not state or state.get('phase') != PHASE_VOTING or state.get('voting_started_at') is None:
                return 0.0
            duration = float(state.get('voting_duration_sec') or DEFAULT_VOTING_DURATION_SEC)
            left = float(state['voting_started_at']) + duration - self.server_now()
            return max(0.0, min(duration, left))

    # ---- Answering ----

    def answer_for(self, question_id) -> Optional[AnswerEvent]:
        return self._answers.get(question_id)

    def submit_answer(self, option: int) -> Optional[AnswerEvent]:
        """Publish an answer for the active question.

        Returns the event, or None when answering is not possible (not
        voting, already answered, time is up, or the publish failed).
        """
        if option not in (1, 2, 3, 4):
            raise ValueError('option must be between 1 and 4')
        with self._lock:
            state = self.state
            if self.identity is None or not state or state.get('phase') != PHASE_VOTING:
                return None
            question = state.get('question') or {}
            question_id = state.get('active_question_id')
            if question_id is None or question_id in self._answers:
                return None
            if self.remaining_seconds() <= 0:
                return None
            elapsed_ms = max(0.0, (self.server_now() - float(state['voting_started_at'])) * 1000.0)
            # Hidden when the host scores answers itself; then points are only a hint
            correct_option = question.get('correct_option')
            is_correct = correct_option is not None and option == correct_option
            event = AnswerEvent(
                participant_id=self.identity.participant_id,
                participant_name=self.identity.name,
                question_id=question_id,
                selected_option=option,
                response_time_ms=round(elapsed_ms, 1),
                is_correct=is_correct,
                points=calculate_score(is_correct, elapsed_ms),
            )
            self._answers[question_id] = event
        try:
            self.sio.emit(channels.ANSWER, event.to_payload(), namespace=channels.NAMESPACE)
        except SocketIOError as exc:
            logger.warning("answer for question %s not sent: %s", question_id, exc)
            with self._lock:
                self._answers.pop(question_id, None)
            return None
        return event
