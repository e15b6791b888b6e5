"""Persistence for the single SessionState row."""

from typing import Optional
import time

from livequiz import db
from livequiz.models import SessionState, SESSION_STATE_ID, PHASE_VOTING, PHASE_RESULT


def load_state() -> SessionState:
    """Return the session row, creating it in the waiting phase on first use."""
    state = db.session.get(SessionState, SESSION_STATE_ID)
    if state is None:
        state = SessionState(id=SESSION_STATE_ID, revision=0, updated_at=time.time())
        db.session.add(state)
        db.session.commit()
    return state


def write_state(phase: str, question_id: Optional[int] = None,
                voting_started_at: Optional[float] = None) -> SessionState:
    """Overwrite the session row and bump its revision (last write wins)."""
    if phase not in (PHASE_VOTING, PHASE_RESULT):
        question_id = None
    if phase != PHASE_VOTING:
        voting_started_at = None
    state = load_state()
    state.phase = phase
    state.active_question_id = question_id
    state.voting_started_at = voting_started_at
    state.revision = (state.revision or 0) + 1
    state.updated_at = time.time()
    db.session.add(state)
    db.session.commit()
    return state
