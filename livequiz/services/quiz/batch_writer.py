from typing import Iterable, List
import time

from flask import current_app
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError

from livequiz import db
from livequiz.models import Participant, Response
from .answer_buffer import AnswerEvent
from .errors import BatchFlushError

_UPSERT_COLUMNS = (
    'participant_name',
    'selected_option',
    'response_time_ms',
    'is_correct',
    'points',
    'created_at',
)


def _response_upsert(rows: List[dict]):
    dialect = db.session.get_bind().dialect.name
    if dialect == 'postgresql':
        stmt = postgresql.insert(Response.__table__).values(rows)
    elif dialect == 'sqlite':
        stmt = sqlite.insert(Response.__table__).values(rows)
    else:
        raise BatchFlushError(f'Upsert is not supported on {dialect}')
    return stmt.on_conflict_do_update(
        index_elements=['participant_id', 'question_id'],
        set_={col: stmt.excluded[col] for col in _UPSERT_COLUMNS},
    )


def flush_answers(events: Iterable[AnswerEvent]) -> int:
    """Commit buffered answers and their points in one transaction.

    Responses are upserted on (participant, question) first, then every
    participant with points is bumped with an atomic ``score = score + n``.
    Answers from participants that no longer exist are dropped. Returns the
    number of responses written; raises BatchFlushError after a rollback.
    """
    events = list(events)
    if not events:
        return 0

    try:
        ids = {e.participant_id for e in events}
        known = {pid for (pid,) in db.session.query(Participant.id).filter(Participant.id.in_(list(ids)))}
        dropped = [e for e in events if e.participant_id not in known]
        for e in dropped:
            current_app.logger.warning(
                f"[answer-drop] participant={e.participant_id} question={e.question_id} reason=unknown-participant"
            )
        kept = [e for e in events if e.participant_id in known]
        if not kept:
            return 0

        now = time.time()
        rows = [{
            'participant_id': e.participant_id,
            'participant_name': e.participant_name,
            'question_id': e.question_id,
            'selected_option': e.selected_option,
            'response_time_ms': e.response_time_ms,
            'is_correct': e.is_correct,
            'points': e.points,
            'created_at': now,
        } for e in kept]
        db.session.execute(_response_upsert(rows))

        for e in kept:
            if e.points > 0:
                Participant.query.filter_by(id=e.participant_id).update(
                    {Participant.score: Participant.score + e.points}, synchronize_session=False
                )
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.error(f"[flush-failed] answers={len(events)} error={exc}")
        raise BatchFlushError('Could not save the pending answers', pending=len(events)) from exc

    current_app.logger.info(f"[flush] responses={len(kept)} dropped={len(dropped)}")
    return len(kept)
