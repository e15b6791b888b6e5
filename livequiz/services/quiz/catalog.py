import json
from typing import List, Optional

from livequiz import db
from livequiz.models import Question, Response, PHASE_WAITING
from .errors import InvalidTransition, UnknownQuestion
from .state import load_state


def list_questions() -> List[Question]:
    return Question.query.order_by(Question.position.asc(), Question.id.asc()).all()


def get_question(question_id) -> Question:
    try:
        question_id = int(question_id)
    except (TypeError, ValueError):
        raise UnknownQuestion('question_id must be a number')
    question = db.session.get(Question, question_id)
    if question is None:
        raise UnknownQuestion(f'Question {question_id} not found')
    return question


def next_question(after_id: Optional[int]) -> Optional[Question]:
    """The question following ``after_id`` in catalog order (first if None)."""
    questions = list_questions()
    if after_id is None:
        return questions[0] if questions else None
    ids = [q.id for q in questions]
    if after_id not in ids:
        return None
    idx = ids.index(after_id) + 1
    return questions[idx] if idx < len(questions) else None


def _parse_item(item, index):
    if not isinstance(item, dict):
        raise ValueError(f'question #{index} must be an object')
    prompt = item.get('prompt') or item.get('question')
    options = item.get('options')
    if options is None:
        options = [item.get(f'option_{n}') for n in range(1, 5)]
    correct = item.get('correct_option', item.get('correct_answer_index'))
    if not prompt:
        raise ValueError(f'question #{index} has no prompt')
    if not isinstance(options, list) or len(options) != 4 or not all(options):
        raise ValueError(f'question #{index} needs exactly four options')
    try:
        correct = int(correct)
    except (TypeError, ValueError):
        raise ValueError(f'question #{index} has no correct option')
    if correct not in (1, 2, 3, 4):
        raise ValueError(f'question #{index} correct option must be 1-4')
    return Question(
        prompt=prompt,
        option_1=str(options[0]),
        option_2=str(options[1]),
        option_3=str(options[2]),
        option_4=str(options[3]),
        correct_option=correct,
        position=int(item.get('position', item.get('order_num', index))),
    )


def load_catalog(items, replace=False) -> int:
    """Add questions from a list of dicts. Returns how many were loaded."""
    if not isinstance(items, list):
        raise ValueError('question catalog must be a list')
    questions = [_parse_item(item, i + 1) for i, item in enumerate(items)]
    if replace:
        # Only while waiting, when no question is active
        state = load_state()
        if state.phase != PHASE_WAITING:
            raise InvalidTransition(f'Cannot replace the catalog while {state.phase}')
        Response.query.delete()
        Question.query.delete()
    db.session.add_all(questions)
    db.session.commit()
    return len(questions)


def load_catalog_file(path, replace=False) -> int:
    with open(path, encoding='utf-8') as fh:
        return load_catalog(json.load(fh), replace=replace)
