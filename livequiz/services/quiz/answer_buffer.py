"""Host-side intake of answer events.

Participants publish answers on the bus; the host keeps them in memory,
keyed by (participant, question), until the result is revealed and the
whole batch is committed at once.
"""

from dataclasses import dataclass, asdict
from typing import Dict, List, Optional, Set, Tuple
import threading


@dataclass(frozen=True)
class AnswerEvent:
    participant_id: str
    participant_name: str
    question_id: int
    selected_option: int
    response_time_ms: float
    is_correct: bool
    points: int

    @property
    def key(self) -> Tuple[str, int]:
        return (self.participant_id, self.question_id)

    @classmethod
    def from_payload(cls, data) -> 'AnswerEvent':
        """Build an event from a bus payload, raising ValueError when malformed."""
        if not isinstance(data, dict):
            raise ValueError('answer payload must be an object')
        participant_id = data.get('participant_id')
        if not participant_id or not isinstance(participant_id, str):
            raise ValueError('participant_id is required')
        try:
            question_id = int(data['question_id'])
            selected_option = int(data['selected_option'])
            response_time_ms = float(data.get('response_time_ms', 0))
            points = int(data.get('points', 0))
        except (KeyError, TypeError, ValueError):
            raise ValueError('question_id and selected_option must be numbers')
        if selected_option not in (1, 2, 3, 4):
            raise ValueError('selected_option must be between 1 and 4')
        if response_time_ms < 0 or points < 0:
            raise ValueError('response_time_ms and points must not be negative')
        return cls(
            participant_id=participant_id,
            participant_name=str(data.get('participant_name') or '')[:64],
            question_id=question_id,
            selected_option=selected_option,
            response_time_ms=response_time_ms,
            is_correct=bool(data.get('is_correct')),
            points=points,
        )

    def to_payload(self) -> dict:
        return asdict(self)


class PendingAnswerBuffer:
    """Deduplicated answers for the active question, awaiting a batch flush.

    Only the answer ingestion path mutates the buffer. The lock keeps the
    check-then-insert atomic when socket handlers run on worker threads.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: Dict[Tuple[str, int], AnswerEvent] = {}
        # Keys already committed this round, still rejected as duplicates
        self._committed: Set[Tuple[str, int]] = set()
        self._distribution: Dict[int, int] = {1: 0, 2: 0, 3: 0, 4: 0}
        self._accepting = False
        self.question_id: Optional[int] = None
        # Display aid for the host ("12/30 answered"), never used for scoring
        self.observed_count = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key) -> bool:
        return key in self._entries

    @property
    def accepting(self) -> bool:
        return self._accepting

    def open(self, question_id: int) -> None:
        """Start collecting answers for ``question_id``, dropping anything older."""
        with self._lock:
            self._entries.clear()
            self._committed.clear()
            self._distribution = {1: 0, 2: 0, 3: 0, 4: 0}
            self.observed_count = 0
            self.question_id = question_id
            self._accepting = True

    def offer(self, event: AnswerEvent) -> bool:
        """Insert ``event`` unless it is stale or a duplicate. Returns True if kept."""
        with self._lock:
            if not self._accepting or event.question_id != self.question_id:
                return False
            if event.key in self._entries or event.key in self._committed:
                return False
            self._entries[event.key] = event
            self._distribution[event.selected_option] += 1
            self.observed_count += 1
            return True

    def seal(self) -> List[AnswerEvent]:
        """Stop intake and return the buffered events for flushing."""
        with self._lock:
            self._accepting = False
            return list(self._entries.values())

    def pending(self) -> List[AnswerEvent]:
        """The buffered events, without stopping intake."""
        with self._lock:
            return list(self._entries.values())

    def discard(self, events) -> None:
        """Drop the entries of ``events`` once they are committed."""
        with self._lock:
            for event in events:
                self._entries.pop(event.key, None)
                self._committed.add(event.key)

    def unseal(self) -> None:
        with self._lock:
            if self.question_id is not None:
                self._accepting = True

    def clear(self) -> None:
        """Drop flushed entries; the progress counters stay for display."""
        with self._lock:
            self._entries.clear()

    def reset(self) -> None:
        with self._lock:
            self._entries.clear()
            self._committed.clear()
            self._distribution = {1: 0, 2: 0, 3: 0, 4: 0}
            self.observed_count = 0
            self.question_id = None
            self._accepting = False

    def distribution(self) -> Dict[int, int]:
        with self._lock:
            return dict(self._distribution)
