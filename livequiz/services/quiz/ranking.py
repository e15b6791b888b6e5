from dataclasses import dataclass, asdict
from typing import List

from livequiz.models import Participant


@dataclass(frozen=True)
class RankingEntry:
    name: str
    score: int
    rank: int

    def to_dict(self):
        return asdict(self)


def top_ranking(limit: int = 10) -> List[RankingEntry]:
    """Top ``limit`` participants by score.

    Equal scores are ordered by join time, then by participant id, so the
    earlier joiner takes the better rank. Rank is the 1-based position.
    """
    if limit <= 0:
        return []
    rows = (
        Participant.query
        .order_by(Participant.score.desc(), Participant.joined_at.asc(), Participant.id.asc())
        .limit(limit)
        .all()
    )
    return [RankingEntry(name=p.name, score=p.score, rank=i + 1) for i, p in enumerate(rows)]
