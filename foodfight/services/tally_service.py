"""
Tally & Winner Resolver

Scored-ballot aggregation:
- average = sum(scores) / count(scores) per candidate
- candidates without scores are left out of the ranking
- ranking is by average, descending; equal averages keep candidate
  creation order (first encountered wins)
"""
import logging
from collections import OrderedDict
from dataclasses import dataclass, asdict
from datetime import date
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from foodfight.orm.candidate import Candidate
from foodfight.orm.score import Score

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Standing:
    candidate_id: int
    name: str
    average: float
    count: int

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class Resolution:
    winner_id: Optional[int]
    standings: List[Standing]


def rank_standings(tallies: Iterable[Tuple[int, str, int, int]]) -> List[Standing]:
    """
    Rank (candidate_id, name, total, count) tallies given in encounter order.

    Zero-count tallies are dropped. sorted() is stable, so ties keep
    encounter order.
    """
    standings = [
        Standing(candidate_id=cid, name=name, average=total / count, count=count)
        for cid, name, total, count in tallies
        if count > 0
    ]
    return sorted(standings, key=lambda s: s.average, reverse=True)


def resolve_winner(standings: Sequence[Standing]) -> Optional[int]:
    return standings[0].candidate_id if standings else None


class TallyService:

    @staticmethod
    async def standings(db: AsyncSession, session_id: int) -> List[Standing]:
        """Ranked standings for a scored session."""
        result = await db.execute(
            select(
                Candidate.id,
                Candidate.name,
                func.coalesce(func.sum(Score.score), 0),
                func.count(Score.id)
            )
            .join(Score, Score.candidate_id == Candidate.id)
            .where(Candidate.session_id == session_id, Score.session_id == session_id)
            .group_by(Candidate.id, Candidate.name)
            .order_by(Candidate.id.asc())
        )
        return rank_standings(
            (row[0], row[1], int(row[2]), int(row[3])) for row in result.all()
        )

    @staticmethod
    async def resolve(db: AsyncSession, session_id: int) -> Resolution:
        """Winner and standings. winner_id is None when nobody scored."""
        standings = await TallyService.standings(db, session_id)
        winner_id = resolve_winner(standings)
        logger.info(
            f"Session {session_id}: resolved winner {winner_id} "
            f"from {sum(s.count for s in standings)} scores"
        )
        return Resolution(winner_id=winner_id, standings=standings)

    @staticmethod
    async def user_scores(db: AsyncSession, session_id: int, voter_id: str) -> Dict[int, int]:
        """candidate_id -> score for one voter."""
        result = await db.execute(
            select(Score.candidate_id, Score.score)
            .where(Score.session_id == session_id, Score.voter_id == voter_id)
        )
        return {row[0]: row[1] for row in result.all()}

    @staticmethod
    async def score_history(db: AsyncSession, session_ids: Sequence[int]) -> List[dict]:
        """
        Daily average score per candidate name across the given sessions.

        Returns one point per day with at least one score, oldest first:
            [{"date": "2024-05-01", "averages": {"Taco Place": 4.5}}, ...]
        """
        if not session_ids:
            return []

        result = await db.execute(
            select(Candidate.name, Score.score, Score.updated_at)
            .join(Candidate, Candidate.id == Score.candidate_id)
            .where(Score.session_id.in_(list(session_ids)))
            .order_by(Score.updated_at.asc(), Score.id.asc())
        )

        daily: "OrderedDict[date, Dict[str, List[int]]]" = OrderedDict()
        for name, score, stamped_at in result.all():
            bucket = daily.setdefault(stamped_at.date(), OrderedDict())
            totals = bucket.setdefault(name, [0, 0])
            totals[0] += score
            totals[1] += 1

        return [
            {
                "date": day.isoformat(),
                "averages": {
                    name: round(total / count, 1)
                    for name, (total, count) in per_name.items()
                },
            }
            for day, per_name in daily.items()
        ]
