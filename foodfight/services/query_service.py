"""
Query Service

Read projections for the presentation layer. Reading a session is also
when an expired voting window is noticed: get_session runs the
non-forced phase-end check before building the view.
"""
import logging
from typing import Dict, List, Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from foodfight.orm.candidate import Candidate
from foodfight.orm.food_fight import FoodFightSession, SessionPhase, VotingMode
from foodfight.services.ballot_service import BallotService
from foodfight.services.bracket_builder import BracketBuilder
from foodfight.services.bracket_layout import BracketLayout, layout_bracket
from foodfight.services.lifecycle_service import LifecycleService
from foodfight.services.tally_service import TallyService

logger = logging.getLogger(__name__)


def _match_dict(match, user_votes: Dict[int, int]) -> dict:
    return {
        "id": match.id,
        "round": match.round,
        "position": match.position,
        "slot_a": match.slot_a.to_dict() if match.slot_a else None,
        "slot_b": match.slot_b.to_dict() if match.slot_b else None,
        "votes_a": match.votes_a,
        "votes_b": match.votes_b,
        "is_bye": match.is_bye,
        "winner_id": match.winner_id,
        "user_vote": user_votes.get(match.id),
    }


class QueryService:

    @staticmethod
    async def get_session(
        db: AsyncSession,
        session_id: int,
        viewer_id: Optional[str] = None,
        observe: bool = True
    ) -> dict:
        """
        Full view of one session.

        Keys: session, candidates, winner, and per mode either
        matches_by_round (bracket) or standings + user_scores (scored).
        """
        if observe:
            await LifecycleService.check_phase_end(db, session_id)

        session = await LifecycleService.get_session_or_404(db, session_id)
        candidates = await LifecycleService.list_candidates(db, session_id)

        view = {
            "session": session.to_dict(),
            "candidates": [c.to_dict() for c in candidates],
            "winner": session.winner.to_dict() if session.winner else None,
        }

        if session.mode == VotingMode.BRACKET.value:
            view["matches_by_round"] = await QueryService.matches_by_round(db, session_id, viewer_id)
        else:
            if session.phase != SessionPhase.NOMINATING.value:
                standings = await TallyService.standings(db, session_id)
                view["standings"] = [s.to_dict() for s in standings]
            if viewer_id:
                view["user_scores"] = await TallyService.user_scores(db, session_id, viewer_id)

        return view

    @staticmethod
    async def matches_by_round(
        db: AsyncSession,
        session_id: int,
        viewer_id: Optional[str] = None
    ) -> Dict[int, List[dict]]:
        grouped = await BracketBuilder.get_matches_by_round(db, session_id)
        user_votes = await BallotService.user_votes(db, session_id, viewer_id) if viewer_id else {}
        return {
            round_number: [_match_dict(m, user_votes) for m in matches]
            for round_number, matches in grouped.items()
        }

    @staticmethod
    async def bracket_layout(db: AsyncSession, session_id: int) -> BracketLayout:
        await LifecycleService.get_session_or_404(db, session_id)
        grouped = await BracketBuilder.get_matches_by_round(db, session_id)
        return layout_bracket(grouped)

    @staticmethod
    async def list_sessions(db: AsyncSession, limit: int = 50, offset: int = 0) -> List[dict]:
        """Sessions newest first, each with its winner (if any) and candidate count."""
        counts = (
            select(Candidate.session_id, func.count(Candidate.id).label("candidate_count"))
            .group_by(Candidate.session_id)
            .subquery()
        )
        result = await db.execute(
            select(FoodFightSession, func.coalesce(counts.c.candidate_count, 0))
            .outerjoin(counts, counts.c.session_id == FoodFightSession.id)
            .order_by(FoodFightSession.created_at.desc(), FoodFightSession.id.desc())
            .limit(limit)
            .offset(offset)
        )

        sessions = []
        for session, candidate_count in result.all():
            item = session.to_dict()
            item["candidate_count"] = candidate_count
            item["winner"] = session.winner.to_dict() if session.winner else None
            sessions.append(item)
        return sessions

    @staticmethod
    async def known_candidates(db: AsyncSession) -> List[dict]:
        """
        Every candidate name ever nominated, once, ordered by name.
        The most recent nomination supplies category and links.
        """
        latest = (
            select(func.max(Candidate.id).label("id"))
            .group_by(Candidate.name)
            .subquery()
        )
        result = await db.execute(
            select(Candidate)
            .join(latest, latest.c.id == Candidate.id)
            .order_by(Candidate.name.asc())
        )
        return [
            {
                "name": c.name,
                "category": c.category,
                "external_link": c.external_link,
                "address": c.address,
                "external_place_id": c.external_place_id,
            }
            for c in result.scalars().all()
        ]
