"""
Ballot Recorder

Match ballots (bracket mode):
- one Ballot per (match_id, voter_id); the unique constraint decides
  races between duplicate submissions
- the phase and round are re-read under a shared lock before the
  counter increment, so a vote landing after the round closed rolls back

Score ballots (scored mode):
- one Score per (session_id, voter_id, candidate_id), upserted so a
  voter can revise a rating until the window closes
"""
import logging

from sqlalchemy import select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from foodfight.errors import (
    DuplicateVoteError,
    InvalidPhaseError,
    InvalidScoreError,
    NotFoundError,
    ValidationFailedError,
    persistence_errors,
)
from foodfight.orm.base import utcnow
from foodfight.orm.candidate import Candidate
from foodfight.orm.food_fight import FoodFightSession, SessionPhase, VotingMode
from foodfight.orm.match import Match, Ballot
from foodfight.orm.score import Score, MIN_SCORE, MAX_SCORE
from foodfight.services.session_guard import read_phase_shared

logger = logging.getLogger(__name__)


def validate_score(score) -> int:
    """Accept only a real int (bools excluded) in [MIN_SCORE, MAX_SCORE]."""
    if isinstance(score, bool) or not isinstance(score, int):
        raise InvalidScoreError(
            f"Score must be an integer between {MIN_SCORE} and {MAX_SCORE}",
            {"score": repr(score)}
        )
    if score < MIN_SCORE or score > MAX_SCORE:
        raise InvalidScoreError(
            f"Score must be between {MIN_SCORE} and {MAX_SCORE}",
            {"score": score}
        )
    return score


def _insert_for(db: AsyncSession):
    if db.bind.dialect.name == "postgresql":
        return postgresql.insert
    return sqlite.insert


class BallotService:

    # =========================================================================
    # Bracket ballots
    # =========================================================================

    @staticmethod
    @persistence_errors
    async def cast_vote(
        db: AsyncSession,
        match_id: int,
        candidate_id: int,
        voter_id: str
    ) -> Match:
        """
        Record one voter's choice in a match.

        Args:
            db: Database session
            match_id: Match being voted on
            candidate_id: Candidate in slot A or slot B
            voter_id: Resolved caller identity

        Returns:
            The match with refreshed counters

        Raises:
            NotFoundError: Match or session missing
            InvalidPhaseError: Session not voting, match not in the current round, or bye
            ValidationFailedError: candidate_id is in neither slot
            DuplicateVoteError: Voter already has a ballot for this match
        """
        match = await db.get(Match, match_id, populate_existing=True)
        if not match:
            raise NotFoundError("Match", match_id)

        session = await db.get(FoodFightSession, match.session_id, populate_existing=True)
        if not session:
            raise NotFoundError("Session", match.session_id)

        if session.phase != SessionPhase.VOTING.value or match.round != session.current_round:
            raise InvalidPhaseError(
                "This match is not open for voting",
                {"match_id": match_id, "phase": session.phase, "current_round": session.current_round}
            )
        if match.is_bye:
            raise InvalidPhaseError("Byes advance without a vote", {"match_id": match_id})

        if candidate_id == match.slot_a_id:
            counter = Match.votes_a
        elif candidate_id == match.slot_b_id:
            counter = Match.votes_b
        else:
            raise ValidationFailedError(
                "Candidate is not part of this match",
                {"match_id": match_id, "candidate_id": candidate_id}
            )

        already = await db.scalar(
            select(Ballot.id).where(Ballot.match_id == match_id, Ballot.voter_id == voter_id)
        )
        if already:
            logger.warning(f"Duplicate vote by {voter_id} on match {match_id}")
            raise DuplicateVoteError(match_id, voter_id)

        db.add(Ballot(match_id=match_id, voter_id=voter_id, candidate_id=candidate_id))
        try:
            await db.flush()
        except IntegrityError:
            await db.rollback()
            logger.warning(f"Duplicate vote by {voter_id} on match {match_id} (lost race)")
            raise DuplicateVoteError(match_id, voter_id)

        # Shared lock: a concurrent closer either sees this vote or has already closed the round.
        current = await read_phase_shared(db, match.session_id)
        if current != (SessionPhase.VOTING.value, match.round):
            await db.rollback()
            raise InvalidPhaseError("Voting for this round has closed", {"match_id": match_id})

        await db.execute(
            update(Match)
            .where(Match.id == match_id)
            .values({counter: counter + 1})
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        await db.refresh(match)

        logger.info(f"Vote recorded: match {match_id}, candidate {candidate_id}, voter {voter_id}")
        return match

    @staticmethod
    async def user_votes(db: AsyncSession, session_id: int, voter_id: str) -> dict:
        """match_id -> candidate_id for one voter's ballots in a session."""
        result = await db.execute(
            select(Ballot.match_id, Ballot.candidate_id)
            .join(Match, Match.id == Ballot.match_id)
            .where(Match.session_id == session_id, Ballot.voter_id == voter_id)
        )
        return {row[0]: row[1] for row in result.all()}

    # =========================================================================
    # Scored ballots
    # =========================================================================

    @staticmethod
    @persistence_errors
    async def submit_score(
        db: AsyncSession,
        session_id: int,
        candidate_id: int,
        voter_id: str,
        score
    ) -> Score:
        """
        Record or revise a voter's rating of a candidate.

        Raises:
            NotFoundError: Session missing, or candidate not in this session
            InvalidPhaseError: Session not voting, or not in scored mode
            InvalidScoreError: Score not an integer in range
        """
        session = await db.get(FoodFightSession, session_id, populate_existing=True)
        if not session:
            raise NotFoundError("Session", session_id)
        if session.phase != SessionPhase.VOTING.value:
            raise InvalidPhaseError(
                "Scoring is not open",
                {"session_id": session_id, "phase": session.phase}
            )
        if session.mode != VotingMode.SCORED.value:
            raise InvalidPhaseError(
                "Session does not use scored voting",
                {"session_id": session_id, "mode": session.mode}
            )

        score = validate_score(score)

        in_session = await db.scalar(
            select(Candidate.id)
            .where(Candidate.id == candidate_id, Candidate.session_id == session_id)
        )
        if not in_session:
            raise NotFoundError("Candidate", candidate_id)

        now = utcnow()
        insert = _insert_for(db)
        stmt = insert(Score).values(
            session_id=session_id,
            voter_id=voter_id,
            candidate_id=candidate_id,
            score=score,
            created_at=now,
            updated_at=now
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[Score.session_id, Score.voter_id, Score.candidate_id],
            set_={"score": stmt.excluded.score, "updated_at": now}
        )
        await db.execute(stmt)

        current = await read_phase_shared(db, session_id)
        if current is None or current[0] != SessionPhase.VOTING.value:
            await db.rollback()
            raise InvalidPhaseError("Scoring has closed", {"session_id": session_id})

        await db.commit()

        result = await db.execute(
            select(Score)
            .where(
                Score.session_id == session_id,
                Score.voter_id == voter_id,
                Score.candidate_id == candidate_id
            )
            .execution_options(populate_existing=True)
        )
        saved = result.scalar_one()
        logger.info(f"Score recorded: session {session_id}, candidate {candidate_id}, voter {voter_id} -> {score}")
        return saved
