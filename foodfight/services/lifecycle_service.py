"""
Session Lifecycle Service

State machine:
    nominating --start_voting--> voting
    voting --round ends (bracket, not final)--> voting (round + 1)
    voting --final round ends / score window ends--> completed

completed is terminal. Every transition is a conditional UPDATE on the
session row (see session_guard); the mode-specific work happens in the
VotingStrategy for the session's mode.

Authorization:
- start_voting, forced check_phase_end and delete_session: creator only
- actor_id None means a system caller (CLI, sweeper) and is always allowed
"""
import logging
import random
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import select, delete, update, exists, func
from sqlalchemy.ext.asyncio import AsyncSession

from foodfight.config import settings
from foodfight.errors import (
    FoodFightError,
    ForbiddenError,
    InsufficientCandidatesError,
    InvalidPhaseError,
    NotFoundError,
    ValidationFailedError,
    persistence_errors,
)
from foodfight.orm.base import utcnow
from foodfight.orm.candidate import Candidate
from foodfight.orm.food_fight import FoodFightSession, SessionPhase, VotingMode
from foodfight.orm.match import Match, Ballot
from foodfight.orm.score import Score
from foodfight.services.session_guard import conditional_transition, read_phase_shared
from foodfight.services.strategies import strategy_for

logger = logging.getLogger(__name__)

MIN_CANDIDATES = 2


def _voting_window(voting_window: Optional[timedelta]) -> timedelta:
    if voting_window is not None:
        return voting_window
    return timedelta(seconds=settings.VOTING_WINDOW_SECONDS)


def _require_creator(session: FoodFightSession, actor_id: Optional[str], action: str) -> None:
    if actor_id is not None and actor_id != session.creator_id:
        logger.warning(f"User {actor_id} may not {action} session {session.id}")
        raise ForbiddenError(
            f"Only the session creator can {action}",
            {"session_id": session.id}
        )


def _round_open(session: FoodFightSession, expected_round: Optional[int]) -> bool:
    if session.phase != SessionPhase.VOTING.value:
        return False
    if expected_round is not None and session.is_bracket and session.current_round != expected_round:
        return False
    return True


def _clean_name(value: Optional[str], field: str) -> str:
    cleaned = (value or "").strip()
    if not cleaned:
        raise ValidationFailedError(f"{field} must not be blank", {"field": field})
    return cleaned


class LifecycleService:

    # =========================================================================
    # Reads
    # =========================================================================

    @staticmethod
    async def get_session_or_404(db: AsyncSession, session_id: int) -> FoodFightSession:
        """Load a session, overwriting any stale copy in the identity map."""
        result = await db.execute(
            select(FoodFightSession)
            .where(FoodFightSession.id == session_id)
            .execution_options(populate_existing=True)
        )
        session = result.scalar_one_or_none()
        if not session:
            raise NotFoundError("Session", session_id)
        return session

    @staticmethod
    async def list_candidates(db: AsyncSession, session_id: int) -> List[Candidate]:
        """Candidates of a session in nomination order."""
        result = await db.execute(
            select(Candidate)
            .where(Candidate.session_id == session_id)
            .order_by(Candidate.id.asc())
        )
        return list(result.scalars().all())

    # =========================================================================
    # Nominating
    # =========================================================================

    @staticmethod
    @persistence_errors
    async def create_session(
        db: AsyncSession,
        name: str,
        creator_id: str,
        mode: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> FoodFightSession:
        """
        Create a session in the nominating phase.

        end_time is set to now + nomination window. It is advisory only;
        nomination never closes on its own.

        Raises:
            ValidationFailedError: Blank name or unknown mode
        """
        name = _clean_name(name, "name")
        mode = mode or settings.DEFAULT_VOTING_MODE
        if mode not in {m.value for m in VotingMode}:
            raise ValidationFailedError(f"Unknown voting mode '{mode}'", {"mode": mode})

        now = now or utcnow()
        session = FoodFightSession(
            name=name,
            mode=mode,
            phase=SessionPhase.NOMINATING.value,
            creator_id=creator_id,
            end_time=now + timedelta(seconds=settings.NOMINATION_WINDOW_SECONDS)
        )
        db.add(session)
        await db.commit()
        await db.refresh(session)

        logger.info(f"Created {mode} session {session.id} '{name}' for {creator_id}")
        return session

    @staticmethod
    @persistence_errors
    async def nominate(
        db: AsyncSession,
        session_id: int,
        actor_id: str,
        name: str,
        category: str = "",
        external_link: Optional[str] = None,
        address: Optional[str] = None,
        external_place_id: Optional[str] = None
    ) -> Candidate:
        """
        Add a candidate while the session is nominating.

        The phase is re-read under a shared lock after the insert, so a
        nomination racing start_voting either lands before the flip or
        is rolled back.
        """
        name = _clean_name(name, "name")
        session = await LifecycleService.get_session_or_404(db, session_id)
        if session.phase != SessionPhase.NOMINATING.value:
            raise InvalidPhaseError(
                "Nominations are closed",
                {"session_id": session_id, "phase": session.phase}
            )

        candidate = Candidate(
            session_id=session_id,
            name=name,
            category=(category or "").strip(),
            external_link=external_link,
            address=address,
            external_place_id=external_place_id
        )
        db.add(candidate)
        await db.flush()

        current = await read_phase_shared(db, session_id)
        if current is None or current[0] != SessionPhase.NOMINATING.value:
            await db.rollback()
            raise InvalidPhaseError("Nominations are closed", {"session_id": session_id})

        await db.commit()
        await db.refresh(candidate)
        logger.info(f"User {actor_id} nominated '{name}' in session {session_id}")
        return candidate

    @staticmethod
    @persistence_errors
    async def remove_candidate(
        db: AsyncSession,
        session_id: int,
        candidate_id: int,
        actor_id: str
    ) -> None:
        """
        Remove a candidate while the session is nominating.

        Raises:
            NotFoundError: Session missing, or candidate not in this session
            InvalidPhaseError: Session has left nominating
        """
        still_nominating = exists().where(
            FoodFightSession.id == session_id,
            FoodFightSession.phase == SessionPhase.NOMINATING.value
        )
        result = await db.execute(
            delete(Candidate)
            .where(
                Candidate.id == candidate_id,
                Candidate.session_id == session_id,
                still_nominating
            )
            .execution_options(synchronize_session=False)
        )

        if result.rowcount == 1:
            await db.commit()
            logger.info(f"User {actor_id} removed candidate {candidate_id} from session {session_id}")
            return

        await db.rollback()
        session = await LifecycleService.get_session_or_404(db, session_id)
        owned = await db.scalar(
            select(func.count(Candidate.id))
            .where(Candidate.id == candidate_id, Candidate.session_id == session_id)
        )
        if not owned:
            raise NotFoundError("Candidate", candidate_id)
        raise InvalidPhaseError(
            "Candidates can only be removed while nominating",
            {"session_id": session_id, "phase": session.phase}
        )

    # =========================================================================
    # Transitions
    # =========================================================================

    @staticmethod
    @persistence_errors
    async def start_voting(
        db: AsyncSession,
        session_id: int,
        actor_id: Optional[str],
        now: Optional[datetime] = None,
        voting_window: Optional[timedelta] = None,
        rng: Optional[random.Random] = None
    ) -> FoodFightSession:
        """
        Move a session from nominating to voting.

        Args:
            db: Database session
            session_id: Session to start
            actor_id: Caller; must be the creator (None for system callers)
            now: Clock override
            voting_window: Window override, defaults to VOTING_WINDOW_SECONDS
            rng: Random source for the round-1 shuffle

        Returns:
            The refreshed session

        Raises:
            NotFoundError, ForbiddenError, InvalidPhaseError,
            InsufficientCandidatesError
        """
        now = now or utcnow()
        session = await LifecycleService.get_session_or_404(db, session_id)
        _require_creator(session, actor_id, "start voting")

        if session.phase != SessionPhase.NOMINATING.value:
            raise InvalidPhaseError(
                "Voting has already started",
                {"session_id": session_id, "phase": session.phase}
            )

        found = len(await LifecycleService.list_candidates(db, session_id))
        if found < MIN_CANDIDATES:
            raise InsufficientCandidatesError(found, MIN_CANDIDATES)

        strategy = strategy_for(session.mode)
        values = {
            "phase": SessionPhase.VOTING.value,
            "end_time": now + _voting_window(voting_window),
            **strategy.opening_values()
        }
        if not await conditional_transition(db, session_id, SessionPhase.NOMINATING.value, values):
            await db.rollback()
            raise InvalidPhaseError("Voting has already started", {"session_id": session_id})

        # The candidate set is frozen now; read it again inside the transaction.
        candidates = await LifecycleService.list_candidates(db, session_id)
        if len(candidates) < MIN_CANDIDATES:
            await db.rollback()
            raise InsufficientCandidatesError(len(candidates), MIN_CANDIDATES)

        await db.refresh(session)
        await strategy.open_voting(db, session, candidates, rng)
        await db.commit()
        await db.refresh(session)

        logger.info(
            f"Session {session_id}: voting started ({session.mode}, "
            f"{len(candidates)} candidates, ends {session.end_time.isoformat()})"
        )
        return session

    @staticmethod
    @persistence_errors
    async def check_phase_end(
        db: AsyncSession,
        session_id: int,
        force: bool = False,
        actor_id: Optional[str] = None,
        now: Optional[datetime] = None,
        voting_window: Optional[timedelta] = None,
        rng: Optional[random.Random] = None,
        expected_round: Optional[int] = None
    ) -> bool:
        """
        Close the current voting window if it has expired (or force).

        Idempotent and safe to call concurrently: only the caller that
        wins the conditional transition does any work. Passing the round
        the caller observed as expected_round turns a repeated forced
        check into a no-op once that round has closed.

        Returns:
            True if a transition (or a repair) happened
        """
        now = now or utcnow()
        session = await LifecycleService.get_session_or_404(db, session_id)
        if not _round_open(session, expected_round):
            return False
        if force:
            _require_creator(session, actor_id, "end the voting phase")

        strategy = strategy_for(session.mode)
        if await strategy.repair(db, session, rng):
            return True
        # A repair that lost its race reloads the session; it may have moved on.
        if not _round_open(session, expected_round):
            return False

        if not force and (session.end_time is None or now < session.end_time):
            return False

        return await strategy.close_phase(db, session, now, _voting_window(voting_window))

    @staticmethod
    async def sweep_expired(db: AsyncSession, now: Optional[datetime] = None) -> int:
        """
        Run the non-forced phase-end check for every voting session whose
        window has passed. Returns the number of transitions.
        """
        now = now or utcnow()
        result = await db.execute(
            select(FoodFightSession.id)
            .where(
                FoodFightSession.phase == SessionPhase.VOTING.value,
                FoodFightSession.end_time <= now
            )
            .order_by(FoodFightSession.id.asc())
        )
        session_ids = list(result.scalars().all())

        transitions = 0
        for session_id in session_ids:
            try:
                if await LifecycleService.check_phase_end(db, session_id, now=now):
                    transitions += 1
            except FoodFightError as e:
                await db.rollback()
                logger.error(f"Phase sweep: session {session_id} failed: {e.code} {e.message}")

        if transitions:
            logger.info(f"Phase sweep: {transitions} of {len(session_ids)} expired sessions advanced")
        return transitions

    # =========================================================================
    # Copy / delete
    # =========================================================================

    @staticmethod
    @persistence_errors
    async def copy_session(
        db: AsyncSession,
        session_id: int,
        actor_id: str,
        now: Optional[datetime] = None
    ) -> FoodFightSession:
        """New nominating session '<name> (Copy)' with the same mode and candidates."""
        source = await LifecycleService.get_session_or_404(db, session_id)
        candidates = await LifecycleService.list_candidates(db, session_id)

        now = now or utcnow()
        copy = FoodFightSession(
            name=f"{source.name} (Copy)",
            mode=source.mode,
            phase=SessionPhase.NOMINATING.value,
            creator_id=actor_id,
            end_time=now + timedelta(seconds=settings.NOMINATION_WINDOW_SECONDS)
        )
        db.add(copy)
        await db.flush()

        for candidate in candidates:
            db.add(Candidate(
                session_id=copy.id,
                name=candidate.name,
                category=candidate.category,
                external_link=candidate.external_link,
                address=candidate.address,
                external_place_id=candidate.external_place_id
            ))

        await db.commit()
        await db.refresh(copy)
        logger.info(f"User {actor_id} copied session {session_id} to {copy.id} ({len(candidates)} candidates)")
        return copy

    @staticmethod
    @persistence_errors
    async def delete_session(db: AsyncSession, session_id: int, actor_id: Optional[str]) -> None:
        """Delete a session and everything it owns in one transaction. Creator only."""
        session = await LifecycleService.get_session_or_404(db, session_id)
        _require_creator(session, actor_id, "delete")

        match_ids = select(Match.id).where(Match.session_id == session_id).scalar_subquery()

        await db.execute(
            update(FoodFightSession)
            .where(FoodFightSession.id == session_id)
            .values(winner_id=None)
            .execution_options(synchronize_session=False)
        )
        await db.execute(
            delete(Ballot).where(Ballot.match_id.in_(match_ids))
            .execution_options(synchronize_session=False)
        )
        await db.execute(
            delete(Score).where(Score.session_id == session_id)
            .execution_options(synchronize_session=False)
        )
        await db.execute(
            delete(Match).where(Match.session_id == session_id)
            .execution_options(synchronize_session=False)
        )
        await db.execute(
            delete(Candidate).where(Candidate.session_id == session_id)
            .execution_options(synchronize_session=False)
        )
        await db.execute(
            delete(FoodFightSession).where(FoodFightSession.id == session_id)
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        db.expunge(session)

        logger.info(f"Session {session_id} deleted by {actor_id or 'system'}")
