"""
Voting Strategies

The lifecycle state machine is shared; what happens when voting opens
and when a voting window closes depends on the session's mode:

- BracketStrategy: round 1 is built on open; each close either advances
  to the next round or, with a single winner left, completes the session
- ScoredStrategy: nothing to build on open; close tallies the scores and
  completes the session

Every close starts with the conditional transition on the session row.
The winner of that race does the work, everyone else returns False.
"""
import logging
import random
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from foodfight.orm.candidate import Candidate
from foodfight.orm.food_fight import FoodFightSession, SessionPhase, VotingMode
from foodfight.services.bracket_builder import BracketBuilder, round_winners
from foodfight.services.session_guard import conditional_transition
from foodfight.services.tally_service import TallyService

logger = logging.getLogger(__name__)


async def _set_winner(db: AsyncSession, session_id: int, winner_id: Optional[int]) -> None:
    await db.execute(
        update(FoodFightSession)
        .where(FoodFightSession.id == session_id)
        .values(winner_id=winner_id)
        .execution_options(synchronize_session=False)
    )


class VotingStrategy:
    """Mode-specific half of the session lifecycle."""

    mode: VotingMode

    def opening_values(self) -> dict:
        """Extra session columns written by the Nominating -> Voting transition."""
        return {}

    async def open_voting(
        self,
        db: AsyncSession,
        session: FoodFightSession,
        candidates: List[Candidate],
        rng: Optional[random.Random] = None
    ) -> None:
        """Runs inside the start_voting transaction, after the phase flip."""

    async def repair(
        self,
        db: AsyncSession,
        session: FoodFightSession,
        rng: Optional[random.Random] = None
    ) -> bool:
        """Re-derive state lost to a partial write. Returns True if anything was rebuilt."""
        return False

    async def close_phase(
        self,
        db: AsyncSession,
        session: FoodFightSession,
        now: datetime,
        voting_window: timedelta
    ) -> bool:
        raise NotImplementedError


class BracketStrategy(VotingStrategy):
    mode = VotingMode.BRACKET

    def opening_values(self) -> dict:
        return {"current_round": 1}

    async def open_voting(self, db, session, candidates, rng=None):
        await BracketBuilder.build_round(db, session, 1, [c.id for c in candidates], rng)

    async def repair(self, db, session, rng=None):
        """
        A voting bracket must always have matches for its current round.
        If they are missing, rebuild them from what is persisted: the
        candidates for round 1, the previous round's winners otherwise.
        """
        current = session.current_round or 1
        if await BracketBuilder.get_round_matches(db, session.id, current):
            return False

        if current == 1:
            result = await db.execute(
                select(Candidate.id)
                .where(Candidate.session_id == session.id)
                .order_by(Candidate.id.asc())
            )
            entrants = list(result.scalars().all())
        else:
            previous = await BracketBuilder.get_round_matches(db, session.id, current - 1, fresh=True)
            entrants = round_winners(previous)

        logger.warning(f"Session {session.id}: round {current} has no matches, rebuilding")
        try:
            await BracketBuilder.build_round(db, session, current, entrants, rng)
            await db.commit()
        except IntegrityError:
            # Another caller rebuilt the same round first.
            await db.rollback()
            await db.refresh(session)
            logger.info(f"Session {session.id}: round {current} already rebuilt by another caller")
            return False
        return True

    async def close_phase(self, db, session, now, voting_window):
        current = session.current_round
        matches = await BracketBuilder.get_round_matches(db, session.id, current)
        is_final = len(matches) == 1

        if is_final:
            values = {"phase": SessionPhase.COMPLETED.value}
        else:
            values = {"current_round": current + 1, "end_time": now + voting_window}

        if not await conditional_transition(
            db, session.id, SessionPhase.VOTING.value, values, expected_round=current
        ):
            await db.rollback()
            return False

        # Votes committed before the gate are visible now; later ones are rejected.
        winners = round_winners(
            await BracketBuilder.get_round_matches(db, session.id, current, fresh=True)
        )

        if is_final:
            await _set_winner(db, session.id, winners[0])
            await db.commit()
            logger.info(f"Session {session.id}: bracket completed, winner {winners[0]}")
        else:
            await db.refresh(session)
            await BracketBuilder.build_round(db, session, current + 1, winners)
            await db.commit()
            logger.info(f"Session {session.id}: advanced to round {current + 1}")

        await db.refresh(session)
        return True


class ScoredStrategy(VotingStrategy):
    mode = VotingMode.SCORED

    async def close_phase(self, db, session, now, voting_window):
        if not await conditional_transition(
            db, session.id, SessionPhase.VOTING.value, {"phase": SessionPhase.COMPLETED.value}
        ):
            await db.rollback()
            return False

        resolution = await TallyService.resolve(db, session.id)
        await _set_winner(db, session.id, resolution.winner_id)
        await db.commit()
        await db.refresh(session)
        logger.info(f"Session {session.id}: scoring closed, winner {resolution.winner_id}")
        return True


_STRATEGIES = {
    VotingMode.BRACKET.value: BracketStrategy(),
    VotingMode.SCORED.value: ScoredStrategy(),
}


def strategy_for(mode: str) -> VotingStrategy:
    return _STRATEGIES[mode]
