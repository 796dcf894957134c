"""
Bracket Builder

Single-elimination round construction:
- Round 1: uniformly random permutation (Fisher-Yates via Random.shuffle),
  paired consecutively, odd entrant out gets a bye
- Round N > 1: previous-round winners in bracket position order, paired
  the same way, so seeding stays continuous
- Match batches are inserted under a (session, round, position) unique
  key; a duplicate build fails at flush instead of doubling the round
"""
import logging
import random
from collections import defaultdict
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from foodfight.errors import InvalidPhaseError
from foodfight.orm.food_fight import FoodFightSession, SessionPhase
from foodfight.orm.match import Match

logger = logging.getLogger(__name__)

Pairing = Tuple[int, Optional[int]]


# =============================================================================
# Pure helpers
# =============================================================================

def shuffle_entrants(entrant_ids: Sequence[int], rng: Optional[random.Random] = None) -> List[int]:
    """Return a uniformly shuffled copy; the input is left untouched."""
    shuffled = list(entrant_ids)
    (rng or random.SystemRandom()).shuffle(shuffled)
    return shuffled


def pair_entrants(entrant_ids: Sequence[int]) -> List[Pairing]:
    """
    Pair entrants consecutively.

    [a, b, c, d, e] -> [(a, b), (c, d), (e, None)]
    """
    pairings = []
    for i in range(0, len(entrant_ids), 2):
        slot_a = entrant_ids[i]
        slot_b = entrant_ids[i + 1] if i + 1 < len(entrant_ids) else None
        pairings.append((slot_a, slot_b))
    return pairings


def round_winners(matches: Sequence[Match]) -> List[int]:
    """Winners of a round, in bracket position order."""
    ordered = sorted(matches, key=lambda m: m.position)
    return [m.winner_id for m in ordered]


def plan_round(
    round_number: int,
    entrant_ids: Sequence[int],
    rng: Optional[random.Random] = None
) -> List[Pairing]:
    """Pairings for a round; only round 1 is shuffled."""
    if round_number == 1:
        entrant_ids = shuffle_entrants(entrant_ids, rng)
    return pair_entrants(entrant_ids)


# =============================================================================
# Persistence
# =============================================================================

class BracketBuilder:
    """Builds and reads bracket rounds. Never commits; callers own the transaction."""

    @staticmethod
    async def build_round(
        db: AsyncSession,
        session: FoodFightSession,
        round_number: int,
        entrant_ids: Sequence[int],
        rng: Optional[random.Random] = None
    ) -> List[Match]:
        """
        Insert the match batch for round_number.

        Args:
            db: Database session
            session: Session in VOTING phase
            round_number: 1-indexed round to build
            entrant_ids: Candidates for round 1, or previous-round winners
            rng: Optional random source (round 1 only)

        Returns:
            Created Match objects, ordered by position

        Raises:
            InvalidPhaseError: If the session is not voting or there are no entrants
            IntegrityError: If the round already exists (from flush)
        """
        if session.phase != SessionPhase.VOTING.value:
            raise InvalidPhaseError(
                f"Cannot build round {round_number} while session is {session.phase}",
                {"session_id": session.id, "phase": session.phase}
            )
        if not entrant_ids:
            raise InvalidPhaseError(
                f"Cannot build round {round_number} without entrants",
                {"session_id": session.id}
            )

        matches = []
        for position, (slot_a, slot_b) in enumerate(plan_round(round_number, entrant_ids, rng)):
            match = Match(
                session_id=session.id,
                round=round_number,
                position=position,
                slot_a_id=slot_a,
                slot_b_id=slot_b,
                votes_a=0,
                votes_b=0
            )
            db.add(match)
            matches.append(match)

        await db.flush()
        logger.info(
            f"Session {session.id}: built round {round_number} with {len(matches)} matches "
            f"({sum(1 for m in matches if m.is_bye)} byes)"
        )
        return matches

    @staticmethod
    async def get_round_matches(
        db: AsyncSession,
        session_id: int,
        round_number: int,
        fresh: bool = False
    ) -> List[Match]:
        """Matches of one round in position order. fresh=True overwrites cached counters."""
        query = (
            select(Match)
            .where(Match.session_id == session_id, Match.round == round_number)
            .order_by(Match.position.asc())
        )
        if fresh:
            query = query.execution_options(populate_existing=True)
        result = await db.execute(query)
        return list(result.scalars().all())

    @staticmethod
    async def get_matches_by_round(
        db: AsyncSession,
        session_id: int
    ) -> Dict[int, List[Match]]:
        """All matches of a session grouped by round, each round in position order."""
        result = await db.execute(
            select(Match)
            .where(Match.session_id == session_id)
            .order_by(Match.round.asc(), Match.position.asc())
            .execution_options(populate_existing=True)
        )
        grouped: Dict[int, List[Match]] = defaultdict(list)
        for match in result.scalars().all():
            grouped[match.round].append(match)
        return dict(grouped)
