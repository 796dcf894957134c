"""
Session Guard

The session row is the only coordination point between concurrent
callers. Two primitives are built on it:

- conditional_transition: an UPDATE whose WHERE clause names the phase
  (and, for brackets, the round) the caller observed. Exactly one of any
  number of racing callers sees rowcount == 1; the rest no-op.
- read_phase_shared: re-reads phase/round inside the caller's transaction
  under a shared row lock, so a vote can't slip in behind a transition.
"""
import logging
from typing import Any, Dict, Optional, Tuple

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from foodfight.orm.food_fight import FoodFightSession

logger = logging.getLogger(__name__)

_ANY_ROUND = object()


async def conditional_transition(
    db: AsyncSession,
    session_id: int,
    expected_phase: str,
    values: Dict[str, Any],
    expected_round: Any = _ANY_ROUND
) -> bool:
    """
    Apply values to the session iff it is still in expected_phase
    (and expected_round, when given).

    Returns True if this caller won the transition. Does not commit.
    """
    stmt = (
        update(FoodFightSession)
        .where(
            FoodFightSession.id == session_id,
            FoodFightSession.phase == expected_phase,
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if expected_round is not _ANY_ROUND:
        stmt = stmt.where(FoodFightSession.current_round == expected_round)

    result = await db.execute(stmt)
    won = result.rowcount == 1
    if not won:
        logger.info(
            f"Session {session_id}: transition from {expected_phase} "
            f"(round {expected_round if expected_round is not _ANY_ROUND else '-'}) lost the race"
        )
    return won


async def read_phase_shared(
    db: AsyncSession,
    session_id: int
) -> Optional[Tuple[str, Optional[int]]]:
    """Current (phase, current_round) under FOR SHARE, or None if the session is gone."""
    result = await db.execute(
        select(FoodFightSession.phase, FoodFightSession.current_round)
        .where(FoodFightSession.id == session_id)
        .with_for_update(read=True)
    )
    row = result.one_or_none()
    if row is None:
        return None
    return row[0], row[1]
