"""
Food Fight Session ORM Model

One nominate-then-vote workflow. The session row is the single gate for
every phase transition: transitions are conditional UPDATEs on
(phase, current_round), never read-modify-write in memory.
"""
from enum import Enum as PyEnum

from sqlalchemy import (
    Column, Integer, String, DateTime, ForeignKey, CheckConstraint, Index
)
from sqlalchemy.orm import relationship

from foodfight.orm.base import BaseModel


# =============================================================================
# Enums
# =============================================================================

class VotingMode(PyEnum):
    BRACKET = "bracket"
    SCORED = "scored"


class SessionPhase(PyEnum):
    NOMINATING = "nominating"
    VOTING = "voting"
    COMPLETED = "completed"


# =============================================================================
# Table: food_fight_sessions
# =============================================================================

class FoodFightSession(BaseModel):
    """
    A single voting session.

    winner_id is only ever written together with phase = completed.
    current_round is only meaningful in bracket mode.
    """
    __tablename__ = "food_fight_sessions"

    name = Column(String(200), nullable=False)
    mode = Column(String(20), nullable=False, default=VotingMode.BRACKET.value)
    phase = Column(String(20), nullable=False, default=SessionPhase.NOMINATING.value, index=True)
    creator_id = Column(String(128), nullable=False, index=True)
    current_round = Column(Integer, nullable=True)
    end_time = Column(DateTime, nullable=True)
    winner_id = Column(
        Integer,
        ForeignKey("candidates.id", use_alter=True, name="fk_session_winner"),
        nullable=True
    )

    winner = relationship(
        "Candidate",
        foreign_keys=[winner_id],
        lazy="selectin"
    )

    __table_args__ = (
        CheckConstraint(
            "phase IN ('nominating', 'voting', 'completed')",
            name="ck_session_phase_valid"
        ),
        CheckConstraint(
            "mode IN ('bracket', 'scored')",
            name="ck_session_mode_valid"
        ),
        CheckConstraint(
            "current_round IS NULL OR current_round > 0",
            name="ck_session_round_positive"
        ),
        Index("idx_session_phase_end", "phase", "end_time"),
    )

    @property
    def is_bracket(self) -> bool:
        return self.mode == VotingMode.BRACKET.value

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "mode": self.mode,
            "phase": self.phase,
            "creator_id": self.creator_id,
            "current_round": self.current_round,
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "winner_id": self.winner_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
