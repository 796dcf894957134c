"""
Bracket Match and Ballot ORM Models

- Matches are inserted in whole-round batches; (session_id, round, position)
  is unique so a round can never be built twice.
- votes_a / votes_b only ever grow, via SET votes_x = votes_x + 1.
- One ballot per (match_id, voter_id); the unique constraint is the
  single-writer gate for vote counting.
"""
from typing import Optional

from sqlalchemy import (
    Column, Integer, String, ForeignKey, UniqueConstraint, CheckConstraint, Index
)
from sqlalchemy.orm import relationship

from foodfight.orm.base import BaseModel


def decide_winner(slot_a_id, slot_b_id, votes_a: int, votes_b: int):
    """A bye advances slot A; otherwise ties favour slot A."""
    if slot_b_id is None:
        return slot_a_id
    if votes_a >= votes_b:
        return slot_a_id
    return slot_b_id


# =============================================================================
# Table: matches
# =============================================================================

class Match(BaseModel):
    """
    One head-to-head pairing inside a bracket round.

    slot_b_id is NULL for a bye; slot A then advances without a vote.
    """
    __tablename__ = "matches"

    session_id = Column(
        Integer,
        ForeignKey("food_fight_sessions.id"),
        nullable=False,
        index=True
    )
    round = Column(Integer, nullable=False)
    position = Column(Integer, nullable=False)
    slot_a_id = Column(Integer, ForeignKey("candidates.id"), nullable=False)
    slot_b_id = Column(Integer, ForeignKey("candidates.id"), nullable=True)
    votes_a = Column(Integer, nullable=False, default=0)
    votes_b = Column(Integer, nullable=False, default=0)

    slot_a = relationship("Candidate", foreign_keys=[slot_a_id], lazy="selectin")
    slot_b = relationship("Candidate", foreign_keys=[slot_b_id], lazy="selectin")

    __table_args__ = (
        UniqueConstraint("session_id", "round", "position", name="uq_match_round_position"),
        Index("idx_match_session_round", "session_id", "round"),
        CheckConstraint("round > 0", name="ck_match_round_positive"),
        CheckConstraint("position >= 0", name="ck_match_position_non_negative"),
        CheckConstraint("votes_a >= 0", name="ck_match_votes_a_non_negative"),
        CheckConstraint("votes_b >= 0", name="ck_match_votes_b_non_negative"),
    )

    @property
    def is_bye(self) -> bool:
        return self.slot_b_id is None

    @property
    def winner_id(self) -> Optional[int]:
        return decide_winner(self.slot_a_id, self.slot_b_id, self.votes_a or 0, self.votes_b or 0)


# =============================================================================
# Table: ballots
# =============================================================================

class Ballot(BaseModel):
    """A single voter's final choice in one match."""
    __tablename__ = "ballots"

    match_id = Column(
        Integer,
        ForeignKey("matches.id"),
        nullable=False,
        index=True
    )
    voter_id = Column(String(128), nullable=False)
    candidate_id = Column(Integer, ForeignKey("candidates.id"), nullable=False)

    __table_args__ = (
        UniqueConstraint("match_id", "voter_id", name="uq_ballot_match_voter"),
        Index("idx_ballot_voter", "voter_id"),
    )
