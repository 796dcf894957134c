"""
Score ORM Model

A voter's 1-5 rating of one candidate. Unlike a ballot, a score may be
revised: the unique key is the upsert target.
"""
from sqlalchemy import (
    Column, Integer, String, ForeignKey, UniqueConstraint, CheckConstraint, Index
)

from foodfight.orm.base import BaseModel

MIN_SCORE = 1
MAX_SCORE = 5


class Score(BaseModel):
    __tablename__ = "scores"

    session_id = Column(
        Integer,
        ForeignKey("food_fight_sessions.id"),
        nullable=False,
        index=True
    )
    voter_id = Column(String(128), nullable=False)
    candidate_id = Column(Integer, ForeignKey("candidates.id"), nullable=False)
    score = Column(Integer, nullable=False)

    __table_args__ = (
        UniqueConstraint("session_id", "voter_id", "candidate_id", name="uq_score_session_voter_candidate"),
        Index("idx_score_candidate", "candidate_id"),
        CheckConstraint(f"score >= {MIN_SCORE} AND score <= {MAX_SCORE}", name="ck_score_range"),
    )
