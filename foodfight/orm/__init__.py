from .base import Base, BaseModel, utcnow

from .food_fight import FoodFightSession, SessionPhase, VotingMode
from .candidate import Candidate
from .match import Match, Ballot, decide_winner
from .score import Score, MIN_SCORE, MAX_SCORE

__all__ = [
    "Base",
    "BaseModel",
    "utcnow",
    "FoodFightSession",
    "SessionPhase",
    "VotingMode",
    "Candidate",
    "Match",
    "Ballot",
    "decide_winner",
    "Score",
    "MIN_SCORE",
    "MAX_SCORE",
]
