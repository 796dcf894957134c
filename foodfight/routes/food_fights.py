"""
Food Fight API Routes

Command and query surface for voting sessions. Identity comes from the
bearer token; every failure is a FoodFightError rendered by the app's
exception handler.
"""
import logging
from typing import Any, List, Optional

from fastapi import APIRouter, Depends, Query, Request, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from foodfight.config import settings
from foodfight.database import get_db
from foodfight.errors import ErrorResponse
from foodfight.orm.food_fight import VotingMode
from foodfight.rate_limit import limiter
from foodfight.security.identity import get_current_user_id, get_current_user_id_optional
from foodfight.services.ballot_service import BallotService
from foodfight.services.lifecycle_service import LifecycleService
from foodfight.services.query_service import QueryService
from foodfight.services.tally_service import TallyService

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/food-fights",
    tags=["Food Fights"],
    responses={
        400: {"model": ErrorResponse, "description": "Bad request"},
        401: {"model": ErrorResponse, "description": "Authentication required"},
        403: {"model": ErrorResponse, "description": "Not the session creator"},
        404: {"model": ErrorResponse, "description": "Resource not found"},
        409: {"model": ErrorResponse, "description": "Phase conflict or duplicate vote"},
        503: {"model": ErrorResponse, "description": "Data store unavailable"}
    }
)


# =============================================================================
# Pydantic Models
# =============================================================================

class CreateSessionRequest(BaseModel):
    name: str = Field(..., max_length=200)
    mode: Optional[VotingMode] = Field(default=None, description="bracket or scored")


class NominateRequest(BaseModel):
    name: str = Field(..., max_length=200)
    category: str = Field(default="", max_length=100)
    external_link: Optional[str] = None
    address: Optional[str] = None
    external_place_id: Optional[str] = Field(default=None, max_length=255)


class VoteRequest(BaseModel):
    candidate_id: int


class ScoreRequest(BaseModel):
    candidate_id: int
    # Validated by the ballot recorder so non-integers surface as INVALID_SCORE
    score: Any = Field(..., description="Integer from 1 to 5")


class CheckEndRequest(BaseModel):
    force: bool = False
    round: Optional[int] = Field(default=None, ge=1, description="Round the caller observed")


class SessionResponse(BaseModel):
    id: int
    name: str
    mode: str
    phase: str
    creator_id: str
    current_round: Optional[int]
    end_time: Optional[str]
    winner_id: Optional[int]
    created_at: Optional[str]


class CandidateResponse(BaseModel):
    id: int
    name: str
    category: str
    external_link: Optional[str]
    address: Optional[str]
    external_place_id: Optional[str]


class TransitionResponse(BaseModel):
    transitioned: bool
    session: SessionResponse


# =============================================================================
# Queries
# =============================================================================

@router.get("/candidates/known")
async def known_candidates(db: AsyncSession = Depends(get_db)):
    """Every restaurant nominated before, once, for quick re-nomination."""
    return {"candidates": await QueryService.known_candidates(db)}


@router.get("/history/scores")
async def score_history(
    session_id: List[int] = Query(default=[]),
    db: AsyncSession = Depends(get_db)
):
    return {"history": await TallyService.score_history(db, session_id)}


@router.get("/")
async def list_sessions(
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: AsyncSession = Depends(get_db)
):
    return {"sessions": await QueryService.list_sessions(db, limit=limit, offset=offset)}


@router.get("/{session_id}")
async def get_session(
    session_id: int,
    db: AsyncSession = Depends(get_db),
    viewer_id: Optional[str] = Depends(get_current_user_id_optional)
):
    """
    Session view. Reading a session also advances it if its voting
    window has expired.
    """
    return await QueryService.get_session(db, session_id, viewer_id=viewer_id)


@router.get("/{session_id}/bracket")
async def get_bracket_layout(session_id: int, db: AsyncSession = Depends(get_db)):
    layout = await QueryService.bracket_layout(db, session_id)
    return layout.to_dict()


# =============================================================================
# Commands
# =============================================================================

@router.post("/", response_model=SessionResponse, status_code=status.HTTP_201_CREATED)
async def create_session(
    request: CreateSessionRequest,
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(get_current_user_id)
):
    session = await LifecycleService.create_session(
        db=db,
        name=request.name,
        creator_id=user_id,
        mode=request.mode.value if request.mode else None
    )
    return session.to_dict()


@router.post("/{session_id}/copy", response_model=SessionResponse, status_code=status.HTTP_201_CREATED)
async def copy_session(
    session_id: int,
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(get_current_user_id)
):
    session = await LifecycleService.copy_session(db, session_id, user_id)
    return session.to_dict()


@router.post(
    "/{session_id}/candidates",
    response_model=CandidateResponse,
    status_code=status.HTTP_201_CREATED
)
async def nominate(
    session_id: int,
    request: NominateRequest,
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(get_current_user_id)
):
    candidate = await LifecycleService.nominate(
        db=db,
        session_id=session_id,
        actor_id=user_id,
        name=request.name,
        category=request.category,
        external_link=request.external_link,
        address=request.address,
        external_place_id=request.external_place_id
    )
    return candidate.to_dict()


@router.delete("/{session_id}/candidates/{candidate_id}")
async def remove_candidate(
    session_id: int,
    candidate_id: int,
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(get_current_user_id)
):
    await LifecycleService.remove_candidate(db, session_id, candidate_id, user_id)
    return {"success": True}


@router.post("/{session_id}/start", response_model=SessionResponse)
async def start_voting(
    session_id: int,
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(get_current_user_id)
):
    """Close nominations and open voting. Creator only."""
    session = await LifecycleService.start_voting(db, session_id, user_id)
    return session.to_dict()


@router.post("/matches/{match_id}/vote")
@limiter.limit(settings.VOTE_RATE_LIMIT)
async def cast_vote(
    request: Request,  # Required by slowapi
    match_id: int,
    vote: VoteRequest,
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(get_current_user_id)
):
    match = await BallotService.cast_vote(db, match_id, vote.candidate_id, user_id)
    return {
        "match_id": match.id,
        "votes_a": match.votes_a,
        "votes_b": match.votes_b,
        "user_vote": vote.candidate_id
    }


@router.post("/{session_id}/scores")
@limiter.limit(settings.VOTE_RATE_LIMIT)
async def submit_score(
    request: Request,  # Required by slowapi
    session_id: int,
    body: ScoreRequest,
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(get_current_user_id)
):
    saved = await BallotService.submit_score(db, session_id, body.candidate_id, user_id, body.score)
    return {
        "session_id": saved.session_id,
        "candidate_id": saved.candidate_id,
        "score": saved.score
    }


@router.post("/{session_id}/check-end", response_model=TransitionResponse)
async def check_phase_end(
    session_id: int,
    body: Optional[CheckEndRequest] = None,
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(get_current_user_id)
):
    """Close the voting window if it expired. force=true is creator only."""
    transitioned = await LifecycleService.check_phase_end(
        db, session_id, force=bool(body and body.force),
        actor_id=user_id,
        expected_round=body.round if body else None
    )
    session = await LifecycleService.get_session_or_404(db, session_id)
    return {"transitioned": transitioned, "session": session.to_dict()}


@router.delete("/{session_id}")
async def delete_session(
    session_id: int,
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(get_current_user_id)
):
    await LifecycleService.delete_session(db, session_id, user_id)
    return {"success": True}
