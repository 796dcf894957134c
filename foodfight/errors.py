"""
foodfight/errors.py
Centralized error taxonomy for the voting engine

CORE PRINCIPLES:
- Every failure is scoped to the single command that raised it
- Errors are typed, never swallowed, and never retried by the engine
- All errors follow one consistent, machine-readable structure

ERROR RESPONSE STRUCTURE:
{
    "success": false,
    "error": "ErrorType",
    "message": "Human-readable description",
    "code": "UNIQUE_ERROR_CODE",
    "details": {} (optional)
}
"""
import functools
import logging
from typing import Any, Callable, Dict, Optional

from fastapi import status
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


class ErrorCode:
    """Unique error codes for machine-readable error handling"""

    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_PHASE = "INVALID_PHASE"
    INSUFFICIENT_CANDIDATES = "INSUFFICIENT_CANDIDATES"
    DUPLICATE_VOTE = "DUPLICATE_VOTE"
    INVALID_SCORE = "INVALID_SCORE"
    NOT_FOUND = "NOT_FOUND"
    AUTH_REQUIRED = "AUTH_REQUIRED"
    FORBIDDEN = "FORBIDDEN"
    PERSISTENCE_ERROR = "PERSISTENCE_ERROR"
    RATE_LIMITED = "RATE_LIMITED"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class ErrorResponse(BaseModel):
    """Standard error response model"""
    success: bool = False
    error: str
    message: str
    code: str
    details: Optional[Dict[str, Any]] = None


class FoodFightError(Exception):
    """Base engine exception with consistent structure"""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    error: str = "Internal Error"
    code: str = ErrorCode.INTERNAL_ERROR

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary"""
        result = {
            "success": False,
            "error": self.error,
            "message": self.message,
            "code": self.code
        }
        if self.details:
            result["details"] = self.details
        return result

    def to_response(self) -> JSONResponse:
        """Convert to FastAPI JSONResponse"""
        return JSONResponse(status_code=self.status_code, content=self.to_dict())


class InvalidPhaseError(FoodFightError):
    """409 - Operation not legal in the session's current phase or round"""
    status_code = status.HTTP_409_CONFLICT
    error = "Invalid Phase"
    code = ErrorCode.INVALID_PHASE


class InsufficientCandidatesError(FoodFightError):
    """400 - Voting needs at least two candidates"""
    status_code = status.HTTP_400_BAD_REQUEST
    error = "Insufficient Candidates"
    code = ErrorCode.INSUFFICIENT_CANDIDATES

    def __init__(self, found: int, required: int = 2):
        super().__init__(
            f"Need at least {required} candidates to start voting, found {found}",
            {"found": found, "required": required}
        )


class DuplicateVoteError(FoodFightError):
    """409 - Voter already has a ballot for this match"""
    status_code = status.HTTP_409_CONFLICT
    error = "Duplicate Vote"
    code = ErrorCode.DUPLICATE_VOTE

    def __init__(self, match_id: int, voter_id: str):
        super().__init__(
            "Already voted",
            {"match_id": match_id, "voter_id": voter_id}
        )


class InvalidScoreError(FoodFightError):
    """400 - Score is not an integer in range"""
    status_code = status.HTTP_400_BAD_REQUEST
    error = "Invalid Score"
    code = ErrorCode.INVALID_SCORE


class NotFoundError(FoodFightError):
    """404 - Session, match or candidate does not exist"""
    status_code = status.HTTP_404_NOT_FOUND
    error = "Not Found"
    code = ErrorCode.NOT_FOUND

    def __init__(self, resource: str, identifier: Any = None):
        message = f"{resource} not found"
        if identifier is not None:
            message = f"{resource} with id '{identifier}' not found"
        super().__init__(message, {"resource": resource, "id": identifier})


class UnauthenticatedError(FoodFightError):
    """401 - No resolvable identity"""
    status_code = status.HTTP_401_UNAUTHORIZED
    error = "Unauthorized"
    code = ErrorCode.AUTH_REQUIRED

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message)


class ForbiddenError(FoodFightError):
    """403 - Actor may not perform this command on this session"""
    status_code = status.HTTP_403_FORBIDDEN
    error = "Forbidden"
    code = ErrorCode.FORBIDDEN


class ValidationFailedError(FoodFightError):
    """400 - Malformed command input"""
    status_code = status.HTTP_400_BAD_REQUEST
    error = "Bad Request"
    code = ErrorCode.VALIDATION_ERROR


class PersistenceError(FoodFightError):
    """503 - Storage failed; the caller decides whether to retry"""
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    error = "Persistence Error"
    code = ErrorCode.PERSISTENCE_ERROR


def persistence_errors(func: Callable) -> Callable:
    """
    Translate driver-level failures of a service coroutine into
    PersistenceError, rolling back the session it was given.

    Integrity violations the service expects are handled inside the
    service; anything reaching this decorator is a storage failure.
    """
    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except DBAPIError as e:
            db = kwargs.get("db")
            if db is None and args and isinstance(args[0], AsyncSession):
                db = args[0]
            if db is not None:
                await db.rollback()
            logger.error(f"Persistence failure in {func.__qualname__}: {type(e).__name__}: {str(e)}")
            raise PersistenceError(
                "The data store could not complete the request",
                {"operation": func.__name__}
            ) from e
    return wrapper
