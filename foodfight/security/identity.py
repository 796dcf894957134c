"""
foodfight/security/identity.py
Identity provider: resolves the caller to a stable user id

The engine never manages credentials. An upstream auth service issues
HS256 access tokens whose "sub" claim is the user id; this module only
verifies them and hands the id to the engine.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt

from foodfight.config import settings
from foodfight.errors import UnauthenticatedError

logger = logging.getLogger(__name__)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)


# ================= TOKEN UTILS =================

def create_access_token(
    user_id: str,
    expires_delta: Optional[timedelta] = None,
    secret_key: Optional[str] = None
) -> str:
    """Create JWT access token for user_id"""
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    to_encode = {
        "sub": str(user_id),
        "exp": expire,
        "type": "access"
    }
    return jwt.encode(to_encode, secret_key or settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_token(token: str, secret_key: Optional[str] = None) -> Optional[dict]:
    """Decode and validate JWT token"""
    try:
        return jwt.decode(token, secret_key or settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except JWTError:
        return None


# ================= PROVIDERS =================

class IdentityProvider:
    """Resolves the current caller. Subclasses raise UnauthenticatedError."""

    def current_user_id(self) -> str:
        raise NotImplementedError


class TokenIdentityProvider(IdentityProvider):
    """Identity carried by a bearer access token."""

    def __init__(self, token: Optional[str], secret_key: Optional[str] = None):
        self.token = token
        self.secret_key = secret_key

    def current_user_id(self) -> str:
        if not self.token:
            raise UnauthenticatedError()

        payload = decode_token(self.token, self.secret_key)
        if not payload or payload.get("type") != "access":
            raise UnauthenticatedError("Invalid or expired token")

        user_id = payload.get("sub")
        if not user_id:
            raise UnauthenticatedError("Invalid or expired token")
        return str(user_id)


# ================= AUTH DEPENDENCIES =================

async def get_current_user_id(token: Optional[str] = Depends(oauth2_scheme)) -> str:
    """
    Resolve the caller's user id from the Authorization header.
    Raises UnauthenticatedError (401) if the token is missing or invalid.
    """
    return TokenIdentityProvider(token).current_user_id()


async def get_current_user_id_optional(token: Optional[str] = Depends(oauth2_scheme)) -> Optional[str]:
    """User id if a valid token is present, otherwise None. For read endpoints."""
    if not token:
        return None
    try:
        return TokenIdentityProvider(token).current_user_id()
    except UnauthenticatedError:
        logger.debug("Ignoring invalid token on optional-auth endpoint")
        return None
