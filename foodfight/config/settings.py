"""
Settings Configuration

Centralized runtime settings for the voting engine.
All values are loaded from environment variables (a local .env is honoured).
"""
import os
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


def get_bool_env(key: str, default: bool = False) -> bool:
    """Get a boolean value from environment variable."""
    value = os.getenv(key, str(default)).lower()
    return value in ('true', '1', 'yes', 'on', 'enabled')


def get_int_env(key: str, default: int) -> int:
    """Get an integer value from environment variable, falling back on bad input."""
    raw: Optional[str] = os.getenv(key)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        return default


class Settings:
    """
    Settings for the application.

    To add a new setting:
    1. Add it here as a class attribute
    2. Load it from an environment variable
    3. Read it through Settings in your code
    """

    # Persistence
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./foodfight.db")

    # Identity
    JWT_SECRET_KEY: str = os.getenv("JWT_SECRET_KEY", "dev-secret-key-change-in-production")
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = get_int_env("ACCESS_TOKEN_EXPIRE_MINUTES", 60 * 24)

    # Phase timers (seconds)
    NOMINATION_WINDOW_SECONDS: int = get_int_env("NOMINATION_WINDOW_SECONDS", 120)
    VOTING_WINDOW_SECONDS: int = get_int_env("VOTING_WINDOW_SECONDS", 120)

    # Voting mode used when a create request does not name one
    DEFAULT_VOTING_MODE: str = os.getenv("DEFAULT_VOTING_MODE", "bracket")

    # Scheduled phase-end sweep
    FEATURE_PHASE_SWEEP: bool = get_bool_env("FEATURE_PHASE_SWEEP", False)
    PHASE_SWEEP_INTERVAL_SECONDS: int = get_int_env("PHASE_SWEEP_INTERVAL_SECONDS", 30)

    # HTTP
    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")
    ALLOWED_ORIGINS: str = os.getenv("ALLOWED_ORIGINS", "")
    RATE_LIMIT_ENABLED: bool = get_bool_env("RATE_LIMIT_ENABLED", True)
    VOTE_RATE_LIMIT: str = os.getenv("VOTE_RATE_LIMIT", "30/minute")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    @classmethod
    def is_enabled(cls, flag_name: str) -> bool:
        """Check if a feature flag is enabled."""
        return bool(getattr(cls, flag_name, False))


settings = Settings()
