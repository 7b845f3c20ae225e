"""Runtime configuration for the school election core."""

from __future__ import annotations

import os
import secrets
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

from .exceptions import ConfigurationError

MEMORY_DATABASE_URL = "memory://"


@dataclass(frozen=True)
class Settings:
    """Application settings.

    Attributes
    ----------
    database_url:
        SQLAlchemy URL of the record store, or ``memory://`` for the
        in-process store.
    jwt_secret:
        HMAC secret used to sign admin session tokens.
    session_hours:
        Lifetime of an admin session token.
    environment:
        ``development``, ``staging`` or ``production``.
    max_activities:
        Number of audit entries kept before the oldest are dropped.
    """

    database_url: str = "sqlite:///./school_vote.db"
    jwt_secret: str = ""
    session_hours: int = 8
    environment: str = "development"
    log_level: str = "INFO"
    max_activities: int = 100
    host: str = "0.0.0.0"
    port: int = 8000

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def uses_memory_store(self) -> bool:
        return self.database_url == MEMORY_DATABASE_URL


def _coerce_int(value: Optional[str], default: int) -> int:
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def load_settings(env_file: Optional[str] = None) -> Settings:
    """Load settings from the environment (and a ``.env`` file if present)."""

    load_dotenv(env_file)

    environment = os.getenv("SCHOOLVOTE_ENVIRONMENT", "development")
    jwt_secret = os.getenv("SCHOOLVOTE_JWT_SECRET")
    if not jwt_secret:
        if environment.lower() == "production":
            raise ConfigurationError("Missing required environment variable: SCHOOLVOTE_JWT_SECRET")
        jwt_secret = secrets.token_hex(32)

    return Settings(
        database_url=os.getenv("SCHOOLVOTE_DATABASE_URL", "sqlite:///./school_vote.db"),
        jwt_secret=jwt_secret,
        session_hours=_coerce_int(os.getenv("SCHOOLVOTE_SESSION_HOURS"), 8),
        environment=environment,
        log_level=os.getenv("SCHOOLVOTE_LOG_LEVEL", "INFO"),
        max_activities=_coerce_int(os.getenv("SCHOOLVOTE_MAX_ACTIVITIES"), 100),
        host=os.getenv("SCHOOLVOTE_HOST", "0.0.0.0"),
        port=_coerce_int(os.getenv("SCHOOLVOTE_PORT"), 8000),
    )
