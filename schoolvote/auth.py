"""Admin and student session tokens (HS256 JWT)."""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import jwt

from .models import SessionIdentity

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"

# Student sessions carry this role instead of an access level.
STUDENT_ROLE = "student"
STUDENT_SESSION_HOURS = 1


def issue_session_token(identity: str, role: Any, secret: str, hours: int = 8) -> str:
    """Generate JWT token for a session"""
    payload = {
        'sub': str(identity),
        'role': role.value if hasattr(role, 'value') else role,
        'exp': datetime.now(timezone.utc) + timedelta(hours=hours)
    }
    return jwt.encode(payload, secret, algorithm=ALGORITHM)


def decode_session_token(token: str, secret: str) -> Optional[SessionIdentity]:
    """Return the session a token carries, or None if it is expired, forged or malformed."""
    try:
        payload = jwt.decode(token, secret, algorithms=[ALGORITHM])
    except jwt.InvalidTokenError as exc:
        logger.info("Rejected session token: %s", exc)
        return None
    identity = payload.get('sub')
    if not identity:
        return None
    return SessionIdentity(identity=identity, role=payload.get('role'))


def issue_student_token(student_id: int, secret: str, hours: int = STUDENT_SESSION_HOURS) -> str:
    return issue_session_token(student_id, STUDENT_ROLE, secret, hours)


def student_id_from_session(session: Optional[SessionIdentity]) -> Optional[int]:
    """The student a session belongs to; None for admin sessions and anything malformed."""
    if session is None or session.role != STUDENT_ROLE or not session.identity.isdigit():
        return None
    return int(session.identity)
