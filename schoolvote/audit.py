"""Administrative audit trail, newest entries first."""

import logging
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import Field

from .elections import generate_id
from .models import CamelModel, utcnow
from .persistence import RecordStore

logger = logging.getLogger(__name__)

NAMESPACE = "activities"
DEFAULT_MAX_ACTIVITIES = 100


class AuditActionType(str, Enum):
    CREATE_ELECTION = "create_election"
    UPDATE_ELECTION = "update_election"
    DELETE_ELECTION = "delete_election"
    OPEN_ELECTION = "open_election"
    CLOSE_ELECTION = "close_election"
    ADD_STUDENT = "add_student"
    UPDATE_STUDENT = "update_student"
    DELETE_STUDENT = "delete_student"
    IMPORT_STUDENTS = "import_students"
    APPROVE_VOTING_RIGHT = "approve_voting_right"
    REVOKE_VOTING_RIGHT = "revoke_voting_right"
    BULK_APPROVE_VOTING_RIGHTS = "bulk_approve_voting_rights"
    BULK_REVOKE_VOTING_RIGHTS = "bulk_revoke_voting_rights"
    PUBLISH_RESULTS = "publish_results"
    UNPUBLISH_RESULTS = "unpublish_results"
    CREATE_ADMIN = "create_admin"
    UPDATE_ADMIN = "update_admin"
    DELETE_ADMIN = "delete_admin"
    VOTE_CAST = "vote_cast"
    VIEW_AUDIT_LOG = "view_audit_log"


class AuditEntry(CamelModel):
    id: str
    action: AuditActionType
    title: str
    description: str = ""
    timestamp: datetime = Field(default_factory=utcnow)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class AuditTrail:
    """Keeps at most ``max_activities`` entries; the oldest fall off."""

    def __init__(self, store: RecordStore, max_activities: int = DEFAULT_MAX_ACTIVITIES):
        self._store = store
        self._max_activities = max(1, max_activities)

    def record(self, action: AuditActionType, title: str, description: str = "",
               metadata: Optional[Dict[str, Any]] = None) -> AuditEntry:
        """Log an administrative action to the audit trail"""
        entry = AuditEntry(
            id=generate_id(),
            action=action,
            title=title,
            description=description,
            metadata=metadata or {},
        )
        self._store.put(NAMESPACE, entry.id, entry.model_dump(mode="json"))

        rows = self._store.list(NAMESPACE)
        if len(rows) > self._max_activities:
            kept = rows[-self._max_activities:]
            self._store.replace_all(NAMESPACE, [(row["id"], row) for row in kept])

        logger.info("Audit: %s - %s", action.value, title, extra={"component": "audit"})
        return entry

    def recent(self, limit: Optional[int] = None) -> List[AuditEntry]:
        entries = [AuditEntry.model_validate(row) for row in reversed(self._store.list(NAMESPACE))]
        return entries[:limit] if limit is not None else entries

    def by_action(self, action: AuditActionType) -> List[AuditEntry]:
        return [entry for entry in self.recent() if entry.action == action]

    def clear(self) -> int:
        return self._store.clear(NAMESPACE)
