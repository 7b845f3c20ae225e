"""Admin account directory guarded by the access policy."""

import logging
import re
from typing import Any, List, Mapping, Optional

from pydantic import BaseModel

from .models import AdminAccount, coerce_access_level, normalize_keys, sanitize_input
from .permissions import can_create_admin, can_delete_admin, can_edit_admin
from .persistence import RecordStore

logger = logging.getLogger(__name__)

NAMESPACE = "admins"
USERNAME_PATTERN = re.compile(r"[a-z0-9._-]{3,32}")


class AdminResult(BaseModel):
    success: bool
    error: Optional[str] = None
    admin: Optional[AdminAccount] = None


def sanitize_username(username: Any) -> str:
    if not isinstance(username, str):
        return ""
    return sanitize_input(username).lower()


class AdminDirectory:

    def __init__(self, store: RecordStore) -> None:
        self._store = store

    def get_all_admins(self) -> List[AdminAccount]:
        admins = [AdminAccount.model_validate(row) for row in self._store.list(NAMESPACE)]
        return sorted(admins, key=lambda a: (a.access_level, a.id))

    def get_admin(self, admin_id: int) -> Optional[AdminAccount]:
        row = self._store.get(NAMESPACE, str(admin_id))
        return AdminAccount.model_validate(row) if row else None

    def get_admin_by_username(self, username: str) -> Optional[AdminAccount]:
        wanted = sanitize_username(username)
        for admin in self.get_all_admins():
            if admin.username == wanted:
                return admin
        return None

    def create_admin(self, actor_level: Any, username: str, display_name: Optional[str],
                     access_level: Any) -> AdminResult:
        target = coerce_access_level(access_level)
        if target is None:
            return AdminResult(success=False, error="Unknown access level")
        if not can_create_admin(actor_level, target):
            logger.warning("Refused to create level %s admin for actor level %s", target.value, actor_level)
            return AdminResult(success=False, error="Not allowed to create an admin at this level")

        username = sanitize_username(username)
        if not USERNAME_PATTERN.fullmatch(username):
            return AdminResult(success=False, error="Username must be 3-32 characters of a-z, 0-9, '.', '_' or '-'")
        if self.get_admin_by_username(username) is not None:
            return AdminResult(success=False, error="Username already exists")

        existing_ids = [a.id for a in self.get_all_admins()]
        admin = AdminAccount(
            id=max(existing_ids, default=0) + 1,
            username=username,
            display_name=sanitize_input(display_name) if display_name else None,
            access_level=target,
        )
        self._store.put(NAMESPACE, str(admin.id), admin.model_dump(mode="json"))
        logger.info("Created admin %s at level %s", admin.username, target.value)
        return AdminResult(success=True, admin=admin)

    def update_admin(self, actor_level: Any, admin_id: int, changes: Mapping[str, Any]) -> AdminResult:
        """Only ROOT may edit. Username and display name are sanitized like on create."""
        if not can_edit_admin(actor_level):
            logger.warning("Refused admin edit for actor level %s", actor_level)
            return AdminResult(success=False, error="Only root admins may edit admins")
        current = self.get_admin(admin_id)
        if current is None:
            return AdminResult(success=False, error="Admin not found")

        updates = normalize_keys(AdminAccount, changes)
        updates.pop("id", None)
        updates.pop("created_at", None)
        if "username" in updates:
            username = sanitize_username(updates["username"])
            if not USERNAME_PATTERN.fullmatch(username):
                return AdminResult(success=False, error="Invalid username")
            other = self.get_admin_by_username(username)
            if other is not None and other.id != current.id:
                return AdminResult(success=False, error="Username already exists")
            updates["username"] = username
        if "access_level" in updates:
            level = coerce_access_level(updates["access_level"])
            if level is None:
                return AdminResult(success=False, error="Unknown access level")
            updates["access_level"] = level
        if updates.get("display_name"):
            updates["display_name"] = sanitize_input(updates["display_name"])

        updated = AdminAccount.model_validate({**current.model_dump(), **updates})
        self._store.put(NAMESPACE, str(updated.id), updated.model_dump(mode="json"))
        logger.info("Updated admin %s", updated.username)
        return AdminResult(success=True, admin=updated)

    def delete_admin(self, actor_id: int, actor_level: Any, target_id: int) -> AdminResult:
        if actor_id == target_id:
            logger.warning("Refused self-deletion of admin %s", actor_id)
            return AdminResult(success=False, error="You cannot delete your own account")
        target = self.get_admin(target_id)
        if target is None:
            return AdminResult(success=False, error="Admin not found")
        if not can_delete_admin(actor_level, target.access_level):
            logger.warning("Refused to delete level %s admin for actor level %s",
                           target.access_level.value, actor_level)
            return AdminResult(success=False, error="Not allowed to delete this admin")
        self._store.delete(NAMESPACE, str(target_id))
        logger.info("Deleted admin %s", target.username)
        return AdminResult(success=True, admin=target)
