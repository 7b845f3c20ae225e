"""
Page and action gating for admin requests.

The gate asks a session resolver who is calling, then applies the access
policy. Resolvers may be plain functions or coroutines. Denials come back as
decisions carrying the page the caller should be sent to instead.
"""

from __future__ import annotations

import inspect
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Union

from pydantic import BaseModel

from . import permissions
from .exceptions import AdminContextError, PolicyDeniedError
from .models import SessionIdentity

logger = logging.getLogger(__name__)

LOGIN_PAGE = "/admin/login"

SessionResolver = Callable[[], Union[Optional[SessionIdentity], Awaitable[Optional[SessionIdentity]]]]


class AdminAction(str, Enum):
    CREATE_ADMIN = "create_admin"
    DELETE_ADMIN = "delete_admin"
    EDIT_ADMIN = "edit_admin"
    MANAGE_STUDENTS = "manage_students"
    APPROVE_VOTING_RIGHTS = "approve_voting_rights"
    VIEW_ADMIN_MANAGEMENT = "view_admin_management"
    PUBLISH_RESULTS = "publish_results"


class GateDecision(BaseModel):
    allowed: bool
    session: Optional[SessionIdentity] = None
    redirect_to: Optional[str] = None

    def raise_for_denial(self) -> SessionIdentity:
        """Return the session, or raise ``PolicyDeniedError`` carrying the redirect."""
        if not self.allowed:
            raise PolicyDeniedError(self.redirect_to or LOGIN_PAGE)
        return self.session


def _action_allowed(action: AdminAction, role: Any, target_level: Any) -> bool:
    if action == AdminAction.CREATE_ADMIN:
        return permissions.can_create_admin(role, target_level)
    if action == AdminAction.DELETE_ADMIN:
        return permissions.can_delete_admin(role, target_level)
    if action == AdminAction.EDIT_ADMIN:
        return permissions.can_edit_admin(role)
    if action == AdminAction.MANAGE_STUDENTS:
        return permissions.can_manage_students(role)
    if action == AdminAction.APPROVE_VOTING_RIGHTS:
        return permissions.can_approve_voting_rights(role)
    if action == AdminAction.VIEW_ADMIN_MANAGEMENT:
        return permissions.can_view_admin_management(role)
    if action == AdminAction.PUBLISH_RESULTS:
        return permissions.can_publish_results(role)
    return False


class SessionGate:

    def __init__(self, resolver: SessionResolver) -> None:
        self._resolver = resolver

    async def resolve(self) -> Optional[SessionIdentity]:
        session = self._resolver()
        if inspect.isawaitable(session):
            session = await session
        return session

    def _unauthenticated(self) -> GateDecision:
        return GateDecision(allowed=False, redirect_to=LOGIN_PAGE)

    def _denied(self, session: SessionIdentity) -> GateDecision:
        return GateDecision(
            allowed=False,
            session=session,
            redirect_to=permissions.get_default_page(session.role),
        )

    async def authorize_page(self, page: Any) -> GateDecision:
        session = await self.resolve()
        if session is None:
            return self._unauthenticated()
        if not permissions.can_access_page(page, session.role):
            logger.warning("Page %s denied for %s", page, session.identity)
            return self._denied(session)
        return GateDecision(allowed=True, session=session)

    async def authorize_action(self, action: AdminAction, target_level: Any = None) -> GateDecision:
        session = await self.resolve()
        if session is None:
            return self._unauthenticated()
        if not _action_allowed(action, session.role, target_level):
            logger.warning("Action %s denied for %s", action.value, session.identity)
            return self._denied(session)
        return GateDecision(allowed=True, session=session)

    async def require_admin(self) -> SessionIdentity:
        """The current admin. Calling this without a session is a programming error."""
        session = await self.resolve()
        if session is None:
            raise AdminContextError()
        return session
