"""
Admin access control.

Access levels:
- ROOT (0): full access
- SYSTEM_ADMIN (1): manage elections and students, create/delete TEACHER and OBSERVER admins
- TEACHER (2): approve/revoke student voting rights
- OBSERVER (3): view election results

Every rule is a table lookup. Functions accept any role value and treat an
unrecognized one as having no privileges.
"""

from enum import Enum
from typing import Any, Dict, FrozenSet, List

from .models import AccessLevel, coerce_access_level

ROOT = AccessLevel.ROOT
SYSTEM_ADMIN = AccessLevel.SYSTEM_ADMIN
TEACHER = AccessLevel.TEACHER
OBSERVER = AccessLevel.OBSERVER

ALL_ACCESS_LEVELS: List[AccessLevel] = [ROOT, SYSTEM_ADMIN, TEACHER, OBSERVER]


class Page(str, Enum):
    DASHBOARD = "dashboard"
    ELECTIONS = "elections"
    STUDENTS = "students"
    RESULTS = "results"
    ADMIN_MANAGEMENT = "adminManagement"
    ACTIVITY = "activity"


PAGE_PERMISSIONS: Dict[Page, FrozenSet[AccessLevel]] = {
    Page.DASHBOARD: frozenset({ROOT, SYSTEM_ADMIN}),
    Page.ELECTIONS: frozenset({ROOT, SYSTEM_ADMIN}),
    Page.STUDENTS: frozenset({ROOT, SYSTEM_ADMIN, TEACHER}),
    Page.RESULTS: frozenset({ROOT, SYSTEM_ADMIN, OBSERVER}),
    Page.ADMIN_MANAGEMENT: frozenset({ROOT, SYSTEM_ADMIN}),
    Page.ACTIVITY: frozenset({ROOT, SYSTEM_ADMIN}),
}

DEFAULT_PAGES: Dict[AccessLevel, str] = {
    ROOT: "/admin",
    SYSTEM_ADMIN: "/admin",
    TEACHER: "/admin/students",
    OBSERVER: "/admin/results",
}
FALLBACK_PAGE = "/admin"

# Target levels each actor may create or delete. Both rules share this table.
MANAGEABLE_LEVELS: Dict[AccessLevel, List[AccessLevel]] = {
    ROOT: [ROOT, SYSTEM_ADMIN, TEACHER, OBSERVER],
    SYSTEM_ADMIN: [TEACHER, OBSERVER],
}

PRIVILEGED_LEVELS = frozenset({ROOT, SYSTEM_ADMIN})
VOTING_RIGHTS_LEVELS = frozenset({ROOT, SYSTEM_ADMIN, TEACHER})


def _coerce_page(page: Any):
    if isinstance(page, Page):
        return page
    try:
        return Page(page)
    except (TypeError, ValueError):
        return None


def can_access_page(page: Any, role: Any) -> bool:
    """Check if an access level can open an admin page. Unknown pages are closed."""
    resolved_page = _coerce_page(page)
    level = coerce_access_level(role)
    if resolved_page is None or level is None:
        return False
    return level in PAGE_PERMISSIONS[resolved_page]


def get_default_page(role: Any) -> str:
    """Landing page for an access level; ``/admin`` for anything unrecognized."""
    level = coerce_access_level(role)
    if level is None:
        return FALLBACK_PAGE
    return DEFAULT_PAGES[level]


def get_creatable_access_levels(actor_role: Any) -> List[AccessLevel]:
    level = coerce_access_level(actor_role)
    if level is None:
        return []
    return list(MANAGEABLE_LEVELS.get(level, []))


def can_create_admin(actor_role: Any, target_role: Any) -> bool:
    """
    ROOT may create any level, SYSTEM_ADMIN only TEACHER/OBSERVER,
    everyone else nobody.
    """
    target = coerce_access_level(target_role)
    if target is None:
        return False
    return target in get_creatable_access_levels(actor_role)


def can_delete_admin(actor_role: Any, target_role: Any) -> bool:
    """Same shape as ``can_create_admin``. Self-deletion is the caller's guard."""
    return can_create_admin(actor_role, target_role)


def can_edit_admin(actor_role: Any) -> bool:
    return coerce_access_level(actor_role) == ROOT


def can_view_admin_management(role: Any) -> bool:
    return coerce_access_level(role) in PRIVILEGED_LEVELS


def can_manage_students(role: Any) -> bool:
    """Add, edit, delete and import students."""
    return coerce_access_level(role) in PRIVILEGED_LEVELS


def can_approve_voting_rights(role: Any) -> bool:
    return coerce_access_level(role) in VOTING_RIGHTS_LEVELS


def can_publish_results(role: Any) -> bool:
    return can_access_page(Page.ELECTIONS, role)
