"""
Role-based access control for schools.

``can`` is a pure function of (role, school id, action): no clock, no session,
no store access.
"""
from __future__ import annotations

import enum
from typing import Any, FrozenSet, List, Optional

from classmemory.schemas import Role

SANDBOX_SCHOOL_ID = "demo"
SANDBOX_SCHOOL_NAME = "Demo High School"
SANDBOX_JOIN_KEY = "DEMO01"


class Action(str, enum.Enum):
    generate_ai_notes = "generate_ai_notes"
    create_subject = "create_subject"
    create_course = "create_course"
    open_admin_dashboard = "open_admin_dashboard"
    manage_members = "manage_members"
    change_ai_settings = "change_ai_settings"
    regenerate_join_key = "regenerate_join_key"
    promote_members = "promote_members"
    remove_members = "remove_members"
    delete_school = "delete_school"


_STUDENT = frozenset({Action.generate_ai_notes})
_TEACHER = _STUDENT | {Action.create_subject, Action.create_course}
_ADMIN = _TEACHER | {
    Action.open_admin_dashboard,
    Action.manage_members,
    Action.change_ai_settings,
    Action.regenerate_join_key,
    Action.promote_members,
    Action.remove_members,
    Action.delete_school,
}

# Role -> allowed actions; each role is a strict superset of the one below it.
ROLE_PERMISSIONS: dict[Role, FrozenSet[Action]] = {
    Role.student: _STUDENT,
    Role.teacher: _TEACHER,
    Role.admin: _ADMIN,
}

# Everything except note generation is administrative and denied in the sandbox.
ADMIN_ACTIONS: FrozenSet[Action] = frozenset(a for a in Action if a is not Action.generate_ai_notes)


def _role(value: Any) -> Optional[Role]:
    try:
        return Role(value)
    except (ValueError, TypeError):
        return None


def _action(value: Any) -> Optional[Action]:
    try:
        return Action(value)
    except (ValueError, TypeError):
        return None


def is_sandbox_school(school_id: Optional[str]) -> bool:
    return school_id == SANDBOX_SCHOOL_ID


def role_has_permission(role: Any, action: Any) -> bool:
    """Matrix lookup without the sandbox override."""
    r, a = _role(role), _action(action)
    if r is None or a is None:
        return False
    return a in ROLE_PERMISSIONS[r]


def can(membership: Any, action: Any) -> bool:
    """
    Whether the holder of ``membership`` (anything with ``school_id`` and ``role``)
    may perform ``action``.

    No membership means no access. In the sandbox school every administrative
    action is denied whatever the role.
    """
    if membership is None:
        return False
    a = _action(action)
    if a is None:
        return False
    if is_sandbox_school(getattr(membership, "school_id", None)) and a in ADMIN_ACTIONS:
        return False
    return role_has_permission(getattr(membership, "role", None), a)


def get_role_permissions(role: Any) -> List[Action]:
    r = _role(role)
    if r is None:
        return []
    return sorted(ROLE_PERMISSIONS[r], key=lambda a: a.value)


def get_role_hierarchy() -> List[Role]:
    """Roles ordered by privilege, highest first."""
    return [Role.admin, Role.teacher, Role.student]


def is_role_higher_or_equal(role1: Any, role2: Any) -> bool:
    hierarchy = get_role_hierarchy()
    r1, r2 = _role(role1), _role(role2)
    if r1 is None or r2 is None:
        return False
    return hierarchy.index(r1) <= hierarchy.index(r2)
