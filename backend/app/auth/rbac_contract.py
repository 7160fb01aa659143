"""
RBAC contract - provisioned permissions, default roles and entity operations.

This module is the single source of truth for:
- The distinguished `super-admin` role name
- The default permission catalogue, grouped by module
- The default role -> permission grants used by seeding
- The (entity, operation) -> permission map used by the policy layer

Permissions are plain strings stored in the database. Nothing here grants
anything at runtime: authorization always reads the persisted grants.
"""
from __future__ import annotations

from enum import Enum
from typing import Final


# ============================================================================
# ROLES
# ============================================================================

SUPER_ADMIN_ROLE: Final[str] = "super-admin"
ADMIN_ROLE: Final[str] = "admin"
VOLUNTEER_ROLE: Final[str] = "volunteer"

DEFAULT_ROLES: Final[tuple[str, ...]] = (SUPER_ADMIN_ROLE, ADMIN_ROLE, VOLUNTEER_ROLE)


# ============================================================================
# PERMISSIONS
# ============================================================================

class Perm(str, Enum):
    """Permission names referenced from code."""

    VIEW_USERS = "view users"
    CREATE_USERS = "create users"
    EDIT_USERS = "edit users"
    DELETE_USERS = "delete users"

    VIEW_ROLES = "view roles"
    CREATE_ROLES = "create roles"
    EDIT_ROLES = "edit roles"
    DELETE_ROLES = "delete roles"

    VIEW_PERMISSIONS = "view permissions"
    ASSIGN_PERMISSIONS = "assign permissions"

    VIEW_PROFILE = "view profile"
    EDIT_PROFILE = "edit profile"

    ACCESS_ADMIN_DASHBOARD = "access admin dashboard"
    VIEW_SYSTEM_LOGS = "view system logs"
    VIEW_SYSTEM_SETTINGS = "view system settings"
    EDIT_SYSTEM_SETTINGS = "edit system settings"


PERMISSION_GROUPS: Final[dict[str, tuple[str, ...]]] = {
    "users": (
        Perm.VIEW_USERS.value,
        Perm.CREATE_USERS.value,
        Perm.EDIT_USERS.value,
        Perm.DELETE_USERS.value,
    ),
    "roles": (
        Perm.VIEW_ROLES.value,
        Perm.CREATE_ROLES.value,
        Perm.EDIT_ROLES.value,
        Perm.DELETE_ROLES.value,
    ),
    "permissions": (
        Perm.VIEW_PERMISSIONS.value,
        Perm.ASSIGN_PERMISSIONS.value,
    ),
    "profile": (
        Perm.VIEW_PROFILE.value,
        Perm.EDIT_PROFILE.value,
    ),
    "admin": (
        Perm.ACCESS_ADMIN_DASHBOARD.value,
        Perm.VIEW_SYSTEM_LOGS.value,
        Perm.VIEW_SYSTEM_SETTINGS.value,
        Perm.EDIT_SYSTEM_SETTINGS.value,
    ),
}

ALL_PERMISSIONS: Final[tuple[str, ...]] = tuple(
    name for names in PERMISSION_GROUPS.values() for name in names
)

# super-admin is intentionally absent: it holds every permission implicitly
DEFAULT_ROLE_PERMISSIONS: Final[dict[str, frozenset[str]]] = {
    ADMIN_ROLE: frozenset({
        Perm.VIEW_USERS.value,
        Perm.CREATE_USERS.value,
        Perm.EDIT_USERS.value,
        Perm.DELETE_USERS.value,
        Perm.VIEW_ROLES.value,
        Perm.VIEW_PERMISSIONS.value,
        Perm.VIEW_PROFILE.value,
        Perm.EDIT_PROFILE.value,
        Perm.ACCESS_ADMIN_DASHBOARD.value,
        Perm.VIEW_SYSTEM_LOGS.value,
        Perm.VIEW_SYSTEM_SETTINGS.value,
    }),
    VOLUNTEER_ROLE: frozenset({
        Perm.VIEW_PROFILE.value,
        Perm.EDIT_PROFILE.value,
    }),
}


# ============================================================================
# PERMISSION GROUPING (presentation only)
# ============================================================================

GENERAL_GROUP: Final[str] = "general"


def permission_group(name: str) -> str:
    """Return the presentation bucket for a permission name.

    Dotted names group by the segment before the first dot
    (``"users.view"`` -> ``"users"``). Space separated ``"<verb> <resource>"``
    names group by the resource (``"view users"`` -> ``"users"``). Names with
    neither delimiter land in ``"general"``.
    """
    name = name.strip()
    if "." in name:
        prefix = name.split(".", 1)[0].strip()
        return prefix or GENERAL_GROUP
    if " " in name:
        resource = name.split(" ", 1)[1].strip()
        return resource or GENERAL_GROUP
    return GENERAL_GROUP


# ============================================================================
# ENTITY OPERATIONS
# ============================================================================

class Entity(str, Enum):
    ROLE = "role"
    USER = "user"
    DASHBOARD = "dashboard"
    SETTINGS = "settings"
    AUDIT_LOG = "audit_log"


class Operation(str, Enum):
    VIEW_ANY = "viewAny"
    VIEW = "view"
    CREATE = "create"
    UPDATE = "update"
    UPDATE_ROLES = "updateRoles"
    DELETE = "delete"


# Generic permission required for each (entity, operation).
# Pairs missing from this map are denied.
OPERATION_PERMISSIONS: Final[dict[tuple[Entity, Operation], str]] = {
    (Entity.ROLE, Operation.VIEW_ANY): Perm.VIEW_ROLES.value,
    (Entity.ROLE, Operation.VIEW): Perm.VIEW_ROLES.value,
    (Entity.ROLE, Operation.CREATE): Perm.CREATE_ROLES.value,
    (Entity.ROLE, Operation.UPDATE): Perm.EDIT_ROLES.value,
    (Entity.ROLE, Operation.DELETE): Perm.DELETE_ROLES.value,
    (Entity.USER, Operation.VIEW_ANY): Perm.VIEW_USERS.value,
    (Entity.USER, Operation.VIEW): Perm.VIEW_USERS.value,
    (Entity.USER, Operation.CREATE): Perm.CREATE_USERS.value,
    (Entity.USER, Operation.UPDATE): Perm.EDIT_USERS.value,
    (Entity.USER, Operation.UPDATE_ROLES): Perm.ASSIGN_PERMISSIONS.value,
    (Entity.USER, Operation.DELETE): Perm.DELETE_USERS.value,
    (Entity.DASHBOARD, Operation.VIEW): Perm.ACCESS_ADMIN_DASHBOARD.value,
    (Entity.SETTINGS, Operation.VIEW): Perm.ACCESS_ADMIN_DASHBOARD.value,
    (Entity.SETTINGS, Operation.UPDATE): Perm.ACCESS_ADMIN_DASHBOARD.value,
    (Entity.AUDIT_LOG, Operation.VIEW_ANY): Perm.VIEW_SYSTEM_LOGS.value,
}


def _validate_contract() -> None:
    """Validate the contract at import time (fail-fast)."""
    errors = []

    if len(set(ALL_PERMISSIONS)) != len(ALL_PERMISSIONS):
        errors.append("Duplicate permission names in PERMISSION_GROUPS")

    known = set(ALL_PERMISSIONS)
    for role, permissions in DEFAULT_ROLE_PERMISSIONS.items():
        if role not in DEFAULT_ROLES:
            errors.append(f"Unknown role in grants: {role}")
        for permission in permissions - known:
            errors.append(f"Role '{role}' grants unknown permission '{permission}'")

    if SUPER_ADMIN_ROLE in DEFAULT_ROLE_PERMISSIONS:
        errors.append(f"'{SUPER_ADMIN_ROLE}' must not carry explicit grants")

    for key, permission in OPERATION_PERMISSIONS.items():
        if permission not in known:
            errors.append(f"Operation {key} requires unknown permission '{permission}'")

    if errors:
        raise RuntimeError(
            "RBAC contract validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
        )


_validate_contract()
