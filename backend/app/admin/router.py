"""
Admin API: dashboard, roles, permissions, users, settings and audit logs.

Every endpoint resolves the acting user from the bearer token, asks the
policy layer exactly once whether the action is allowed, runs the service
call and commits. Services flush and audit inside the same transaction, so
a failed commit leaves neither the change nor its audit entry behind.
"""
from __future__ import annotations

import uuid
from datetime import datetime

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.rbac_contract import Entity, Operation
from app.crud.role import RoleWithCounts
from app.dependencies import get_cache, get_current_user, get_db, get_permission_service, get_policy
from app.models.user import User
from app.schemas.audit_log import AuditLogResponse
from app.schemas.dashboard import ActivityResponse, DashboardResponse, DashboardStatsResponse
from app.schemas.permission import PermissionGroups, PermissionResponse
from app.schemas.role import RoleCreate, RoleDetail, RoleList, RoleSummary, RoleUpdate
from app.schemas.settings import SystemSettingsResponse, SystemSettingsUpdate
from app.schemas.user import (
    UserCreate,
    UserList,
    UserRolesUpdate,
    UserUpdate,
    UserWithRolesResponse,
)
from app.services.admin.dashboard_service import DashboardService
from app.services.admin.permission_cache import PermissionCache
from app.services.admin.permission_service import PermissionService
from app.services.admin.policies import PolicyService
from app.services.admin.role_service import RoleService
from app.services.admin.settings_service import SettingsService
from app.services.admin.user_service import UserService, UserWithRoles
from app.services.audit.audit_service import AuditService

router = APIRouter(
    prefix="/admin",
    tags=["admin"],
)


def _role_summary(item: RoleWithCounts) -> RoleSummary:
    return RoleSummary(
        id=item.role.id,
        name=item.role.name,
        permissions_count=item.permissions_count,
        users_count=item.users_count,
    )


def _user_with_roles(item: UserWithRoles) -> UserWithRolesResponse:
    return UserWithRolesResponse(
        id=item.user.id,
        name=item.user.name,
        email=item.user.email,
        is_approved=item.user.is_approved,
        created_at=item.user.created_at,
        roles=item.roles,
    )


async def _commit_grants(db: AsyncSession, permissions: PermissionService) -> None:
    """Commit a change to grants or assignments.

    The cache is invalidated again after the commit so that no entry read
    between the service's invalidation and the commit outlives it.
    """
    await db.commit()
    await permissions.invalidate()


# --- dashboard ---------------------------------------------------------------


@router.get("/dashboard", response_model=DashboardResponse)
async def dashboard(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    policy: PolicyService = Depends(get_policy),
) -> DashboardResponse:
    await policy.require_entity_operation(user, Entity.DASHBOARD, Operation.VIEW)

    service = DashboardService(db)
    stats = await service.stats()
    return DashboardResponse(
        stats=DashboardStatsResponse(**vars(stats)),
        recent_users=[_user_with_roles(item) for item in await service.recent_users()],
        roles_summary=[_role_summary(item) for item in await service.roles_summary()],
        activities=[ActivityResponse(**vars(item)) for item in await service.recent_activities()],
    )


# --- roles -------------------------------------------------------------------


@router.get("/roles", response_model=RoleList)
async def list_roles(
    search: str | None = Query(None, max_length=255),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    policy: PolicyService = Depends(get_policy),
) -> RoleList:
    await policy.require_entity_operation(user, Entity.ROLE, Operation.VIEW_ANY)

    roles = await RoleService(db).list_roles_with_counts(search=search)
    return RoleList(roles=[_role_summary(item) for item in roles], total=len(roles))


@router.post("/roles", response_model=RoleDetail, status_code=status.HTTP_201_CREATED)
async def create_role(
    payload: RoleCreate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    policy: PolicyService = Depends(get_policy),
    permissions: PermissionService = Depends(get_permission_service),
    cache: PermissionCache | None = Depends(get_cache),
) -> RoleDetail:
    await policy.require_entity_operation(user, Entity.ROLE, Operation.CREATE)

    service = RoleService(db, cache=cache)
    role = await service.create_role(payload.name, payload.permissions, actor=user)
    granted = await service.get_role_permissions(role)
    await _commit_grants(db, permissions)
    return RoleDetail(
        id=role.id,
        name=role.name,
        created_at=role.created_at,
        updated_at=role.updated_at,
        permissions=[permission.id for permission in granted],
    )


@router.get("/roles/{role_id}", response_model=RoleDetail)
async def get_role(
    role_id: uuid.UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    policy: PolicyService = Depends(get_policy),
) -> RoleDetail:
    service = RoleService(db)
    role = await service.get_role(role_id)
    await policy.require_entity_operation(user, role, Operation.VIEW)

    granted = await service.get_role_permissions(role)
    return RoleDetail(
        id=role.id,
        name=role.name,
        created_at=role.created_at,
        updated_at=role.updated_at,
        permissions=[permission.id for permission in granted],
    )


@router.put("/roles/{role_id}", response_model=RoleDetail)
async def update_role(
    role_id: uuid.UUID,
    payload: RoleUpdate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    policy: PolicyService = Depends(get_policy),
    permissions: PermissionService = Depends(get_permission_service),
    cache: PermissionCache | None = Depends(get_cache),
) -> RoleDetail:
    service = RoleService(db, cache=cache)
    role = await service.get_role(role_id)
    await policy.require_entity_operation(user, role, Operation.UPDATE)

    role = await service.update_role(role, payload.name, payload.permissions, actor=user)
    granted = await service.get_role_permissions(role)
    await _commit_grants(db, permissions)
    return RoleDetail(
        id=role.id,
        name=role.name,
        created_at=role.created_at,
        updated_at=role.updated_at,
        permissions=[permission.id for permission in granted],
    )


@router.delete("/roles/{role_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_role(
    role_id: uuid.UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    policy: PolicyService = Depends(get_policy),
    permissions: PermissionService = Depends(get_permission_service),
    cache: PermissionCache | None = Depends(get_cache),
) -> Response:
    service = RoleService(db, cache=cache)
    role = await service.get_role(role_id)
    await policy.require_entity_operation(user, role, Operation.DELETE)

    await service.delete_role(role, actor=user)
    await _commit_grants(db, permissions)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/permissions", response_model=PermissionGroups)
async def list_permissions(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    policy: PolicyService = Depends(get_policy),
) -> PermissionGroups:
    await policy.require_entity_operation(user, Entity.ROLE, Operation.VIEW_ANY)

    groups = await RoleService(db).list_permissions_grouped_by_prefix()
    return PermissionGroups(
        groups={
            group: [PermissionResponse.model_validate(permission) for permission in items]
            for group, items in groups.items()
        }
    )


# --- users -------------------------------------------------------------------


@router.get("/users", response_model=UserList)
async def list_users(
    search: str | None = Query(None, max_length=255),
    role_id: uuid.UUID | None = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    policy: PolicyService = Depends(get_policy),
) -> UserList:
    await policy.require_entity_operation(user, Entity.USER, Operation.VIEW_ANY)

    users = await UserService(db).list_users_with_roles(
        search=search, role_id=role_id, limit=limit, offset=offset
    )
    return UserList(users=[_user_with_roles(item) for item in users], limit=limit, offset=offset)


@router.post("/users", response_model=UserWithRolesResponse, status_code=status.HTTP_201_CREATED)
async def create_user(
    payload: UserCreate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    policy: PolicyService = Depends(get_policy),
    permissions: PermissionService = Depends(get_permission_service),
    cache: PermissionCache | None = Depends(get_cache),
) -> UserWithRolesResponse:
    await policy.require_entity_operation(user, Entity.USER, Operation.CREATE)

    # Initial roles, super-admin included, need only `create users`; later
    # changes go through update_roles and its super-admin rules.
    service = UserService(db, cache=cache)
    created = await service.create_user(
        name=payload.name,
        email=payload.email,
        password=payload.password,
        role_ids=payload.roles,
        is_approved=payload.is_approved,
        actor=user,
    )
    roles = await service.get_roles(created)
    await _commit_grants(db, permissions)
    return _user_with_roles(UserWithRoles(user=created, roles=sorted(role.name for role in roles)))


@router.get("/users/{user_id}", response_model=UserWithRolesResponse)
async def get_user(
    user_id: uuid.UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    policy: PolicyService = Depends(get_policy),
) -> UserWithRolesResponse:
    service = UserService(db)
    target = await service.get_user(user_id)
    await policy.require_entity_operation(user, target, Operation.VIEW)

    roles = await service.get_roles(target)
    return _user_with_roles(UserWithRoles(user=target, roles=sorted(role.name for role in roles)))


@router.put("/users/{user_id}", response_model=UserWithRolesResponse)
async def update_user(
    user_id: uuid.UUID,
    payload: UserUpdate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    policy: PolicyService = Depends(get_policy),
) -> UserWithRolesResponse:
    service = UserService(db)
    target = await service.get_user(user_id)
    await policy.require_entity_operation(user, target, Operation.UPDATE)

    target = await service.update_user(
        target,
        name=payload.name,
        email=payload.email,
        password=payload.password,
        is_approved=payload.is_approved,
        actor=user,
    )
    roles = await service.get_roles(target)
    await db.commit()
    return _user_with_roles(UserWithRoles(user=target, roles=sorted(role.name for role in roles)))


@router.put("/users/{user_id}/roles", response_model=UserWithRolesResponse)
async def update_user_roles(
    user_id: uuid.UUID,
    payload: UserRolesUpdate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    policy: PolicyService = Depends(get_policy),
    permissions: PermissionService = Depends(get_permission_service),
    cache: PermissionCache | None = Depends(get_cache),
) -> UserWithRolesResponse:
    service = UserService(db, cache=cache)
    target = await service.get_user(user_id)
    await policy.require_entity_operation(user, target, Operation.UPDATE_ROLES)

    roles = await service.sync_roles(target, payload.roles, actor=user)
    await _commit_grants(db, permissions)
    return _user_with_roles(UserWithRoles(user=target, roles=[role.name for role in roles]))


@router.delete("/users/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_user(
    user_id: uuid.UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    policy: PolicyService = Depends(get_policy),
    permissions: PermissionService = Depends(get_permission_service),
    cache: PermissionCache | None = Depends(get_cache),
) -> Response:
    service = UserService(db, cache=cache)
    target = await service.get_user(user_id)
    await policy.require_entity_operation(user, target, Operation.DELETE)

    await service.delete_user(target, actor=user)
    await _commit_grants(db, permissions)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# --- settings ----------------------------------------------------------------


@router.get("/settings", response_model=SystemSettingsResponse)
async def get_settings(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    policy: PolicyService = Depends(get_policy),
) -> SystemSettingsResponse:
    await policy.require_entity_operation(user, Entity.SETTINGS, Operation.VIEW)

    return SystemSettingsResponse(**await SettingsService(db).get_settings())


@router.put("/settings", response_model=SystemSettingsResponse)
async def update_settings(
    payload: SystemSettingsUpdate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    policy: PolicyService = Depends(get_policy),
) -> SystemSettingsResponse:
    await policy.require_entity_operation(user, Entity.SETTINGS, Operation.UPDATE)

    updated = await SettingsService(db).update_settings(
        payload.model_dump(exclude_none=True), actor=user
    )
    await db.commit()
    return SystemSettingsResponse(**updated)


# --- audit log ---------------------------------------------------------------


@router.get("/audit-logs", response_model=list[AuditLogResponse])
async def list_audit_logs(
    actor_id: uuid.UUID | None = None,
    action: str | None = Query(None, max_length=100),
    target_type: str | None = Query(None, max_length=100),
    target_id: str | None = Query(None, max_length=255),
    from_date: datetime | None = None,
    to_date: datetime | None = None,
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    policy: PolicyService = Depends(get_policy),
) -> list[AuditLogResponse]:
    await policy.require_entity_operation(user, Entity.AUDIT_LOG, Operation.VIEW_ANY)

    entries = await AuditService(db).list_by_filters(
        actor_id=actor_id,
        action=action,
        target_type=target_type,
        target_id=target_id,
        from_date=from_date,
        to_date=to_date,
        limit=limit,
        offset=offset,
    )
    return [AuditLogResponse.model_validate(entry) for entry in entries]
