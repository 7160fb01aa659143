"""
Integration tests for the permission registry against an in-memory database.
"""
import logging
import uuid

import pytest
from sqlalchemy import func, select

from app.errors import AuthorizationDenied, ConflictError, DuplicateNameError, NotFoundError, ValidationError
from app.models import AuditLog, Permission, RolePermission, UserRole
from app.services.admin.permission_service import PermissionService
from app.services.admin.role_service import RoleService
from app.services.admin.user_service import UserService


async def _count(session, model) -> int:
    return (await session.execute(select(func.count()).select_from(model))).scalar_one()


class TestCreatePermission:
    @pytest.mark.anyio
    async def test_duplicate_name_is_rejected_without_writing(self, session):
        service = RoleService(session)
        await service.create_permission("view users")
        await session.commit()

        with pytest.raises(DuplicateNameError):
            await service.create_permission("view users")

        assert await _count(session, Permission) == 1

    @pytest.mark.anyio
    async def test_name_is_trimmed_and_required(self, session):
        service = RoleService(session)
        permission = await service.create_permission("  export reports  ")
        assert permission.name == "export reports"

        with pytest.raises(ValidationError):
            await service.create_permission("   ")

    @pytest.mark.anyio
    async def test_creation_is_audited(self, session):
        permission = await RoleService(session).create_permission("export reports")

        entries = (await session.execute(select(AuditLog))).scalars().all()
        assert [(e.action, e.target_type, e.target_name) for e in entries] == [
            ("created", "permission", "export reports")
        ]
        assert entries[0].target_id == str(permission.id)


class TestDeletePermission:
    @pytest.mark.anyio
    async def test_referenced_permission_cannot_be_deleted(self, session, seeded):
        service = RoleService(session)
        granted = await service.get_role_permissions(seeded["admin"])

        with pytest.raises(ConflictError):
            await service.delete_permission(granted[0].id)

    @pytest.mark.anyio
    async def test_unreferenced_permission_is_deleted(self, session):
        service = RoleService(session)
        permission = await service.create_permission("export reports")

        await service.delete_permission(permission.id)

        assert await _count(session, Permission) == 0


class TestGrouping:
    @pytest.mark.anyio
    async def test_seeded_permissions_group_by_resource(self, session, seeded):
        groups = await RoleService(session).list_permissions_grouped_by_prefix()

        assert {p.name for p in groups["users"]} == {"view users", "create users", "edit users", "delete users"}
        assert {p.name for p in groups["roles"]} == {"view roles", "create roles", "edit roles", "delete roles"}
        assert list(groups) == sorted(groups)

    @pytest.mark.anyio
    async def test_dotted_names_group_by_prefix(self, session):
        service = RoleService(session)
        await service.create_permission("reports.view")
        await service.create_permission("reports.export")
        await service.create_permission("impersonate")

        groups = await service.list_permissions_grouped_by_prefix()
        assert {p.name for p in groups["reports"]} == {"reports.view", "reports.export"}
        assert [p.name for p in groups["general"]] == ["impersonate"]


class TestRoles:
    @pytest.mark.anyio
    async def test_create_role_with_permissions(self, session, seeded):
        service = RoleService(session)
        view_users = (await session.execute(select(Permission).where(Permission.name == "view users"))).scalar_one()

        role = await service.create_role("auditor", [view_users.id])

        assert [p.name for p in await service.get_role_permissions(role)] == ["view users"]

    @pytest.mark.anyio
    async def test_duplicate_role_name(self, session, seeded):
        with pytest.raises(DuplicateNameError):
            await RoleService(session).create_role("admin")

    @pytest.mark.anyio
    async def test_unknown_permission_ids_write_nothing(self, session, seeded):
        service = RoleService(session)
        roles_before = len(await service.list_roles())

        with pytest.raises(NotFoundError) as exc_info:
            await service.create_role("auditor", [uuid.uuid4()])

        assert len(await service.list_roles()) == roles_before
        assert "missing_ids" in exc_info.value.details

    @pytest.mark.anyio
    async def test_super_admin_role_cannot_be_renamed(self, session, seeded):
        with pytest.raises(ValidationError):
            await RoleService(session).update_role(seeded["super-admin"], name="root")

    @pytest.mark.anyio
    async def test_rename_is_audited_with_field_names(self, session, seeded):
        role = await RoleService(session).update_role(seeded["volunteer"], name="helper")

        assert role.name == "helper"
        entry = (
            await session.execute(select(AuditLog).where(AuditLog.action == "updated", AuditLog.target_type == "role"))
        ).scalar_one()
        assert entry.properties == {"updated_fields": ["name"]}

    @pytest.mark.anyio
    async def test_list_roles_with_counts(self, session, seeded, admin, volunteer):
        counts = {item.role.name: item for item in await RoleService(session).list_roles_with_counts()}

        assert counts["admin"].users_count == 1
        assert counts["admin"].permissions_count == 11
        assert counts["super-admin"].permissions_count == 0
        assert counts["volunteer"].permissions_count == 2


class TestDeleteRole:
    @pytest.mark.anyio
    async def test_super_admin_role_is_undeletable(self, session, seeded, super_admin, caplog):
        with caplog.at_level(logging.WARNING, logger="rbac.authz"):
            with pytest.raises(AuthorizationDenied) as exc_info:
                await RoleService(session).delete_role(seeded["super-admin"], actor=super_admin)

        assert exc_info.value.message == AuthorizationDenied.message
        assert "super-admin" not in str(exc_info.value)
        assert "protected role" in caplog.text

        assert await RoleService(session).get_role_by_name("super-admin")

    @pytest.mark.anyio
    async def test_delete_removes_grants_and_assignments(self, session, seeded, volunteer):
        role = seeded["volunteer"]
        await RoleService(session).delete_role(role)
        await session.commit()

        grants = await session.execute(select(RolePermission).where(RolePermission.role_id == role.id))
        assignments = await session.execute(select(UserRole).where(UserRole.role_id == role.id))
        assert grants.scalars().all() == []
        assert assignments.scalars().all() == []
        assert await UserService(session).get_roles(volunteer) == []


class TestGrantPermissions:
    @pytest.mark.anyio
    async def test_grant_is_idempotent(self, session, seeded):
        service = RoleService(session)
        role = await service.create_role("auditor")
        ids = [p.id for p in await service.list_permissions() if p.name in {"view users", "view roles"}]

        await service.grant_permissions(role, ids)
        first = {p.name for p in await service.get_role_permissions(role)}
        entries_after_first = await _count(session, AuditLog)

        await service.grant_permissions(role, ids)
        second = {p.name for p in await service.get_role_permissions(role)}

        assert first == second == {"view users", "view roles"}
        assert await _count(session, AuditLog) == entries_after_first

    @pytest.mark.anyio
    async def test_grant_replaces_previous_set(self, session, seeded):
        service = RoleService(session)
        by_name = {p.name: p.id for p in await service.list_permissions()}
        role = await service.create_role("auditor", [by_name["view users"], by_name["view roles"]])

        await service.grant_permissions(role, [by_name["view system logs"]])

        assert [p.name for p in await service.get_role_permissions(role)] == ["view system logs"]

    @pytest.mark.anyio
    async def test_grant_changes_authorization(self, session, seeded, make_user):
        service = RoleService(session)
        by_name = {p.name: p.id for p in await service.list_permissions()}
        role = await service.create_role("auditor", [by_name["view users"], by_name["edit users"]])
        await session.commit()
        user = await make_user(role)
        permissions = PermissionService(session)

        assert await permissions.authorize(user, "view users") is True
        assert await permissions.authorize(user, "delete users") is False

        await service.grant_permissions(role, [by_name["delete users"]])

        assert await permissions.authorize(user, "view users") is False
        assert await permissions.authorize(user, "delete users") is True
