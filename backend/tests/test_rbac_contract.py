"""
Tests for the RBAC contract: default catalogue, grants and operation map.
"""
import pytest

from app.auth import rbac_contract
from app.auth.rbac_contract import Entity, Operation, Perm


class TestDefaultRoles:
    def test_default_roles(self):
        assert rbac_contract.DEFAULT_ROLES == ("super-admin", "admin", "volunteer")

    def test_super_admin_has_no_explicit_grants(self):
        assert rbac_contract.SUPER_ADMIN_ROLE not in rbac_contract.DEFAULT_ROLE_PERMISSIONS

    def test_volunteer_grants(self):
        assert rbac_contract.DEFAULT_ROLE_PERMISSIONS["volunteer"] == {"view profile", "edit profile"}

    def test_admin_cannot_manage_roles_or_settings(self):
        admin = rbac_contract.DEFAULT_ROLE_PERMISSIONS["admin"]
        assert "view users" in admin
        assert "view roles" in admin
        assert "create roles" not in admin
        assert "delete roles" not in admin
        assert "assign permissions" not in admin
        assert "edit system settings" not in admin

    def test_default_grants_reference_known_permissions(self):
        known = set(rbac_contract.ALL_PERMISSIONS)
        for grants in rbac_contract.DEFAULT_ROLE_PERMISSIONS.values():
            assert grants <= known


class TestPermissionCatalogue:
    def test_sixteen_unique_permissions(self):
        assert len(rbac_contract.ALL_PERMISSIONS) == 16
        assert len(set(rbac_contract.ALL_PERMISSIONS)) == 16

    def test_groups(self):
        assert set(rbac_contract.PERMISSION_GROUPS) == {"users", "roles", "permissions", "profile", "admin"}

    def test_perm_enum_matches_catalogue(self):
        assert {perm.value for perm in Perm} == set(rbac_contract.ALL_PERMISSIONS)


class TestPermissionGroup:
    @pytest.mark.parametrize(
        ("name", "group"),
        [
            ("view users", "users"),
            ("access admin dashboard", "admin dashboard"),
            ("users.create", "users"),
            ("reports.export.csv", "reports"),
            ("impersonate", "general"),
        ],
    )
    def test_group_is_derived_from_name(self, name, group):
        assert rbac_contract.permission_group(name) == group


class TestOperationPermissions:
    def test_every_operation_maps_to_known_permission(self):
        known = set(rbac_contract.ALL_PERMISSIONS)
        assert set(rbac_contract.OPERATION_PERMISSIONS.values()) <= known

    def test_update_roles_requires_assign_permissions(self):
        key = (Entity.USER, Operation.UPDATE_ROLES)
        assert rbac_contract.OPERATION_PERMISSIONS[key] == "assign permissions"

    def test_role_delete_requires_delete_roles(self):
        key = (Entity.ROLE, Operation.DELETE)
        assert rbac_contract.OPERATION_PERMISSIONS[key] == "delete roles"

    def test_audit_log_requires_view_system_logs(self):
        key = (Entity.AUDIT_LOG, Operation.VIEW_ANY)
        assert rbac_contract.OPERATION_PERMISSIONS[key] == "view system logs"
