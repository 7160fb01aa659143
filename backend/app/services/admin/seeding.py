"""
Default permission catalogue and roles.

Safe to run repeatedly: missing permissions and roles are created and
default grants that are absent are added. Grants an operator added on top
of the defaults are left alone.
"""
from dataclasses import dataclass, field

from sqlalchemy.ext.asyncio import AsyncSession

from ...auth import rbac_contract
from ...crud.permission import PermissionRepository
from ...crud.role import RoleRepository
from ...crud.user import UserRepository
from .role_service import RoleService
from .user_service import UserService


@dataclass
class SeedReport:
    permissions_created: list[str] = field(default_factory=list)
    roles_created: list[str] = field(default_factory=list)
    grants_added: dict[str, list[str]] = field(default_factory=dict)

    @property
    def changed(self) -> bool:
        return bool(self.permissions_created or self.roles_created or self.grants_added)


async def seed_rbac(session: AsyncSession) -> SeedReport:
    """Create the default catalogue in the caller's transaction (not committed)."""
    report = SeedReport()
    permission_repo = PermissionRepository(session)
    role_repo = RoleRepository(session)
    roles = RoleService(session)

    permission_ids = {}
    for name in rbac_contract.ALL_PERMISSIONS:
        permission = await permission_repo.get_by_name(name)
        if permission is None:
            permission = await roles.create_permission(name)
            report.permissions_created.append(name)
        permission_ids[name] = permission.id

    for role_name in rbac_contract.DEFAULT_ROLES:
        role = await role_repo.get_by_name(role_name)
        if role is None:
            role = await roles.create_role(role_name)
            report.roles_created.append(role_name)

        # super-admin is authorized by name and never carries explicit grants
        defaults = rbac_contract.DEFAULT_ROLE_PERMISSIONS.get(role_name, frozenset())
        granted = await roles.get_role_permissions(role)
        missing = sorted(defaults - {permission.name for permission in granted})
        if missing:
            wanted = {permission.id for permission in granted} | {permission_ids[name] for name in missing}
            await roles.grant_permissions(role, wanted)
            report.grants_added[role_name] = missing

    return report


async def ensure_super_admin(
    session: AsyncSession, email: str, password: str, name: str = "Super Admin"
) -> bool:
    """Create an approved super-admin user unless the email is taken.

    Returns True when a user was created.
    """
    if await UserRepository(session).get_by_email(email.strip().lower()) is not None:
        return False
    role = await RoleService(session).get_role_by_name(rbac_contract.SUPER_ADMIN_ROLE)
    await UserService(session).create_user(
        name=name, email=email, password=password, role_ids=[role.id], is_approved=True
    )
    return True
