import uuid
from collections.abc import Iterable

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.permission import Permission
from ..models.role import Role
from ..models.role_permission import RolePermission
from ..models.user_role import UserRole


class PermissionRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, name: str) -> Permission:
        permission = Permission(name=name)
        self.session.add(permission)
        await self.session.flush()
        return permission

    async def delete(self, permission: Permission) -> None:
        await self.session.delete(permission)
        await self.session.flush()

    async def get_by_id(self, permission_id: uuid.UUID) -> Permission | None:
        return await self.session.get(Permission, permission_id)

    async def get_by_name(self, name: str) -> Permission | None:
        result = await self.session.execute(
            select(Permission).where(Permission.name == name)
        )
        return result.scalar_one_or_none()

    async def get_many(self, permission_ids: Iterable[uuid.UUID]) -> list[Permission]:
        ids = set(permission_ids)
        if not ids:
            return []
        result = await self.session.execute(
            select(Permission).where(Permission.id.in_(ids))
        )
        return list(result.scalars().all())

    async def list_all(self) -> list[Permission]:
        result = await self.session.execute(select(Permission).order_by(Permission.name))
        return list(result.scalars().all())

    async def count(self) -> int:
        result = await self.session.execute(select(func.count(Permission.id)))
        return result.scalar_one()

    async def count_role_references(self, permission_id: uuid.UUID) -> int:
        result = await self.session.execute(
            select(func.count(RolePermission.id)).where(
                RolePermission.permission_id == permission_id
            )
        )
        return result.scalar_one()

    async def get_role_permissions(self, role_id: uuid.UUID) -> list[Permission]:
        result = await self.session.execute(
            select(Permission)
            .join(RolePermission, RolePermission.permission_id == Permission.id)
            .where(RolePermission.role_id == role_id)
            .order_by(Permission.name)
        )
        return list(result.scalars().all())

    async def get_user_permission_names(self, user_id: uuid.UUID) -> set[str]:
        result = await self.session.execute(
            select(Permission.name)
            .join(RolePermission, RolePermission.permission_id == Permission.id)
            .join(Role, Role.id == RolePermission.role_id)
            .join(UserRole, UserRole.role_id == Role.id)
            .where(UserRole.user_id == user_id)
            .distinct()
        )
        return set(result.scalars().all())

    async def replace_role_permissions(
        self, role_id: uuid.UUID, permission_ids: Iterable[uuid.UUID]
    ) -> None:
        """Make the role's grant set exactly `permission_ids`.

        Only the difference is written, so repeating the call is a no-op.
        """
        wanted = set(permission_ids)
        result = await self.session.execute(
            select(RolePermission.permission_id).where(RolePermission.role_id == role_id)
        )
        current = set(result.scalars().all())

        to_remove = current - wanted
        if to_remove:
            await self.session.execute(
                delete(RolePermission).where(
                    RolePermission.role_id == role_id,
                    RolePermission.permission_id.in_(to_remove),
                )
            )
        for permission_id in wanted - current:
            self.session.add(RolePermission(role_id=role_id, permission_id=permission_id))
        await self.session.flush()
