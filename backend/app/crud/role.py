import uuid
from collections.abc import Iterable
from dataclasses import dataclass

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.role import Role
from ..models.role_permission import RolePermission
from ..models.user_role import UserRole


@dataclass(frozen=True)
class RoleWithCounts:
    role: Role
    permissions_count: int
    users_count: int


class RoleRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, name: str) -> Role:
        role = Role(name=name)
        self.session.add(role)
        await self.session.flush()
        return role

    async def get_by_id(self, role_id: uuid.UUID) -> Role | None:
        return await self.session.get(Role, role_id)

    async def get_by_name(self, name: str) -> Role | None:
        result = await self.session.execute(
            select(Role).where(Role.name == name)
        )
        return result.scalar_one_or_none()

    async def get_many(self, role_ids: Iterable[uuid.UUID]) -> list[Role]:
        ids = set(role_ids)
        if not ids:
            return []
        result = await self.session.execute(select(Role).where(Role.id.in_(ids)))
        return list(result.scalars().all())

    async def list_all(self) -> list[Role]:
        result = await self.session.execute(select(Role).order_by(Role.name))
        return list(result.scalars().all())

    async def count(self) -> int:
        result = await self.session.execute(select(func.count(Role.id)))
        return result.scalar_one()

    async def update(self, role: Role) -> Role:
        await self.session.flush()
        return role

    async def delete(self, role: Role) -> None:
        # Association rows first: sqlite does not enforce ON DELETE CASCADE by default
        await self.session.execute(delete(RolePermission).where(RolePermission.role_id == role.id))
        await self.session.execute(delete(UserRole).where(UserRole.role_id == role.id))
        await self.session.delete(role)
        await self.session.flush()

    async def list_with_counts(
        self, search: str | None = None, order_by_users: bool = False, limit: int | None = None
    ) -> list[RoleWithCounts]:
        permissions_count = (
            select(func.count(RolePermission.id))
            .where(RolePermission.role_id == Role.id)
            .scalar_subquery()
        )
        users_count = (
            select(func.count(UserRole.id))
            .where(UserRole.role_id == Role.id)
            .scalar_subquery()
        )
        query = select(Role, permissions_count, users_count)
        if search:
            query = query.where(Role.name.ilike(f"%{search}%"))
        if order_by_users:
            query = query.order_by(users_count.desc(), Role.name)
        else:
            query = query.order_by(Role.name)
        if limit is not None:
            query = query.limit(limit)

        result = await self.session.execute(query)
        return [
            RoleWithCounts(role=role, permissions_count=perms, users_count=users)
            for role, perms, users in result.all()
        ]
