import uuid
from collections.abc import Iterable
from datetime import datetime

from sqlalchemy import delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.role import Role
from ..models.user import User
from ..models.user_role import UserRole


class UserRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self, name: str, email: str, password_hash: str, is_approved: bool = False
    ) -> User:
        user = User(
            name=name,
            email=email,
            password_hash=password_hash,
            is_approved=is_approved,
        )
        self.session.add(user)
        await self.session.flush()
        return user

    async def get_by_id(self, user_id: uuid.UUID) -> User | None:
        return await self.session.get(User, user_id)

    async def get_by_email(self, email: str) -> User | None:
        result = await self.session.execute(select(User).where(User.email == email))
        return result.scalar_one_or_none()

    async def update(self, user: User) -> User:
        await self.session.flush()
        return user

    async def delete(self, user: User) -> None:
        await self.session.execute(delete(UserRole).where(UserRole.user_id == user.id))
        await self.session.delete(user)
        await self.session.flush()

    async def count(self) -> int:
        result = await self.session.execute(select(func.count(User.id)))
        return result.scalar_one()

    async def count_created_since(self, since: datetime) -> int:
        result = await self.session.execute(
            select(func.count(User.id)).where(User.created_at >= since)
        )
        return result.scalar_one()

    async def count_pending_approval(self) -> int:
        result = await self.session.execute(
            select(func.count(User.id)).where(User.is_approved.is_(False))
        )
        return result.scalar_one()

    async def list_filtered(
        self,
        search: str | None = None,
        role_id: uuid.UUID | None = None,
        limit: int | None = 50,
        offset: int = 0,
    ) -> list[User]:
        query = select(User)
        if search:
            pattern = f"%{search}%"
            query = query.where(or_(User.name.ilike(pattern), User.email.ilike(pattern)))
        if role_id is not None:
            query = query.where(
                User.id.in_(select(UserRole.user_id).where(UserRole.role_id == role_id))
            )
        query = query.order_by(User.created_at.desc()).limit(limit).offset(offset)
        result = await self.session.execute(query)
        return list(result.scalars().all())

    # --- role assignments -------------------------------------------------

    async def get_roles(self, user_id: uuid.UUID) -> list[Role]:
        result = await self.session.execute(
            select(Role)
            .join(UserRole, UserRole.role_id == Role.id)
            .where(UserRole.user_id == user_id)
            .order_by(Role.name)
        )
        return list(result.scalars().all())

    async def get_role_names(self, user_id: uuid.UUID) -> set[str]:
        result = await self.session.execute(
            select(Role.name)
            .join(UserRole, UserRole.role_id == Role.id)
            .where(UserRole.user_id == user_id)
        )
        return set(result.scalars().all())

    async def get_role_names_for_users(
        self, user_ids: Iterable[uuid.UUID]
    ) -> dict[uuid.UUID, list[str]]:
        ids = set(user_ids)
        names: dict[uuid.UUID, list[str]] = {user_id: [] for user_id in ids}
        if not ids:
            return names
        result = await self.session.execute(
            select(UserRole.user_id, Role.name)
            .join(Role, Role.id == UserRole.role_id)
            .where(UserRole.user_id.in_(ids))
            .order_by(Role.name)
        )
        for user_id, role_name in result.all():
            names[user_id].append(role_name)
        return names

    async def has_role(self, user_id: uuid.UUID, role_id: uuid.UUID) -> bool:
        result = await self.session.execute(
            select(UserRole.id).where(UserRole.user_id == user_id, UserRole.role_id == role_id)
        )
        return result.first() is not None

    async def add_role(
        self, user_id: uuid.UUID, role_id: uuid.UUID, granted_by: uuid.UUID | None = None
    ) -> UserRole:
        user_role = UserRole(user_id=user_id, role_id=role_id, granted_by=granted_by)
        self.session.add(user_role)
        await self.session.flush()
        return user_role

    async def remove_role(self, user_id: uuid.UUID, role_id: uuid.UUID) -> bool:
        result = await self.session.execute(
            delete(UserRole).where(UserRole.user_id == user_id, UserRole.role_id == role_id)
        )
        await self.session.flush()
        return result.rowcount > 0

    async def replace_roles(
        self,
        user_id: uuid.UUID,
        role_ids: Iterable[uuid.UUID],
        granted_by: uuid.UUID | None = None,
    ) -> None:
        wanted = set(role_ids)
        result = await self.session.execute(
            select(UserRole.role_id).where(UserRole.user_id == user_id)
        )
        current = set(result.scalars().all())

        to_remove = current - wanted
        if to_remove:
            await self.session.execute(
                delete(UserRole).where(
                    UserRole.user_id == user_id, UserRole.role_id.in_(to_remove)
                )
            )
        for role_id in wanted - current:
            self.session.add(UserRole(user_id=user_id, role_id=role_id, granted_by=granted_by))
        await self.session.flush()
