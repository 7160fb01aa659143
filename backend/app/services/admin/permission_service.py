import uuid

from sqlalchemy.ext.asyncio import AsyncSession

from ...auth.rbac_contract import SUPER_ADMIN_ROLE
from ...crud.permission import PermissionRepository
from ...crud.user import UserRepository
from ...models.user import User
from .permission_cache import CachedGrants, PermissionCache


class PermissionService:
    """Authorization engine: decides whether a user holds a permission.

    Decision procedure for ``authorize(user, name)``:

    1. A user holding the ``super-admin`` role is allowed unconditionally;
       the role's explicit grant set is never consulted.
    2. Otherwise the permission must be in the union of the permissions of
       every role assigned to the user.

    Checks fail closed: no user, an empty name or a permission that does not
    exist all yield ``False`` rather than an exception. Grants are read from
    the session on every call unless a ``PermissionCache`` is supplied, in
    which case writers must call ``invalidate()`` after mutating grants.
    """

    def __init__(self, session: AsyncSession, cache: PermissionCache | None = None):
        self.session = session
        self.cache = cache
        self.permission_repo = PermissionRepository(session)
        self.user_repo = UserRepository(session)

    async def _grants(self, user_id: uuid.UUID) -> CachedGrants:
        generation = await self.cache.generation() if self.cache is not None else None
        if generation is not None:
            cached = await self.cache.get(user_id, generation)
            if cached is not None:
                return cached

        grants = CachedGrants(
            roles=frozenset(await self.user_repo.get_role_names(user_id)),
            permissions=frozenset(await self.permission_repo.get_user_permission_names(user_id)),
        )
        if generation is not None:
            await self.cache.set(user_id, grants, generation)
        return grants

    async def invalidate(self) -> None:
        if self.cache is not None:
            await self.cache.invalidate()

    async def get_role_names(self, user: User) -> set[str]:
        return set((await self._grants(user.id)).roles)

    async def has_role(self, user: User | None, role_name: str) -> bool:
        if user is None:
            return False
        return role_name in (await self._grants(user.id)).roles

    async def is_super_admin(self, user: User | None) -> bool:
        return await self.has_role(user, SUPER_ADMIN_ROLE)

    async def authorize(self, user: User | None, permission_name: str) -> bool:
        if user is None:
            return False
        if not isinstance(permission_name, str) or not permission_name.strip():
            return False

        grants = await self._grants(user.id)
        if SUPER_ADMIN_ROLE in grants.roles:
            return True
        return permission_name in grants.permissions

    async def get_effective_permissions(self, user: User) -> set[str]:
        """Permission names the user can exercise (all of them for super-admin)."""
        grants = await self._grants(user.id)
        if SUPER_ADMIN_ROLE in grants.roles:
            return {permission.name for permission in await self.permission_repo.list_all()}
        return set(grants.permissions)
