import logging
import uuid
from collections.abc import Iterable

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ...auth.rbac_contract import SUPER_ADMIN_ROLE, permission_group
from ...crud.permission import PermissionRepository
from ...crud.role import RoleRepository, RoleWithCounts
from ...errors import AuthorizationDenied, ConflictError, DuplicateNameError, NotFoundError, ValidationError
from ...models.permission import Permission
from ...models.role import Role
from ...models.user import User
from ..audit.audit_service import AuditService
from .permission_cache import PermissionCache

logger = logging.getLogger("rbac.registry")
authz_logger = logging.getLogger("rbac.authz")

NAME_MAX_LENGTH = 255


def _clean_name(name: str, kind: str) -> str:
    cleaned = (name or "").strip()
    if not cleaned:
        raise ValidationError(f"{kind} name must not be empty")
    if len(cleaned) > NAME_MAX_LENGTH:
        raise ValidationError(f"{kind} name must be at most {NAME_MAX_LENGTH} characters")
    return cleaned


class RoleService:
    """Permission registry: permissions, roles and the grants between them.

    Methods flush but never commit; the caller owns the transaction. The
    acting user is only used for audit attribution, authorization happens in
    ``PolicyService`` before these methods are called.
    """

    def __init__(self, session: AsyncSession, cache: PermissionCache | None = None):
        self.session = session
        self.cache = cache
        self.permission_repo = PermissionRepository(session)
        self.role_repo = RoleRepository(session)
        self.audit = AuditService(session)

    async def _invalidate(self) -> None:
        if self.cache is not None:
            await self.cache.invalidate()

    # --- permissions ------------------------------------------------------

    async def create_permission(self, name: str, actor: User | None = None) -> Permission:
        name = _clean_name(name, "Permission")
        if await self.permission_repo.get_by_name(name) is not None:
            raise DuplicateNameError(f"Permission '{name}' already exists")
        try:
            async with self.session.begin_nested():
                permission = await self.permission_repo.create(name)
        except IntegrityError as exc:
            raise DuplicateNameError(f"Permission '{name}' already exists") from exc

        await self.audit.log_created("permission", permission.id, permission.name, actor=actor)
        return permission

    async def get_permission(self, permission_id: uuid.UUID) -> Permission:
        permission = await self.permission_repo.get_by_id(permission_id)
        if permission is None:
            raise NotFoundError(f"Permission {permission_id} not found")
        return permission

    async def delete_permission(self, permission_id: uuid.UUID, actor: User | None = None) -> None:
        permission = await self.get_permission(permission_id)
        if await self.permission_repo.count_role_references(permission.id):
            raise ConflictError(f"Permission '{permission.name}' is still granted to a role")
        await self.permission_repo.delete(permission)
        await self._invalidate()
        await self.audit.log_deleted("permission", permission.id, permission.name, actor=actor)

    async def list_permissions(self) -> list[Permission]:
        return await self.permission_repo.list_all()

    async def list_permissions_grouped_by_prefix(self) -> dict[str, list[Permission]]:
        """Permissions bucketed for display; carries no authorization meaning."""
        groups: dict[str, list[Permission]] = {}
        for permission in await self.permission_repo.list_all():
            groups.setdefault(permission_group(permission.name), []).append(permission)
        return dict(sorted(groups.items()))

    async def _resolve_permissions(self, permission_ids: Iterable[uuid.UUID]) -> list[Permission]:
        wanted = set(permission_ids)
        found = await self.permission_repo.get_many(wanted)
        missing = wanted - {permission.id for permission in found}
        if missing:
            raise NotFoundError(
                "Permission not found",
                details={"missing_ids": sorted(str(pid) for pid in missing)},
            )
        return found

    # --- roles ------------------------------------------------------------

    async def get_role(self, role_id: uuid.UUID) -> Role:
        role = await self.role_repo.get_by_id(role_id)
        if role is None:
            raise NotFoundError(f"Role {role_id} not found")
        return role

    async def get_role_by_name(self, name: str) -> Role:
        role = await self.role_repo.get_by_name(name)
        if role is None:
            raise NotFoundError(f"Role '{name}' not found")
        return role

    async def get_role_permissions(self, role: Role) -> list[Permission]:
        return await self.permission_repo.get_role_permissions(role.id)

    async def list_roles(self) -> list[Role]:
        return await self.role_repo.list_all()

    async def list_roles_with_counts(self, search: str | None = None) -> list[RoleWithCounts]:
        return await self.role_repo.list_with_counts(search=search)

    async def create_role(
        self,
        name: str,
        permission_ids: Iterable[uuid.UUID] | None = None,
        actor: User | None = None,
    ) -> Role:
        name = _clean_name(name, "Role")
        if await self.role_repo.get_by_name(name) is not None:
            raise DuplicateNameError(f"Role '{name}' already exists")
        permissions = await self._resolve_permissions(permission_ids or [])

        try:
            async with self.session.begin_nested():
                role = await self.role_repo.create(name)
        except IntegrityError as exc:
            raise DuplicateNameError(f"Role '{name}' already exists") from exc

        await self.audit.log_created("role", role.id, role.name, actor=actor)
        if permissions:
            await self._sync(role, permissions, actor)
        return role

    async def update_role(
        self,
        role: Role,
        name: str | None = None,
        permission_ids: Iterable[uuid.UUID] | None = None,
        actor: User | None = None,
    ) -> Role:
        permissions = None
        if permission_ids is not None:
            permissions = await self._resolve_permissions(permission_ids)

        if name is not None:
            name = _clean_name(name, "Role")
            if name != role.name:
                existing = await self.role_repo.get_by_name(name)
                if existing is not None and existing.id != role.id:
                    raise DuplicateNameError(f"Role '{name}' already exists")
                if role.name == SUPER_ADMIN_ROLE:
                    raise ValidationError(f"The '{SUPER_ADMIN_ROLE}' role cannot be renamed")
                role.name = name
                try:
                    async with self.session.begin_nested():
                        await self.role_repo.update(role)
                except IntegrityError as exc:
                    raise DuplicateNameError(f"Role '{name}' already exists") from exc
                await self._invalidate()
                await self.audit.log_updated("role", role.id, role.name, ["name"], actor=actor)

        if permissions is not None:
            await self._sync(role, permissions, actor)
        return role

    async def delete_role(self, role: Role, actor: User | None = None) -> None:
        if role.name == SUPER_ADMIN_ROLE:
            # Not even a super-admin or a system caller may delete it
            authz_logger.warning(
                "Authorization denied actor_id=%s target=role:%s operation=delete reason=protected role",
                actor.id if actor else None,
                role.id,
            )
            raise AuthorizationDenied()
        role_id, role_name = role.id, role.name
        await self.role_repo.delete(role)
        await self._invalidate()
        await self.audit.log_deleted("role", role_id, role_name, actor=actor)

    async def grant_permissions(
        self,
        role: Role,
        permission_ids: Iterable[uuid.UUID],
        actor: User | None = None,
    ) -> list[Permission]:
        """Replace the role's grant set with exactly `permission_ids`.

        Set-sync semantics: permissions not listed are revoked. Unknown ids
        raise ``NotFoundError`` before anything is written, and repeating a
        call with the same set changes nothing.
        """
        permissions = await self._resolve_permissions(permission_ids)
        await self._sync(role, permissions, actor)
        return sorted(permissions, key=lambda permission: permission.name)

    async def _sync(self, role: Role, permissions: list[Permission], actor: User | None) -> None:
        before = {permission.id for permission in await self.permission_repo.get_role_permissions(role.id)}
        after = {permission.id for permission in permissions}
        if before == after:
            return

        await self.permission_repo.replace_role_permissions(role.id, after)
        await self._invalidate()
        await self.audit.log(
            action="permissions_synced",
            target_type="role",
            target_id=role.id,
            target_name=role.name,
            properties={"permissions": sorted(permission.name for permission in permissions)},
            description="Role permissions updated",
            actor=actor,
        )
        logger.info(
            "Role permissions synced role=%s added=%d removed=%d",
            role.name,
            len(after - before),
            len(before - after),
        )
