import logging
import uuid
from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ...crud.role import RoleRepository
from ...crud.user import UserRepository
from ...errors import ConflictError, NotFoundError, ValidationError
from ...models.role import Role
from ...models.user import User
from ...security.passwords import hash_password
from ..audit.audit_service import AuditService
from .permission_cache import PermissionCache

logger = logging.getLogger("rbac.assignments")


class RoleChange(str, Enum):
    """Outcome of a single role assignment or removal.

    The no-op variants are successes, not errors; callers that want to warn
    about them (the CLI does) can check ``changed``.
    """

    ASSIGNED = "assigned"
    ALREADY_ASSIGNED = "already_assigned"
    REMOVED = "removed"
    NOT_ASSIGNED = "not_assigned"

    @property
    def changed(self) -> bool:
        return self in (RoleChange.ASSIGNED, RoleChange.REMOVED)


@dataclass(frozen=True)
class UserWithRoles:
    user: User
    roles: list[str]


class UserService:
    """Users and the role assignment store.

    Like ``RoleService`` this flushes and audits but never commits, and the
    actor argument is only used for audit attribution.
    """

    def __init__(self, session: AsyncSession, cache: PermissionCache | None = None):
        self.session = session
        self.cache = cache
        self.user_repo = UserRepository(session)
        self.role_repo = RoleRepository(session)
        self.audit = AuditService(session)

    async def _invalidate(self) -> None:
        if self.cache is not None:
            await self.cache.invalidate()

    # --- lookup -----------------------------------------------------------

    async def get_user(self, user_id: uuid.UUID) -> User:
        user = await self.user_repo.get_by_id(user_id)
        if user is None:
            raise NotFoundError(f"User {user_id} not found")
        return user

    async def get_user_by_identifier(self, identifier: str) -> User:
        """Find a user by id or, when the identifier contains '@', by email."""
        identifier = (identifier or "").strip()
        user = None
        if "@" in identifier:
            user = await self.user_repo.get_by_email(identifier.lower())
        else:
            try:
                user = await self.user_repo.get_by_id(uuid.UUID(identifier))
            except ValueError:
                user = None
        if user is None:
            raise NotFoundError(f"User not found with the provided identifier: {identifier}")
        return user

    async def get_roles(self, user: User) -> list[Role]:
        return await self.user_repo.get_roles(user.id)

    async def list_users_with_roles(
        self,
        search: str | None = None,
        role_id: uuid.UUID | None = None,
        limit: int | None = 50,
        offset: int = 0,
    ) -> list[UserWithRoles]:
        users = await self.user_repo.list_filtered(search=search, role_id=role_id, limit=limit, offset=offset)
        names = await self.user_repo.get_role_names_for_users(user.id for user in users)
        return [UserWithRoles(user=user, roles=names.get(user.id, [])) for user in users]

    async def _resolve_roles(self, role_ids: Iterable[uuid.UUID]) -> list[Role]:
        wanted = set(role_ids)
        found = await self.role_repo.get_many(wanted)
        missing = wanted - {role.id for role in found}
        if missing:
            raise NotFoundError(
                "Role not found",
                details={"missing_ids": sorted(str(rid) for rid in missing)},
            )
        return found

    # --- users ------------------------------------------------------------

    async def create_user(
        self,
        name: str,
        email: str,
        password: str,
        role_ids: Iterable[uuid.UUID] | None = None,
        is_approved: bool = False,
        actor: User | None = None,
    ) -> User:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Name must not be empty")
        email = email.strip().lower()
        if await self.user_repo.get_by_email(email) is not None:
            raise ConflictError("The email has already been taken.")
        roles = await self._resolve_roles(role_ids or [])

        try:
            async with self.session.begin_nested():
                user = await self.user_repo.create(
                    name=name,
                    email=email,
                    password_hash=hash_password(password),
                    is_approved=is_approved,
                )
        except IntegrityError as exc:
            raise ConflictError("The email has already been taken.") from exc

        await self.audit.log_created(
            "user",
            user.id,
            user.name,
            properties={"email": user.email},
            description="User account created",
            actor=actor,
        )
        if roles:
            await self.sync_roles(user, [role.id for role in roles], actor=actor)
        return user

    async def update_user(
        self,
        user: User,
        name: str | None = None,
        email: str | None = None,
        password: str | None = None,
        is_approved: bool | None = None,
        actor: User | None = None,
    ) -> User:
        updated_fields: list[str] = []

        if name is not None:
            name = name.strip()
            if not name:
                raise ValidationError("Name must not be empty")
            if name != user.name:
                user.name = name
                updated_fields.append("name")

        if email is not None:
            email = email.strip().lower()
            if email != user.email:
                existing = await self.user_repo.get_by_email(email)
                if existing is not None and existing.id != user.id:
                    raise ConflictError("The email has already been taken.")
                user.email = email
                updated_fields.append("email")

        if password:
            user.password_hash = hash_password(password)
            updated_fields.append("password")

        if is_approved is not None and is_approved != user.is_approved:
            user.is_approved = is_approved
            updated_fields.append("is_approved")

        if not updated_fields:
            return user

        try:
            async with self.session.begin_nested():
                await self.user_repo.update(user)
        except IntegrityError as exc:
            raise ConflictError("The email has already been taken.") from exc

        await self.audit.log_updated(
            "user",
            user.id,
            user.name,
            updated_fields,
            description="User account updated",
            actor=actor,
        )
        return user

    async def delete_user(self, user: User, actor: User | None = None) -> None:
        user_id, user_name = user.id, user.name
        await self.user_repo.delete(user)
        await self._invalidate()
        await self.audit.log_deleted(
            "user", user_id, user_name, description="User account deleted", actor=actor
        )

    # --- role assignments -------------------------------------------------

    async def assign_role(self, user: User, role: Role, actor: User | None = None) -> RoleChange:
        if await self.user_repo.has_role(user.id, role.id):
            return RoleChange.ALREADY_ASSIGNED

        await self.user_repo.add_role(user.id, role.id, granted_by=actor.id if actor else None)
        await self._invalidate()
        await self.audit.log(
            action="role_assigned",
            target_type="user",
            target_id=user.id,
            target_name=user.name,
            properties={"role": role.name},
            description=f"Role {role.name} assigned",
            actor=actor,
        )
        return RoleChange.ASSIGNED

    async def remove_role(self, user: User, role: Role, actor: User | None = None) -> RoleChange:
        if not await self.user_repo.remove_role(user.id, role.id):
            return RoleChange.NOT_ASSIGNED

        await self._invalidate()
        await self.audit.log(
            action="role_removed",
            target_type="user",
            target_id=user.id,
            target_name=user.name,
            properties={"role": role.name},
            description=f"Role {role.name} removed",
            actor=actor,
        )
        return RoleChange.REMOVED

    async def sync_roles(
        self,
        user: User,
        role_ids: Iterable[uuid.UUID],
        actor: User | None = None,
    ) -> list[Role]:
        """Make the user's role set exactly `role_ids`.

        Unknown ids raise ``NotFoundError`` before anything is written. The
        replacement runs in the caller's transaction, so it commits whole.
        """
        roles = await self._resolve_roles(role_ids)
        before = await self.user_repo.get_role_names(user.id)
        after = {role.name for role in roles}
        if before == after:
            return sorted(roles, key=lambda role: role.name)

        await self.user_repo.replace_roles(
            user.id, [role.id for role in roles], granted_by=actor.id if actor else None
        )
        await self._invalidate()
        await self.audit.log(
            action="roles_synced",
            target_type="user",
            target_id=user.id,
            target_name=user.name,
            properties={"roles": sorted(after)},
            description="User roles updated",
            actor=actor,
        )
        logger.info(
            "User roles synced user_id=%s added=%s removed=%s",
            user.id,
            sorted(after - before),
            sorted(before - after),
        )
        return sorted(roles, key=lambda role: role.name)
