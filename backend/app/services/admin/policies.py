"""
Entity policies layered on top of the authorization engine.

Each decision is the logical AND of an entity-specific rule and the generic
permission mapped in ``rbac_contract.OPERATION_PERMISSIONS``. The entity
rules encode identity constraints that no permission grant can satisfy:

- the ``super-admin`` role can only be edited by a super-admin and can
  never be deleted;
- a user holding ``super-admin`` can only be edited, re-roled or deleted by
  another super-admin;
- nobody can change their own roles or delete their own account.
"""
from __future__ import annotations

import logging
from typing import Union

from ...auth.rbac_contract import (
    OPERATION_PERMISSIONS,
    SUPER_ADMIN_ROLE,
    Entity,
    Operation,
)
from ...errors import AuthorizationDenied
from ...models.role import Role
from ...models.user import User
from .permission_service import PermissionService

logger = logging.getLogger("rbac.authz")

Target = Union[Role, User, Entity, str]

# Operations on a specific instance; they are denied without a target
INSTANCE_OPERATIONS = frozenset({Operation.UPDATE, Operation.UPDATE_ROLES, Operation.DELETE})
SELF_FORBIDDEN_OPERATIONS = frozenset({Operation.UPDATE_ROLES, Operation.DELETE})


def _describe(entity: Target) -> str:
    if isinstance(entity, Role):
        return f"role:{entity.id}"
    if isinstance(entity, User):
        return f"user:{entity.id}"
    if isinstance(entity, Entity):
        return entity.value
    return str(entity)


class PolicyService:
    def __init__(self, permission_service: PermissionService):
        self.permissions = permission_service

    async def _role_rule(self, actor: User, role: Role | None, operation: Operation) -> bool:
        if role is None:
            return operation not in INSTANCE_OPERATIONS
        if operation == Operation.DELETE and role.name == SUPER_ADMIN_ROLE:
            return False
        if operation == Operation.UPDATE and role.name == SUPER_ADMIN_ROLE:
            return await self.permissions.is_super_admin(actor)
        return True

    async def _user_rule(self, actor: User, target: User | None, operation: Operation) -> bool:
        if target is None:
            return operation not in INSTANCE_OPERATIONS
        if operation in SELF_FORBIDDEN_OPERATIONS and actor.id == target.id:
            return False
        if operation in INSTANCE_OPERATIONS and await self.permissions.is_super_admin(target):
            return await self.permissions.is_super_admin(actor)
        return True

    @staticmethod
    def _resolve(entity: Target) -> tuple[Entity, Role | User | None]:
        if isinstance(entity, Role):
            return Entity.ROLE, entity
        if isinstance(entity, User):
            return Entity.USER, entity
        return Entity(entity), None

    async def authorize_entity_operation(
        self,
        actor: User | None,
        entity: Target,
        operation: Operation | str,
    ) -> bool:
        """Decide whether `actor` may perform `operation` on `entity`.

        `entity` is either a loaded ``Role``/``User`` instance or, for
        operations without a target (``create``, ``viewAny``, dashboard
        access), an ``Entity`` value. Unknown entities or operations deny.
        """
        if actor is None:
            return False
        try:
            entity_type, target = self._resolve(entity)
            operation = Operation(operation)
        except ValueError:
            return False

        permission = OPERATION_PERMISSIONS.get((entity_type, operation))
        if permission is None:
            return False

        if entity_type == Entity.ROLE:
            allowed = await self._role_rule(actor, target, operation)  # type: ignore[arg-type]
        elif entity_type == Entity.USER:
            allowed = await self._user_rule(actor, target, operation)  # type: ignore[arg-type]
        else:
            allowed = True

        if not allowed:
            return False
        return await self.permissions.authorize(actor, permission)

    async def require_entity_operation(
        self,
        actor: User | None,
        entity: Target,
        operation: Operation | str,
    ) -> None:
        """Raise ``AuthorizationDenied`` unless the operation is allowed.

        The raised error is identical for every rule; the specific reason is
        only written to the log.
        """
        if not await self.authorize_entity_operation(actor, entity, operation):
            logger.warning(
                "Authorization denied actor_id=%s target=%s operation=%s",
                actor.id if actor else None,
                _describe(entity),
                operation.value if isinstance(operation, Operation) else operation,
            )
            raise AuthorizationDenied()
