import logging
import uuid
from collections.abc import Iterable
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from ...crud.audit_log import AuditLogRepository
from ...models.audit_log import AuditLog
from ...models.user import User

logger = logging.getLogger("rbac.audit")


class AuditService:
    """Append-only activity log written alongside each mutation.

    Entries are written inside a SAVEPOINT of the caller's transaction, so
    an entry commits exactly when the mutation it describes commits. A
    failed write rolls back only the savepoint: it is logged and ``None`` is
    returned, and the caller's mutation carries on.
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self.audit_repo = AuditLogRepository(session)

    async def log(
        self,
        action: str,
        target_type: str,
        target_id: str | uuid.UUID | None = None,
        target_name: str | None = None,
        properties: dict[str, Any] | None = None,
        description: str | None = None,
        actor: User | None = None,
    ) -> AuditLog | None:
        """Record one mutating action.

        Args:
            action: Verb describing the change (e.g. 'created', 'updated')
            target_type: Kind of entity changed (e.g. 'user', 'role')
            target_id: Identifier of the entity, if it has one
            target_name: Human readable name of the entity
            properties: Structured diff; updates use {"updated_fields": [...]}
            description: Free text summary
            actor: Acting user, None for system-initiated actions

        Returns:
            The persisted entry, or None if the write failed
        """
        actor_id = actor.id if actor is not None else None
        try:
            async with self.session.begin_nested():
                return await self.audit_repo.create(
                    actor_id=actor_id,
                    action=action,
                    target_type=target_type,
                    target_id=str(target_id) if target_id is not None else None,
                    target_name=target_name,
                    properties=properties,
                    description=description,
                )
        except Exception:
            logger.exception(
                "Audit log write failed action=%s target_type=%s target_id=%s actor_id=%s",
                action,
                target_type,
                target_id,
                actor_id,
            )
            return None

    async def log_created(
        self,
        target_type: str,
        target_id: str | uuid.UUID,
        target_name: str | None,
        properties: dict[str, Any] | None = None,
        actor: User | None = None,
        description: str | None = None,
    ) -> AuditLog | None:
        return await self.log(
            action="created",
            target_type=target_type,
            target_id=target_id,
            target_name=target_name,
            properties=properties,
            description=description or f"{target_type.capitalize()} created",
            actor=actor,
        )

    async def log_updated(
        self,
        target_type: str,
        target_id: str | uuid.UUID | None,
        target_name: str | None,
        updated_fields: Iterable[str],
        actor: User | None = None,
        description: str | None = None,
    ) -> AuditLog | None:
        """Log an update listing only the names of the changed fields.

        Values are never recorded so secrets such as passwords stay out of
        the log. Nothing is written when no field changed.
        """
        fields = sorted(set(updated_fields))
        if not fields:
            return None
        return await self.log(
            action="updated",
            target_type=target_type,
            target_id=target_id,
            target_name=target_name,
            properties={"updated_fields": fields},
            description=description or f"{target_type.capitalize()} updated",
            actor=actor,
        )

    async def log_deleted(
        self,
        target_type: str,
        target_id: str | uuid.UUID,
        target_name: str | None,
        actor: User | None = None,
        description: str | None = None,
    ) -> AuditLog | None:
        return await self.log(
            action="deleted",
            target_type=target_type,
            target_id=target_id,
            target_name=target_name,
            description=description or f"{target_type.capitalize()} deleted",
            actor=actor,
        )

    async def list_recent(self, limit: int = 10) -> list[AuditLog]:
        return await self.audit_repo.list_recent(limit)

    async def list_by_filters(self, **filters: Any) -> list[AuditLog]:
        return await self.audit_repo.list_by_filters(**filters)
