import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.audit_log import AuditLog


class AuditLogRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        actor_id: uuid.UUID | None,
        action: str,
        target_type: str,
        target_id: str | None = None,
        target_name: str | None = None,
        properties: dict[str, Any] | None = None,
        description: str | None = None,
    ) -> AuditLog:
        audit_log = AuditLog(
            actor_id=actor_id,
            action=action,
            target_type=target_type,
            target_id=target_id,
            target_name=target_name,
            properties=properties,
            description=description,
        )
        self.session.add(audit_log)
        await self.session.flush()
        return audit_log

    async def get_by_id(self, audit_log_id: uuid.UUID) -> AuditLog | None:
        return await self.session.get(AuditLog, audit_log_id)

    async def list_recent(self, limit: int = 10) -> list[AuditLog]:
        result = await self.session.execute(
            select(AuditLog).order_by(AuditLog.created_at.desc()).limit(limit)
        )
        return list(result.scalars().all())

    async def list_by_filters(
        self,
        actor_id: uuid.UUID | None = None,
        action: str | None = None,
        target_type: str | None = None,
        target_id: str | None = None,
        from_date: datetime | None = None,
        to_date: datetime | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[AuditLog]:
        query = select(AuditLog)

        conditions = []
        if actor_id is not None:
            conditions.append(AuditLog.actor_id == actor_id)
        if action is not None:
            conditions.append(AuditLog.action == action)
        if target_type is not None:
            conditions.append(AuditLog.target_type == target_type)
        if target_id is not None:
            conditions.append(AuditLog.target_id == target_id)
        if from_date is not None:
            conditions.append(AuditLog.created_at >= from_date)
        if to_date is not None:
            conditions.append(AuditLog.created_at <= to_date)

        if conditions:
            query = query.where(and_(*conditions))

        query = query.order_by(AuditLog.created_at.desc()).limit(limit).offset(offset)

        result = await self.session.execute(query)
        return list(result.scalars().all())
