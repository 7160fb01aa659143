import uuid
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ...crud.audit_log import AuditLogRepository
from ...crud.permission import PermissionRepository
from ...crud.role import RoleRepository, RoleWithCounts
from ...crud.user import UserRepository
from ...models.user import User
from .user_service import UserService, UserWithRoles

SYSTEM_ACTOR_NAME = "System"


@dataclass(frozen=True)
class DashboardStats:
    total_users: int
    new_users_this_month: int
    pending_approval: int
    total_roles: int
    total_permissions: int


@dataclass(frozen=True)
class ActivityItem:
    id: uuid.UUID
    actor_name: str
    action: str
    target_type: str
    target_name: str | None
    created_at: datetime


def _month_start(now: datetime) -> datetime:
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


class DashboardService:
    """Read-only projections for the admin landing page."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.user_repo = UserRepository(session)
        self.role_repo = RoleRepository(session)
        self.permission_repo = PermissionRepository(session)
        self.audit_repo = AuditLogRepository(session)

    async def stats(self, now: datetime | None = None) -> DashboardStats:
        now = now or datetime.now(timezone.utc)
        return DashboardStats(
            total_users=await self.user_repo.count(),
            new_users_this_month=await self.user_repo.count_created_since(_month_start(now)),
            pending_approval=await self.user_repo.count_pending_approval(),
            total_roles=await self.role_repo.count(),
            total_permissions=await self.permission_repo.count(),
        )

    async def recent_users(self, limit: int = 5) -> list[UserWithRoles]:
        return await UserService(self.session).list_users_with_roles(limit=limit)

    async def roles_summary(self, limit: int = 5) -> list[RoleWithCounts]:
        return await self.role_repo.list_with_counts(order_by_users=True, limit=limit)

    async def recent_activities(self, limit: int = 10) -> list[ActivityItem]:
        entries = await self.audit_repo.list_recent(limit)
        actor_ids = {entry.actor_id for entry in entries if entry.actor_id is not None}
        names: dict[uuid.UUID, str] = {}
        if actor_ids:
            result = await self.session.execute(
                select(User.id, User.name).where(User.id.in_(actor_ids))
            )
            names = dict(result.tuples().all())

        return [
            ActivityItem(
                id=entry.id,
                actor_name=names.get(entry.actor_id, SYSTEM_ACTOR_NAME)
                if entry.actor_id is not None
                else SYSTEM_ACTOR_NAME,
                action=entry.action,
                target_type=entry.target_type,
                target_name=entry.target_name,
                created_at=entry.created_at,
            )
            for entry in entries
        ]
