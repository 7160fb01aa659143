import uuid
from datetime import datetime

from pydantic import BaseModel

from .role import RoleSummary
from .user import UserWithRolesResponse


class DashboardStatsResponse(BaseModel):
    total_users: int
    new_users_this_month: int
    pending_approval: int
    total_roles: int
    total_permissions: int


class ActivityResponse(BaseModel):
    id: uuid.UUID
    actor_name: str
    action: str
    target_type: str
    target_name: str | None
    created_at: datetime


class DashboardResponse(BaseModel):
    stats: DashboardStatsResponse
    recent_users: list[UserWithRolesResponse]
    roles_summary: list[RoleSummary]
    activities: list[ActivityResponse]
