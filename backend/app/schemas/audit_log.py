import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict


class AuditLogResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    actor_id: uuid.UUID | None
    action: str
    target_type: str
    target_id: str | None
    target_name: str | None
    properties: dict[str, Any] | None
    description: str | None
    created_at: datetime


class AuditLogFilter(BaseModel):
    actor_id: uuid.UUID | None = None
    action: str | None = None
    target_type: str | None = None
    target_id: str | None = None
    from_date: datetime | None = None
    to_date: datetime | None = None
