import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class RoleCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    permissions: list[uuid.UUID] = Field(default_factory=list)


class RoleUpdate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    # None leaves grants untouched; a list replaces them
    permissions: list[uuid.UUID] | None = None


class RoleResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    created_at: datetime
    updated_at: datetime


class RoleDetail(RoleResponse):
    permissions: list[uuid.UUID]


class RoleSummary(BaseModel):
    id: uuid.UUID
    name: str
    permissions_count: int
    users_count: int


class RoleList(BaseModel):
    roles: list[RoleSummary]
    total: int
