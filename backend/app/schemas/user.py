import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class UserCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=255)
    roles: list[uuid.UUID] = Field(default_factory=list)
    is_approved: bool = False


class UserUpdate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    email: EmailStr
    password: str | None = Field(None, min_length=8, max_length=255)
    is_approved: bool | None = None


class UserRolesUpdate(BaseModel):
    roles: list[uuid.UUID]


class UserResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    email: str
    is_approved: bool
    created_at: datetime


class UserWithRolesResponse(UserResponse):
    roles: list[str]


class UserList(BaseModel):
    users: list[UserWithRolesResponse]
    limit: int
    offset: int
