from uuid import UUID

from pydantic import BaseModel, EmailStr, Field


class UserLogin(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"


class CurrentUserResponse(BaseModel):
    """The signed-in user with role names and effective permission names."""

    id: UUID
    name: str
    email: EmailStr
    is_approved: bool
    roles: list[str]
    permissions: list[str]
