from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ..crud.user import UserRepository
from ..dependencies import get_current_user, get_db, get_permission_service
from ..models.user import User
from ..schemas.auth import CurrentUserResponse, TokenResponse, UserLogin
from ..services.admin.permission_service import PermissionService
from ..use_cases.auth.login_user import login_user

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/login", response_model=TokenResponse)
async def login(
    payload: UserLogin,
    db: AsyncSession = Depends(get_db),
) -> TokenResponse:
    access_token = await login_user(UserRepository(db), payload.email, payload.password)
    return TokenResponse(access_token=access_token)


@router.get("/me", response_model=CurrentUserResponse)
async def read_current_user(
    user: User = Depends(get_current_user),
    permissions: PermissionService = Depends(get_permission_service),
) -> CurrentUserResponse:
    # No permission needed: every signed-in user may see their own grants
    return CurrentUserResponse(
        id=user.id,
        name=user.name,
        email=user.email,
        is_approved=user.is_approved,
        roles=sorted(await permissions.get_role_names(user)),
        permissions=sorted(await permissions.get_effective_permissions(user)),
    )
