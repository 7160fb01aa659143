import logging

from ...crud.user import UserRepository
from ...errors import AuthError
from ...security.passwords import verify_password
from ...security.token_inspection import create_access_token

logger = logging.getLogger("rbac.auth")

INVALID_CREDENTIALS_MESSAGE = "Invalid email or password"


async def login_user(user_repo: UserRepository, email: str, password: str) -> str:
    """Check credentials and return a signed access token."""
    user = await user_repo.get_by_email(email.strip().lower())
    if user is None or not verify_password(password, user.password_hash):
        logger.info("Login failed email=%s", email)
        raise AuthError(INVALID_CREDENTIALS_MESSAGE)
    return create_access_token(str(user.id))
