"""Authentication dependencies for FastAPI."""

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jwt.exceptions import ExpiredSignatureError, InvalidTokenError
from sqlalchemy.ext.asyncio import AsyncSession

from src.config.roles import Right
from src.database.dependencies import get_db_session
from src.features.user.models import User

from .exceptions import (
    AuthenticationException,
    InsufficientPermissionsException,
    InvalidTokenException,
    PasswordChangedException,
    TokenExpiredException,
    UserInactiveException,
)
from .jwt_utils import decode_token, token_subject, verify_token_type
from .models import ACCESS_TOKEN_TYPE

ACCESS_TOKEN_COOKIE = "accessToken"

security = HTTPBearer(auto_error=False)


async def get_current_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    session: AsyncSession = Depends(get_db_session),
) -> User:
    """Get the current authenticated user from the access token.

    The token is read from the ``Authorization: Bearer`` header, falling back
    to the ``accessToken`` cookie. The user is re-loaded on every request so
    deactivation and password changes take effect immediately.

    Raises:
        AuthenticationException: If no token was sent
        TokenExpiredException: If the token has expired
        InvalidTokenException: If the token is invalid or the user is gone
        PasswordChangedException: If the password changed after the token was issued
        UserInactiveException: If the account is deactivated

    """
    token = credentials.credentials if credentials else request.cookies.get(ACCESS_TOKEN_COOKIE)
    if not token:
        raise AuthenticationException()

    try:
        payload = decode_token(token)
    except ExpiredSignatureError as err:
        raise TokenExpiredException() from err
    except InvalidTokenError as err:
        raise InvalidTokenException() from err

    user_id = token_subject(payload)
    if not verify_token_type(payload, ACCESS_TOKEN_TYPE) or user_id is None:
        raise InvalidTokenException()

    user = await session.get(User, user_id)
    if user is None:
        raise InvalidTokenException(detail="User not found")

    if user.changed_password_after(payload["iat"]):
        raise PasswordChangedException()

    if not user.is_active:
        raise UserInactiveException()

    return user


def require_permissions(*required_rights: Right, allow_self: bool = False):
    """Dependency factory to require rights granted by the user's role.

    All listed rights are required. With ``allow_self`` a user may always
    reach a route whose ``user_id`` path parameter is their own id.

    Usage:
        Depends(require_permissions(Right.MANAGE_USERS))
        Depends(require_permissions(Right.GET_USERS, allow_self=True))
    """

    async def permission_checker(request: Request, current_user: User = Depends(get_current_user)) -> User:
        if allow_self and str(request.path_params.get("user_id")) == str(current_user.id):
            return current_user

        if not current_user.has_rights(*required_rights):
            raise InsufficientPermissionsException()
        return current_user

    return permission_checker
