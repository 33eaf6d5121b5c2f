"""Authentication router (registration, sessions and account recovery)."""

import logging
from datetime import datetime

from fastapi import APIRouter, BackgroundTasks, Body, Depends, Query, Request, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from src.config.settings import settings
from src.database.dependencies import get_db_session
from src.features.user.models import User
from src.features.user.schemas import ProfileUpdateRequest, UserResponse
from src.shared.rate_limit import limiter
from src.shared.schemas import MessageResponse

from .dependencies import get_current_user
from .exceptions import AuthenticationException
from .schemas import (
    AccessTokens,
    AuthResponse,
    AuthTokens,
    ChangePasswordRequest,
    ForgotPasswordRequest,
    LoginRequest,
    RefreshResponse,
    RefreshTokenRequest,
    RegisterRequest,
    ResetPasswordRequest,
)
from .service import AuthService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/auth", tags=["Authentication"])

REFRESH_TOKEN_COOKIE = "refreshToken"


def set_refresh_cookie(response: Response, token: str, expires: datetime) -> None:
    response.set_cookie(
        key=REFRESH_TOKEN_COOKIE,
        value=token,
        expires=expires,
        path="/",
        httponly=True,
        secure=settings.is_production,
        samesite="strict",
    )


def clear_refresh_cookie(response: Response) -> None:
    response.delete_cookie(
        key=REFRESH_TOKEN_COOKIE,
        path="/",
        httponly=True,
        secure=settings.is_production,
        samesite="strict",
    )


def client_info(request: Request) -> tuple[str | None, str | None]:
    """Requester's IP address and User-Agent, recorded with refresh tokens."""
    ip_address = request.client.host if request.client else None
    return ip_address, request.headers.get("user-agent")


def presented_refresh_token(request: Request, data: RefreshTokenRequest | None) -> str | None:
    if data is not None and data.refresh_token:
        return data.refresh_token
    return request.cookies.get(REFRESH_TOKEN_COOKIE)


def body_tokens(tokens: AuthTokens) -> AccessTokens:
    """Only the access token goes in the JSON body."""
    return AccessTokens(access=tokens.access)


@router.post("/register", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(settings.rate_limit_auth)
async def register(
    data: RegisterRequest,
    request: Request,
    response: Response,
    session: AsyncSession = Depends(get_db_session),
):
    """Create an account, email a verification link and start a session.

    - **name**: Display name (optional, defaults to the part of the email before "@")
    - **email**: Email address
    - **password**: At least 8 characters with at least one letter and one number
    """
    user = await AuthService.register(session, data.display_name, data.email, data.password)
    tokens = await AuthService.start_session(session, user, *client_info(request))
    await session.commit()

    set_refresh_cookie(response, tokens.refresh.token, tokens.refresh.expires)
    return AuthResponse(user=UserResponse.model_validate(user), tokens=body_tokens(tokens))


@router.post("/login", response_model=AuthResponse)
@limiter.limit(settings.rate_limit_auth)
async def login(
    data: LoginRequest,
    request: Request,
    response: Response,
    session: AsyncSession = Depends(get_db_session),
):
    """Login with email and password.

    Returns the user and an access token; the refresh token is set as an
    httpOnly ``refreshToken`` cookie.
    """
    user = await AuthService.login(session, data.email, data.password)
    tokens = await AuthService.start_session(session, user, *client_info(request))
    await session.commit()

    set_refresh_cookie(response, tokens.refresh.token, tokens.refresh.expires)
    return AuthResponse(user=UserResponse.model_validate(user), tokens=body_tokens(tokens))


@router.post("/logout", response_model=MessageResponse)
async def logout(
    request: Request,
    response: Response,
    data: RefreshTokenRequest | None = Body(None),
    session: AsyncSession = Depends(get_db_session),
):
    """End the session tied to the refresh token (body ``refreshToken`` or cookie).

    Without any refresh token there is no session to end; the cookie is
    still cleared.
    """
    refresh_token = presented_refresh_token(request, data)
    if refresh_token:
        await AuthService.logout(session, refresh_token)
        await session.commit()

    clear_refresh_cookie(response)
    return MessageResponse(message="Logged out successfully")


@router.post("/refresh-tokens", response_model=RefreshResponse)
async def refresh_tokens(
    request: Request,
    response: Response,
    data: RefreshTokenRequest | None = Body(None),
    session: AsyncSession = Depends(get_db_session),
):
    """Rotate the refresh token and return a new access token.

    The presented refresh token stops working once this call succeeds.
    """
    refresh_token = presented_refresh_token(request, data)
    if not refresh_token:
        raise AuthenticationException()

    tokens = await AuthService.refresh_auth(session, refresh_token, *client_info(request))
    await session.commit()

    set_refresh_cookie(response, tokens.refresh.token, tokens.refresh.expires)
    return RefreshResponse(tokens=body_tokens(tokens))


@router.post("/forgot-password", response_model=MessageResponse)
@limiter.limit(settings.rate_limit_password_reset)
async def forgot_password(
    data: ForgotPasswordRequest,
    request: Request,
    background_tasks: BackgroundTasks,
    session: AsyncSession = Depends(get_db_session),
):
    """Email a password reset link. The response is the same whether or not the email is registered.

    The email is sent after the response so delivery time does not reveal
    whether the account exists.
    """
    reset = await AuthService.forgot_password(session, data.email)
    await session.commit()
    if reset is not None:
        background_tasks.add_task(AuthService.deliver_reset_password_email, *reset)
    return MessageResponse(message="If that email is registered, a password reset link has been sent")


@router.post("/reset-password", response_model=MessageResponse)
@limiter.limit(settings.rate_limit_password_reset)
async def reset_password(
    data: ResetPasswordRequest,
    request: Request,
    token: str = Query(..., min_length=1),
    session: AsyncSession = Depends(get_db_session),
):
    """Set a new password with the emailed reset token. Every session is ended."""
    await AuthService.reset_password(session, token, data.password)
    await session.commit()
    return MessageResponse(message="Password reset successfully")


@router.post("/verify-email", response_model=MessageResponse)
@limiter.limit(settings.rate_limit_email_verification)
async def verify_email(
    request: Request,
    token: str = Query(..., min_length=1),
    session: AsyncSession = Depends(get_db_session),
):
    """Confirm the email address with the emailed verification token."""
    await AuthService.verify_email(session, token)
    await session.commit()
    return MessageResponse(message="Email verified successfully")


@router.post("/send-verification-email", response_model=MessageResponse)
@limiter.limit(settings.rate_limit_email_verification)
async def send_verification_email(
    request: Request,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Send a new verification link to the current user's email."""
    await AuthService.send_verification_email(session, current_user)
    await session.commit()
    return MessageResponse(message="Verification email sent")


@router.post("/change-password", response_model=MessageResponse)
async def change_password(
    data: ChangePasswordRequest,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Change the current user's password. Other sessions are ended."""
    await AuthService.change_password(session, current_user, data.current_password, data.new_password)
    await session.commit()
    return MessageResponse(message="Password changed successfully")


@router.get("/me", response_model=UserResponse)
async def get_me(current_user: User = Depends(get_current_user)):
    """Get current user information."""
    return UserResponse.model_validate(current_user)


@router.patch("/me", response_model=UserResponse)
async def update_me(
    data: ProfileUpdateRequest,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Update the current user's own profile (name, email, phone, avatar).

    A changed email must be verified again; a new link is sent to it.
    """
    user = await AuthService.update_profile(session, current_user, data.model_dump(exclude_unset=True))
    await session.commit()
    return UserResponse.model_validate(user)
