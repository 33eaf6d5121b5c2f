"""Authentication service layer."""

import logging
from typing import Any

import jwt
from sqlalchemy.ext.asyncio import AsyncSession

from src.config.roles import PROFILE_FIELDS, UserRole
from src.database.base import utcnow
from src.features.notifications.email import EmailDeliveryError, email_service
from src.features.user.exceptions import IncorrectPassword, UserNotFound
from src.features.user.models import DUMMY_PASSWORD_HASH, User, pwd_hasher
from src.features.user.service import UserService

from .exceptions import (
    AuthenticationException,
    EmailDeliveryException,
    EmailVerificationFailedException,
    InvalidCredentialsException,
    InvalidTokenException,
    PasswordResetFailedException,
    TokenNotFoundException,
    UserInactiveException,
)
from .jwt_utils import decode_token, token_subject, verify_token_type
from .ledger import TokenLedger
from .models import TokenKind
from .schemas import AuthTokens
from .tokens import TokenService

logger = logging.getLogger(__name__)


class AuthService:
    """Registration, login, session rotation and account recovery flows."""

    @staticmethod
    async def register(session: AsyncSession, name: str, email: str, password: str) -> User:
        """Create an account and email a verification link.

        A failed delivery is logged; the account is still created.

        Raises:
            EmailAlreadyExists: If email already exists

        """
        user = await UserService.create_user(session, email=email, password=password, name=name)
        token = await TokenService.issue_single_use(session, user.id, TokenKind.VERIFY_EMAIL)

        try:
            await email_service.send_verification_email(user.email, token)
        except EmailDeliveryError:
            logger.warning(f"Verification email not delivered for new user {user.id}")

        logger.info(f"User registered: id={user.id}")
        return user

    @staticmethod
    async def login(session: AsyncSession, email: str, password: str) -> User:
        """Check credentials and stamp the login time.

        Unknown email and wrong password raise the same error.

        Raises:
            InvalidCredentialsException: If email or password is incorrect
            UserInactiveException: If the account is deactivated

        """
        user = await UserService.get_user_by_email(session, email)

        if user is None:
            # Same Argon2 work as a real check
            pwd_hasher.verify(password, DUMMY_PASSWORD_HASH)
            raise InvalidCredentialsException()

        if not user.verify_password(password):
            logger.info(f"Failed login for user {user.id}")
            raise InvalidCredentialsException()

        if not user.is_active:
            logger.warning(f"Login attempt for deactivated account {user.id}")
            raise UserInactiveException()

        user.last_login_at = utcnow()
        await session.flush()

        logger.info(f"User logged in: id={user.id}")
        return user

    @staticmethod
    async def start_session(
        session: AsyncSession,
        user: User,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> AuthTokens:
        """Issue the access and refresh pair for a freshly registered or logged in user."""
        return await TokenService.generate_auth_tokens(session, user, ip_address, user_agent)

    @staticmethod
    async def refresh_auth(
        session: AsyncSession,
        refresh_token: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> AuthTokens:
        """Exchange a refresh token for a new access and refresh pair.

        The presented token is deleted in the same statement that validates
        it, so it can be used for exactly one rotation.

        Raises:
            AuthenticationException: "Please authenticate" on any failure

        """
        try:
            payload = decode_token(refresh_token)
            user_id = token_subject(payload)
            if not verify_token_type(payload, TokenKind.REFRESH) or user_id is None:
                raise InvalidTokenException()

            record = await TokenLedger.consume(session, refresh_token, TokenKind.REFRESH)
            if record is None or record.user_id != user_id:
                raise InvalidTokenException()

            user = await UserService.get_user(session, record.user_id)
            if user is None or not user.is_active:
                raise InvalidTokenException()
        except (jwt.InvalidTokenError, InvalidTokenException) as err:
            raise AuthenticationException() from err

        tokens = await TokenService.generate_auth_tokens(session, user, ip_address, user_agent)
        logger.info(f"Tokens rotated for user {user.id}")
        return tokens

    @staticmethod
    async def logout(session: AsyncSession, refresh_token: str) -> None:
        """End the single session tied to ``refresh_token``.

        Raises:
            TokenNotFoundException: If the token is not in the ledger

        """
        if not await TokenLedger.remove(session, refresh_token, TokenKind.REFRESH):
            raise TokenNotFoundException()
        logger.info("User logged out")

    @staticmethod
    async def forgot_password(session: AsyncSession, email: str) -> tuple[str, str] | None:
        """Issue a reset token if the account exists.

        Nothing is sent here; the caller hands the returned ``(email, token)``
        to ``deliver_reset_password_email`` after responding, so known and
        unknown emails answer after the same work.

        Returns:
            ``(email, token)`` for an existing account, otherwise None

        """
        user = await UserService.get_user_by_email(session, email)
        if user is None:
            logger.info("Password reset requested for unknown email")
            return None

        token = await TokenService.issue_single_use(session, user.id, TokenKind.RESET_PASSWORD)
        return user.email, token

    @staticmethod
    async def deliver_reset_password_email(to: str, token: str) -> None:
        """Send the reset link; failures are logged only."""
        try:
            await email_service.send_reset_password_email(to, token)
        except EmailDeliveryError:
            logger.warning("Reset password email not delivered")

    @staticmethod
    async def reset_password(session: AsyncSession, reset_token: str, new_password: str) -> None:
        """Consume a reset token, set the new password and end every session.

        Raises:
            PasswordResetFailedException: On any failure in the token or user lookup

        """
        try:
            payload = decode_token(reset_token)
            user_id = token_subject(payload)
            if not verify_token_type(payload, TokenKind.RESET_PASSWORD) or user_id is None:
                raise InvalidTokenException()

            record = await TokenLedger.consume(session, reset_token, TokenKind.RESET_PASSWORD)
            if record is None or record.user_id != user_id:
                raise InvalidTokenException()

            user = await UserService.get_user_or_404(session, record.user_id)
        except (jwt.InvalidTokenError, InvalidTokenException, UserNotFound) as err:
            raise PasswordResetFailedException() from err

        await UserService.set_password(session, user, new_password)
        await TokenLedger.revoke_all_for_user(session, user.id, TokenKind.RESET_PASSWORD)
        await TokenLedger.revoke_all_for_user(session, user.id, TokenKind.REFRESH)
        logger.info(f"Password reset for user {user.id}")

    @staticmethod
    async def verify_email(session: AsyncSession, verify_token: str) -> None:
        """Mark the email verified and send a best-effort welcome email.

        Raises:
            EmailVerificationFailedException: On any failure in the token or user lookup

        """
        try:
            record = await TokenService.verify_token(session, verify_token, TokenKind.VERIFY_EMAIL)
            user = await UserService.get_user_or_404(session, record.user_id)
        except (InvalidTokenException, UserNotFound) as err:
            raise EmailVerificationFailedException() from err

        await TokenLedger.revoke_all_for_user(session, user.id, TokenKind.VERIFY_EMAIL)
        user.is_email_verified = True
        await session.flush()
        logger.info(f"Email verified for user {user.id}")

        try:
            await email_service.send_welcome_email(user.email, user.name)
        except EmailDeliveryError:
            logger.warning(f"Welcome email not delivered for user {user.id}")

    @staticmethod
    async def send_verification_email(session: AsyncSession, user: User) -> None:
        """Issue and deliver a fresh verification link.

        Raises:
            EmailDeliveryException: If the email could not be sent

        """
        token = await TokenService.issue_single_use(session, user.id, TokenKind.VERIFY_EMAIL)
        try:
            await email_service.send_verification_email(user.email, token)
        except EmailDeliveryError as err:
            raise EmailDeliveryException() from err
        logger.info(f"Verification email re-sent for user {user.id}")

    @staticmethod
    async def update_profile(session: AsyncSession, user: User, changes: dict[str, Any]) -> User:
        """Apply a self-service profile update.

        A new email address starts unverified and gets a fresh verification
        link; a failed delivery is logged as on registration.

        Raises:
            CannotModifyField: If a field is outside the role's profile allow-list
            EmailAlreadyExists: If the new email belongs to another account

        """
        previous_email = user.email
        user = await UserService.update_user(session, user, changes, PROFILE_FIELDS[UserRole(user.role)])
        if user.email == previous_email:
            return user

        token = await TokenService.issue_single_use(session, user.id, TokenKind.VERIFY_EMAIL)
        try:
            await email_service.send_verification_email(user.email, token)
        except EmailDeliveryError:
            logger.warning(f"Verification email not delivered to new address of user {user.id}")
        return user

    @staticmethod
    async def change_password(session: AsyncSession, user: User, current_password: str, new_password: str) -> None:
        """Replace the password and end every refresh session of the user.

        Access tokens issued before the change are rejected by the auth gate.

        Raises:
            IncorrectPassword: If current password is incorrect

        """
        if not user.verify_password(current_password):
            raise IncorrectPassword()

        await UserService.set_password(session, user, new_password)
        revoked = await TokenLedger.revoke_all_for_user(session, user.id, TokenKind.REFRESH)
        logger.info(f"Password changed for user {user.id}, {revoked} sessions ended")
