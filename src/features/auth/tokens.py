"""Token issuing and verification."""

import logging
from datetime import datetime, timedelta

import jwt
from sqlalchemy.ext.asyncio import AsyncSession

from src.config.settings import settings
from src.database.base import utcnow
from src.features.user.models import User

from .exceptions import InvalidTokenException
from .jwt_utils import create_token, decode_token, token_subject, verify_token_type
from .ledger import TokenLedger
from .models import ACCESS_TOKEN_TYPE, Token, TokenKind
from .schemas import AuthTokens, TokenInfo

logger = logging.getLogger(__name__)


class TokenService:
    """Issues access, refresh and single-use tokens.

    Access tokens are stateless; every other kind is recorded in the ledger
    so it can be revoked before it expires.
    """

    @staticmethod
    def issue_access(user_id: int) -> tuple[str, datetime]:
        expires = utcnow() + timedelta(minutes=settings.access_token_expire_minutes)
        return create_token(user_id, ACCESS_TOKEN_TYPE, expires), expires

    @staticmethod
    async def issue_refresh(
        session: AsyncSession,
        user_id: int,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> tuple[str, datetime]:
        """Sign a refresh token and record it in the ledger before handing it out."""
        expires = utcnow() + timedelta(days=settings.refresh_token_expire_days)
        token = create_token(user_id, TokenKind.REFRESH, expires)
        await TokenLedger.save(session, token, user_id, TokenKind.REFRESH, expires, ip_address, user_agent)
        return token, expires

    @staticmethod
    async def issue_single_use(
        session: AsyncSession, user_id: int, kind: TokenKind, lifetime_minutes: int | None = None
    ) -> str:
        """Sign and record a reset-password or verify-email token.

        Args:
            session: Database session
            user_id: Owner of the token
            kind: TokenKind.RESET_PASSWORD or TokenKind.VERIFY_EMAIL
            lifetime_minutes: Overrides the configured lifetime for ``kind``

        Returns:
            Encoded JWT token string

        """
        if lifetime_minutes is None:
            lifetime_minutes = (
                settings.reset_password_token_expire_minutes
                if kind == TokenKind.RESET_PASSWORD
                else settings.verify_email_token_expire_minutes
            )
        expires = utcnow() + timedelta(minutes=lifetime_minutes)
        token = create_token(user_id, kind, expires)
        await TokenLedger.save(session, token, user_id, kind, expires)
        return token

    @staticmethod
    async def generate_auth_tokens(
        session: AsyncSession,
        user: User,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> AuthTokens:
        access_token, access_expires = TokenService.issue_access(user.id)
        refresh_token, refresh_expires = await TokenService.issue_refresh(session, user.id, ip_address, user_agent)
        return AuthTokens(
            access=TokenInfo(token=access_token, expires=access_expires),
            refresh=TokenInfo(token=refresh_token, expires=refresh_expires),
        )

    @staticmethod
    async def verify_token(session: AsyncSession, token: str, kind: TokenKind) -> Token:
        """Check signature, expiry, type claim and the ledger record.

        Raises:
            InvalidTokenException: If any check fails

        """
        try:
            payload = decode_token(token)
        except jwt.InvalidTokenError as err:
            raise InvalidTokenException() from err

        user_id = token_subject(payload)
        if not verify_token_type(payload, kind) or user_id is None:
            raise InvalidTokenException()

        record = await TokenLedger.find_valid(session, token, kind)
        if record is None or record.user_id != user_id:
            raise InvalidTokenException()
        return record
