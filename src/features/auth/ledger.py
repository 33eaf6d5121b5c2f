"""Token ledger: persistence of refresh, reset-password and verify-email tokens."""

import logging
from datetime import datetime, timedelta

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from src.database.base import utcnow

from .models import Token, TokenKind

logger = logging.getLogger(__name__)


class TokenLedger:
    """Lookups and state changes for ledger records.

    ``consume`` and ``remove`` are single DELETE ... RETURNING statements, so
    when two requests race on the same token only one of them gets the row.
    """

    @staticmethod
    async def save(
        session: AsyncSession,
        token: str,
        user_id: int,
        kind: TokenKind,
        expires_at: datetime,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> Token:
        """Record an issued token. Saving the same token string twice returns the first record."""
        stmt = select(Token).where(Token.token == token)
        result = await session.execute(stmt)
        existing = result.scalar_one_or_none()
        if existing is not None:
            return existing

        record = Token(
            token=token,
            user_id=user_id,
            kind=kind,
            expires_at=expires_at,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        session.add(record)
        await session.flush()
        return record

    @staticmethod
    async def find_valid(session: AsyncSession, token: str, kind: TokenKind) -> Token | None:
        """Return the record if it exists, matches ``kind``, is not blacklisted and not expired."""
        stmt = select(Token).where(
            Token.token == token,
            Token.kind == kind,
            Token.blacklisted.is_(False),
            Token.expires_at > utcnow(),
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def consume(session: AsyncSession, token: str, kind: TokenKind) -> Token | None:
        """Atomically delete a valid record and return it.

        Returns None when the token is unknown, of another kind, blacklisted,
        expired, or was already consumed by a concurrent caller.
        """
        stmt = (
            delete(Token)
            .where(
                Token.token == token,
                Token.kind == kind,
                Token.blacklisted.is_(False),
                Token.expires_at > utcnow(),
            )
            .returning(Token)
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def remove(session: AsyncSession, token: str, kind: TokenKind) -> bool:
        """Delete a non-blacklisted record whether or not it has expired."""
        stmt = (
            delete(Token)
            .where(Token.token == token, Token.kind == kind, Token.blacklisted.is_(False))
            .returning(Token.id)
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none() is not None

    @staticmethod
    async def revoke(session: AsyncSession, token: str, kind: TokenKind) -> bool:
        """Flag a record as blacklisted. Returns False if there was nothing to revoke."""
        stmt = (
            update(Token)
            .where(Token.token == token, Token.kind == kind, Token.blacklisted.is_(False))
            .values(blacklisted=True, blacklisted_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        return result.rowcount > 0

    @staticmethod
    async def revoke_all_for_user(session: AsyncSession, user_id: int, kind: TokenKind | None = None) -> int:
        """Delete every record of a user, optionally only those of one kind."""
        stmt = delete(Token).where(Token.user_id == user_id)
        if kind is not None:
            stmt = stmt.where(Token.kind == kind)
        result = await session.execute(stmt.execution_options(synchronize_session=False))
        return result.rowcount

    @staticmethod
    async def purge_expired(session: AsyncSession, now: datetime | None = None) -> int:
        """Delete every record past its expiry. Returns the number removed."""
        cutoff = now or utcnow()
        stmt = delete(Token).where(Token.expires_at <= cutoff).execution_options(synchronize_session=False)
        result = await session.execute(stmt)
        return result.rowcount

    @staticmethod
    async def purge_stale_sessions(session: AsyncSession, max_age_days: int, now: datetime | None = None) -> int:
        """Delete refresh records created more than ``max_age_days`` ago."""
        cutoff = (now or utcnow()) - timedelta(days=max_age_days)
        stmt = (
            delete(Token)
            .where(Token.kind == TokenKind.REFRESH, Token.created_at < cutoff)
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        return result.rowcount
