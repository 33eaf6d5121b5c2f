"""Database dependencies."""

from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession

from src.database.client import get_session


async def get_db_session() -> AsyncGenerator[AsyncSession]:
    """Request-scoped session; committed when the handler returns, rolled back on error."""
    async with get_session() as session:
        yield session
