"""SQLAlchemy query helpers for pagination."""

from typing import Any

from sqlalchemy import Select, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from .pagination import PaginationParams


class SQLAlchemyPagination:
    """Helper class for paginating SQLAlchemy queries."""

    @staticmethod
    async def paginate(
        session: AsyncSession,
        stmt: Select,
        pagination: PaginationParams,
    ) -> tuple[list[Any], int]:
        """Run a select for one page and count the rows of the unpaginated query.

        Args:
            session: Database session
            stmt: Filtered and ordered select of a single entity
            pagination: PaginationParams with page and limit

        Returns:
            Tuple of (items, total_count)

        Example:
            ```python
            items, total = await SQLAlchemyPagination.paginate(
                session,
                select(User).where(User.is_active.is_(True)).order_by(User.created_at),
                pagination,
            )
            ```

        """
        count_stmt = select(func.count()).select_from(stmt.order_by(None).subquery())
        total_result = await session.execute(count_stmt)
        total = total_result.scalar_one()

        page_stmt = stmt.offset(pagination.skip).limit(pagination.limit)
        result = await session.execute(page_stmt)
        items = list(result.scalars().all())

        return items, total


__all__ = ["SQLAlchemyPagination"]
