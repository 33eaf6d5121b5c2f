"""Pagination utilities and models for API responses."""

import math
from typing import Generic, TypeVar

from fastapi import Query
from pydantic import BaseModel, Field

from src.shared.schemas import CamelModel

MAX_PAGE_SIZE = 100

T = TypeVar("T")


class PaginationParams(BaseModel):
    """Query parameters for pagination.

    Built from the query string by ``pagination_params``:
    ```python
    @router.get("/items")
    async def list_items(pagination: PaginationParams = Depends(pagination_params)):
        stmt = select(Item).offset(pagination.skip).limit(pagination.limit)
    ```
    """

    page: int = Field(default=1, ge=1, description="Page number (1-indexed)")
    limit: int = Field(default=10, ge=1, le=MAX_PAGE_SIZE, description="Items per page")

    @property
    def skip(self) -> int:
        """Calculate skip/offset for database query."""
        return (self.page - 1) * self.limit


def pagination_params(
    page: int = Query(1, ge=1, description="Page number (1-indexed)"),
    limit: int = Query(10, ge=1, le=MAX_PAGE_SIZE, description="Items per page"),
) -> PaginationParams:
    return PaginationParams(page=page, limit=limit)


class PaginatedResponse(CamelModel, Generic[T]):
    """Generic paginated response model.

    Serialized as ``{results, page, limit, totalPages, totalResults}``.
    """

    results: list[T]
    page: int
    limit: int
    total_pages: int
    total_results: int

    @classmethod
    def build(cls, results: list[T], total: int, pagination: PaginationParams) -> "PaginatedResponse[T]":
        return cls(
            results=results,
            page=pagination.page,
            limit=pagination.limit,
            total_pages=math.ceil(total / pagination.limit) if total else 0,
            total_results=total,
        )


__all__ = ["MAX_PAGE_SIZE", "PaginatedResponse", "PaginationParams", "pagination_params"]
