"""User management router (API endpoints)."""

import logging

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from src.config.roles import MANAGED_FIELDS, Right, UserRole
from src.database.dependencies import get_db_session
from src.features.auth.dependencies import require_permissions
from src.shared.pagination.pagination import PaginatedResponse, PaginationParams, pagination_params
from src.shared.schemas import MessageResponse

from .models import User
from .schemas import SortField, SortOrder, UserCreateRequest, UserResponse, UserStatsResponse, UserUpdateRequest
from .service import UserService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/users", tags=["User Management"])


def paginated_users(users: list[User], total: int, pagination: PaginationParams) -> PaginatedResponse[UserResponse]:
    return PaginatedResponse[UserResponse].build(
        [UserResponse.model_validate(u) for u in users], total, pagination
    )


@router.get("", response_model=PaginatedResponse[UserResponse])
async def list_users(
    name: str | None = Query(None, max_length=50),
    email: str | None = Query(None, max_length=255),
    role: UserRole | None = None,
    is_active: bool | None = Query(None, alias="isActive"),
    sort_by: SortField = Query(SortField.CREATED_AT, alias="sortBy"),
    order: SortOrder = SortOrder.DESC,
    pagination: PaginationParams = Depends(pagination_params),
    _: User = Depends(require_permissions(Right.GET_USERS)),
    session: AsyncSession = Depends(get_db_session),
):
    """List users with optional filters.

    - `name`, `email`: case-insensitive substring match
    - `role`, `isActive`: exact match
    - `sortBy`: name, email, role, createdAt or lastLoginAt; `order`: asc or desc
    - `page` (default 1), `limit` (default 10, max 100)
    """
    users, total = await UserService.get_users(
        session,
        pagination,
        name=name,
        email=email,
        role=role,
        is_active=is_active,
        sort_by=sort_by,
        order=order,
    )
    return paginated_users(users, total, pagination)


@router.post("", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def create_user(
    data: UserCreateRequest,
    current_user: User = Depends(require_permissions(Right.MANAGE_USERS)),
    session: AsyncSession = Depends(get_db_session),
):
    """Create a user with any role (administrators)."""
    user = await UserService.create_user(
        session,
        email=data.email,
        password=data.password,
        name=data.name,
        role=data.role,
        phone=data.phone,
        avatar=data.avatar,
    )
    await session.commit()
    logger.info(f"User {user.id} created by {current_user.id}")
    return UserResponse.model_validate(user)


@router.get("/stats", response_model=UserStatsResponse)
async def get_user_stats(
    _: User = Depends(require_permissions(Right.VIEW_ANALYTICS)),
    session: AsyncSession = Depends(get_db_session),
):
    """Account counts by status, email verification and role."""
    return UserStatsResponse(**await UserService.get_user_stats(session))


@router.get("/search", response_model=PaginatedResponse[UserResponse])
async def search_users(
    q: str = Query(..., min_length=1, max_length=100),
    pagination: PaginationParams = Depends(pagination_params),
    _: User = Depends(require_permissions(Right.GET_USERS)),
    session: AsyncSession = Depends(get_db_session),
):
    """Search users by name or email."""
    users, total = await UserService.search_users(session, q, pagination)
    return paginated_users(users, total, pagination)


@router.get("/{user_id}", response_model=UserResponse)
async def get_user(
    user_id: int,
    _: User = Depends(require_permissions(Right.GET_USERS, allow_self=True)),
    session: AsyncSession = Depends(get_db_session),
):
    """Get user by ID. Users without the getUsers right can only fetch themselves."""
    user = await UserService.get_user_or_404(session, user_id)
    return UserResponse.model_validate(user)


@router.patch("/{user_id}", response_model=UserResponse)
async def update_user(
    user_id: int,
    data: UserUpdateRequest,
    current_user: User = Depends(require_permissions(Right.MANAGE_USERS)),
    session: AsyncSession = Depends(get_db_session),
):
    """Update another user's fields allowed for the caller's role."""
    user = await UserService.get_user_or_404(session, user_id)
    user = await UserService.update_user(
        session,
        user,
        data.model_dump(exclude_unset=True),
        MANAGED_FIELDS[UserRole(current_user.role)],
    )
    await session.commit()
    logger.info(f"User {user.id} updated by {current_user.id}")
    return UserResponse.model_validate(user)


@router.delete("/{user_id}", response_model=MessageResponse)
async def delete_user(
    user_id: int,
    current_user: User = Depends(require_permissions(Right.MANAGE_USERS)),
    session: AsyncSession = Depends(get_db_session),
):
    """Delete a user and all of their sessions. Administrators cannot delete themselves."""
    await UserService.delete_user(session, user_id, current_user)
    await session.commit()
    return MessageResponse(message="User deleted successfully")


@router.post("/{user_id}/activate", response_model=UserResponse)
async def activate_user(
    user_id: int,
    _: User = Depends(require_permissions(Right.MANAGE_USERS)),
    session: AsyncSession = Depends(get_db_session),
):
    user = await UserService.get_user_or_404(session, user_id)
    user = await UserService.activate_user(session, user)
    await session.commit()
    return UserResponse.model_validate(user)


@router.post("/{user_id}/deactivate", response_model=UserResponse)
async def deactivate_user(
    user_id: int,
    _: User = Depends(require_permissions(Right.MANAGE_USERS)),
    session: AsyncSession = Depends(get_db_session),
):
    """Deactivate a user and end all of their sessions."""
    user = await UserService.get_user_or_404(session, user_id)
    user = await UserService.deactivate_user(session, user)
    await session.commit()
    return UserResponse.model_validate(user)
