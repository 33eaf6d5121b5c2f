"""User service layer."""

import logging
from collections.abc import Iterable
from typing import Any

from pydantic.alias_generators import to_camel
from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.config.roles import UserRole
from src.features.auth.ledger import TokenLedger
from src.features.auth.models import TokenKind
from src.shared.pagination.pagination import PaginationParams
from src.shared.pagination.sqlalchemy_pagination import SQLAlchemyPagination

from .exceptions import CannotDeleteOwnAccount, CannotModifyField, EmailAlreadyExists, UserNotFound
from .models import User
from .schemas import SortField, SortOrder

logger = logging.getLogger(__name__)

SORT_COLUMNS = {
    SortField.NAME: User.name,
    SortField.EMAIL: User.email,
    SortField.ROLE: User.role,
    SortField.CREATED_AT: User.created_at,
    SortField.LAST_LOGIN_AT: User.last_login_at,
}

LIKE_ESCAPE = "\\"


def contains_pattern(value: str) -> str:
    """LIKE pattern matching ``value`` as a literal substring."""
    escaped = value.replace(LIKE_ESCAPE, LIKE_ESCAPE * 2)
    for wildcard in ("%", "_"):
        escaped = escaped.replace(wildcard, LIKE_ESCAPE + wildcard)
    return f"%{escaped}%"


class UserService:
    """Service for user operations."""

    @staticmethod
    async def create_user(
        session: AsyncSession,
        email: str,
        password: str,
        name: str,
        role: UserRole = UserRole.USER,
        **attrs: Any,
    ) -> User:
        """Create a user with a hashed password.

        Args:
            session: Database session
            email: Email address, stored lower-cased
            password: Plain text password
            name: Display name
            role: Role of the new account
            **attrs: Other column values (phone, avatar, ...)

        Returns:
            Created User object

        Raises:
            EmailAlreadyExists: If email already exists

        """
        email = email.strip().lower()
        if await UserService.get_user_by_email(session, email) is not None:
            raise EmailAlreadyExists()

        user = User(
            email=email,
            name=name,
            role=role,
            hashed_password=User.hash_password(password),
            **attrs,
        )
        session.add(user)

        # Unique index is the real guard when two registrations race
        try:
            await session.flush()
        except IntegrityError as err:
            raise EmailAlreadyExists() from err

        logger.info(f"User created: id={user.id} role={user.role}")
        return user

    @staticmethod
    async def get_user(session: AsyncSession, user_id: int) -> User | None:
        """Get user by ID."""
        return await session.get(User, user_id)

    @staticmethod
    async def get_user_or_404(session: AsyncSession, user_id: int) -> User:
        user = await session.get(User, user_id)
        if user is None:
            raise UserNotFound()
        return user

    @staticmethod
    async def get_user_by_email(session: AsyncSession, email: str) -> User | None:
        stmt = select(User).where(User.email == email.strip().lower())
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def set_password(session: AsyncSession, user: User, new_password: str) -> None:
        """Re-hash the password and stamp ``password_changed_at``."""
        user.set_password(new_password)
        await session.flush()

    @staticmethod
    async def mark_password_changed(session: AsyncSession, user: User) -> None:
        user.mark_password_changed()
        await session.flush()

    @staticmethod
    async def get_users(
        session: AsyncSession,
        pagination: PaginationParams,
        name: str | None = None,
        email: str | None = None,
        role: UserRole | None = None,
        is_active: bool | None = None,
        sort_by: SortField = SortField.CREATED_AT,
        order: SortOrder = SortOrder.DESC,
    ) -> tuple[list[User], int]:
        """Get a filtered, sorted page of users.

        Args:
            session: Database session
            pagination: PaginationParams with page and limit
            name: Case-insensitive substring of the name
            email: Case-insensitive substring of the email
            role: Exact role
            is_active: Active flag
            sort_by: Column to sort on
            order: Sort direction

        Returns:
            Tuple of (users, total_count)

        """
        stmt = select(User)
        if name:
            stmt = stmt.where(User.name.ilike(contains_pattern(name), escape=LIKE_ESCAPE))
        if email:
            stmt = stmt.where(User.email.ilike(contains_pattern(email), escape=LIKE_ESCAPE))
        if role is not None:
            stmt = stmt.where(User.role == role)
        if is_active is not None:
            stmt = stmt.where(User.is_active.is_(is_active))

        column = SORT_COLUMNS[sort_by]
        stmt = stmt.order_by(column.asc() if order == SortOrder.ASC else column.desc(), User.id)

        return await SQLAlchemyPagination.paginate(session, stmt, pagination)

    @staticmethod
    async def search_users(session: AsyncSession, query: str, pagination: PaginationParams) -> tuple[list[User], int]:
        """Case-insensitive substring search on name or email."""
        pattern = contains_pattern(query.strip())
        stmt = (
            select(User)
            .where(or_(User.name.ilike(pattern, escape=LIKE_ESCAPE), User.email.ilike(pattern, escape=LIKE_ESCAPE)))
            .order_by(User.name, User.id)
        )
        return await SQLAlchemyPagination.paginate(session, stmt, pagination)

    @staticmethod
    async def get_user_stats(session: AsyncSession) -> dict[str, Any]:
        """Count accounts by status, verification and role."""
        stmt = select(
            func.count(User.id),
            func.count(User.id).filter(User.is_active.is_(True)),
            func.count(User.id).filter(User.is_email_verified.is_(True)),
        )
        total, active, verified = (await session.execute(stmt)).one()

        role_stmt = select(User.role, func.count(User.id)).group_by(User.role)
        by_role = {str(role): 0 for role in UserRole}
        for role, count in (await session.execute(role_stmt)).all():
            by_role[str(role)] = count

        return {
            "total": total,
            "active": active,
            "inactive": total - active,
            "verified": verified,
            "unverified": total - verified,
            "by_role": by_role,
        }

    @staticmethod
    async def update_user(
        session: AsyncSession, user: User, changes: dict[str, Any], allowed_fields: Iterable[str]
    ) -> User:
        """Apply ``changes`` to a user, refusing any field outside ``allowed_fields``.

        Raises:
            CannotModifyField: If a field is not in the allow-list
            EmailAlreadyExists: If email is being changed to an existing email

        """
        allowed = frozenset(allowed_fields)
        for field in changes:
            if field not in allowed:
                raise CannotModifyField(to_camel(field))

        new_email = changes.get("email")
        if new_email is not None and new_email != user.email:
            if await UserService.get_user_by_email(session, new_email) is not None:
                raise EmailAlreadyExists()
            user.email = new_email
            user.is_email_verified = False
            # Links mailed to the old address must not verify the new one
            await TokenLedger.revoke_all_for_user(session, user.id, TokenKind.VERIFY_EMAIL)

        for field in ("name", "role"):
            if changes.get(field) is not None:
                setattr(user, field, changes[field])

        # Optional profile fields can be cleared with an explicit null
        for field in ("phone", "avatar"):
            if field in changes:
                setattr(user, field, changes[field])

        if changes.get("password") is not None:
            user.set_password(changes["password"])
            await TokenLedger.revoke_all_for_user(session, user.id, TokenKind.REFRESH)

        if changes.get("is_active") is not None and changes["is_active"] != user.is_active:
            if changes["is_active"]:
                await UserService.activate_user(session, user)
            else:
                await UserService.deactivate_user(session, user)

        try:
            await session.flush()
        except IntegrityError as err:
            raise EmailAlreadyExists() from err

        logger.info(f"User updated: id={user.id} fields={sorted(changes)}")
        return user

    @staticmethod
    async def activate_user(session: AsyncSession, user: User) -> User:
        user.is_active = True
        await session.flush()
        logger.info(f"User activated: id={user.id}")
        return user

    @staticmethod
    async def deactivate_user(session: AsyncSession, user: User) -> User:
        """Deactivate an account and end all of its sessions."""
        user.is_active = False
        await session.flush()
        revoked = await TokenLedger.revoke_all_for_user(session, user.id, TokenKind.REFRESH)
        logger.info(f"User deactivated: id={user.id} sessions_revoked={revoked}")
        return user

    @staticmethod
    async def delete_user(session: AsyncSession, user_id: int, acting_user: User) -> None:
        """Delete a user and every ledger record they own.

        Raises:
            CannotDeleteOwnAccount: If the acting user targets themselves
            UserNotFound: If no user has this ID

        """
        if acting_user.id == user_id:
            raise CannotDeleteOwnAccount()

        user = await UserService.get_user_or_404(session, user_id)
        await TokenLedger.revoke_all_for_user(session, user.id)
        await session.delete(user)
        await session.flush()
        logger.info(f"User deleted by {acting_user.id}: id={user_id}")
