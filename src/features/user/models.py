"""User domain models."""

from datetime import datetime

from pwdlib import PasswordHash
from sqlalchemy import Boolean, Enum, Integer, String, false, true
from sqlalchemy.orm import Mapped, mapped_column

from src.config.roles import Right, UserRole, role_has_rights
from src.database.base import Base, TimestampMixin, UTCDateTime, utcnow

pwd_hasher = PasswordHash.recommended()

# Verified against when no account matches a login email, so the miss costs
# the same Argon2 work as a wrong password.
DUMMY_PASSWORD_HASH = pwd_hasher.hash("dummy-password-for-timing")


class User(Base, TimestampMixin):
    """User account: credentials, role and account flags."""

    __tablename__ = "users"

    # Primary key
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Identity
    name: Mapped[str] = mapped_column(String(50), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)

    # Authentication
    hashed_password: Mapped[str] = mapped_column(String(255), nullable=False)
    password_changed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    # Authorization
    role: Mapped[UserRole] = mapped_column(
        Enum(UserRole, native_enum=False, length=20, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=UserRole.USER,
        index=True,
    )

    # Status
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=true())
    is_email_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=false())

    # Profile
    phone: Mapped[str | None] = mapped_column(String(30), nullable=True)
    avatar: Mapped[str | None] = mapped_column(String(500), nullable=True)

    # Audit
    last_login_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    def verify_password(self, plain_password: str) -> bool:
        """Verify a password against the hash using Argon2.

        Salt is automatically extracted from the hash by pwdlib.
        """
        return pwd_hasher.verify(plain_password, self.hashed_password)

    @staticmethod
    def hash_password(password: str) -> str:
        """Hash a password using Argon2.

        Salt is automatically generated and embedded in the returned hash.
        """
        return pwd_hasher.hash(password)

    def set_password(self, password: str) -> None:
        """Replace the password hash and record when it changed."""
        self.hashed_password = User.hash_password(password)
        self.mark_password_changed()

    def mark_password_changed(self) -> None:
        self.password_changed_at = utcnow()

    def changed_password_after(self, issued_at: int | float) -> bool:
        """True if the password changed after a token's ``iat`` (whole seconds)."""
        if self.password_changed_at is None:
            return False
        return int(self.password_changed_at.timestamp()) > int(issued_at)

    def has_rights(self, *rights: Right | str) -> bool:
        """Check if the user's role grants every given right."""
        return role_has_rights(self.role, *rights)
