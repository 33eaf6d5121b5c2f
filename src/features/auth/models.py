"""Authentication models (token ledger)."""

from datetime import datetime
from enum import StrEnum

from sqlalchemy import Boolean, Enum, ForeignKey, Integer, String, false
from sqlalchemy.orm import Mapped, mapped_column

from src.database.base import Base, UTCDateTime, utcnow


class TokenKind(StrEnum):
    """Kinds of token that are recorded in the ledger.

    Access tokens are never persisted; they carry the ``access`` type claim only.
    """

    REFRESH = "refresh"
    RESET_PASSWORD = "reset_password"
    VERIFY_EMAIL = "verify_email"


ACCESS_TOKEN_TYPE = "access"


class Token(Base):
    """Issued refresh, reset-password and verify-email tokens.

    A record's presence (not blacklisted, not expired) is what makes a
    signed token usable.
    """

    __tablename__ = "tokens"

    # Primary key
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Token data
    token: Mapped[str] = mapped_column(String(500), unique=True, nullable=False, index=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    kind: Mapped[TokenKind] = mapped_column(
        Enum(TokenKind, native_enum=False, length=20, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        index=True,
    )
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, index=True)
    blacklisted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=false())

    # Audit trail
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)
    blacklisted_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)  # IPv6 max length is 45
    user_agent: Mapped[str | None] = mapped_column(String(500), nullable=True)
