"""JWT utilities for authentication."""

import secrets
from datetime import UTC, datetime
from typing import Any

import jwt

from src.config.settings import settings


def create_token(user_id: int, token_type: str, expires_at: datetime) -> str:
    """Create a signed JWT.

    Args:
        user_id: Subject of the token
        token_type: Value of the ``type`` claim (access, refresh, reset_password, verify_email)
        expires_at: Absolute expiry, becomes the ``exp`` claim

    Returns:
        Encoded JWT token string

    """
    payload = {
        "sub": str(user_id),
        "iat": datetime.now(UTC),
        "exp": expires_at,
        "type": str(token_type),
        "jti": secrets.token_hex(16),
    }
    return jwt.encode(payload, settings.secret_key, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> dict[str, Any]:
    """Decode and verify a JWT token.

    Args:
        token: JWT token string

    Returns:
        Decoded token payload

    Raises:
        jwt.ExpiredSignatureError: If the token has expired
        jwt.InvalidTokenError: If the token is malformed or the signature is wrong

    """
    return jwt.decode(
        token,
        settings.secret_key,
        algorithms=[settings.jwt_algorithm],
        options={"require": ["sub", "iat", "exp", "type"]},
    )


def verify_token_type(payload: dict[str, Any], expected_type: str) -> bool:
    """Verify the token type matches expected."""
    return payload.get("type") == str(expected_type)


def token_subject(payload: dict[str, Any]) -> int | None:
    """Return the ``sub`` claim as a user id, or None if it is not one."""
    try:
        return int(payload["sub"])
    except (KeyError, TypeError, ValueError):
        return None
