"""Authentication exceptions."""

from fastapi import HTTPException, status


class AuthenticationException(HTTPException):
    """Base authentication exception."""

    def __init__(self, detail: str = "Please authenticate"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            headers={"WWW-Authenticate": "Bearer"},
        )


class InvalidCredentialsException(AuthenticationException):
    """Raised when email or password is incorrect."""

    def __init__(self):
        super().__init__(detail="Incorrect email or password")


class InvalidTokenException(AuthenticationException):
    """Raised when a JWT is invalid, of the wrong type or missing from the ledger."""

    def __init__(self, detail: str = "Invalid token"):
        super().__init__(detail=detail)


class TokenExpiredException(InvalidTokenException):
    """Raised when JWT token has expired."""

    def __init__(self):
        super().__init__(detail="Token has expired")


class PasswordChangedException(AuthenticationException):
    """Raised when the password changed after the access token was issued."""

    def __init__(self):
        super().__init__(detail="Password recently changed. Please log in again")


class UserInactiveException(AuthenticationException):
    """Raised when user account is deactivated."""

    def __init__(self):
        super().__init__(detail="User account is deactivated")


class PasswordResetFailedException(AuthenticationException):
    """Raised when any step of the password reset chain fails."""

    def __init__(self):
        super().__init__(detail="Password reset failed")


class EmailVerificationFailedException(AuthenticationException):
    """Raised when any step of the email verification chain fails."""

    def __init__(self):
        super().__init__(detail="Email verification failed")


class TokenNotFoundException(HTTPException):
    """Raised on logout when the refresh token is not in the ledger."""

    def __init__(self):
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail="Token not found")


class EmailDeliveryException(HTTPException):
    """Raised when an explicitly requested email could not be sent."""

    def __init__(self):
        super().__init__(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Email could not be sent. Please try again later",
        )


class InsufficientPermissionsException(HTTPException):
    """Raised when the user's role lacks a required right."""

    def __init__(self, detail: str = "Forbidden"):
        super().__init__(status_code=status.HTTP_403_FORBIDDEN, detail=detail)
