"""User-related exceptions."""

from fastapi import HTTPException, status


class UserException(HTTPException):
    """Base user exception."""

    def __init__(self, detail: str = "User operation failed", status_code: int = status.HTTP_400_BAD_REQUEST):
        super().__init__(status_code=status_code, detail=detail)


class UserNotFound(UserException):
    """Raised when user is not found."""

    def __init__(self):
        super().__init__(detail="User not found", status_code=status.HTTP_404_NOT_FOUND)


class EmailAlreadyExists(UserException):
    """Raised when the email belongs to another account."""

    def __init__(self):
        super().__init__(detail="Email already taken", status_code=status.HTTP_409_CONFLICT)


class IncorrectPassword(UserException):
    """Raised when the current password does not match."""

    def __init__(self):
        super().__init__(detail="Current password is incorrect")


class CannotDeleteOwnAccount(UserException):
    """Raised when an admin tries to delete their own account."""

    def __init__(self):
        super().__init__(detail="Cannot delete your own account")


class CannotModifyField(UserException):
    """Raised when trying to modify a field outside the caller's allow-list."""

    def __init__(self, field: str):
        super().__init__(
            detail=f"You do not have permission to modify '{field}' field", status_code=status.HTTP_403_FORBIDDEN
        )
