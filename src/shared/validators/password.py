"""Password validation functions."""

MIN_PASSWORD_LENGTH = 8


def validate_password_strength(password: str) -> str:
    """Validate password strength requirements.

    Requirements:
    - At least 8 characters
    - At least one letter
    - At least one digit (0-9)

    Args:
        password: Password string to validate

    Returns:
        The validated password string

    Raises:
        ValueError: If password doesn't meet strength requirements

    Examples:
        >>> validate_password_strength("abc12345")
        'abc12345'
        >>> validate_password_strength("abcdefgh")
        Traceback (most recent call last):
        ...
        ValueError: Password must contain at least one letter and one number

    """
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    if not any(c.isalpha() for c in password) or not any(c.isdigit() for c in password):
        raise ValueError("Password must contain at least one letter and one number")
    return password
