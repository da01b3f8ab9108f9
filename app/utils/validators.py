"""
Validators
==========

Common validation utilities.
"""

import re
from typing import Optional

from app.core.errors import UnprocessableError, ValidationError
from app.models.board import BOARD_COLORS

EMAIL_PATTERN = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")
MIN_PASSWORD_LENGTH = 8


def validate_email(email: str) -> str:
    """
    Validate email format.

    Returns:
        Validated email (stripped, lowercase)

    Raises:
        ValidationError: If email is invalid
    """
    email = (email or "").strip()
    if not EMAIL_PATTERN.match(email):
        raise ValidationError(
            message="Invalid email format",
            field="email",
        )
    return email.lower()


def validate_password(password: str) -> str:
    """
    Validate password length.

    Raises:
        ValidationError: If password is shorter than 8 characters
    """
    if len(password or "") < MIN_PASSWORD_LENGTH:
        raise ValidationError(
            message=f"Password must be at least {MIN_PASSWORD_LENGTH} characters long",
            field="password",
        )
    return password


def validate_board_color(color: Optional[str]) -> Optional[str]:
    """Accept None or one of the palette colors."""
    if color is None:
        return None
    if color not in BOARD_COLORS:
        raise UnprocessableError(
            message=f"Color must be one of: {', '.join(BOARD_COLORS)}",
            field="color",
        )
    return color
