"""
Input validation utilities.
"""

import re
from typing import List, Tuple

from utils.errors import ValidationFailed

_USERNAME_PATTERN = re.compile(r"^[a-zA-Z0-9_.-]{3,50}$")


def validate_username(username: str) -> Tuple[bool, str]:
    """
    Validate username format.

    Args:
        username: Username to validate

    Returns:
        Tuple of (is_valid, error_message)
    """
    if not username:
        return False, "Username is required"

    if not _USERNAME_PATTERN.match(username):
        return False, "Username must be 3-50 characters: letters, digits, '_', '.', '-'"

    return True, ""


def validate_password(password: str) -> Tuple[bool, str]:
    """
    Validate password strength.

    Requirements:
    - At least 8 characters
    - Contains at least one letter
    - Contains at least one number

    Args:
        password: Password to validate

    Returns:
        Tuple of (is_valid, error_message)
    """
    if not password:
        return False, "Password is required"

    if len(password) < 8:
        return False, "Password must be at least 8 characters"

    if not re.search(r'[a-zA-Z]', password):
        return False, "Password must contain at least one letter"

    if not re.search(r'\d', password):
        return False, "Password must contain at least one number"

    return True, ""


def validate_message_content(content: str, max_length: int) -> str:
    """Check a chat message before anything is persisted.

    Raises:
        ValidationFailed: If the content is blank or longer than max_length.
    """
    problems: List[dict] = []
    if not content or not content.strip():
        problems.append({"field": "content", "message": "Message cannot be empty"})
    elif len(content) > max_length:
        problems.append({"field": "content", "message": "Message too long"})
    if problems:
        raise ValidationFailed("Validation failed", details=problems)
    return content


def validate_model(model: str, allowed: List[str]) -> str:
    """Check that a model name is on the allow-list.

    Raises:
        ValidationFailed: If the model is not allowed.
    """
    if model not in allowed:
        raise ValidationFailed(
            "Validation failed",
            details=[{"field": "model", "message": f"Model must be one of: {', '.join(allowed)}"}],
        )
    return model
