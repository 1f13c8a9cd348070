"""Input validation helpers for account data."""
from __future__ import annotations


def validate_email(email: str) -> str:
    """Validate email address.

    Args:
        email: Email address to validate

    Returns:
        Normalized (trimmed, lower-cased) email address

    Raises:
        ValueError: If email is invalid
    """
    email = (email or "").strip().lower()
    if not email or "@" not in email:
        raise ValueError("Invalid email format")

    local, domain = email.rsplit("@", 1)
    if not local or not domain or "." not in domain:
        raise ValueError("Invalid email format")
    if len(email) > 254:
        raise ValueError("Email exceeds maximum length")

    return email


def validate_name(name: str, field: str = "Name") -> str:
    """Validate a display name.

    Raises:
        ValueError: If name is empty, too long or contains markup characters
    """
    name = (name or "").strip()
    if not name:
        raise ValueError(f"{field} is required")
    if len(name) > 128:
        raise ValueError(f"{field} exceeds maximum length")

    if any(char in name for char in "<>\"'`;&|$"):
        raise ValueError(f"{field} contains invalid characters")

    return name


def validate_password(password: str, min_length: int = 6) -> str:
    if not password or len(password) < min_length:
        raise ValueError(f"Password must be at least {min_length} characters long")
    if len(password) > 1024:
        raise ValueError("Password exceeds maximum length")
    return password
