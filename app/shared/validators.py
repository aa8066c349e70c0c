"""Shared validation utilities"""

import re
from typing import Optional

HHMM_PATTERN = re.compile(r"^(\d{1,2}):(\d{2})$")


def validate_hhmm(value: Optional[str]) -> Optional[str]:
    """
    Validate a 24h clock time and normalize it to zero-padded HH:MM.

    Raises:
        ValueError: If the value is not a valid time of day
    """
    if value is None:
        return value

    match = HHMM_PATTERN.match(value.strip())
    if not match:
        raise ValueError(f"Invalid time '{value}'. Use HH:MM (24h)")

    hours, minutes = int(match.group(1)), int(match.group(2))
    if hours > 23 or minutes > 59:
        raise ValueError(f"Invalid time '{value}'. Use HH:MM (24h)")

    return f"{hours:02d}:{minutes:02d}"


def validate_percent(value: Optional[int]) -> Optional[int]:
    """Percentages are whole numbers between 0 and 100"""
    if value is None:
        return value
    if value < 0 or value > 100:
        raise ValueError("Percentage must be between 0 and 100")
    return value


def validate_email(email: Optional[str]) -> Optional[str]:
    """Light sanity check; delivery problems are handled by the email provider"""
    if not email:
        return None
    email = email.strip().lower()
    if "@" not in email or email.startswith("@") or email.endswith("@"):
        raise ValueError("Invalid email address")
    return email
