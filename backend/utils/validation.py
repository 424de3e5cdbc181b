"""
Boundary validation for the fields the integrity layer depends on.

Only email format and role membership are checked here; every other field of
an inbound payload is passed through untouched.
"""

import re
from typing import Any, Dict, Iterable, Optional, Tuple

from .errors import ValidationFailed

EMAIL_PATTERN = re.compile(r"^\S+@\S+\.\S+$")


def normalize_email(email: Optional[str]) -> str:
    """Lower-case and trim an email; raise ValidationFailed if malformed."""
    if not email or not isinstance(email, str):
        raise ValidationFailed("email", "email is required")
    normalized = email.strip().lower()
    if not EMAIL_PATTERN.match(normalized):
        raise ValidationFailed("email", "Please enter a valid email", email)
    return normalized


def looks_like_email(value: str) -> bool:
    return "@" in value


def require_fields(payload: Dict[str, Any], fields: Iterable[str]) -> None:
    for field in fields:
        value = payload.get(field)
        if value is None or (isinstance(value, str) and not value.strip()):
            raise ValidationFailed(field, f"{field} is required")


def check_int_range(field: str, value: Any, low: int, high: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationFailed(field, f"{field} must be an integer", value)
    if value < low or value > high:
        raise ValidationFailed(field, f"{field} must be between {low} and {high}", value)
    return value


def split_known_fields(
    payload: Dict[str, Any],
    known: Iterable[str],
) -> Tuple[Dict[str, Any], Dict[str, Any]]:
    """Split a loose payload into (known column values, pass-through extras)."""
    known_set = set(known)
    columns = {k: v for k, v in payload.items() if k in known_set}
    extras = {k: v for k, v in payload.items() if k not in known_set}
    return columns, extras
