from datetime import datetime, timezone
from typing import Any, Optional


def normalize_email(value: Any) -> str:
    if not isinstance(value, str):
        return ""
    return value.strip().lower()


def normalize_username(value: Any) -> str:
    """GitHub usernames are case-insensitive."""
    if not isinstance(value, str):
        return ""
    return value.strip().lower()


def parse_timestamp(raw_value: Any) -> Optional[datetime]:
    """
    Parse an ISO-8601 timestamp into an aware UTC datetime.
    Returns None for empty or unparseable values.
    """
    if raw_value is None:
        return None
    if isinstance(raw_value, datetime):
        parsed = raw_value
    elif isinstance(raw_value, str):
        candidate = raw_value.strip()
        if not candidate:
            return None
        try:
            parsed = datetime.fromisoformat(candidate.replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)
