"""
Time helpers. Timestamps are stored as naive UTC.
"""

from datetime import datetime, timezone
from typing import Optional, Union


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: Union[datetime, str, None]) -> Optional[datetime]:
    """Accept a datetime or ISO-8601 string and return naive UTC"""
    if value is None or value == "":
        return None

    if isinstance(value, str):
        value = datetime.fromisoformat(value.strip().replace('Z', '+00:00'))

    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)

    return value


def isoformat(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.replace(tzinfo=timezone.utc).isoformat().replace('+00:00', 'Z')
