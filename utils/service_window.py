"""
WhatsApp customer service window.

A business may send free-form messages only while the window opened by
the customer's last inbound message is active: 24 hours normally, 72
hours when the conversation started from a click-to-WhatsApp ad.
"""

import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Union

from utils.logger import get_logger
from utils.timeutils import utcnow, to_naive_utc

log = get_logger("service_window")

WINDOW_HOURS = {
    "standard": 24,
    "ctwa": 72,
}

DEFAULT_WINDOW_HOURS = WINDOW_HOURS["standard"]


@dataclass
class ServiceWindowStatus:
    is_active: bool
    expires_at: Optional[datetime]
    window_type: Optional[str]
    minutes_remaining: int


def get_service_window_status(
    window_start: Union[datetime, str, None],
    window_type: Optional[str],
    now: Optional[datetime] = None,
) -> ServiceWindowStatus:
    """
    Compute whether a service window is open and how long it has left.

    Args:
        window_start: When the window opened (datetime or ISO-8601 string)
        window_type: "standard" or "ctwa"; unknown types use 24 hours
        now: Reference time (defaults to current UTC time)

    Returns:
        ServiceWindowStatus
    """
    if not window_start or not window_type:
        return ServiceWindowStatus(
            is_active=False,
            expires_at=None,
            window_type=None,
            minutes_remaining=0,
        )

    try:
        start = to_naive_utc(window_start)
    except ValueError:
        log.warning("Unparseable service window start", window_start=str(window_start))
        return ServiceWindowStatus(
            is_active=False,
            expires_at=None,
            window_type=window_type,
            minutes_remaining=0,
        )

    current = to_naive_utc(now) if now is not None else utcnow()

    hours = WINDOW_HOURS.get(window_type, DEFAULT_WINDOW_HOURS)
    expires_at = start + timedelta(hours=hours)

    remaining_seconds = (expires_at - current).total_seconds()
    minutes_remaining = max(0, math.floor(remaining_seconds / 60))

    return ServiceWindowStatus(
        is_active=current < expires_at,
        expires_at=expires_at,
        window_type=window_type,
        minutes_remaining=minutes_remaining,
    )


def is_in_service_window(
    window_start: Union[datetime, str, None],
    window_type: Optional[str],
    now: Optional[datetime] = None,
) -> bool:
    return get_service_window_status(window_start, window_type, now).is_active
