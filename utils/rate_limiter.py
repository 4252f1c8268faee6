"""
Rate Limiter - Sliding window limits for inbound messages
"""

import time
from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, Optional

from config.environments import current_config
from utils.logger import get_logger

log = get_logger("rate_limiter")


@dataclass
class RateLimitResult:
    allowed: bool
    reason: Optional[str] = None  # minute_limit/hour_limit/global_limit
    remaining: Optional[int] = None
    retry_after: Optional[int] = None


class RateLimiter:
    def __init__(
        self,
        per_minute: int = None,
        per_hour: int = None,
        global_per_minute: int = None,
    ):
        # Store request timestamps: {identifier: [timestamp, ...]}
        self.requests: Dict[str, list] = defaultdict(list)
        self.cleanup_interval = 300  # Clean old entries every 5 minutes
        self.last_cleanup = time.time()

        self.per_minute = per_minute or current_config.RATE_LIMIT_PER_MINUTE
        self.per_hour = per_hour or current_config.RATE_LIMIT_PER_HOUR
        self.global_per_minute = global_per_minute or current_config.RATE_LIMIT_GLOBAL_PER_MINUTE

    def check_rate_limit(
        self,
        identifier: str,
        max_requests: int = 10,
        window_seconds: int = 60
    ) -> tuple[bool, Optional[int]]:
        """
        Check if request is within rate limit and record it if so

        Args:
            identifier: Unique identifier (phone, IP, "global")
            max_requests: Maximum requests allowed
            window_seconds: Time window in seconds

        Returns:
            Tuple of (allowed: bool, retry_after: Optional[int])
        """
        now = time.time()
        window_start = now - window_seconds

        # Cleanup old entries periodically
        if now - self.last_cleanup > self.cleanup_interval:
            self._cleanup_old_entries(now - 3600)

        # Get requests in current window
        requests_in_window = [
            ts for ts in self.requests[identifier]
            if ts > window_start
        ]

        # Check limit
        if len(requests_in_window) >= max_requests:
            oldest_request = min(requests_in_window)
            retry_after = int(oldest_request + window_seconds - now)
            return False, max(retry_after, 1)

        # Add current request
        self.requests[identifier].append(now)
        return True, None

    def check_message_limits(self, phone: str) -> RateLimitResult:
        """
        Apply the per-phone minute and hour limits, then the global limit.

        A message is only counted against the windows it passed through.
        """
        if not current_config.RATE_LIMIT_ENABLED:
            return RateLimitResult(allowed=True)

        allowed, retry_after = self.check_rate_limit(f"minute:{phone}", self.per_minute, 60)
        if not allowed:
            log.warning("Minute rate limit exceeded", phone=phone)
            return RateLimitResult(allowed=False, reason="minute_limit", remaining=0, retry_after=retry_after)

        allowed, retry_after = self.check_rate_limit(f"hour:{phone}", self.per_hour, 3600)
        if not allowed:
            log.warning("Hour rate limit exceeded", phone=phone)
            return RateLimitResult(allowed=False, reason="hour_limit", remaining=0, retry_after=retry_after)

        allowed, retry_after = self.check_rate_limit("global", self.global_per_minute, 60)
        if not allowed:
            log.warning("Global rate limit exceeded")
            return RateLimitResult(allowed=False, reason="global_limit", remaining=0, retry_after=retry_after)

        remaining = self.get_remaining_requests(f"minute:{phone}", self.per_minute, 60)
        return RateLimitResult(allowed=True, remaining=remaining)

    def _cleanup_old_entries(self, cutoff_time: float):
        """Remove old entries to prevent memory bloat"""
        for identifier in list(self.requests.keys()):
            self.requests[identifier] = [
                ts for ts in self.requests[identifier]
                if ts > cutoff_time
            ]

            # Remove empty entries
            if not self.requests[identifier]:
                del self.requests[identifier]

        self.last_cleanup = time.time()

    def get_remaining_requests(
        self,
        identifier: str,
        max_requests: int = 10,
        window_seconds: int = 60
    ) -> int:
        """Get number of remaining requests in current window"""
        now = time.time()
        window_start = now - window_seconds

        requests_in_window = [
            ts for ts in self.requests.get(identifier, [])
            if ts > window_start
        ]

        return max(0, max_requests - len(requests_in_window))

    def reset_identifier(self, identifier: str):
        """Reset rate limit for specific identifier"""
        if identifier in self.requests:
            del self.requests[identifier]


# Singleton instance
rate_limiter = RateLimiter()
