"""Sliding-window throttle for sign-in and password reset attempts."""
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional
import logging

logger = logging.getLogger(__name__)

SIGNIN_MAX_ATTEMPTS = 5
SIGNIN_WINDOW_MINUTES = 15
RESET_MAX_ATTEMPTS = 3
RESET_WINDOW_MINUTES = 15


class RateLimiter:
    def __init__(self):
        # Process-local; each worker keeps its own window
        self.attempts: Dict[str, List[datetime]] = {}

    async def check_rate_limit(
        self,
        key: str,
        max_attempts: int,
        window_minutes: int
    ) -> tuple[bool, Optional[str]]:
        """
        Record an attempt for key and report whether it is allowed.

        Returns:
            (allowed: bool, error_message: Optional[str])
        """
        now = datetime.now(timezone.utc)
        window = timedelta(minutes=window_minutes)
        recent = [ts for ts in self.attempts.get(key, []) if now - ts < window]
        self.attempts[key] = recent

        if len(recent) >= max_attempts:
            wait_seconds = int((min(recent) + window - now).total_seconds())
            logger.warning("Rate limit hit for %s", key)
            return False, f"Too many attempts. Try again in {wait_seconds} seconds"

        recent.append(now)
        return True, None

    def reset(self, key: str) -> None:
        """Forget attempts for key (after a successful sign-in)."""
        self.attempts.pop(key, None)


rate_limiter = RateLimiter()
