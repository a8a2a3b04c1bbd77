"""
Rolling-window rate limiter for outbound CRM calls.

The CRM allows 60 calls per minute per token. We stop at a lower
ceiling and, once it is reached, sleep the caller until the window has
fully elapsed plus a buffer, then start a fresh window.
"""

import threading
import time
from typing import Callable, Optional
import structlog

from config import settings

logger = structlog.get_logger(__name__)


class RateLimiter:
    """
    Fixed window counter that blocks the calling thread when full.

    Args:
        max_calls: Calls allowed per window
        window_seconds: Window length
        buffer_seconds: Extra wait after the window ends
        clock: Monotonic clock (injectable for tests)
        sleep: Sleep function (injectable for tests)
    """

    def __init__(
        self,
        max_calls: int = 55,
        window_seconds: float = 60.0,
        buffer_seconds: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep
    ):
        self.max_calls = max_calls
        self.window_seconds = window_seconds
        self.buffer_seconds = buffer_seconds
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self.calls_in_window = 0
        self.window_start = clock()

    def acquire(self) -> float:
        """
        Reserve one call, sleeping first if the window is exhausted.

        Returns:
            Seconds slept (0.0 when no wait was needed)
        """
        with self._lock:
            now = self._clock()
            waited = 0.0

            if now - self.window_start >= self.window_seconds:
                self.window_start = now
                self.calls_in_window = 0

            if self.calls_in_window >= self.max_calls:
                waited = self.window_seconds - (now - self.window_start) + self.buffer_seconds
                logger.info(
                    "crm_rate_limit_wait",
                    calls=self.calls_in_window,
                    wait_seconds=round(waited, 2)
                )
                # Holding the lock while sleeping serializes every caller
                self._sleep(waited)
                self.window_start = self._clock()
                self.calls_in_window = 0

            self.calls_in_window += 1
            return waited

    def reset(self) -> None:
        with self._lock:
            self.calls_in_window = 0
            self.window_start = self._clock()


_limiter: Optional[RateLimiter] = None


def get_rate_limiter() -> RateLimiter:
    """Process-wide limiter shared by every CRM client using the same token."""
    global _limiter
    if _limiter is None:
        _limiter = RateLimiter(
            max_calls=settings.crm_rate_limit_calls,
            window_seconds=settings.crm_rate_limit_window_seconds,
            buffer_seconds=settings.crm_rate_limit_buffer_seconds,
        )
    return _limiter
