"""Rate limiter for Google Drive API calls.

This module provides an asyncio-friendly rate limiter using a fixed window
algorithm to stay within Google's API quota limits.

Example:
    from clipdrive.gdrive.rate_limiter import RateLimiter

    # Create limiter: 900 requests per 100 seconds
    limiter = RateLimiter(max_requests=900, window_seconds=100)

    # Before each API call
    await limiter.acquire()
    response = await client.get(...)
"""

import asyncio
import time
from typing import Awaitable, Callable, Optional


class RateLimiter:
    """Coroutine-safe rate limiter using a fixed window algorithm.

    This limiter allows a maximum number of requests within a time window.
    If the limit is exceeded, acquire() suspends until the window resets.

    Default configuration: 900 requests per 100 seconds, which is safely under
    Google Drive API's limit of 1000 requests per 100 seconds.

    Attributes:
        max_requests: Maximum number of requests allowed per window.
        window_seconds: Length of each time window in seconds.
    """

    # Default values based on Google Drive API quota
    DEFAULT_MAX_REQUESTS = 900  # Under Google's 1000 limit
    DEFAULT_WINDOW_SECONDS = 100  # Google's quota window

    def __init__(
        self,
        max_requests: Optional[int] = None,
        window_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialize the rate limiter.

        Args:
            max_requests: Maximum requests per window (default: 900).
            window_seconds: Window duration in seconds (default: 100).
            clock: Monotonic time source, replaceable in tests.
            sleep: Coroutine used to wait for the next window.
        """
        self._max_requests = max_requests or self.DEFAULT_MAX_REQUESTS
        self._window_seconds = window_seconds or self.DEFAULT_WINDOW_SECONDS
        self._clock = clock
        self._sleep = sleep

        # Current window state
        self._window_start: float = clock()
        self._request_count: int = 0

        # Waiters queue on the lock, so windows are handed out in order
        self._lock = asyncio.Lock()

    @property
    def max_requests(self) -> int:
        """Maximum requests allowed per window."""
        return self._max_requests

    @property
    def window_seconds(self) -> float:
        """Window duration in seconds."""
        return self._window_seconds

    async def acquire(self) -> None:
        """Acquire permission to make an API call.

        Suspends if the rate limit has been exceeded for the current window
        and resumes when the next window begins.
        """
        async with self._lock:
            elapsed = self._clock() - self._window_start
            if elapsed >= self._window_seconds:
                self._window_start = self._clock()
                self._request_count = 0
                elapsed = 0.0

            if self._request_count >= self._max_requests:
                time_remaining = self._window_seconds - elapsed
                if time_remaining > 0:
                    await self._sleep(time_remaining)

                self._window_start = self._clock()
                self._request_count = 0

            self._request_count += 1

    def get_status(self) -> dict[str, object]:
        """Get current rate limiter status.

        Returns:
            Dictionary with current window state:
            - request_count: Requests made in current window
            - max_requests: Maximum allowed per window
            - window_seconds: Window duration
            - seconds_remaining: Time until window resets
            - requests_remaining: Requests available in current window
        """
        elapsed = self._clock() - self._window_start

        if elapsed >= self._window_seconds:
            seconds_remaining = self._window_seconds
            current_count = 0
        else:
            seconds_remaining = self._window_seconds - elapsed
            current_count = self._request_count

        return {
            "request_count": current_count,
            "max_requests": self._max_requests,
            "window_seconds": self._window_seconds,
            "seconds_remaining": round(seconds_remaining, 2),
            "requests_remaining": max(0, self._max_requests - current_count),
        }

    def reset(self) -> None:
        """Reset the rate limiter to start a new window."""
        self._window_start = self._clock()
        self._request_count = 0
