"""
Request Rate Limiting.

Sliding-window limiter shared by all calls of one GitLab operation.
"""

import asyncio
import time
from collections import deque


class RateLimiter:
    """
    Allows at most ``max_requests`` acquisitions per ``period`` seconds.

    Attributes:
        max_requests (int): Requests allowed inside one window
        period (float): Window length in seconds
        request_times (deque): Monotonic timestamps of recent requests
    """

    def __init__(self, max_requests: int, period: float):
        self.max_requests = max_requests
        self.period = period
        self.request_times = deque()
        self._lock = asyncio.Lock()

    def _cleanup(self, now: float) -> None:
        # Remove timestamps older than the allowed period
        while self.request_times and (now - self.request_times[0]) > self.period:
            self.request_times.popleft()

    async def acquire(self) -> None:
        """Wait until a request slot is free, then record the request."""
        async with self._lock:
            now = time.monotonic()
            self._cleanup(now)

            # If we're at capacity, wait until the oldest request leaves the window
            if len(self.request_times) >= self.max_requests:
                wait_time = self.period - (now - self.request_times[0])
                if wait_time > 0:
                    await asyncio.sleep(wait_time)
                self._cleanup(time.monotonic())
                # Sleep granularity can leave the oldest entry exactly on the boundary
                while len(self.request_times) >= self.max_requests:
                    self.request_times.popleft()

            self.request_times.append(time.monotonic())
