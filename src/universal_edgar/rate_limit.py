"""Shared token-bucket limiter for outbound filings-directory calls."""
from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional

from universal_edgar.errors import DeadlineExceeded

logger = logging.getLogger(__name__)


class RateLimiter:
    """
    Token bucket rate limiter.

    Thread-safe. One instance is constructed per directory client and every
    request from every worker thread goes through it.
    """

    def __init__(
        self,
        name: str,
        calls_per_second: float = 10.0,
        burst_size: int = 1,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Args:
            name: Identifier for logging
            calls_per_second: Sustained rate limit
            burst_size: Maximum burst of calls allowed
            clock: Monotonic clock (injectable for tests)
            sleep: Sleep function (injectable for tests)
        """
        if calls_per_second <= 0:
            raise ValueError("calls_per_second must be positive")
        self.name = name
        self.calls_per_second = calls_per_second
        self.burst_size = burst_size
        self._clock = clock
        self._sleep = sleep
        self.tokens = float(burst_size)
        self.last_update = clock()
        self._lock = threading.Lock()
        self.total_acquired = 0

    def _refill(self) -> None:
        """Refill tokens based on time elapsed."""
        now = self._clock()
        elapsed = now - self.last_update
        self.tokens = min(
            self.burst_size,
            self.tokens + elapsed * self.calls_per_second
        )
        self.last_update = now

    def acquire(self, timeout: Optional[float] = 30.0) -> None:
        """
        Acquire a token, blocking if necessary.

        Args:
            timeout: Maximum time to wait for a token (None waits forever)

        Raises:
            DeadlineExceeded: If the token cannot be obtained within the timeout
        """
        start = self._clock()

        while True:
            with self._lock:
                self._refill()

                if self.tokens >= 1.0:
                    self.tokens -= 1.0
                    self.total_acquired += 1
                    return

                wait_time = (1.0 - self.tokens) / self.calls_per_second

            if timeout is not None and self._clock() - start + wait_time > timeout:
                logger.warning(f"Rate limiter {self.name} timeout after {timeout}s")
                raise DeadlineExceeded(
                    f"Rate limiter {self.name} could not grant a request within {timeout}s",
                    details={"limiter": self.name},
                )

            logger.debug(f"Rate limiter {self.name} waiting {wait_time:.3f}s")
            self._sleep(min(wait_time, 0.5))

    def status(self) -> dict:
        """Get current rate limiter status."""
        with self._lock:
            self._refill()
            return {
                "name": self.name,
                "tokens_available": self.tokens,
                "burst_size": self.burst_size,
                "calls_per_second": self.calls_per_second,
                "total_acquired": self.total_acquired,
            }

