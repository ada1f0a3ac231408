"""Token-bucket rate limiting shared by every session of one provider."""

import threading
import time
from collections.abc import Callable

from stageforge.domain.cancellation import CancellationToken
from stageforge.domain.exceptions import OperationCancelled


class TokenBucket:
    """
    Classic token bucket refilled continuously at rate_per_minute / 60.

    A full bucket allows a burst of `capacity` requests; afterwards requests
    are spaced so that the configured ceiling is never exceeded.
    """

    def __init__(
        self,
        rate_per_minute: float,
        capacity: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if rate_per_minute <= 0:
            raise ValueError("rate_per_minute must be positive")
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self._rate = rate_per_minute / 60.0
        self._capacity = float(capacity)
        self._tokens = float(capacity)
        self._clock = clock
        self._sleep = sleep
        self._updated = clock()
        self._lock = threading.Lock()

    @property
    def rate_per_second(self) -> float:
        return self._rate

    def try_acquire(self) -> bool:
        """Take a token if one is available right now."""
        with self._lock:
            self._refill()
            if self._tokens >= 1:
                self._tokens -= 1
                return True
            return False

    def acquire(self, cancel_token: CancellationToken | None = None) -> float:
        """
        Block until a token is available and take it.

        Args:
            cancel_token: Wakes the wait early; the acquire is then abandoned

        Returns:
            Seconds spent waiting

        Raises:
            OperationCancelled: If cancel_token fired while waiting
        """
        waited = 0.0
        while True:
            with self._lock:
                self._refill()
                if self._tokens >= 1:
                    self._tokens -= 1
                    return waited
                delay = (1 - self._tokens) / self._rate

            if cancel_token is None:
                self._sleep(delay)
            elif cancel_token.wait(delay):
                raise OperationCancelled(cancel_token.reason or "cancelled")
            waited += delay

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(0.0, now - self._updated)
        self._tokens = min(self._capacity, self._tokens + elapsed * self._rate)
        self._updated = now
