"""Token bucket rate limiter shared between client instances."""

import asyncio
import logging
import time
from typing import Dict

logger = logging.getLogger(__name__)


class RateLimiter:
    """
    Token bucket rate limiter for API requests.

    A bucket holds at most ``tokens_per_interval`` tokens and refills
    continuously over ``interval_seconds``. ``acquire`` suspends the caller
    until a token is available; it never fails.

    The Krist server enforces its quotas per IP, so every client in the
    process should draw from the same bucket. Construct one explicitly and
    pass it to each client, or use ``RateLimiter.shared`` to get a named
    instance that lives for the rest of the process. The internal lock binds
    to the first event loop that contends it, so a shared limiter must only
    be used from one loop.
    """

    _shared: Dict[str, "RateLimiter"] = {}

    def __init__(self, tokens_per_interval: int, interval_seconds: float = 60.0):
        if tokens_per_interval < 1:
            raise ValueError("tokens_per_interval must be at least 1")
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")

        self.tokens_per_interval = tokens_per_interval
        self.interval_seconds = interval_seconds
        self.tokens = float(tokens_per_interval)
        self.last_update = time.monotonic()
        self.lock = asyncio.Lock()

    @classmethod
    def shared(cls, name: str, tokens_per_interval: int, interval_seconds: float = 60.0) -> "RateLimiter":
        """Return the process-wide limiter registered under ``name``, creating it on first use."""
        limiter = cls._shared.get(name)
        if limiter is None:
            limiter = cls(tokens_per_interval, interval_seconds)
            cls._shared[name] = limiter
            logger.debug(
                f"Created shared rate limiter '{name}': "
                f"{tokens_per_interval} per {interval_seconds}s"
            )
        return limiter

    @property
    def refill_rate(self) -> float:
        """Tokens added per second."""
        return self.tokens_per_interval / self.interval_seconds

    async def acquire(self):
        """Acquire a token, waiting until one is available."""
        async with self.lock:
            now = time.monotonic()
            elapsed = now - self.last_update

            # Add tokens based on elapsed time
            self.tokens = min(
                self.tokens_per_interval,
                self.tokens + elapsed * self.refill_rate
            )
            self.last_update = now

            if self.tokens >= 1:
                self.tokens -= 1
            else:
                # Wait until we have a token; holding the lock queues other callers
                wait_time = (1 - self.tokens) / self.refill_rate
                logger.debug(f"Rate limit reached, waiting {wait_time:.2f}s for a token")
                await asyncio.sleep(wait_time)
                self.tokens = 0
                self.last_update = time.monotonic()
