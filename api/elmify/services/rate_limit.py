"""In-process token-bucket rate limiting keyed by client IP and endpoint class."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable

logger = logging.getLogger(__name__)


class BucketType(str, Enum):
    STREAMING = "STREAMING"
    PLAYLIST = "PLAYLIST"
    ADMIN = "ADMIN"
    GENERAL = "GENERAL"


# Requests per minute for each endpoint class
BUCKET_LIMITS: dict[BucketType, int] = {
    BucketType.STREAMING: 10,
    BucketType.PLAYLIST: 30,
    BucketType.ADMIN: 5,
    BucketType.GENERAL: 100,
}

# Upper bound on tracked keys between sweeps
MAX_BUCKETS = 50_000


def classify_path(path: str) -> BucketType:
    """
    Map a request path to its endpoint class.

    Only stream-url issuance counts as STREAMING. The byte-range proxy stream
    sends many requests per playback and stays in GENERAL.

    Args:
        path: Request path without the query string

    Returns:
        The bucket type whose limit applies to the path
    """
    if "/stream-url" in path:
        return BucketType.STREAMING
    if path.startswith("/api/v1/playlists"):
        return BucketType.PLAYLIST
    if path.startswith("/api/v1/admin"):
        return BucketType.ADMIN
    return BucketType.GENERAL


@dataclass
class TokenBucket:
    """
    ``capacity`` tokens, fully refilled every ``refill_period`` seconds.

    Refill is interval based: tokens come back all at once when a period has
    elapsed rather than trickling in.
    """

    capacity: int
    refill_period: float = 60.0
    clock: Callable[[], float] = time.monotonic
    tokens: int = field(init=False)
    last_refill: float = field(init=False)

    def __post_init__(self) -> None:
        self.tokens = self.capacity
        self.last_refill = self.clock()

    def _refill(self) -> None:
        now = self.clock()
        elapsed = now - self.last_refill
        if elapsed >= self.refill_period:
            self.tokens = self.capacity
            # Keep refill boundaries aligned to whole periods
            self.last_refill = now - (elapsed % self.refill_period)

    def is_idle(self) -> bool:
        """True once a full period has passed, i.e. the bucket would be full again."""
        return self.clock() - self.last_refill >= self.refill_period

    def try_consume(self) -> bool:
        self._refill()
        if self.tokens > 0:
            self.tokens -= 1
            return True
        return False

    def retry_after(self) -> int:
        remaining = self.refill_period - (self.clock() - self.last_refill)
        return max(1, int(remaining + 0.999))


@dataclass
class RateLimitResult:
    allowed: bool
    remaining: int
    retry_after: int = 0


class RateLimiter:
    """
    Thread-safe map of token buckets.

    Buckets that have sat idle for a full period hold no state a fresh bucket
    would not, so they are swept once per period (or sooner when more than
    ``max_buckets`` keys are tracked).
    """

    def __init__(
        self,
        limits: dict[BucketType, int] | None = None,
        refill_period: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
        max_buckets: int = MAX_BUCKETS,
    ):
        self.limits = dict(limits or BUCKET_LIMITS)
        self.refill_period = refill_period
        self.clock = clock
        self.max_buckets = max_buckets
        self._buckets: dict[str, TokenBucket] = {}
        self._lock = threading.Lock()
        self._last_sweep = clock()

    def __len__(self) -> int:
        return len(self._buckets)

    def check(self, client_ip: str, bucket_type: BucketType) -> RateLimitResult:
        """
        Consume one request for a client in an endpoint class.

        Args:
            client_ip: Resolved client address
            bucket_type: Endpoint class from ``classify_path``

        Returns:
            RateLimitResult with the remaining tokens, or retry_after when blocked
        """
        return self.check_key(f"{client_ip}:{bucket_type.value}", self.limits[bucket_type])

    def check_key(self, key: str, limit: int) -> RateLimitResult:
        """
        Limit an arbitrary key (e.g. per-user) at ``limit`` requests per period.

        Args:
            key: Bucket key, e.g. ``"user:<clerkId>:PLAYLIST"``
            limit: Bucket capacity used when the key is first seen

        Returns:
            RateLimitResult with the remaining tokens, or retry_after when blocked
        """
        with self._lock:
            self._maybe_sweep()
            bucket = self._buckets.get(key)
            if bucket is None:
                bucket = TokenBucket(
                    capacity=limit, refill_period=self.refill_period, clock=self.clock
                )
                self._buckets[key] = bucket
            if bucket.try_consume():
                return RateLimitResult(allowed=True, remaining=bucket.tokens)
            retry_after = bucket.retry_after()

        logger.warning(f"Rate limit exceeded for {key}")
        return RateLimitResult(allowed=False, remaining=0, retry_after=retry_after)

    def _maybe_sweep(self) -> None:
        # Caller holds the lock
        now = self.clock()
        overfull = len(self._buckets) >= self.max_buckets
        if not overfull and now - self._last_sweep < self.refill_period:
            return
        self._last_sweep = now

        idle = [key for key, bucket in self._buckets.items() if bucket.is_idle()]
        for key in idle:
            del self._buckets[key]

        excess = len(self._buckets) - self.max_buckets + 1
        if excess > 0:
            # Still full of active keys: drop the oldest ones
            for key in list(self._buckets)[:excess]:
                del self._buckets[key]
            logger.warning(f"Rate limiter over capacity; dropped {excess} active buckets")
        if idle:
            logger.debug(f"Swept {len(idle)} idle rate limit buckets")

    def reset(self) -> None:
        with self._lock:
            self._buckets.clear()


rate_limiter = RateLimiter()
