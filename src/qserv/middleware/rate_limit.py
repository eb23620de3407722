"""
=============================================================================
RATE LIMITING (TOKEN BUCKET)
=============================================================================

Limits how fast each client may make requests, protecting the server
from a single client hammering it.

=============================================================================
TOKEN BUCKET
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                                                                      │
    │      refill: requests_per_second tokens/s                            │
    │               │                                                      │
    │               ▼                                                      │
    │          ┌─────────┐                                                 │
    │          │ ● ● ● ● │  capacity = burst                               │
    │          │ ● ● ● ● │                                                 │
    │          └────┬────┘                                                 │
    │               │ each request takes one token                         │
    │               ▼                                                      │
    │        token? ──yes──► allowed                                       │
    │          │                                                           │
    │          no ─────────► 429 Too Many Requests                         │
    │                        Retry-After: seconds until the next token     │
    └─────────────────────────────────────────────────────────────────────┘

A fresh client starts with a full bucket, so `burst` requests go through
instantly; after that one more is allowed every 1/requests_per_second.

=============================================================================
LOCKING
=============================================================================

The bucket map is shared by every worker thread. Each bucket carries its
own lock, so clients never wait on each other:

    _buckets = {
        "203.0.113.9":  _Entry(bucket, lock),   ← only requests from .9
        "198.51.100.4": _Entry(bucket, lock),   ← only requests from .4
    }

The map-level lock is taken only to insert a new client or to sweep
idle ones, never while a token is being consumed.

=============================================================================
"""

import math
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional, Tuple

from .base import Continue, Stage, StageOutcome, Terminate
from ..http.request import HTTPRequest
from ..http.status_codes import HTTPStatus


Clock = Callable[[], float]


@dataclass
class TokenBucket:
    """
    One client's bucket.

    Not thread-safe on its own; RateLimiter guards each bucket with a
    per-client lock.
    """

    max_tokens: float
    tokens_per_second: float
    clock: Clock = field(default=time.monotonic, repr=False)
    tokens: float = field(default=-1.0)
    last_update: float = field(default=-1.0)

    def __post_init__(self):
        # a new bucket starts full
        if self.tokens < 0:
            self.tokens = self.max_tokens
        if self.last_update < 0:
            self.last_update = self.clock()

    def consume(self, tokens: float = 1.0) -> bool:
        """Take `tokens` if available. Returns False when the client must wait."""
        self._refill()
        if self.tokens >= tokens:
            self.tokens -= tokens
            return True
        return False

    def _refill(self):
        now = self.clock()
        elapsed = max(0.0, now - self.last_update)
        self.tokens = min(self.max_tokens, self.tokens + elapsed * self.tokens_per_second)
        self.last_update = now

    @property
    def available_tokens(self) -> float:
        self._refill()
        return self.tokens

    def time_until_available(self, tokens: float = 1.0) -> float:
        """Seconds until `tokens` can be consumed (0 if they already can)."""
        self._refill()
        if self.tokens >= tokens:
            return 0.0
        return (tokens - self.tokens) / self.tokens_per_second

    def idle_for(self) -> float:
        return self.clock() - self.last_update


@dataclass
class _Entry:
    bucket: TokenBucket
    lock: threading.Lock = field(default_factory=threading.Lock)


class RateLimiter(Stage):
    """
    Per-client token-bucket rate limiting.

    Allowed requests get X-RateLimit-Limit / X-RateLimit-Remaining
    headers; denied ones terminate with 429 and Retry-After.

        limiter = RateLimiter(requests_per_second=10, burst=20)
        limiter.allow("203.0.113.9")   # True for the first 20 calls
    """

    def __init__(
        self,
        requests_per_second: float = 10.0,
        burst: int = 20,
        enabled: bool = True,
        trust_proxy: bool = False,
        bucket_ttl: float = 300.0,
        cleanup_interval: float = 60.0,
        clock: Clock = time.monotonic,
    ):
        """
        Args:
            requests_per_second: Sustained rate (bucket refill rate).
            burst: Bucket capacity.
            enabled: When False every request is allowed.
            trust_proxy: Key clients by X-Forwarded-For.
            bucket_ttl: Evict buckets idle for longer than this.
            cleanup_interval: Minimum seconds between eviction sweeps.
            clock: Monotonic time source (injectable for tests).
        """
        self.requests_per_second = requests_per_second
        self.burst = burst
        self.enabled = enabled
        self.trust_proxy = trust_proxy
        self.bucket_ttl = bucket_ttl
        self.cleanup_interval = cleanup_interval
        self._clock = clock

        self._buckets: Dict[str, _Entry] = {}
        self._map_lock = threading.Lock()
        self._last_cleanup = clock()

    def check(self, request: HTTPRequest) -> StageOutcome:
        if not self.enabled:
            return Continue()

        key = request.remote_ip(self.trust_proxy)
        allowed, remaining, retry_after = self._consume(key)

        if allowed:
            return Continue(headers={
                "X-RateLimit-Limit": str(self.burst),
                "X-RateLimit-Remaining": str(remaining),
            })

        return Terminate(
            status=HTTPStatus.TOO_MANY_REQUESTS,
            headers={
                "Retry-After": str(max(1, math.ceil(retry_after))),
                "X-RateLimit-Limit": str(self.burst),
                "X-RateLimit-Remaining": "0",
            },
            reason=f"rate limit exceeded for {key}",
        )

    def allow(self, key: str) -> bool:
        """Consume one token for `key`; True if the request may proceed."""
        if not self.enabled:
            return True
        return self._consume(key)[0]

    def _consume(self, key: str) -> Tuple[bool, int, float]:
        """
        Take one token from `key`'s bucket.

        Returns:
            (allowed, tokens remaining, seconds until the next token)
        """
        while True:
            entry = self._entry(key)
            with entry.lock:
                # a sweep may have evicted the entry before we locked it
                if self._buckets.get(key) is not entry:
                    continue
                if entry.bucket.consume():
                    return True, int(entry.bucket.tokens), 0.0
                return False, 0, entry.bucket.time_until_available()

    def _entry(self, key: str) -> _Entry:
        """Get or lazily create the bucket entry for `key`."""
        if self._clock() - self._last_cleanup > self.cleanup_interval:
            self._cleanup()

        entry = self._buckets.get(key)
        if entry is not None:
            return entry

        with self._map_lock:
            entry = self._buckets.get(key)
            if entry is None:
                entry = _Entry(TokenBucket(
                    max_tokens=self.burst,
                    tokens_per_second=self.requests_per_second,
                    clock=self._clock,
                ))
                self._buckets[key] = entry
            return entry

    def _cleanup(self):
        """Evict buckets idle for longer than bucket_ttl."""
        with self._map_lock:
            now = self._clock()
            if now - self._last_cleanup <= self.cleanup_interval:
                return  # another thread just swept
            for key, entry in list(self._buckets.items()):
                # skip buckets a request is using right now
                if not entry.lock.acquire(blocking=False):
                    continue
                try:
                    if entry.bucket.idle_for() > self.bucket_ttl:
                        del self._buckets[key]
                finally:
                    entry.lock.release()
            self._last_cleanup = now

    def reset(self, key: Optional[str] = None):
        """Forget one client's bucket, or every bucket."""
        with self._map_lock:
            if key is None:
                self._buckets.clear()
            else:
                self._buckets.pop(key, None)

    def __len__(self) -> int:
        return len(self._buckets)
