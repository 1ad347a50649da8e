"""
api/limiter.py -- Request admission control.

Two limiters live here:

  RateLimiter -- the global per-client token bucket every request passes
      through (wired as HTTP middleware in api/main.py). Each client key
      (remote address) gets a bucket of `burst` tokens refilled continuously
      at `rps` tokens/second; a request consumes one token or is answered
      with 429. Buckets idle for longer than `idle_timeout` are dropped by
      sweep(), which a background task in the lifespan calls on a fixed
      interval so memory stays bounded under churny client populations.

  limiter -- the shared slowapi instance for per-route limits, used on the
      login endpoint as brute-force mitigation on top of the global bucket.
      A single shared instance is required: per-module instances would each
      get an isolated counter store and never trigger.

Concurrency: allow() runs on the event loop and sweep() in the background
task, but the bucket map is guarded by a threading.Lock so the limiter is
also safe to call from the threadpool. Each critical section is O(1) for
allow() and O(n) for sweep(); neither does I/O while holding the lock.

Failure policy: a bucket in an impossible state (negative balance, balance
above burst, clock going backwards) raises LimiterStateError in debug
builds. In production the bucket is reset, the event is logged, and the
request is ALLOWED -- availability wins over strictness for this guard.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

logger = logging.getLogger("marquee.limiter")

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")

# Re-exported so the middleware keys buckets exactly as slowapi keys routes.
client_key = get_remote_address


class LimiterStateError(RuntimeError):
    """A bucket was found in a state the refill arithmetic can never produce."""


@dataclass
class _Bucket:
    tokens: float
    last_seen: float  # clock() reading of the last refill


class RateLimiter:
    """Per-client token bucket with idle eviction.

    Usage:
        rl = RateLimiter(rps=2, burst=4)
        if not rl.allow(request.client.host):
            ...  # 429
        rl.sweep()  # periodically
    """

    def __init__(
        self,
        rps: float,
        burst: int,
        enabled: bool = True,
        idle_timeout: float = 180.0,
        debug: bool = False,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.rps = rps
        self.burst = burst
        self.enabled = enabled
        self.idle_timeout = idle_timeout
        self.debug = debug
        self._clock = clock
        self._buckets: dict[str, _Bucket] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._buckets)

    def allow(self, key: str) -> bool:
        """Consume one token for `key` if available. Returns False when the client must wait."""
        if not self.enabled:
            return True

        with self._lock:
            now = self._clock()
            bucket = self._buckets.get(key)
            if bucket is None:
                bucket = _Bucket(tokens=float(self.burst), last_seen=now)
                self._buckets[key] = bucket

            elapsed = now - bucket.last_seen
            if elapsed < 0 or not 0 <= bucket.tokens <= self.burst:
                return self._recover(key, now)

            # The refilled balance is kept even on denial, so last_seen moves
            # forward with it and the same interval is never credited twice.
            bucket.tokens = min(float(self.burst), bucket.tokens + elapsed * self.rps)
            bucket.last_seen = now

            if bucket.tokens >= 1:
                bucket.tokens -= 1
                return True
            return False

    def retry_after(self, key: str) -> int:
        """Whole seconds until `key` will have a token again (at least 1)."""
        if self.rps <= 0:
            return max(1, int(self.idle_timeout))
        with self._lock:
            bucket = self._buckets.get(key)
            missing = 1 - bucket.tokens if bucket is not None else 0
        return max(1, int(missing / self.rps + 0.999))

    def sweep(self) -> int:
        """Drop buckets idle for longer than idle_timeout. Returns the number removed."""
        with self._lock:
            cutoff = self._clock() - self.idle_timeout
            stale = [key for key, bucket in self._buckets.items() if bucket.last_seen < cutoff]
            for key in stale:
                del self._buckets[key]
        if stale:
            logger.debug("Evicted %d idle rate limiter bucket(s)", len(stale))
        return len(stale)

    def _recover(self, key: str, now: float) -> bool:
        # Caller holds self._lock.
        if self.debug:
            raise LimiterStateError(f"corrupt rate limiter bucket for {key!r}")
        logger.error("Corrupt rate limiter bucket for %s; resetting and allowing the request", key)
        self._buckets[key] = _Bucket(tokens=float(self.burst) - 1, last_seen=now)
        return True


def build_rate_limiter() -> RateLimiter:
    """Construct the global RateLimiter from Settings."""
    settings = get_settings()
    return RateLimiter(
        rps=settings.limiter_rps,
        burst=settings.limiter_burst,
        enabled=settings.limiter_enabled,
        idle_timeout=settings.limiter_idle_seconds,
        debug=settings.debug,
    )
