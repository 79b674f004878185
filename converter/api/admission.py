# FILE: converter/api/admission.py
"""
Admission control for conversion streams.

ConcurrencyLimiter  - process-wide ceiling on active sessions. At the ceiling a
                      request is rejected immediately (503 + Retry-After), never
                      queued. A granted slot is a SessionLease released exactly
                      once, however the stream ends.
RateLimiter         - per-client sliding window (429 + retryAfter seconds). Keys idle
                      for a whole window are swept from check() once per window.

Both are the only shared mutable state between sessions.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from collections import deque
from contextlib import contextmanager
from typing import Callable, Deque, Dict, Iterator, Optional

from converter.config import (
    BUSY_RETRY_AFTER_SECONDS,
    MAX_CONCURRENT_CONVERSIONS,
    RATE_LIMIT_MAX_REQUESTS,
    RATE_LIMIT_WINDOW_SECONDS,
)
from converter.errors import AdmissionRejected, RateLimited

logger = logging.getLogger(__name__)


class SessionLease:
    def __init__(self, limiter: "ConcurrencyLimiter"):
        self._limiter = limiter
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> None:
        if self._released:
            return
        self._released = True
        self._limiter._release()

    def __enter__(self) -> "SessionLease":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()


class ConcurrencyLimiter:
    def __init__(self, max_active: int = MAX_CONCURRENT_CONVERSIONS, retry_after: int = BUSY_RETRY_AFTER_SECONDS):
        self.max_active = max_active
        self.retry_after = retry_after
        self._active = 0
        self._lock = threading.Lock()

    @property
    def active(self) -> int:
        return self._active

    def acquire(self) -> SessionLease:
        with self._lock:
            if self._active >= self.max_active:
                logger.warning("[admission] Rejecting conversion: %d/%d active", self._active, self.max_active)
                raise AdmissionRejected(self.max_active, retry_after=self.retry_after)
            self._active += 1
            logger.info("[admission] Slot acquired (%d/%d active)", self._active, self.max_active)
        return SessionLease(self)

    def _release(self) -> None:
        with self._lock:
            self._active = max(0, self._active - 1)
            logger.info("[admission] Slot released (%d/%d active)", self._active, self.max_active)

    @contextmanager
    def slot(self) -> Iterator[SessionLease]:
        lease = self.acquire()
        try:
            yield lease
        finally:
            lease.release()


class RateLimiter:
    def __init__(
        self,
        max_requests: int = RATE_LIMIT_MAX_REQUESTS,
        window_seconds: int = RATE_LIMIT_WINDOW_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._hits: Dict[str, Deque[float]] = {}
        self._lock = threading.Lock()
        self._last_sweep = clock()

    def check(self, key: str) -> None:
        """Count one request for `key`, raising RateLimited when the window is full."""
        now = self._clock()
        with self._lock:
            if now - self._last_sweep >= self.window_seconds:
                self._sweep(now)
            hits = self._hits.setdefault(key, deque())
            while hits and now - hits[0] >= self.window_seconds:
                hits.popleft()
            if len(hits) >= self.max_requests:
                retry_after = max(1, math.ceil(self.window_seconds - (now - hits[0])))
                logger.warning("[ratelimit] %s exceeded %d requests", key, self.max_requests)
                raise RateLimited(self.max_requests, self.window_seconds, retry_after)
            hits.append(now)

    def cleanup(self) -> int:
        """Drop keys with no hits inside the window. Returns the number removed."""
        with self._lock:
            return self._sweep(self._clock())

    def _sweep(self, now: float) -> int:
        # caller holds self._lock
        stale = [k for k, hits in self._hits.items() if not hits or now - hits[-1] >= self.window_seconds]
        for k in stale:
            del self._hits[k]
        self._last_sweep = now
        if stale:
            logger.debug("[ratelimit] Swept %d idle keys", len(stale))
        return len(stale)


_limiter: Optional[ConcurrencyLimiter] = None
_rate_limiter: Optional[RateLimiter] = None


def get_limiter() -> ConcurrencyLimiter:
    global _limiter
    if _limiter is None:
        _limiter = ConcurrencyLimiter()
    return _limiter


def get_rate_limiter() -> RateLimiter:
    global _rate_limiter
    if _rate_limiter is None:
        _rate_limiter = RateLimiter()
    return _rate_limiter
