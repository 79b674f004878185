# FILE: converter/pipeline/cancellation.py
"""
Cooperative cancellation for one conversion session.

The transport passes a disconnect check (Starlette's Request.is_disconnected). The
orchestrator calls checkpoint() before every oracle call and before every event it
emits. An oracle call already in flight is never interrupted; the session stops at
the next checkpoint after the client has gone.

The same token carries the session's wall-clock deadline.
"""

from __future__ import annotations

import logging
import time
from typing import Awaitable, Callable, Optional

from converter.errors import SessionCancelled, SessionTimedOut

logger = logging.getLogger(__name__)

DisconnectCheck = Callable[[], Awaitable[bool]]


class CancellationToken:
    def __init__(
        self,
        is_disconnected: Optional[DisconnectCheck] = None,
        timeout_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._is_disconnected = is_disconnected
        self._clock = clock
        self._deadline = clock() + timeout_seconds if timeout_seconds else None
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def expired(self) -> bool:
        return self._deadline is not None and self._clock() >= self._deadline

    async def checkpoint(self, label: str = "") -> None:
        if not self._cancelled and self._is_disconnected is not None and await self._is_disconnected():
            logger.info("[cancel] Client disconnected (checkpoint=%s)", label or "-")
            self._cancelled = True
        if self._cancelled:
            raise SessionCancelled(label)
        if self.expired:
            logger.warning("[cancel] Session deadline passed (checkpoint=%s)", label or "-")
            raise SessionTimedOut(label)
