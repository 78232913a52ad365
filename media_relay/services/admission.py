"""Admission control for new transcription sessions.

Two advisory gates, both evaluated synchronously before any session
resources are allocated:

* a sliding-window rate limiter on admission attempts, and
* a hard cap on concurrently open sessions.

Neither gate holds a lock across session creation.  Every read-modify-write
of the window or the counter completes without an ``await`` in between, which
is all the single-threaded event loop needs.
"""
from __future__ import annotations

import logging
import time
from collections import deque
from typing import Callable, Deque, Optional

from media_relay.errors import AdmissionRejected

logger = logging.getLogger(__name__)


def _monotonic_ms() -> float:
    return time.monotonic() * 1000.0


class SessionLease:
    """One admitted slot in the concurrency counter.

    ``release()`` gives the slot back exactly once; later calls are no-ops.
    """

    def __init__(self, controller: "AdmissionController") -> None:
        self._controller = controller
        self.released = False

    def release(self) -> None:
        if self.released:
            return
        self.released = True
        self._controller._release()


class AdmissionController:
    def __init__(
        self,
        rate_limit_max: int = 10,
        window_ms: int = 1000,
        max_sessions: int = 20,
        clock: Callable[[], float] = _monotonic_ms,
    ) -> None:
        self.rate_limit_max = rate_limit_max
        self.window_ms = window_ms
        self.max_sessions = max_sessions
        self._clock = clock
        self._window: Deque[float] = deque()

        self.active_sessions = 0
        self.sessions_admitted = 0
        self.rejected_requests = 0
        self.rejected_sessions = 0

    @property
    def window_size(self) -> int:
        return len(self._window)

    def allow_request(self, now: Optional[float] = None) -> bool:
        """Record an admission attempt at *now* (ms) and rate-check it."""
        if now is None:
            now = self._clock()
        self._window.append(now)
        while self._window and now - self._window[0] > self.window_ms:
            self._window.popleft()
        if len(self._window) > self.rate_limit_max:
            self.rejected_requests += 1
            return False
        return True

    def allow_session(self) -> bool:
        return self.active_sessions < self.max_sessions

    def admit(self, now: Optional[float] = None) -> None:
        if not self.allow_request(now):
            logger.warning("Rate limit hit: %d attempts in %d ms", len(self._window), self.window_ms)
            raise AdmissionRejected("rate")

    def acquire_session(self) -> SessionLease:
        if not self.allow_session():
            self.rejected_sessions += 1
            logger.warning("Session cap reached (%d active)", self.active_sessions)
            raise AdmissionRejected("concurrency")
        self.active_sessions += 1
        self.sessions_admitted += 1
        return SessionLease(self)

    def _release(self) -> None:
        if self.active_sessions <= 0:
            logger.error("Session counter release with no active sessions")
            return
        self.active_sessions -= 1
