"""Per-provider sliding-window rate limiting.

Local, in-process accounting: each provider has its own window and windows
are never shared. ``reserve`` checks and records in one synchronous step, so
with a single event loop two concurrent requests cannot both take the last
slot. Nothing is coordinated across processes.
"""

from __future__ import annotations

import logging
import time
from collections import deque
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from llm_relay.config import RateLimitConfig
from llm_relay.exceptions import RateLimitError
from llm_relay.types import RateLimitStatus

logger = logging.getLogger(__name__)


class RateLimitWindow:
    """Rolling request log for one provider."""

    def __init__(self, requests: int, window_seconds: float = 60.0) -> None:
        self.requests = requests
        self.window_seconds = window_seconds
        self._hits: deque[float] = deque()

    def _prune(self, now: float) -> None:
        cutoff = now - self.window_seconds
        while self._hits and self._hits[0] <= cutoff:
            self._hits.popleft()

    def status(self, now: float) -> RateLimitStatus:
        """Return the window state at monotonic time ``now``."""
        self._prune(now)
        used = len(self._hits)
        # The window frees its next slot when the oldest hit ages out.
        frees_in = (self._hits[0] + self.window_seconds - now) if self._hits else self.window_seconds
        return RateLimitStatus(
            limit=self.requests,
            used=used,
            remaining=max(0, self.requests - used),
            reset_at=datetime.now(timezone.utc) + timedelta(seconds=max(0.0, frees_in)),
            window_seconds=self.window_seconds,
        )

    def hit(self, now: float) -> None:
        """Record one dispatched request at ``now``."""
        self._hits.append(now)


class RateLimiter:
    """Owns one :class:`RateLimitWindow` per configured provider.

    Providers without a window (and without a default) are unlimited.
    """

    def __init__(
        self,
        default: RateLimitConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._default = default
        self._clock = clock
        self._windows: dict[str, RateLimitWindow] = {}

    def configure(self, provider: str, requests: int, window_seconds: float = 60.0) -> None:
        """Install (or replace) the window for ``provider``."""
        self._windows = {
            **self._windows,
            provider: RateLimitWindow(requests, window_seconds),
        }
        logger.debug(
            "Configured rate limit",
            extra={"provider": provider, "requests": requests, "window_seconds": window_seconds},
        )

    def configure_from(self, provider: str, limit: RateLimitConfig | None) -> None:
        """Install ``limit``, or the default limit, or nothing."""
        limit = limit or self._default
        if limit is None:
            self.remove(provider)
            return
        self.configure(provider, limit.requests, limit.window_seconds)

    def remove(self, provider: str) -> None:
        """Drop the provider's window, making it unlimited."""
        if provider in self._windows:
            self._windows = {k: v for k, v in self._windows.items() if k != provider}

    def check_rate_limit(self, provider: str) -> RateLimitStatus:
        """Read-only status of ``provider``'s window."""
        window = self._windows.get(provider)
        if window is None:
            return RateLimitStatus()
        return window.status(self._clock())

    def reserve(self, provider: str) -> RateLimitStatus:
        """Take one slot in ``provider``'s window.

        Raises:
            RateLimitError: If the window is exhausted; carries ``reset_at``.
        """
        window = self._windows.get(provider)
        if window is None:
            return RateLimitStatus()

        now = self._clock()
        status = window.status(now)
        if status.exhausted:
            assert status.reset_at is not None
            raise RateLimitError(provider, status.reset_at)
        window.hit(now)
        return window.status(now)
