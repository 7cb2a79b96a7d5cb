"""In-process fixed-window fallback table.

Notes:
- Per-process only: running multiple workers multiplies the effective limit,
  which is why the engine never uses this table in production when Redis
  fails.
- Thread-safe: request-path mutations and the periodic sweep share one lock.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable

from gatekeeper.adapters.rate_limit.base import FallbackResult

logger = logging.getLogger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class RateLimitEntry:
    count: int
    reset_at_ms: int


class InMemoryFallbackTable:
    """Local fixed-window counters with a background sweeper.

    Windows start at the first request for a key (not on wall-clock
    boundaries), mirroring how Redis counters start with their first INCR.

    The sweeper is a daemon thread started on construction; call ``close()``
    on shutdown. Pass ``sweep_interval_seconds=None`` to manage sweeps
    manually (tests do this together with an injected ``clock``).
    """

    def __init__(
        self,
        *,
        sweep_interval_seconds: float | None = 60.0,
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        """Initialize the fallback table.

        Args:
            sweep_interval_seconds: Seconds between sweeps, or None to disable
                the background thread.
            clock: Time source returning UNIX time in milliseconds.

        Raises:
            ValueError: If sweep_interval_seconds is not positive.
        """
        if sweep_interval_seconds is not None and sweep_interval_seconds <= 0:
            raise ValueError("sweep_interval_seconds must be > 0")

        self._clock = clock
        self._lock = threading.RLock()
        self._entries: dict[str, RateLimitEntry] = {}
        self._sweep_interval = sweep_interval_seconds
        self._stop = threading.Event()
        self._sweeper: threading.Thread | None = None

        if sweep_interval_seconds is not None:
            self._sweeper = threading.Thread(
                target=self._run_sweeper,
                name="ratelimit-fallback-sweeper",
                daemon=True,
            )
            self._sweeper.start()

    @property
    def clock(self) -> Callable[[], int]:
        return self._clock

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def increment_and_check(self, key: str, window_ms: int, limit: int) -> FallbackResult:
        """Count one request for ``key`` and report the window state.

        Args:
            key: Namespaced client key.
            window_ms: Window length used when a new window starts.
            limit: Requests allowed per window, used for ``remaining``.

        Returns:
            FallbackResult with the post-increment count.
        """
        now = self._clock()

        with self._lock:
            entry = self._entries.get(key)
            if entry is None or entry.reset_at_ms <= now:
                entry = RateLimitEntry(count=0, reset_at_ms=now + window_ms)
                self._entries[key] = entry

            entry.count += 1
            return FallbackResult(
                count=entry.count,
                remaining=max(0, limit - entry.count),
                reset_at_ms=entry.reset_at_ms,
            )

    def sweep(self) -> int:
        """Drop entries whose window has ended.

        Returns:
            Number of entries removed.
        """
        now = self._clock()
        with self._lock:
            expired = [k for k, entry in self._entries.items() if entry.reset_at_ms <= now]
            for key in expired:
                del self._entries[key]

        if expired:
            logger.debug(
                "rate_limit.fallback_swept",
                extra={"removed": len(expired), "size": len(self)},
            )
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def close(self) -> None:
        """Stop the background sweeper; safe to call more than once."""
        self._stop.set()
        if self._sweeper is not None and self._sweeper is not threading.current_thread():
            self._sweeper.join(timeout=1.0)
        self._sweeper = None

    def _run_sweeper(self) -> None:
        assert self._sweep_interval is not None
        while not self._stop.wait(self._sweep_interval):
            self.sweep()
