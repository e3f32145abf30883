"""Per-origin sliding-window limiter for the explicit refresh endpoint."""

from __future__ import annotations

import threading
import time
from collections import deque
from typing import Deque, Dict, Iterable, Optional, Tuple


class RefreshRateLimiter:
    """
    Sliding-window counters keyed by network origin.

    Process-local: each API worker counts on its own.
    """

    def __init__(self, clock=time.monotonic) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._hits: Dict[str, Deque[float]] = {}

    def hit(self, origin: str, windows: Iterable[Tuple[int, int]]) -> Optional[int]:
        """
        Record one refresh attempt from `origin`

        Args:
            origin: Normalized network origin
            windows: (limit, window_seconds) pairs, all of which must allow the hit

        Returns:
            None when allowed, otherwise seconds until the tightest window frees up
        """
        windows = list(windows)
        longest = max(window for _, window in windows)
        now = self._clock()

        with self._lock:
            hits = self._hits.setdefault(origin, deque())
            while hits and hits[0] <= now - longest:
                hits.popleft()

            retry_after = None
            for limit, window in windows:
                recent = [ts for ts in hits if ts > now - window]
                if len(recent) >= limit:
                    wait = int(recent[0] + window - now) + 1
                    retry_after = max(retry_after or 0, wait)
            if retry_after is not None:
                return retry_after

            hits.append(now)
            return None

    def reset(self, origin: Optional[str] = None) -> None:
        with self._lock:
            if origin is None:
                self._hits.clear()
            else:
                self._hits.pop(origin, None)


refresh_rate_limiter = RefreshRateLimiter()
