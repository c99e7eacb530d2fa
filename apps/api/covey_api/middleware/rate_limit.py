"""In-process sliding window limiter used to throttle town creation."""

from __future__ import annotations

from collections import defaultdict, deque
import threading
import time


class SlidingWindowLimiter:
    """Allows at most ``max_events`` per key within ``window_seconds``."""

    def __init__(self, *, max_events: int, window_seconds: int, clock=time.monotonic) -> None:
        self.max_events = max(1, int(max_events))
        self.window_seconds = max(1, int(window_seconds))
        self._clock = clock
        self._events: dict[str, deque[float]] = defaultdict(deque)
        self._lock = threading.Lock()

    def allow(self, key: str) -> bool:
        now = self._clock()
        cutoff = now - self.window_seconds
        with self._lock:
            events = self._events[key]
            while events and events[0] <= cutoff:
                events.popleft()
            if len(events) >= self.max_events:
                return False
            events.append(now)
            return True

    def reset(self) -> None:
        with self._lock:
            self._events.clear()
