"""In-memory sliding-window rate limiter for public form submissions."""

from __future__ import annotations

import asyncio
import time
from collections import OrderedDict, deque
from typing import Callable


def sliding_window_admit(
    events: deque[float], now: float, window_seconds: float, max_requests: int
) -> bool:
    """Prune *events* to the trailing window and record *now* if under the limit."""
    cutoff = now - window_seconds
    while events and events[0] <= cutoff:
        events.popleft()
    if len(events) >= max_requests:
        return False
    events.append(now)
    return True


class RateWindowStore:
    """Per-identifier event windows, capped to the most recently used identifiers."""

    def __init__(self, max_identifiers: int = 10000) -> None:
        self.max_identifiers = max(1, max_identifiers)
        self._windows: OrderedDict[str, deque[float]] = OrderedDict()

    def __len__(self) -> int:
        return len(self._windows)

    def __contains__(self, identifier: str) -> bool:
        return identifier in self._windows

    def window(self, identifier: str) -> deque[float]:
        events = self._windows.get(identifier)
        if events is None:
            events = deque()
            self._windows[identifier] = events
            while len(self._windows) > self.max_identifiers:
                self._windows.popitem(last=False)
        else:
            self._windows.move_to_end(identifier)
        return events

    def peek(self, identifier: str) -> deque[float] | None:
        return self._windows.get(identifier)

    def clear(self) -> None:
        self._windows.clear()


class SlidingWindowRateLimiter:
    """Sliding-window limiter over an injected ``RateWindowStore``."""

    def __init__(
        self,
        max_requests: int = 10,
        window_seconds: float = 60,
        store: RateWindowStore | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.store = store if store is not None else RateWindowStore()
        self._clock = clock
        self._lock = asyncio.Lock()

    async def admit(self, identifier: str, now: float | None = None) -> bool:
        if now is None:
            now = self._clock()
        async with self._lock:
            return sliding_window_admit(
                self.store.window(identifier), now, self.window_seconds, self.max_requests
            )

    def retry_after(self, identifier: str, now: float | None = None) -> int:
        """Seconds until *identifier* gets a free slot (0 when one is free)."""
        if now is None:
            now = self._clock()
        events = self.store.peek(identifier)
        if not events or len(events) < self.max_requests:
            return 0
        return max(1, int(events[0] + self.window_seconds - now))

    def reset(self) -> None:
        self.store.clear()
