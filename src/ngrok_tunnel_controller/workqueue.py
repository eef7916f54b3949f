"""De-duplicating, rate-limited work queue for reconcile keys."""

from __future__ import annotations

import asyncio
from collections.abc import Hashable

# Per-key exponential backoff: 5 ms doubling up to 1000 s.
DEFAULT_BASE_DELAY = 0.005
DEFAULT_MAX_DELAY = 1000.0


class RateLimitingQueue:
    """Async work queue with the usual controller guarantees.

    - A key waiting in the queue is stored once, however often it is added.
    - A key is never handed to two workers at once; a key added while it is
      being processed is queued again when the worker calls ``done``.
    - ``add_rate_limited`` delays a key by an exponential per-key backoff that
      ``forget`` resets.

    All methods must be called from the event loop thread.
    """

    def __init__(self, base_delay: float = DEFAULT_BASE_DELAY, max_delay: float = DEFAULT_MAX_DELAY) -> None:
        self._base_delay = base_delay
        self._max_delay = max_delay
        self._ready: asyncio.Queue[Hashable | None] = asyncio.Queue()
        self._dirty: set[Hashable] = set()
        self._processing: set[Hashable] = set()
        self._failures: dict[Hashable, int] = {}
        self._timers: set[asyncio.TimerHandle] = set()
        self._shutting_down = False

    def __len__(self) -> int:
        return len(self._dirty - self._processing)

    @property
    def shutting_down(self) -> bool:
        return self._shutting_down

    def add(self, key: Hashable) -> None:
        if self._shutting_down or key in self._dirty:
            return
        self._dirty.add(key)
        if key in self._processing:
            return
        self._ready.put_nowait(key)

    async def get(self) -> Hashable | None:
        """Wait for the next key. Returns None once the queue is shut down."""
        key = await self._ready.get()
        if key is None:
            # Pass the shutdown marker on to the next waiting worker.
            self._ready.put_nowait(None)
            return None
        self._processing.add(key)
        self._dirty.discard(key)
        return key

    def done(self, key: Hashable) -> None:
        self._processing.discard(key)
        if key in self._dirty and not self._shutting_down:
            self._ready.put_nowait(key)

    def add_after(self, key: Hashable, delay: float) -> None:
        if self._shutting_down:
            return
        if delay <= 0:
            self.add(key)
            return
        loop = asyncio.get_running_loop()
        handle: asyncio.TimerHandle

        def fire() -> None:
            self._timers.discard(handle)
            self.add(key)

        handle = loop.call_later(delay, fire)
        self._timers.add(handle)

    def when(self, key: Hashable) -> float:
        """Return the backoff for ``key`` and count one more failure."""
        failures = self._failures.get(key, 0)
        self._failures[key] = failures + 1
        return min(self._base_delay * (2 ** min(failures, 64)), self._max_delay)

    def add_rate_limited(self, key: Hashable) -> None:
        self.add_after(key, self.when(key))

    def forget(self, key: Hashable) -> None:
        self._failures.pop(key, None)

    def num_requeues(self, key: Hashable) -> int:
        return self._failures.get(key, 0)

    def shut_down(self) -> None:
        """Stop accepting keys and release every worker blocked in ``get``."""
        self._shutting_down = True
        for handle in self._timers:
            handle.cancel()
        self._timers.clear()
        self._ready.put_nowait(None)
