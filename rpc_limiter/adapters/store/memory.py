"""In-memory fixed-window hit counter store.

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
- Thread-safe: each key is guarded by one of a fixed pool of striped locks,
  so unrelated keys rarely contend and the pool never grows.
- Expiry is checked on every access; a background sweep additionally drops
  expired windows so idle keys do not accumulate.
"""

from __future__ import annotations

import logging
import time
import zlib
from contextlib import ExitStack
from dataclasses import dataclass
from threading import Lock
from typing import Callable

from rpc_limiter.adapters.store.base import ClientRateLimitInfo, Store, StoreOptions
from rpc_limiter.adapters.store.scheduler import PeriodicTask

logger = logging.getLogger(__name__)

_LOCK_STRIPES = 64


@dataclass
class _CounterState:
    total_hits: int
    reset_time: float


class MemoryStore(Store):
    """Store keeping every counter in a dict owned by this instance.

    Important:
        This store is per-process only. If the API runs with multiple
        workers, each worker enforces its own independent limits.
    """

    local_keys = True

    def __init__(
        self,
        *,
        prefix: str = "",
        sweep: bool = True,
        sweep_interval_ms: int | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the in-memory store.

        Args:
            prefix: Text prepended to keys (diagnostics only for this store).
            sweep: Whether to run the background sweep once initialized.
            sweep_interval_ms: Sweep period; defaults to the window length.
            clock: Time source returning UNIX time in seconds.
        """
        super().__init__()
        if sweep_interval_ms is not None and sweep_interval_ms < 1:
            raise ValueError("sweep_interval_ms must be >= 1")

        self.prefix = prefix
        self._clock = clock
        self._sweep_enabled = sweep
        self._sweep_interval_ms = sweep_interval_ms
        self._sweeper: PeriodicTask | None = None
        self._locks = [Lock() for _ in range(_LOCK_STRIPES)]
        self._state_by_key: dict[str, _CounterState] = {}

    def init(self, options: StoreOptions) -> None:
        if options.window_ms < 1:
            raise ValueError("window_ms must be >= 1")
        if self.window_ms is not None and self.window_ms != options.window_ms:
            logger.debug(
                "store.window_changed",
                extra={"store": "memory", "old_window_ms": self.window_ms, "window_ms": options.window_ms},
            )
        super().init(options)

        if self._sweep_enabled and self._sweeper is None:
            interval_ms = self._sweep_interval_ms or options.window_ms
            self._sweeper = PeriodicTask(
                self.sweep,
                interval_seconds=interval_ms / 1000,
                name="memory-store-sweep",
            )
            self._sweeper.start()

    def _lock_for(self, key: str) -> Lock:
        return self._locks[zlib.crc32(key.encode()) % _LOCK_STRIPES]

    def _live_state(self, key: str, now: float) -> _CounterState | None:
        state = self._state_by_key.get(key)
        if state is None or state.reset_time <= now:
            return None
        return state

    async def get(self, key: str) -> ClientRateLimitInfo | None:
        with self._lock_for(key):
            state = self._live_state(key, self._clock())
            if state is None:
                return None
            return ClientRateLimitInfo(total_hits=state.total_hits, reset_time=state.reset_time)

    async def increment(self, key: str) -> ClientRateLimitInfo:
        window_ms = self._require_window()

        with self._lock_for(key):
            now = self._clock()
            state = self._state_by_key.get(key)
            if state is None:
                state = _CounterState(total_hits=0, reset_time=now + window_ms / 1000)
                self._state_by_key[key] = state
            elif state.reset_time <= now:
                state.total_hits = 0
                state.reset_time = now + window_ms / 1000

            state.total_hits += 1
            return ClientRateLimitInfo(total_hits=state.total_hits, reset_time=state.reset_time)

    async def decrement(self, key: str) -> None:
        with self._lock_for(key):
            state = self._live_state(key, self._clock())
            if state is not None:
                state.total_hits = max(0, state.total_hits - 1)

    async def reset_key(self, key: str) -> None:
        with self._lock_for(key):
            self._state_by_key.pop(key, None)

    async def reset_all(self) -> None:
        with ExitStack() as stack:
            for lock in self._locks:
                stack.enter_context(lock)
            self._state_by_key.clear()

    def sweep(self) -> int:
        """Drop every expired window. Returns the number of keys removed."""
        now = self._clock()
        removed = 0
        for key in list(self._state_by_key):
            with self._lock_for(key):
                state = self._state_by_key.get(key)
                if state is not None and state.reset_time <= now:
                    del self._state_by_key[key]
                    removed += 1

        if removed:
            logger.debug("store.sweep", extra={"store": "memory", "removed": removed})
        return removed

    async def shutdown(self) -> None:
        if self._sweeper is not None:
            self._sweeper.stop()
            self._sweeper = None
        await self.reset_all()

    def __len__(self) -> int:
        return len(self._state_by_key)
