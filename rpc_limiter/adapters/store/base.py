"""Hit counter store interfaces.

The limiter depends on this abstraction (not on a concrete backend) so the
counters can live in-process or in an external per-key object host without
changes to the request flow.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from rpc_limiter.core.errors import ConfigurationAppError


@dataclass(frozen=True)
class ClientRateLimitInfo:
    """Snapshot of a client's counter.

    Attributes:
        total_hits: Hits counted since the current window opened.
        reset_time: UNIX epoch seconds at which the window expires, when known.
    """

    total_hits: int
    reset_time: float | None = None

    @property
    def reset_datetime(self) -> datetime | None:
        if self.reset_time is None:
            return None
        return datetime.fromtimestamp(self.reset_time, tz=timezone.utc)


@dataclass(frozen=True)
class StoreOptions:
    """Options pushed into a store before keys are touched for a window."""

    window_ms: int


class Store(ABC):
    """Interface that all hit counter stores implement.

    Attributes:
        local_keys: True when hits counted by this instance are invisible to
            other instances (e.g. other worker processes). Only used to
            diagnose double counting and multi-worker deployments.
        prefix: Text the store prepends to keys.
    """

    local_keys: bool = False
    prefix: str = ""

    def __init__(self) -> None:
        self.window_ms: int | None = None

    def init(self, options: StoreOptions) -> None:
        """Record the active window length.

        Idempotent for a repeated value. A different value only affects
        windows opened afterwards; a window that is already running keeps its
        scheduled expiry. The value is shared by all keys, so callers serving
        paths with different windows call init() right before increment()
        without awaiting in between.
        """
        self.window_ms = options.window_ms

    def _require_window(self) -> int:
        if self.window_ms is None:
            raise ConfigurationAppError(
                code="store_not_initialized",
                message=f"{type(self).__name__} used before init() set the window length",
            )
        return self.window_ms

    @abstractmethod
    async def get(self, key: str) -> ClientRateLimitInfo | None:
        """Fetch a client's hit count and reset time without mutating it."""
        raise NotImplementedError

    @abstractmethod
    async def increment(self, key: str) -> ClientRateLimitInfo:
        """Count one hit for ``key``, opening a new window when the last one expired.

        Must be atomic per key: concurrent increments never lose updates.
        """
        raise NotImplementedError

    @abstractmethod
    async def decrement(self, key: str) -> None:
        """Undo one hit for ``key``. The counter never goes below zero."""
        raise NotImplementedError

    @abstractmethod
    async def reset_key(self, key: str) -> None:
        """Force ``key`` back to the zero state immediately."""
        raise NotImplementedError

    async def reset_all(self) -> None:
        """Reset every key tracked by the store."""
        raise NotImplementedError(f"{type(self).__name__} does not support reset_all()")

    async def shutdown(self) -> None:
        """Stop timers and release resources."""


def is_valid_store(value: Any) -> bool:
    """Basic shape check for objects handed in as stores."""
    return value is not None and callable(getattr(value, "increment", None))


def init_store(store: Any, options: StoreOptions) -> None:
    """Validate ``store`` and push ``options`` into it.

    Raises:
        ConfigurationAppError: If the store lacks an ``increment`` method.
    """
    if not is_valid_store(store):
        raise ConfigurationAppError(
            code="invalid_store",
            message="The store is not correctly implemented: missing increment()",
        )
    init = getattr(store, "init", None)
    if callable(init):
        init(options)
