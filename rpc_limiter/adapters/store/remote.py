"""Store backed by one remote counter object per key.

Every key is routed to its own object, which serializes its own calls and
owns its own expiry alarm, so no locking happens on this side.
"""

from __future__ import annotations

from typing import Protocol

from rpc_limiter.adapters.store.base import ClientRateLimitInfo, Store


class CounterObjectStub(Protocol):
    """Client-side handle on a single counter object."""

    async def value(self) -> ClientRateLimitInfo | None: ...

    async def update(self, hits: int, window_ms: int) -> ClientRateLimitInfo: ...

    async def reset(self) -> None: ...


class ObjectNamespace(Protocol):
    """Maps names to object ids and ids to object stubs."""

    def id_from_name(self, name: str) -> str: ...

    def get(self, object_id: str) -> CounterObjectStub: ...


class RemoteObjectStore(Store):
    """Store delegating each key to an isolated counter object.

    Counters are shared by every limiter talking to the same namespace, so
    ``local_keys`` is False.
    """

    local_keys = False

    def __init__(self, namespace: ObjectNamespace, *, prefix: str = "rl:") -> None:
        """Initialize the store.

        Args:
            namespace: Object namespace hosting the counter objects.
            prefix: Text prepended to every key before it is mapped to an id.
        """
        super().__init__()
        self.namespace = namespace
        self.prefix = prefix

    def _stub(self, key: str) -> CounterObjectStub:
        return self.namespace.get(self.namespace.id_from_name(f"{self.prefix}{key}"))

    async def get(self, key: str) -> ClientRateLimitInfo | None:
        return await self._stub(key).value()

    async def increment(self, key: str) -> ClientRateLimitInfo:
        window_ms = self._require_window()
        return await self._stub(key).update(1, window_ms)

    async def decrement(self, key: str) -> None:
        window_ms = self._require_window()
        await self._stub(key).update(-1, window_ms)

    async def reset_key(self, key: str) -> None:
        await self._stub(key).reset()

    async def shutdown(self) -> None:
        close = getattr(self.namespace, "close", None)
        if callable(close):
            await close()
