"""Per-key counter objects and an in-process host for them.

Each key of a RemoteObjectStore is served by one ``CounterObject`` that
exclusively owns its storage and its expiry alarm. ``LocalObjectNamespace``
hosts such objects inside the current process: every call on one object runs
under that object's ``asyncio.Lock``, and alarms fire through the running
event loop. A networked object host only needs to expose the same
``id_from_name``/``get`` surface.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import time
from typing import Awaitable, Callable, Protocol

from rpc_limiter.adapters.store.base import ClientRateLimitInfo

logger = logging.getLogger(__name__)

_INITIAL_STATE = ClientRateLimitInfo(total_hits=0)


class ObjectStorage(Protocol):
    """Transactional key/value storage plus a single alarm slot."""

    async def get(self, name: str) -> ClientRateLimitInfo | None: ...

    async def put(self, name: str, value: ClientRateLimitInfo) -> None: ...

    async def get_alarm(self) -> float | None: ...

    async def set_alarm(self, timestamp: float) -> None: ...

    async def delete_alarm(self) -> None: ...


class InMemoryObjectStorage:
    """ObjectStorage kept in a dict; alarm changes are reported to a callback."""

    def __init__(self, on_alarm_change: Callable[[float | None], None] | None = None) -> None:
        self._values: dict[str, ClientRateLimitInfo] = {}
        self._alarm: float | None = None
        self._on_alarm_change = on_alarm_change

    async def get(self, name: str) -> ClientRateLimitInfo | None:
        return self._values.get(name)

    async def put(self, name: str, value: ClientRateLimitInfo) -> None:
        self._values[name] = value

    async def get_alarm(self) -> float | None:
        return self._alarm

    async def set_alarm(self, timestamp: float) -> None:
        self._alarm = timestamp
        if self._on_alarm_change is not None:
            self._on_alarm_change(timestamp)

    async def delete_alarm(self) -> None:
        self._alarm = None
        if self._on_alarm_change is not None:
            self._on_alarm_change(None)


class CounterObject:
    """Owns one key's hit counter and its expiry alarm."""

    def __init__(self, storage: ObjectStorage, *, clock: Callable[[], float] = time.time) -> None:
        self.storage = storage
        self._clock = clock

    async def value(self) -> ClientRateLimitInfo | None:
        return await self.storage.get("value")

    async def update(self, hits: int, window_ms: int) -> ClientRateLimitInfo:
        """Add ``hits`` (may be negative) to the counter of the current window."""
        payload = await self.storage.get("value") or _INITIAL_STATE
        alarm = await self.storage.get_alarm()
        now = self._clock()

        if alarm is None:
            alarm = now + window_ms / 1000
            await self.storage.set_alarm(alarm)

        # A window_ms change does not move an alarm that is already set.
        if alarm <= now:
            payload = _INITIAL_STATE
            alarm = now + window_ms / 1000
            await self.storage.set_alarm(alarm)

        payload = ClientRateLimitInfo(
            total_hits=max(0, payload.total_hits + hits),
            reset_time=alarm,
        )
        await self.storage.put("value", payload)
        return payload

    async def reset(self) -> None:
        await self.storage.put("value", _INITIAL_STATE)
        await self.storage.delete_alarm()

    async def alarm(self) -> None:
        """Expire the current window; invoked when the alarm time is reached."""
        alarm = await self.storage.get_alarm()
        if alarm is not None and alarm > self._clock():
            # Woken early, or a new window opened after the alarm was queued.
            await self.storage.set_alarm(alarm)
            return
        await self.reset()


class _HostedObject:
    """A CounterObject plus the lock serializing calls on it."""

    def __init__(self, obj: CounterObject) -> None:
        self.obj = obj
        self.lock = asyncio.Lock()


class _ObjectStub:
    """Handle on one object id of a LocalObjectNamespace.

    Reads never create the object. Writes create it on demand and retry when
    the object they waited on was evicted in the meantime.
    """

    def __init__(self, namespace: LocalObjectNamespace, object_id: str) -> None:
        self._namespace = namespace
        self._object_id = object_id

    async def value(self) -> ClientRateLimitInfo | None:
        hosted = self._namespace._objects.get(self._object_id)
        if hosted is None:
            return None
        async with hosted.lock:
            return await hosted.obj.value()

    async def update(self, hits: int, window_ms: int) -> ClientRateLimitInfo:
        while True:
            hosted = self._namespace._ensure(self._object_id)
            async with hosted.lock:
                if self._namespace._objects.get(self._object_id) is not hosted:
                    continue
                return await hosted.obj.update(hits, window_ms)

    async def reset(self) -> None:
        await self._namespace._reset(self._object_id, lambda obj: obj.reset())

    async def alarm(self) -> None:
        await self._namespace._reset(self._object_id, lambda obj: obj.alarm())


class LocalObjectNamespace:
    """Host for CounterObjects living in the current process.

    An object is dropped as soon as it is reset (explicitly or by its alarm),
    so the host only holds objects with a running window.

    Args:
        clock: Time source returning UNIX time in seconds.
        schedule_alarms: Fire alarms proactively on the running event loop.
            When False, windows only expire when the object is next updated
            and expired objects stay hosted until they are reset.
    """

    def __init__(
        self,
        *,
        clock: Callable[[], float] = time.time,
        schedule_alarms: bool = True,
    ) -> None:
        self._clock = clock
        self._schedule_alarms = schedule_alarms
        self._objects: dict[str, _HostedObject] = {}
        self._timers: dict[str, asyncio.TimerHandle] = {}
        self._pending: set[asyncio.Task] = set()

    def id_from_name(self, name: str) -> str:
        return hashlib.sha256(name.encode()).hexdigest()

    def get(self, object_id: str) -> _ObjectStub:
        return _ObjectStub(self, object_id)

    def _ensure(self, object_id: str) -> _HostedObject:
        hosted = self._objects.get(object_id)
        if hosted is None:
            storage = InMemoryObjectStorage(
                on_alarm_change=lambda ts, oid=object_id: self._reschedule(oid, ts)
            )
            hosted = _HostedObject(CounterObject(storage, clock=self._clock))
            self._objects[object_id] = hosted
        return hosted

    async def _reset(self, object_id: str, action: Callable[[CounterObject], Awaitable[None]]) -> None:
        hosted = self._objects.get(object_id)
        if hosted is None:
            return
        async with hosted.lock:
            if self._objects.get(object_id) is not hosted:
                return
            await action(hosted.obj)
            if await hosted.obj.storage.get_alarm() is None:
                del self._objects[object_id]

    def _reschedule(self, object_id: str, timestamp: float | None) -> None:
        timer = self._timers.pop(object_id, None)
        if timer is not None:
            timer.cancel()
        if timestamp is None or not self._schedule_alarms:
            return

        loop = asyncio.get_running_loop()
        delay = max(0.0, timestamp - self._clock())
        self._timers[object_id] = loop.call_later(delay, self._fire, object_id)

    def _fire(self, object_id: str) -> None:
        self._timers.pop(object_id, None)
        if object_id not in self._objects:
            return
        task = asyncio.get_running_loop().create_task(self.get(object_id).alarm())
        self._pending.add(task)
        task.add_done_callback(self._alarm_done)

    def _alarm_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(
                "store.alarm_failed",
                exc_info=task.exception(),
                extra={"store": "remote"},
            )

    def __len__(self) -> int:
        return len(self._objects)

    async def close(self) -> None:
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
        for task in list(self._pending):
            task.cancel()
        self._pending.clear()
        self._objects.clear()
