"""Per-request rate limiting flow.

For every request the engine runs, strictly in order:

1. the skip predicate (SKIP, nothing counted),
2. settings resolution for the procedure path (no settings: ALLOW uncounted),
3. key generation,
4. store initialization with the resolved window, immediately followed by
5. the store increment (no await in between, so concurrent requests for paths
   with different windows never open a window with each other's length),
6. the threshold check. Over the limit the rejection handler runs; the
   default one raises RateLimitExceededError.

Store failures are not caught: they propagate to the caller, which decides
whether to fail open or closed. The HTTP layer of this service lets them
surface as 500 responses.
"""

from __future__ import annotations

import inspect
import json
import logging
import math
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Mapping, Union

from rpc_limiter.adapters.store.base import Store, StoreOptions, init_store, is_valid_store
from rpc_limiter.core.config import DEFAULT_RATE_LIMIT_MESSAGE
from rpc_limiter.core.errors import ConfigurationAppError, RateLimitExceededError
from rpc_limiter.core.keys import default_key_generator, extract_procedure_path
from rpc_limiter.core.logging import hash_key
from rpc_limiter.core.messages import as_message, render_message
from rpc_limiter.core.settings_resolver import LimitSpec, build_route_config, resolve_settings

logger = logging.getLogger(__name__)

KeyGenerator = Callable[[Any, str], Union[str, Awaitable[str]]]
SkipPredicate = Callable[[Any], Union[bool, Awaitable[bool]]]
PathGetter = Callable[[Any], str]
# (request, rendered message, status code, retry-after seconds or None)
RejectionHandler = Callable[[Any, Any, int, Union[int, None]], Any]


class Outcome(str, Enum):
    ALLOW = "allow"
    SKIP = "skip"
    REJECT = "reject"


@dataclass(frozen=True)
class RateLimitDecision:
    """Outcome of a checked request.

    ``key``, ``limit`` and the counters are None when nothing was counted.
    ``response`` holds what a custom rejection handler returned (REJECT only).
    """

    outcome: Outcome
    path: str | None = None
    key: str | None = None
    limit: int | None = None
    total_hits: int | None = None
    reset_time: float | None = None
    response: Any = None

    @property
    def remaining(self) -> int | None:
        if self.limit is None or self.total_hits is None:
            return None
        return max(0, self.limit - self.total_hits)


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


def _never_skip(request: Any) -> bool:
    return False


class RateLimiterEngine:
    """Counts requests per client key and rejects them over the limit.

    Exactly one configuration shape is accepted: ``window_ms`` + ``limit``
    for a single limit, or ``config`` mapping procedure paths (and optionally
    ``"default"``) to ``{"window_ms": ..., "limit": ...}``.

    Rejections go through ``handler(request, message, status_code,
    retry_after)`` (sync or async) when one is given; its return value is
    handed back on a REJECT decision. Without a handler the engine raises
    RateLimitExceededError.
    """

    def __init__(
        self,
        store: Store,
        *,
        window_ms: int | None = None,
        limit: LimitSpec | None = None,
        config: Mapping[str, Any] | None = None,
        message: Any = DEFAULT_RATE_LIMIT_MESSAGE,
        status_code: int = 429,
        key_generator: KeyGenerator | None = None,
        skip: SkipPredicate | None = None,
        path_getter: PathGetter | None = None,
        handler: RejectionHandler | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Validate the configuration and build the engine.

        Raises:
            ConfigurationAppError: If the store is malformed or the window/limit
                configuration is ambiguous or incomplete.
        """
        if not is_valid_store(store):
            raise ConfigurationAppError(
                code="invalid_store",
                message="The store is not correctly implemented: missing increment()",
            )

        self.store = store
        self.route_config = build_route_config(window_ms=window_ms, limit=limit, config=config)
        self.message = as_message(message)
        self.status_code = status_code
        self._key_generator = key_generator or default_key_generator
        self._skip = skip or _never_skip
        self._path_getter = path_getter or extract_procedure_path
        self._handler = handler
        self._clock = clock

    async def check(self, request: Any) -> RateLimitDecision:
        """Run the rate limiting flow for ``request``.

        Returns:
            RateLimitDecision with outcome ALLOW or SKIP, or REJECT when a
            custom rejection handler returned instead of raising.

        Raises:
            RateLimitExceededError: When the client is over its limit and no
                custom rejection handler is set.
            ConfigurationAppError: When the path's configuration is incomplete.
        """
        if await _maybe_await(self._skip(request)):
            logger.debug("rate_limit.skipped")
            return RateLimitDecision(outcome=Outcome.SKIP)

        path = self._path_getter(request)
        resolved = await resolve_settings(self.route_config, path, request)
        if resolved is None:
            return RateLimitDecision(outcome=Outcome.ALLOW, path=path)

        key = await _maybe_await(self._key_generator(request, path))

        init_store(self.store, StoreOptions(window_ms=resolved.window_ms))
        info = await self.store.increment(key)

        log_extra = {
            "path": path,
            "key_hash": hash_key(key),
            "limit": resolved.limit,
            "total_hits": info.total_hits,
            "window_ms": resolved.window_ms,
        }

        if info.total_hits <= resolved.limit:
            logger.info("rate_limit.allowed", extra=log_extra)
            return RateLimitDecision(
                outcome=Outcome.ALLOW,
                path=path,
                key=key,
                limit=resolved.limit,
                total_hits=info.total_hits,
                reset_time=info.reset_time,
            )

        retry_after = None
        if info.reset_time is not None:
            retry_after = max(0, math.ceil(info.reset_time - self._clock()))

        logger.warning("rate_limit.exceeded", extra={**log_extra, "retry_after_s": retry_after})

        payload = await render_message(self.message, request)
        if self._handler is not None:
            response = await _maybe_await(self._handler(request, payload, self.status_code, retry_after))
            return RateLimitDecision(
                outcome=Outcome.REJECT,
                path=path,
                key=key,
                limit=resolved.limit,
                total_hits=info.total_hits,
                reset_time=info.reset_time,
                response=response,
            )

        raise RateLimitExceededError(
            code="too_many_requests",
            message=payload if isinstance(payload, str) else json.dumps(payload, default=str),
            details={"retry_after": retry_after} if retry_after is not None else None,
            payload=payload,
            retry_after=retry_after,
            status_code=self.status_code,
            limit=resolved.limit,
            total_hits=info.total_hits,
            reset_time=info.reset_time,
            path=path,
        )

