"""Rejection message variants and their rendering."""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Union

from rpc_limiter.core.config import DEFAULT_RATE_LIMIT_MESSAGE

logger = logging.getLogger(__name__)

RenderedMessage = Union[str, dict[str, Any]]
MessageFactory = Callable[[Any], Union[RenderedMessage, Awaitable[RenderedMessage]]]


@dataclass(frozen=True)
class StaticMessage:
    text: str


@dataclass(frozen=True)
class StructuredMessage:
    payload: dict[str, Any]


@dataclass(frozen=True)
class DynamicMessage:
    """Message computed from the request at rejection time (sync or async)."""

    factory: MessageFactory


Message = Union[StaticMessage, StructuredMessage, DynamicMessage]


def as_message(value: Any) -> Message:
    """Coerce a str, mapping, callable or Message into a Message variant.

    Raises:
        TypeError: If the value has none of the supported shapes.
    """
    if isinstance(value, (StaticMessage, StructuredMessage, DynamicMessage)):
        return value
    if isinstance(value, str):
        return StaticMessage(value)
    if isinstance(value, dict):
        return StructuredMessage(dict(value))
    if callable(value):
        return DynamicMessage(value)
    raise TypeError(f"Unsupported rate limit message type: {type(value).__name__}")


async def render_message(message: Message, request: Any) -> RenderedMessage:
    """Render ``message`` for ``request``.

    A factory that raises, or returns something other than a str or dict,
    is logged and replaced by the default message.
    """
    if isinstance(message, StaticMessage):
        return message.text
    if isinstance(message, StructuredMessage):
        return message.payload

    try:
        result = message.factory(request)
        if inspect.isawaitable(result):
            result = await result
    except Exception:
        logger.exception("rate_limit.message_render_failed")
        return DEFAULT_RATE_LIMIT_MESSAGE

    if not isinstance(result, (str, dict)):
        logger.error(
            "rate_limit.message_render_failed",
            extra={"result_type": type(result).__name__},
        )
        return DEFAULT_RATE_LIMIT_MESSAGE
    return result
