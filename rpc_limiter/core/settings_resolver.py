"""Resolution of the effective window and limit for a procedure.

Two configuration shapes exist and are mutually exclusive:

- Single route: one ``window_ms``/``limit`` pair applied to every call.
- Multi route: a table keyed by procedure path, with an optional
  ``"default"`` entry. ``window_ms`` and ``limit`` fall back to the default
  entry independently of each other.

``limit`` may be an int or a callable of the request (sync or async) that
is evaluated on every call.
"""

from __future__ import annotations

import inspect
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Mapping, Union

from rpc_limiter.core.errors import ConfigurationAppError
from rpc_limiter.core.keys import DEFAULT_PATH

LimitFactory = Callable[[Any], Union[int, Awaitable[int]]]
LimitSpec = Union[int, LimitFactory]


@dataclass(frozen=True)
class RouteRule:
    """Window and/or limit configured for one procedure path."""

    window_ms: int | None = None
    limit: LimitSpec | None = None


@dataclass(frozen=True)
class RateLimiterSettings:
    """Effective settings for one request."""

    window_ms: int
    limit: int


@dataclass(frozen=True)
class SingleRouteConfig:
    window_ms: int
    limit: LimitSpec


@dataclass(frozen=True)
class MultiRouteConfig:
    routes: Mapping[str, RouteRule] = field(default_factory=dict)


RouteConfig = Union[SingleRouteConfig, MultiRouteConfig]


def _as_rule(path: str, value: Any) -> RouteRule:
    if isinstance(value, RouteRule):
        return value
    if isinstance(value, Mapping):
        unknown = set(value) - {"window_ms", "limit"}
        if unknown:
            raise ConfigurationAppError(
                code="invalid_rate_limit_config",
                message=f"Unknown rate limit option(s) for path {path}: {', '.join(sorted(unknown))}",
                details={"path": path},
            )
        return RouteRule(window_ms=value.get("window_ms"), limit=value.get("limit"))
    # pydantic models (settings) expose the same attributes
    if hasattr(value, "window_ms") and hasattr(value, "limit"):
        return RouteRule(window_ms=value.window_ms, limit=value.limit)
    raise ConfigurationAppError(
        code="invalid_rate_limit_config",
        message=f"Rate limit config for path {path} must be a mapping with window_ms and limit",
        details={"path": path},
    )


def _check_window(window_ms: Any, path: str) -> None:
    if isinstance(window_ms, bool) or not isinstance(window_ms, int) or window_ms < 1:
        raise ConfigurationAppError(
            code="invalid_rate_limit_config",
            message=f"window_ms must be a positive integer for path {path}",
            details={"path": path},
        )


def _check_limit_spec(limit: Any, path: str) -> None:
    if callable(limit):
        return
    if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
        raise ConfigurationAppError(
            code="invalid_rate_limit_config",
            message=f"limit must be a positive integer or a callable for path {path}",
            details={"path": path},
        )


def build_route_config(
    *,
    window_ms: int | None = None,
    limit: LimitSpec | None = None,
    config: Mapping[str, Any] | None = None,
) -> RouteConfig:
    """Validate the supplied options and return the matching config shape.

    Raises:
        ConfigurationAppError: If both shapes are supplied, or the single
            route shape is incomplete, or a value is not a positive integer.
    """
    if config is not None:
        if window_ms is not None or limit is not None:
            raise ConfigurationAppError(
                code="conflicting_rate_limit_config",
                message="You can't use both `window_ms` and `limit` with `config` at the same time.",
            )
        routes = {path: _as_rule(path, value) for path, value in config.items()}
        for path, rule in routes.items():
            if rule.window_ms is not None:
                _check_window(rule.window_ms, path)
            if rule.limit is not None:
                _check_limit_spec(rule.limit, path)
        return MultiRouteConfig(routes=routes)

    if window_ms is None and limit is None:
        raise ConfigurationAppError(
            code="missing_rate_limit_config",
            message="No rate limiter settings found: pass window_ms and limit, or config",
        )
    if window_ms is None or limit is None:
        raise ConfigurationAppError(
            code="incomplete_rate_limit_config",
            message="Missing window_ms or limit",
        )

    _check_window(window_ms, DEFAULT_PATH)
    _check_limit_spec(limit, DEFAULT_PATH)
    return SingleRouteConfig(window_ms=window_ms, limit=limit)


async def _evaluate_limit(limit: LimitSpec, request: Any, path: str) -> int:
    value = limit(request) if callable(limit) else limit
    if inspect.isawaitable(value):
        value = await value
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ConfigurationAppError(
            code="invalid_rate_limit_config",
            message=f"limit evaluated to {value!r} for path {path}; expected a positive integer",
            details={"path": path},
        )
    return value


async def resolve_settings(
    route_config: RouteConfig,
    path: str,
    request: Any = None,
) -> RateLimiterSettings | None:
    """Resolve the settings that apply to ``path``.

    Returns:
        The effective settings, or None when no limit applies to the path.

    Raises:
        ConfigurationAppError: If only one of window_ms/limit can be resolved.
    """
    if isinstance(route_config, SingleRouteConfig):
        limit = await _evaluate_limit(route_config.limit, request, path)
        return RateLimiterSettings(window_ms=route_config.window_ms, limit=limit)

    rule = route_config.routes.get(path) or RouteRule()
    default = route_config.routes.get(DEFAULT_PATH) or RouteRule()

    window_ms = rule.window_ms if rule.window_ms is not None else default.window_ms
    limit_spec = rule.limit if rule.limit is not None else default.limit

    if window_ms is None and limit_spec is None:
        return None
    if window_ms is None or limit_spec is None:
        raise ConfigurationAppError(
            code="incomplete_rate_limit_config",
            message=f"Missing window_ms or limit for path {path}",
            details={"path": path},
        )

    limit = await _evaluate_limit(limit_spec, request, path)
    return RateLimiterSettings(window_ms=window_ms, limit=limit)
