"""Rate limiting dependency for FastAPI routes.

This module wires the rate limiting engine into the HTTP layer.

Design goals:
- Minimal coupling: routes depend on a dependency function only.
- Swap-friendly: the counter store is chosen by settings behind the Store
  interface.
- Misconfiguration diagnostics: warn when a process-local store is used with
  several workers, and when one request is counted twice under the same key.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import Request

from rpc_limiter.adapters.store.factory import create_store
from rpc_limiter.core.config import AppSettings, settings
from rpc_limiter.core.engine import RateLimitDecision, RateLimiterEngine
from rpc_limiter.core.keys import extract_procedure_path, make_key_generator
from rpc_limiter.core.logging import hash_key

logger = logging.getLogger(__name__)


_engine: RateLimiterEngine | None = None
_engine_config: tuple[Any, ...] | None = None


def _config_fingerprint(cfg: AppSettings) -> tuple[Any, ...]:
    return (
        cfg.rate_limit_mode,
        cfg.rate_limit_window_ms,
        cfg.rate_limit_requests,
        tuple(sorted((path, rule.window_ms, rule.limit) for path, rule in cfg.rate_limit_routes.items())),
        cfg.rate_limit_store,
        cfg.rate_limit_prefix,
        cfg.rate_limit_sweep_interval_ms,
        cfg.rate_limit_message,
        cfg.rate_limit_status_code,
        cfg.rate_limit_trusted_ip_header,
        cfg.rpc_path_prefix,
    )


def build_engine(cfg: AppSettings) -> RateLimiterEngine:
    """Create an engine (and a fresh store) from application settings."""

    store = create_store(cfg)
    if store.local_keys and cfg.workers > 1:
        logger.warning(
            "rate_limit.local_store_multiple_workers",
            extra={"store": cfg.rate_limit_store, "workers": cfg.workers},
        )

    prefix = cfg.rpc_path_prefix
    options: dict[str, Any] = {
        "message": cfg.rate_limit_message,
        "status_code": cfg.rate_limit_status_code,
        "key_generator": make_key_generator(cfg.rate_limit_trusted_ip_header),
        "path_getter": lambda request: extract_procedure_path(request, prefix),
    }
    if cfg.rate_limit_mode == "multi":
        options["config"] = {
            path: {"window_ms": rule.window_ms, "limit": rule.limit}
            for path, rule in cfg.rate_limit_routes.items()
        }
    else:
        options["window_ms"] = cfg.rate_limit_window_ms
        options["limit"] = cfg.rate_limit_requests

    return RateLimiterEngine(store, **options)


def get_rate_limiter() -> RateLimiterEngine:
    """Return the process-wide engine.

    The instance is cached in-module to preserve counters across requests.
    If configuration changes (primarily in tests), the engine is rebuilt.
    """

    global _engine, _engine_config

    config = _config_fingerprint(settings.app)
    if _engine is None or _engine_config != config:
        _engine = build_engine(settings.app)
        _engine_config = config

    return _engine


async def shutdown_rate_limiter() -> None:
    """Release the cached engine's store (timers, remote handles)."""

    global _engine, _engine_config

    if _engine is not None:
        await _engine.store.shutdown()
    _engine = None
    _engine_config = None


def _warn_on_double_count(request: Request, engine: RateLimiterEngine, decision: RateLimitDecision) -> None:
    if decision.key is None:
        return

    counted: set[str] = getattr(request.state, "rate_limit_keys", set())
    identity = f"{engine.store.prefix}{decision.key}"
    if identity in counted:
        logger.warning(
            "rate_limit.double_count",
            extra={"key_hash": hash_key(identity), "path": decision.path},
        )
    counted.add(identity)
    request.state.rate_limit_keys = counted


async def enforce_rate_limit(request: Request) -> None:
    """FastAPI dependency enforcing rate limits.

    When enabled, counts one hit for the caller on the requested procedure.
    Rejections raise RateLimitExceededError, rendered by the exception
    handlers.
    """

    if not settings.app.rate_limit_enabled:
        return

    engine = get_rate_limiter()
    decision = await engine.check(request)
    _warn_on_double_count(request, engine, decision)
    request.state.rate_limit = decision
