"""Factory for the configured hit counter store."""

from rpc_limiter.adapters.store.base import Store
from rpc_limiter.adapters.store.memory import MemoryStore
from rpc_limiter.adapters.store.objects import LocalObjectNamespace
from rpc_limiter.adapters.store.remote import RemoteObjectStore
from rpc_limiter.core.config import AppSettings, settings
from rpc_limiter.core.errors import ValidationAppError


def create_store(app_settings: AppSettings | None = None) -> Store:
    """Instantiate the store selected by ``APP_RATE_LIMIT_STORE``.

    Returns:
        Store: A fresh, not yet initialized store.

    Raises:
        ValidationAppError: If the backend name is unknown.
    """
    cfg = app_settings or settings.app
    backend = cfg.rate_limit_store

    if backend == "memory":
        return MemoryStore(
            prefix=cfg.rate_limit_prefix,
            sweep_interval_ms=cfg.rate_limit_sweep_interval_ms,
        )

    if backend == "remote":
        return RemoteObjectStore(LocalObjectNamespace(), prefix=cfg.rate_limit_prefix)

    raise ValidationAppError(
        code="rate_limit_unknown_store",
        message=f"Unknown rate limit store: '{backend}'. Supported stores: memory, remote",
    )
