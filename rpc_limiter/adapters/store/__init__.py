"""Hit counter stores.

Counters start in-process (MemoryStore) and can move to per-key counter
objects (RemoteObjectStore) without changing the limiter or the API layer.
"""

from rpc_limiter.adapters.store.base import (
    ClientRateLimitInfo,
    Store,
    StoreOptions,
    init_store,
    is_valid_store,
)
from rpc_limiter.adapters.store.memory import MemoryStore
from rpc_limiter.adapters.store.remote import RemoteObjectStore

__all__ = [
    "ClientRateLimitInfo",
    "MemoryStore",
    "RemoteObjectStore",
    "Store",
    "StoreOptions",
    "init_store",
    "is_valid_store",
]
