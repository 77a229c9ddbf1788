from __future__ import annotations

from rpc_limiter.api.routes.health import router as health_router
from rpc_limiter.api.routes.rpc import router as rpc_router

__all__ = ["health_router", "rpc_router"]
