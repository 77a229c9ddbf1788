"""Application factory for the FastAPI app.

Centralizes app construction (middleware, handlers, routers, lifespan) so
tests can build isolated instances.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from rpc_limiter.api.routes import health_router, rpc_router
from rpc_limiter.core.config import settings
from rpc_limiter.core.exception_handlers import setup_exception_handlers
from rpc_limiter.core.logging import configure_logging
from rpc_limiter.core.middleware import RequestContextMiddleware
from rpc_limiter.core.rate_limit import shutdown_rate_limiter


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Shutdown: stop store timers and drop the cached limiter."""
    yield
    await shutdown_rate_limiter()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application instance.

    Returns:
        Configured FastAPI app with middleware, handlers and routers.
    """
    # Logging first so subsequent init logs are formatted as desired
    configure_logging(settings.log)

    app = FastAPI(
        title="RPC Limiter",
        description=(
            "RPC endpoints (`POST /rpc/<procedure>`) protected by a per-client, "
            "per-procedure fixed-window rate limiter with pluggable counter stores."
        ),
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(RequestContextMiddleware)
    setup_exception_handlers(app)

    app.include_router(rpc_router, prefix=f"/{settings.app.rpc_path_prefix.strip('/')}")
    app.include_router(health_router)

    return app
