"""Request context middleware.

Binds a correlation id and the RPC procedure of every request to the logging
context, echoes the id back in the response and reports the time spent.
"""

from __future__ import annotations

import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from rpc_limiter.core.config import settings
from rpc_limiter.core.keys import DEFAULT_PATH, extract_procedure_path
from rpc_limiter.core.logging import clear_request_context, set_request_context


class RequestContextMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        header_name = settings.log.request_id_header
        request_id = request.headers.get(header_name) or uuid.uuid4().hex
        procedure = extract_procedure_path(request, settings.app.rpc_path_prefix)
        set_request_context(request_id, None if procedure == DEFAULT_PATH else procedure)

        start = time.perf_counter()
        try:
            response = await call_next(request)
        finally:
            clear_request_context()

        response.headers[header_name] = request_id
        response.headers.setdefault("X-Request-Duration-ms", f"{(time.perf_counter() - start) * 1000:.2f}")
        return response
