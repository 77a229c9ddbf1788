"""RPC endpoint: ``POST /rpc/<procedure>``.

Every call passes through the rate limiting dependency before the procedure
runs, so throttled callers never reach procedure code.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

from fastapi import APIRouter, Depends, HTTPException, Request, status

from rpc_limiter.core.engine import RateLimitDecision
from rpc_limiter.core.rate_limit import enforce_rate_limit
from rpc_limiter.schemas.rpc import RateLimitMeta, RpcRequest, RpcResponse

router = APIRouter(tags=["RPC"], dependencies=[Depends(enforce_rate_limit)])

Procedure = Callable[[dict[str, Any]], Awaitable[Any]]

_posts: list[dict[str, Any]] = []


async def _hello(payload: dict[str, Any]) -> dict[str, str]:
    name = str(payload.get("name") or "world")
    return {"greeting": f"Hello, {name}!"}


async def _list_posts(payload: dict[str, Any]) -> list[dict[str, Any]]:
    return list(_posts)


async def _create_post(payload: dict[str, Any]) -> dict[str, Any]:
    title = str(payload.get("title") or "").strip()
    if not title:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="title is required")
    post = {
        "id": len(_posts) + 1,
        "title": title,
        "created_at": datetime.now(timezone.utc).isoformat(),
    }
    _posts.append(post)
    return post


PROCEDURES: dict[str, Procedure] = {
    "greeting.hello": _hello,
    "posts.list": _list_posts,
    "posts.create": _create_post,
}


def _rate_limit_meta(request: Request) -> RateLimitMeta | None:
    decision: RateLimitDecision | None = getattr(request.state, "rate_limit", None)
    if decision is None or decision.limit is None:
        return None
    return RateLimitMeta(
        limit=decision.limit,
        remaining=decision.remaining or 0,
        reset_at=int(decision.reset_time) if decision.reset_time is not None else None,
    )


@router.post("/{procedure}", response_model=RpcResponse)
async def call_procedure(
    procedure: str,
    request: Request,
    body: RpcRequest | None = None,
) -> RpcResponse:
    """Dispatch an RPC call to the named procedure.

    Raises:
        HTTPException: 404 if the procedure does not exist.
    """
    handler = PROCEDURES.get(procedure)
    if handler is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown procedure: {procedure}")

    result = await handler(body.input if body else {})
    return RpcResponse(procedure=procedure, result=result, rate_limit=_rate_limit_meta(request))
