"""Pydantic schemas for RPC call envelopes."""

from __future__ import annotations

from typing import Any, Dict

from pydantic import BaseModel, Field


class RateLimitMeta(BaseModel):
    """Counter state of the caller after this call was counted."""

    limit: int = Field(..., description="Maximum calls allowed in the window.")
    remaining: int = Field(..., description="Calls left before the window resets.")
    reset_at: int | None = Field(
        default=None, description="UNIX epoch seconds at which the window resets."
    )


class RpcRequest(BaseModel):
    """Input envelope of an RPC call."""

    input: Dict[str, Any] = Field(
        default_factory=dict,
        description="Procedure arguments.",
    )


class RpcResponse(BaseModel):
    """Output envelope of an RPC call."""

    procedure: str = Field(..., description="Procedure path that was called, e.g. 'posts.create'.")
    result: Any = Field(default=None, description="Procedure return value.")
    rate_limit: RateLimitMeta | None = Field(
        default=None,
        description="Rate limit state; absent when the call was not counted.",
    )
