"""Procedure path extraction and default limiter key derivation."""

from __future__ import annotations

import re
from functools import lru_cache
from typing import Any, Callable

DEFAULT_PATH = "default"
UNKNOWN_CLIENT = "unknown"
TRUSTED_IP_HEADER = "cf-connecting-ip"


@lru_cache(maxsize=8)
def _procedure_pattern(prefix: str) -> re.Pattern[str]:
    return re.compile(rf"/{re.escape(prefix.strip('/'))}/([^/]+)")


def extract_procedure_path(request: Any, prefix: str = "rpc") -> str:
    """Return the procedure of an RPC call, e.g. ``posts.create`` for ``/rpc/posts.create``.

    Requests outside the RPC prefix map to ``"default"``.
    """
    match = _procedure_pattern(prefix).search(request.url.path)
    return match.group(1) if match else DEFAULT_PATH


def client_address(request: Any, trusted_header: str = TRUSTED_IP_HEADER) -> str:
    """Best-effort client address from proxy headers.

    Prefers the address set by the trusted edge, then the first hop of
    X-Forwarded-For, then ``"unknown"``.
    """
    edge_ip = request.headers.get(trusted_header)
    if edge_ip:
        return edge_ip.strip()

    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop

    return UNKNOWN_CLIENT


def default_key_generator(request: Any, path: str) -> str:
    """Key isolating each client per procedure: ``<path>:<client address>``."""
    return f"{path}:{client_address(request)}"


def make_key_generator(trusted_header: str) -> Callable[[Any, str], str]:
    """Build a default-style key generator trusting a different edge header."""

    def key_generator(request: Any, path: str) -> str:
        return f"{path}:{client_address(request, trusted_header)}"

    return key_generator
