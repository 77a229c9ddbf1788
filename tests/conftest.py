"""Pytest configuration and fixtures shared across all test modules.

This file is automatically loaded by pytest before running any tests.
It sets TESTING before settings are imported so no .env file is loaded.
"""

import os
from types import SimpleNamespace

import pytest

# CRITICAL: Set this before any imports that might load settings
os.environ["TESTING"] = "true"
os.environ.setdefault("APP_ENV", "testing")
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("LOG_FORMAT", "plain")


class FakeClock:
    """Deterministic clock returning UNIX seconds."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.current = start

    def __call__(self) -> float:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_request():
    """Build a minimal request object exposing ``url.path`` and ``headers``."""

    def _make(path: str = "/rpc/posts.create", headers: dict[str, str] | None = None):
        return SimpleNamespace(
            url=SimpleNamespace(path=path),
            headers={k.lower(): v for k, v in (headers or {}).items()},
        )

    return _make
