"""HTTP-level tests for rate limited RPC procedures."""

import asyncio
import logging
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from rpc_limiter.core import rate_limit
from rpc_limiter.core.app_factory import create_app
from rpc_limiter.core.config import AppSettings, DEFAULT_RATE_LIMIT_MESSAGE, RouteLimitSettings, settings
from rpc_limiter.core.engine import Outcome, RateLimitDecision
from rpc_limiter.core.errors import RateLimitExceededError
from rpc_limiter.core.exception_handlers import setup_exception_handlers


@pytest.fixture
def limiter_settings(monkeypatch: pytest.MonkeyPatch):
    """Small single-route limit on a fresh engine; restored after the test."""

    monkeypatch.setattr(settings.app, "rate_limit_enabled", True)
    monkeypatch.setattr(settings.app, "rate_limit_mode", "single")
    monkeypatch.setattr(settings.app, "rate_limit_window_ms", 60_000)
    monkeypatch.setattr(settings.app, "rate_limit_requests", 2)
    monkeypatch.setattr(settings.app, "rate_limit_routes", {})
    monkeypatch.setattr(settings.app, "rate_limit_store", "memory")
    monkeypatch.setattr(settings.app, "rate_limit_include_headers", True)
    asyncio.run(rate_limit.shutdown_rate_limiter())
    yield settings.app
    asyncio.run(rate_limit.shutdown_rate_limiter())


@pytest.fixture
def client(limiter_settings) -> TestClient:
    return TestClient(create_app())


def _call(client: TestClient, procedure: str = "greeting.hello", ip: str = "1.2.3.4", **kwargs):
    headers = {"cf-connecting-ip": ip, **kwargs.pop("headers", {})}
    return client.post(f"/rpc/{procedure}", json={"input": {"name": "Ada"}}, headers=headers, **kwargs)


def test_allows_up_to_limit_then_rejects(client: TestClient) -> None:
    first = _call(client)
    second = _call(client)
    third = _call(client)

    assert first.status_code == 200
    assert first.json()["result"] == {"greeting": "Hello, Ada!"}
    assert first.json()["rate_limit"]["remaining"] == 1
    assert second.json()["rate_limit"]["remaining"] == 0

    assert third.status_code == 429
    assert third.text == DEFAULT_RATE_LIMIT_MESSAGE
    assert third.headers["content-type"].startswith("text/plain")
    assert 0 < int(third.headers["Retry-After"]) <= 60
    assert third.headers["X-RateLimit-Limit"] == "2"
    assert third.headers["X-RateLimit-Remaining"] == "0"
    assert "X-RateLimit-Reset" in third.headers


def test_clients_and_procedures_have_separate_budgets(client: TestClient) -> None:
    for _ in range(2):
        assert _call(client).status_code == 200
    assert _call(client).status_code == 429

    assert _call(client, ip="5.6.7.8").status_code == 200
    assert _call(client, procedure="posts.list").status_code == 200


def test_forwarded_for_identifies_client(client: TestClient) -> None:
    def call(forwarded: str):
        return client.post("/rpc/posts.list", headers={"x-forwarded-for": forwarded})

    assert call("7.7.7.7, 10.0.0.1").status_code == 200
    assert call("7.7.7.7").status_code == 200
    assert call("7.7.7.7, 10.0.0.2").status_code == 429
    assert call("8.8.8.8").status_code == 200


def test_disabled_limiter_never_rejects(client: TestClient, limiter_settings) -> None:
    limiter_settings.rate_limit_enabled = False

    responses = [_call(client) for _ in range(5)]

    assert {r.status_code for r in responses} == {200}
    assert responses[-1].json()["rate_limit"] is None


def test_headers_can_be_disabled(client: TestClient, limiter_settings) -> None:
    limiter_settings.rate_limit_include_headers = False

    for _ in range(2):
        _call(client)
    rejected = _call(client)

    assert rejected.status_code == 429
    assert "Retry-After" not in rejected.headers
    assert "X-RateLimit-Limit" not in rejected.headers


def test_multi_route_settings(client: TestClient, limiter_settings) -> None:
    limiter_settings.rate_limit_mode = "multi"
    limiter_settings.rate_limit_routes = {
        "posts.create": RouteLimitSettings(limit=1),
        "default": RouteLimitSettings(window_ms=60_000, limit=3),
    }

    create = lambda: client.post("/rpc/posts.create", json={"input": {"title": "hi"}})  # noqa: E731

    assert create().status_code == 200
    assert create().status_code == 429
    assert [_call(client).status_code for _ in range(4)] == [200, 200, 200, 429]


def test_incomplete_route_settings_return_500(client: TestClient, limiter_settings) -> None:
    limiter_settings.rate_limit_mode = "multi"
    limiter_settings.rate_limit_routes = {"posts.create": RouteLimitSettings(window_ms=1000)}

    response = client.post("/rpc/posts.create", json={"input": {"title": "hi"}})

    assert response.status_code == 500
    assert response.json()["error"]["code"] == "incomplete_rate_limit_config"
    # Procedures without any entry are not limited at all
    assert _call(client, procedure="posts.list").status_code == 200


def test_remote_store_backend(client: TestClient, limiter_settings) -> None:
    limiter_settings.rate_limit_store = "remote"

    assert [_call(client).status_code for _ in range(3)] == [200, 200, 429]


def test_store_failure_fails_closed(limiter_settings) -> None:
    app = create_app()
    engine = rate_limit.get_rate_limiter()
    engine.store.increment = AsyncMock(side_effect=ConnectionError("store unavailable"))

    client = TestClient(app, raise_server_exceptions=False)
    response = _call(client)

    assert response.status_code == 500
    assert response.json()["error"]["code"] == "internal_server_error"


def test_health_is_not_limited(client: TestClient, limiter_settings) -> None:
    limiter_settings.rate_limit_requests = 1

    assert {client.get("/health").status_code for _ in range(3)} == {200}


def test_unknown_procedure_is_404(client: TestClient) -> None:
    assert _call(client, procedure="nope.nothing").status_code == 404


def test_rate_limit_handler_renders_structured_payload() -> None:
    app = FastAPI()
    setup_exception_handlers(app)

    @app.get("/limited")
    async def limited():
        raise RateLimitExceededError(
            code="too_many_requests",
            message='{"error": "slow down"}',
            payload={"error": "slow down"},
            retry_after=7,
            status_code=503,
        )

    response = TestClient(app).get("/limited")

    assert response.status_code == 503
    assert response.json() == {"error": "slow down"}
    assert response.headers["Retry-After"] == "7"


def test_double_count_is_reported(caplog: pytest.LogCaptureFixture) -> None:
    engine = rate_limit.build_engine(AppSettings(rate_limit_store="memory", rate_limit_prefix="p:"))
    request = SimpleNamespace(state=SimpleNamespace())
    decision = RateLimitDecision(outcome=Outcome.ALLOW, path="posts.list", key="posts.list:1.2.3.4", limit=5, total_hits=1)

    with caplog.at_level(logging.WARNING, logger="rpc_limiter.core.rate_limit"):
        rate_limit._warn_on_double_count(request, engine, decision)
        assert not caplog.records
        rate_limit._warn_on_double_count(request, engine, decision)

    assert [r.getMessage() for r in caplog.records] == ["rate_limit.double_count"]
    assert request.state.rate_limit_keys == {"p:posts.list:1.2.3.4"}


def test_local_store_with_several_workers_is_reported(caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.WARNING, logger="rpc_limiter.core.rate_limit"):
        rate_limit.build_engine(AppSettings(rate_limit_store="remote", workers=4))
        assert not caplog.records
        rate_limit.build_engine(AppSettings(rate_limit_store="memory", workers=4))

    assert [r.getMessage() for r in caplog.records] == ["rate_limit.local_store_multiple_workers"]
