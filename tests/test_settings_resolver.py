"""Unit tests for window/limit resolution per procedure path."""

import pytest

from rpc_limiter.core.config import RouteLimitSettings
from rpc_limiter.core.errors import ConfigurationAppError
from rpc_limiter.core.settings_resolver import (
    MultiRouteConfig,
    RateLimiterSettings,
    RouteRule,
    SingleRouteConfig,
    build_route_config,
    resolve_settings,
)


class TestBuildRouteConfig:
    def test_single_route_shape(self) -> None:
        config = build_route_config(window_ms=1000, limit=5)

        assert config == SingleRouteConfig(window_ms=1000, limit=5)

    def test_multi_route_shape(self) -> None:
        config = build_route_config(config={"posts.create": {"window_ms": 1000, "limit": 5}})

        assert isinstance(config, MultiRouteConfig)
        assert config.routes["posts.create"] == RouteRule(window_ms=1000, limit=5)

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"window_ms": 1000, "config": {"default": {"window_ms": 1000, "limit": 1}}},
            {"limit": 3, "config": {}},
            {"window_ms": 1000, "limit": 3, "config": {}},
        ],
    )
    def test_both_shapes_are_rejected(self, kwargs: dict) -> None:
        with pytest.raises(ConfigurationAppError) as exc_info:
            build_route_config(**kwargs)

        assert exc_info.value.code == "conflicting_rate_limit_config"

    @pytest.mark.parametrize("kwargs", [{"window_ms": 1000}, {"limit": 5}])
    def test_incomplete_single_route_is_rejected(self, kwargs: dict) -> None:
        with pytest.raises(ConfigurationAppError) as exc_info:
            build_route_config(**kwargs)

        assert exc_info.value.code == "incomplete_rate_limit_config"

    def test_no_settings_at_all_is_rejected(self) -> None:
        with pytest.raises(ConfigurationAppError) as exc_info:
            build_route_config()

        assert exc_info.value.code == "missing_rate_limit_config"

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"window_ms": 0, "limit": 5},
            {"window_ms": 1000, "limit": 0},
            {"window_ms": 1000, "limit": "5"},
            {"config": {"a": {"window_ms": -1}}},
            {"config": {"a": {"window_ms": 1000, "limt": 2}}},
            {"config": {"a": 42}},
        ],
    )
    def test_invalid_values_are_rejected(self, kwargs: dict) -> None:
        with pytest.raises(ConfigurationAppError):
            build_route_config(**kwargs)

    def test_accepts_settings_models(self) -> None:
        config = build_route_config(config={"default": RouteLimitSettings(window_ms=2000, limit=10)})

        assert config.routes["default"] == RouteRule(window_ms=2000, limit=10)


class TestResolveSettings:
    @pytest.fixture
    def routes(self):
        return build_route_config(
            config={
                "/a": {"window_ms": 1000, "limit": 5},
                "default": {"window_ms": 2000, "limit": 10},
            }
        )

    @pytest.mark.asyncio
    async def test_path_specific_entry_wins(self, routes) -> None:
        assert await resolve_settings(routes, "/a") == RateLimiterSettings(window_ms=1000, limit=5)

    @pytest.mark.asyncio
    async def test_unknown_path_uses_default(self, routes) -> None:
        assert await resolve_settings(routes, "/b") == RateLimiterSettings(window_ms=2000, limit=10)

    @pytest.mark.asyncio
    async def test_no_entry_and_no_default_means_no_limit(self) -> None:
        routes = build_route_config(config={"/a": {"window_ms": 1000, "limit": 5}})

        assert await resolve_settings(routes, "/c") is None

    @pytest.mark.asyncio
    async def test_fields_fall_back_independently(self) -> None:
        routes = build_route_config(
            config={
                "window.only": {"window_ms": 500},
                "limit.only": {"limit": 3},
                "default": {"window_ms": 2000, "limit": 10},
            }
        )

        assert await resolve_settings(routes, "window.only") == RateLimiterSettings(500, 10)
        assert await resolve_settings(routes, "limit.only") == RateLimiterSettings(2000, 3)

    @pytest.mark.asyncio
    async def test_half_configured_path_without_default_is_an_error(self) -> None:
        routes = build_route_config(config={"posts.create": {"window_ms": 500}})

        with pytest.raises(ConfigurationAppError) as exc_info:
            await resolve_settings(routes, "posts.create")

        assert exc_info.value.code == "incomplete_rate_limit_config"
        assert exc_info.value.details == {"path": "posts.create"}

    @pytest.mark.asyncio
    async def test_single_route_applies_everywhere(self) -> None:
        config = build_route_config(window_ms=1000, limit=2)

        assert await resolve_settings(config, "anything") == RateLimiterSettings(1000, 2)
        assert await resolve_settings(config, "default") == RateLimiterSettings(1000, 2)

    @pytest.mark.asyncio
    async def test_callable_limits_are_evaluated_per_call(self) -> None:
        calls: list[str] = []

        def limit_for(request) -> int:
            calls.append(request)
            return 7

        async def async_limit(request) -> int:
            return 3 if request == "vip" else 1

        single = build_route_config(window_ms=1000, limit=limit_for)
        multi = build_route_config(config={"default": {"window_ms": 1000, "limit": async_limit}})

        assert (await resolve_settings(single, "p", "r1")).limit == 7
        assert (await resolve_settings(single, "p", "r2")).limit == 7
        assert calls == ["r1", "r2"]

        assert (await resolve_settings(multi, "p", "vip")).limit == 3
        assert (await resolve_settings(multi, "p", "anon")).limit == 1

    @pytest.mark.asyncio
    async def test_callable_limit_must_return_positive_int(self) -> None:
        config = build_route_config(window_ms=1000, limit=lambda request: 0)

        with pytest.raises(ConfigurationAppError):
            await resolve_settings(config, "p")
