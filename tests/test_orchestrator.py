"""Tests for the request orchestrator."""
import asyncio
import threading
from unittest.mock import AsyncMock

import pytest

from prometheus_client import REGISTRY

from ai.routing import (
    BaseProvider,
    CacheConfig,
    CancellationToken,
    FunctionProvider,
    MetricsRouter,
    PerformanceTracker,
    ProviderRegistry,
    Request,
    RequestOrchestrator,
    Response,
    ResponseCache,
    SelectionPolicy,
    TaskType,
)
from core.config import AppSettings, Config, RoutingConfig
from core.errors import ErrorKind


# Fixtures
@pytest.fixture
def orchestrator():
    return RequestOrchestrator()


@pytest.fixture
def p1():
    """Text generation provider answering "hello"."""
    handler = AsyncMock(return_value=Response.ok("hello"))
    return FunctionProvider("p1", handler, ["text-generation"], name="Provider One")


def make_provider(provider_id, capabilities, reply="ok"):
    handler = AsyncMock(return_value=Response.ok(reply))
    return FunctionProvider(provider_id, handler, capabilities)


def calls(provider):
    return provider._handler.await_count


class TestDispatchScenarios:
    """End-to-end dispatch behaviour."""

    @pytest.mark.asyncio
    async def test_single_provider_is_cached(self, orchestrator, p1):
        orchestrator.register(p1)
        assert orchestrator.active_provider_id == "p1"

        request = Request("text-generation", "hi")
        first = await orchestrator.dispatch(request)
        assert first.success
        assert first.text == "hello"
        assert first.provider_id == "p1"
        assert not first.cached

        second = await orchestrator.dispatch(Request("text-generation", "hi"))
        assert second.success
        assert second.text == "hello"
        assert second.cached
        assert second.provider_id == "p1"
        assert calls(p1) == 1
        assert orchestrator.stats().hits == 1

    @pytest.mark.asyncio
    async def test_routes_around_incapable_active_provider(self, orchestrator):
        a = make_provider("A", ["translation"])
        b = make_provider("B", ["text-generation"], reply="from B")
        orchestrator.register(a)
        orchestrator.register(b)
        assert orchestrator.active_provider_id == "A"

        response = await orchestrator.dispatch(Request("text-generation", "hi"))
        assert response.success
        assert response.provider_id == "B"
        assert calls(a) == 0

    def test_set_active_unknown(self, orchestrator, p1):
        from core.errors import ProviderNotFoundError
        orchestrator.register(p1)
        with pytest.raises(ProviderNotFoundError) as exc_info:
            orchestrator.set_active("unknown")
        assert exc_info.value.kind == ErrorKind.PROVIDER_NOT_FOUND
        assert orchestrator.active_provider_id == "p1"

    @pytest.mark.asyncio
    async def test_cache_disabled_always_calls_provider(self, orchestrator, p1):
        orchestrator.register(p1)
        orchestrator.configure_cache(CacheConfig(enabled=False))
        for _ in range(3):
            response = await orchestrator.dispatch(Request("text-generation", "hi"))
            assert response.success and not response.cached
        assert calls(p1) == 3
        assert orchestrator.stats().total_entries == 0

    @pytest.mark.asyncio
    async def test_task_type_requests(self, orchestrator, p1):
        orchestrator.register(p1)
        response = await orchestrator.dispatch(Request(TaskType.TEXT_GENERATION, "hi"))
        assert response.success


class TestFailures:
    """Errors surface as failure responses and are never cached."""

    @pytest.mark.asyncio
    async def test_failed_response_not_cached(self, orchestrator):
        handler = AsyncMock(return_value=Response(success=False, error_message="quota"))
        orchestrator.register(FunctionProvider("p1", handler, ["text-generation"]))
        request = Request("text-generation", "hi")

        response = await orchestrator.dispatch(request)
        assert not response.success
        assert response.error_kind == ErrorKind.PROVIDER_CALL_FAILED
        assert response.error_message == "quota"
        assert response.provider_id == "p1"

        key = orchestrator._cache.compute_key(request)
        assert orchestrator._cache.lookup(key) is None
        await orchestrator.dispatch(request)
        assert handler.await_count == 2

    @pytest.mark.asyncio
    async def test_provider_exception_becomes_failure(self, orchestrator):
        handler = AsyncMock(side_effect=RuntimeError("API Error"))
        orchestrator.register(FunctionProvider("p1", handler, ["text-generation"]))

        response = await orchestrator.dispatch(Request("text-generation", "hi"))
        assert not response.success
        assert response.error_kind == ErrorKind.PROVIDER_CALL_FAILED
        assert "API Error" in response.error_message
        assert orchestrator.stats().total_entries == 0
        assert orchestrator.tracker.get_provider_metrics("p1").failed_requests == 1

    @pytest.mark.asyncio
    async def test_no_providers(self, orchestrator):
        response = await orchestrator.dispatch(Request("text-generation", "hi"))
        assert response.error_kind == ErrorKind.NO_CAPABLE_PROVIDER

    @pytest.mark.asyncio
    async def test_no_capable_provider(self, orchestrator, p1):
        orchestrator.register(p1)
        response = await orchestrator.dispatch(Request("translation", "hi"))
        assert not response.success
        assert response.error_kind == ErrorKind.NO_CAPABLE_PROVIDER
        assert calls(p1) == 0

    @pytest.mark.asyncio
    async def test_pinned_unknown_provider(self, orchestrator, p1):
        orchestrator.register(p1)
        response = await orchestrator.dispatch_with_provider("ghost", Request("text-generation", "hi"))
        assert response.error_kind == ErrorKind.PROVIDER_NOT_FOUND
        assert "ghost" in response.error_message

    @pytest.mark.asyncio
    async def test_pinned_provider_lacking_capability(self, orchestrator, p1):
        orchestrator.register(p1)
        orchestrator.register(make_provider("tr", ["translation"]))
        response = await orchestrator.dispatch(Request("text-generation", "hi", provider_id="tr"))
        assert response.error_kind == ErrorKind.CAPABILITY_NOT_SUPPORTED
        assert calls(orchestrator.registry.get("tr")) == 0
        # pinned requests are not rerouted
        assert calls(p1) == 0

    @pytest.mark.asyncio
    async def test_malformed_params_bypass_cache(self, orchestrator, p1):
        orchestrator.register(p1)
        request = Request("text-generation", "hi", custom_params={"temperature": 0.2})
        await orchestrator.dispatch(request)
        response = await orchestrator.dispatch(request)
        assert response.success and not response.cached
        assert calls(p1) == 2
        assert orchestrator.stats().total_entries == 0

    @pytest.mark.asyncio
    async def test_invalid_return_value(self, orchestrator):
        class Broken(BaseProvider):
            async def process(self, request):
                return None

        orchestrator.register(Broken("broken", ["text-generation"]))
        response = await orchestrator.dispatch(Request("text-generation", "hi"))
        assert response.error_kind == ErrorKind.PROVIDER_CALL_FAILED
        assert "NoneType" in response.error_message
        assert orchestrator.tracker.get_provider_metrics("broken").failed_requests == 1

    @pytest.mark.asyncio
    async def test_outcome_metric_uses_provider_error_kind(self, orchestrator):
        def outcome(kind):
            return REGISTRY.get_sample_value("router_dispatch_total", {"outcome": kind}) or 0.0

        handler = AsyncMock(return_value=Response(
            success=False, error_message="busy", error_kind=ErrorKind.CANCELLED
        ))
        orchestrator.register(FunctionProvider("p1", handler, ["text-generation"]))
        cancelled_before = outcome("cancelled")
        failed_before = outcome("provider_call_failed")

        response = await orchestrator.dispatch(Request("text-generation", "hi"))
        assert response.error_kind == ErrorKind.CANCELLED
        assert outcome("cancelled") == cancelled_before + 1
        assert outcome("provider_call_failed") == failed_before


class TestCacheSemantics:

    @pytest.mark.asyncio
    async def test_cache_keyed_by_content_not_provider(self, orchestrator, p1):
        other = make_provider("p2", ["text-generation"], reply="other")
        orchestrator.register(p1)
        orchestrator.register(other)
        await orchestrator.dispatch(Request("text-generation", "hi"))
        response = await orchestrator.dispatch_with_provider("p2", Request("text-generation", "hi"))
        assert response.cached
        assert response.text == "hello"
        assert response.provider_id == "p1"
        assert calls(other) == 0

    @pytest.mark.asyncio
    async def test_custom_params_separate_entries(self, orchestrator, p1):
        orchestrator.register(p1)
        await orchestrator.dispatch(Request("text-generation", "hi", {"lang": "de"}))
        await orchestrator.dispatch(Request("text-generation", "hi", {"lang": "fr"}))
        await orchestrator.dispatch(Request("text-generation", "hi", {"lang": "de"}, hints={"log": "verbose"}))
        assert calls(p1) == 2
        assert orchestrator.stats().total_entries == 2

    @pytest.mark.asyncio
    async def test_clear_cache(self, orchestrator, p1):
        orchestrator.register(p1)
        await orchestrator.dispatch(Request("text-generation", "hi"))
        orchestrator.clear_cache()
        response = await orchestrator.dispatch(Request("text-generation", "hi"))
        assert not response.cached
        assert calls(p1) == 2

    @pytest.mark.asyncio
    async def test_concurrent_identical_misses_are_both_served(self, orchestrator):
        """Concurrent identical misses are both served, not deduplicated."""
        gate = asyncio.Event()
        both_in = asyncio.Event()
        seen = []

        async def handler(request):
            seen.append(request)
            if len(seen) == 2:
                both_in.set()
            await gate.wait()
            return Response.ok(f"answer {len(seen)}")

        orchestrator.register(FunctionProvider("p1", handler, ["text-generation"]))
        pending = asyncio.gather(
            orchestrator.dispatch(Request("text-generation", "hi")),
            orchestrator.dispatch(Request("text-generation", "hi")),
        )
        await asyncio.wait_for(both_in.wait(), timeout=1)
        gate.set()
        first, second = await pending

        assert len(seen) == 2
        assert first.success and second.success
        assert not first.cached and not second.cached
        stats = orchestrator.stats()
        assert stats.total_entries == 1
        assert stats.misses == 2


class TestContinuations:
    """submit(): exactly-once callbacks and revocable interest."""

    @pytest.mark.asyncio
    async def test_callback_invoked_once(self, orchestrator, p1):
        orchestrator.register(p1)
        received = []
        task = orchestrator.submit(Request("text-generation", "hi"), received.append)
        await task
        await asyncio.sleep(0)
        assert len(received) == 1
        assert received[0].text == "hello"

    @pytest.mark.asyncio
    async def test_callback_receives_failures(self, orchestrator):
        received = []
        await orchestrator.submit(Request("text-generation", "hi"), received.append)
        await asyncio.sleep(0)
        assert len(received) == 1
        assert received[0].error_kind == ErrorKind.NO_CAPABLE_PROVIDER

    @pytest.mark.asyncio
    async def test_cancelled_token_suppresses_late_callback(self, orchestrator):
        started = asyncio.Event()
        release = asyncio.Event()

        async def slow(request):
            started.set()
            await release.wait()
            return Response.ok("late")

        orchestrator.register(FunctionProvider("p1", slow, ["text-generation"]))
        token = CancellationToken()
        received = []
        task = orchestrator.submit(Request("text-generation", "hi"), received.append, token=token)
        await started.wait()
        token.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        await asyncio.sleep(0)
        assert received == []
        assert orchestrator.stats().total_entries == 0

    @pytest.mark.asyncio
    async def test_token_cancelled_before_submit(self, orchestrator, p1):
        orchestrator.register(p1)
        token = CancellationToken()
        token.cancel()
        received = []
        task = orchestrator.submit(Request("text-generation", "hi"), received.append, token=token)
        with pytest.raises(asyncio.CancelledError):
            await task
        await asyncio.sleep(0)
        assert received == []
        assert calls(p1) == 0

    @pytest.mark.asyncio
    async def test_task_cancellation_reports_cancelled(self, orchestrator):
        started = asyncio.Event()

        async def slow(request):
            started.set()
            await asyncio.Event().wait()

        orchestrator.register(FunctionProvider("p1", slow, ["text-generation"]))
        received = []
        task = orchestrator.submit(Request("text-generation", "hi"), received.append)
        await started.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        await asyncio.sleep(0)
        assert len(received) == 1
        assert received[0].error_kind == ErrorKind.CANCELLED

    @pytest.mark.asyncio
    async def test_callback_exception_is_contained(self, orchestrator, p1):
        orchestrator.register(p1)

        def explode(response):
            raise ValueError("boom")

        await orchestrator.submit(Request("text-generation", "hi"), explode)
        await asyncio.sleep(0)
        response = await orchestrator.dispatch(Request("text-generation", "hi"))
        assert response.cached


    @pytest.mark.asyncio
    async def test_shared_token_releases_finished_requests(self, orchestrator, p1):
        orchestrator.register(p1)
        orchestrator.configure_cache(CacheConfig(enabled=False))
        token = CancellationToken()
        received = []
        for i in range(200):
            await orchestrator.submit(Request("text-generation", f"q{i}"), received.append, token=token)
        await asyncio.sleep(0)
        assert len(received) == 200
        assert token._callbacks == []

    @pytest.mark.asyncio
    async def test_cancel_from_another_thread_wakes_the_loop(self, orchestrator):
        started = asyncio.Event()

        async def slow(request):
            started.set()
            await asyncio.Event().wait()

        orchestrator.register(FunctionProvider("p1", slow, ["text-generation"]))
        token = CancellationToken()
        received = []
        task = orchestrator.submit(Request("text-generation", "hi"), received.append, token=token)
        await started.wait()

        timer = threading.Timer(0.05, token.cancel)
        timer.start()
        done, _ = await asyncio.wait({task}, timeout=2)
        timer.join()

        assert task in done
        assert task.cancelled()
        await asyncio.sleep(0)
        assert received == []


class TestProviderManagement:

    def test_capabilities_and_streaming(self, orchestrator, p1):
        orchestrator.register(p1)
        orchestrator.register(FunctionProvider(
            "p2", AsyncMock(), ["translation", "text-generation"], supports_streaming=True
        ))
        assert orchestrator.available_capabilities() == ["text-generation", "translation"]
        assert orchestrator.supports_streaming("p2")
        assert not orchestrator.supports_streaming("p1")
        assert not orchestrator.supports_streaming("ghost")
        assert orchestrator.provider_ids() == ["p1", "p2"]
        assert orchestrator.provider_names() == ["Provider One", "p2"]

    def test_provider_configuration(self, orchestrator, p1):
        orchestrator.register(p1)
        assert orchestrator.configure_provider("p1", {"model": "gemini-pro"})
        assert orchestrator.get_provider_configuration("p1") == {"model": "gemini-pro"}
        assert not orchestrator.configure_provider("ghost", {"model": "x"})
        assert orchestrator.get_provider_configuration("ghost") == {}

    @pytest.mark.asyncio
    async def test_unregister_active_then_dispatch(self, orchestrator, p1):
        orchestrator.register(p1)
        orchestrator.register(make_provider("p2", ["text-generation"], reply="p2"))
        orchestrator.unregister("p1")
        assert orchestrator.active_provider_id == "p2"
        response = await orchestrator.dispatch(Request("text-generation", "hi"))
        assert response.provider_id == "p2"

    @pytest.mark.asyncio
    async def test_calls_are_tracked(self, orchestrator, p1):
        orchestrator.register(p1)
        await orchestrator.dispatch(Request("text-generation", "hi"))
        await orchestrator.dispatch(Request("text-generation", "hi"))
        metrics = orchestrator.tracker.get_provider_metrics("p1")
        assert metrics.total_requests == 1
        assert metrics.successful_requests == 1


class TestFromSettings:

    def test_settings_drive_cache_and_active_provider(self):
        config = Config(
            app=AppSettings(CACHE_MAX_ENTRIES=7, CACHE_MAX_AGE_SECONDS=30),
            routing=RoutingConfig(default_provider="p2", cache={"enabled": "true"}),
        )
        orchestrator = RequestOrchestrator.from_settings(config, tracker=PerformanceTracker())
        assert orchestrator._cache.config.max_entries == 7
        assert orchestrator._cache.config.max_age_seconds == 30

        orchestrator.register(make_provider("p1", ["text-generation"]))
        orchestrator.register(make_provider("p2", ["text-generation"]))
        assert orchestrator.active_provider_id == "p2"
        assert orchestrator.stats().total_entries == 0

    def test_injected_empty_components_are_kept(self):
        registry = ProviderRegistry()
        cache = ResponseCache(CacheConfig(max_entries=7))
        tracker = PerformanceTracker()
        orchestrator = RequestOrchestrator(registry=registry, cache=cache, tracker=tracker)

        assert orchestrator.registry is registry
        assert orchestrator._cache is cache
        assert orchestrator.tracker is tracker

        orchestrator.register(make_provider("p1", ["text-generation"]))
        assert "p1" in registry

    def test_router_supplies_registry(self):
        registry = ProviderRegistry()
        router = MetricsRouter(registry, PerformanceTracker())
        orchestrator = RequestOrchestrator(router=router)
        assert orchestrator.registry is registry


class TestProviderCost:

    @pytest.mark.asyncio
    async def test_reported_cost_drives_cost_policy(self):
        registry = ProviderRegistry()
        tracker = PerformanceTracker()
        router = MetricsRouter(registry, tracker, SelectionPolicy.COST, min_samples=1)
        orchestrator = RequestOrchestrator(router=router, tracker=tracker)
        orchestrator.configure_cache(CacheConfig(enabled=False))

        pricey = FunctionProvider("pricey", AsyncMock(return_value=Response.ok("a", cost=0.05)), ["text-generation"])
        cheap = FunctionProvider("cheap", AsyncMock(return_value=Response.ok("b", cost=0.01)), ["text-generation"])
        orchestrator.register(pricey)
        orchestrator.register(cheap)

        await orchestrator.dispatch_with_provider("pricey", Request("text-generation", "warm"))
        await orchestrator.dispatch_with_provider("cheap", Request("text-generation", "warm"))
        assert tracker.get_provider_metrics("pricey").total_cost == pytest.approx(0.05)

        response = await orchestrator.dispatch(Request("text-generation", "hi"))
        assert response.provider_id == "cheap"
        assert response.cost == pytest.approx(0.01)
