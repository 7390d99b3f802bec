"""Request orchestrator - the façade callers dispatch requests through.

Per request: cache lookup → provider resolution → provider call → cache
write-through on success.  Every request yields exactly one ``Response``;
routing and provider errors are returned as failure responses, never raised.
"""
import asyncio
import time
from dataclasses import replace
from typing import Callable, Dict, List, Mapping, Optional

from ai.routing.cache import ResponseCache
from ai.routing.cancellation import CancellationToken
from ai.routing.performance import PerformanceTracker
from ai.routing.providers import BaseProvider
from ai.routing.registry import ProviderRegistry
from ai.routing.router import CapabilityRouter
from ai.routing.types import CacheConfig, CacheStats, Request, Response
from core.config import Config
from core.errors import (
    CapabilityNotSupportedError,
    ErrorKind,
    NoCapableProviderError,
    ProviderCallError,
    ProviderNotFoundError,
    RouterError,
)
from core.logging import logger
from core.monitoring import DISPATCH_REQUESTS, PROVIDER_LATENCY_MS

ResponseCallback = Callable[[Response], None]


class RequestOrchestrator:
    """Routes requests to registered providers and caches their responses."""

    def __init__(
        self,
        registry: Optional[ProviderRegistry] = None,
        cache: Optional[ResponseCache] = None,
        router: Optional[CapabilityRouter] = None,
        tracker: Optional[PerformanceTracker] = None,
        preferred_provider: Optional[str] = None,
    ):
        # registry and cache define __len__, so an empty one is falsy
        if registry is None:
            registry = router.registry if router is not None else ProviderRegistry()
        self._registry = registry
        self._cache = cache if cache is not None else ResponseCache()
        self._router = router if router is not None else CapabilityRouter(self._registry)
        self._tracker = tracker if tracker is not None else PerformanceTracker()
        self._preferred_provider = preferred_provider
        logger.info("RequestOrchestrator initialized.")

    @classmethod
    def from_settings(cls, settings: Config, **kwargs) -> "RequestOrchestrator":
        """Build an orchestrator from loaded application settings."""
        cache = ResponseCache(CacheConfig.from_mapping(settings.cache_mapping()))
        return cls(cache=cache, preferred_provider=settings.default_provider, **kwargs)

    # ------------------------------------------------------------------
    # Provider management
    # ------------------------------------------------------------------

    @property
    def registry(self) -> ProviderRegistry:
        return self._registry

    @property
    def tracker(self) -> PerformanceTracker:
        return self._tracker

    def register(self, provider: BaseProvider) -> None:
        self._registry.register(provider)
        if self._preferred_provider and provider.provider_id == self._preferred_provider:
            self._registry.set_active(provider.provider_id)

    def unregister(self, provider_id: str) -> BaseProvider:
        return self._registry.unregister(provider_id)

    def set_active(self, provider_id: str) -> None:
        self._registry.set_active(provider_id)

    @property
    def active_provider_id(self) -> Optional[str]:
        return self._registry.active_id

    def provider_ids(self) -> List[str]:
        return self._registry.all_ids()

    def provider_names(self) -> List[str]:
        return self._registry.all_names()

    def available_capabilities(self) -> List[str]:
        """Sorted union of the capabilities of all registered providers."""
        caps = set()
        for provider in self._registry.providers():
            caps.update(provider.capabilities)
        return sorted(caps)

    def supports_streaming(self, provider_id: str) -> bool:
        provider = self._registry.get(provider_id)
        return bool(provider and provider.supports_streaming)

    def configure_provider(self, provider_id: str, config: Mapping[str, str]) -> bool:
        provider = self._registry.get(provider_id)
        if provider is None:
            logger.warning(f"Cannot configure unknown provider: {provider_id}")
            return False
        provider.configure(config)
        return True

    def get_provider_configuration(self, provider_id: str) -> Dict[str, str]:
        provider = self._registry.get(provider_id)
        if provider is None:
            return {}
        return provider.get_configuration()

    # ------------------------------------------------------------------
    # Cache management
    # ------------------------------------------------------------------

    def configure_cache(self, config: CacheConfig) -> None:
        self._cache.configure(config)

    def clear_cache(self) -> None:
        self._cache.clear()

    def stats(self) -> CacheStats:
        return self._cache.stats()

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def dispatch(self, request: Request) -> Response:
        """Process a request with its pinned provider or the routed one."""
        return await self._dispatch(request, request.provider_id)

    async def dispatch_with_provider(self, provider_id: str, request: Request) -> Response:
        """Process a request with a specific provider."""
        return await self._dispatch(request, provider_id)

    def submit(
        self,
        request: Request,
        callback: ResponseCallback,
        token: Optional[CancellationToken] = None,
        provider_id: Optional[str] = None,
    ) -> "asyncio.Task[Response]":
        """
        Continuation form of ``dispatch``; must be called from a running loop.

        ``callback`` runs exactly once with the response. If ``token`` is
        cancelled first, the in-flight call is cancelled and the callback
        never runs.
        """
        loop = asyncio.get_running_loop()
        task = loop.create_task(self._dispatch(request, provider_id or request.provider_id))
        detach: Optional[Callable[[], None]] = None

        def _deliver(done: "asyncio.Task[Response]") -> None:
            if detach is not None:
                detach()
            if token is not None and token.cancelled:
                logger.debug("Dropping completion for an abandoned request")
                return
            if done.cancelled():
                response = Response.failure(ErrorKind.CANCELLED, "Request was cancelled")
            elif done.exception() is not None:
                response = Response.failure(ErrorKind.PROVIDER_CALL_FAILED, str(done.exception()))
            else:
                response = done.result()
            try:
                callback(response)
            except Exception:
                logger.exception("Response callback raised")

        if token is not None:
            # cancel() may be called from another thread
            detach = token.on_cancel(lambda: loop.call_soon_threadsafe(task.cancel))
        task.add_done_callback(_deliver)
        return task

    async def _dispatch(self, request: Request, provider_id: Optional[str]) -> Response:
        cache_key = None
        if self._cache.enabled:
            cache_key = self._cache.compute_key(request)
            if cache_key is not None:
                entry = self._cache.lookup(cache_key)
                if entry is not None:
                    logger.debug(f"Cache hit for request: {cache_key}")
                    DISPATCH_REQUESTS.labels(outcome="cache_hit").inc()
                    return Response.ok(entry.response, provider_id=entry.provider_id, cached=True)

        try:
            provider = self._resolve(request, provider_id)
        except RouterError as e:
            logger.warning(str(e))
            DISPATCH_REQUESTS.labels(outcome=e.kind.value).inc()
            return Response.failure(e.kind, str(e), provider_id=provider_id)

        response = await self._call_provider(provider, request)
        if response.success:
            # failures are never cached
            if cache_key is not None:
                self._cache.insert(cache_key, response.text, provider.provider_id)
            DISPATCH_REQUESTS.labels(outcome="success").inc()
        else:
            DISPATCH_REQUESTS.labels(outcome=response.error_kind.value).inc()
        return response

    def _resolve(self, request: Request, provider_id: Optional[str]) -> BaseProvider:
        capability = request.capability_tag
        if provider_id:
            provider = self._registry.get(provider_id)
            if provider is None:
                raise ProviderNotFoundError(f"Provider not found: {provider_id}")
        else:
            selected = self._router.select_provider(capability)
            if selected is None:
                raise NoCapableProviderError(f"No provider supports capability: {capability}")
            provider = self._registry.get(selected)
            if provider is None:
                raise ProviderNotFoundError(f"Provider not found: {selected}")

        if not provider.supports(capability):
            raise CapabilityNotSupportedError(
                f"Provider {provider.provider_id} doesn't support capability: {capability}"
            )
        return provider

    async def _call_provider(self, provider: BaseProvider, request: Request) -> Response:
        pid = provider.provider_id
        start = time.perf_counter()
        try:
            response = await provider.process(request)
            if not isinstance(response, Response):
                raise ProviderCallError(
                    f"Provider {pid} returned {type(response).__name__}, expected Response"
                )
        except ProviderCallError as e:
            logger.error(str(e))
            response = Response.failure(e.kind, str(e))
        except Exception as e:
            logger.error(f"Provider {pid} failed: {e}", exc_info=True)
            response = Response.failure(ErrorKind.PROVIDER_CALL_FAILED, f"Provider {pid} failed: {e}")
        elapsed_ms = (time.perf_counter() - start) * 1000

        if response.success:
            response = replace(response, provider_id=pid, cached=False)
        else:
            response = replace(
                response,
                provider_id=pid,
                error_kind=response.error_kind or ErrorKind.PROVIDER_CALL_FAILED,
                error_message=response.error_message or f"Provider {pid} reported failure",
            )

        self._tracker.record_request(pid, elapsed_ms, response.success, cost=response.cost)
        PROVIDER_LATENCY_MS.labels(provider_id=pid).observe(elapsed_ms)
        return response
