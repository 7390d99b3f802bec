"""Capability router and per-provider circuit breakers (half-open).

The router picks the active provider when it declares the requested
capability and otherwise the first registered provider that does.

The circuit breaker opens after consecutive failures.  After a cool-down
period, a *single* probe request is allowed to verify recovery (half-open).
Success closes the circuit; failure re-opens it.
"""

import asyncio
import time
from typing import Callable, List, Optional

from ai.routing.registry import ProviderRegistry
from ai.routing.types import Capability, capability_tag
from core.logging import logger

__all__ = ["CapabilityRouter", "CircuitBreaker"]

# ---------------------------------------------------------------------------
# Circuit Breaker implementation
# ---------------------------------------------------------------------------


class CircuitBreaker:
    def __init__(
        self,
        failure_threshold: int = 5,
        reset_timeout: float = 30,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._failure_threshold = failure_threshold
        self._reset_timeout = reset_timeout  # seconds
        self._clock = clock
        self._state = "closed"  # closed, open, half-open
        self._failure_count = 0
        self._opened_at = 0.0
        self._probe_in_flight = False
        self._lock = asyncio.Lock()

    @property
    def state(self) -> str:
        return self._state

    async def before_request(self) -> bool:
        """Return True if request may proceed."""
        async with self._lock:
            if self._state == "open":
                if self._clock() - self._opened_at < self._reset_timeout:
                    return False  # short-circuit
                self._state = "half-open"
            if self._state == "half-open":
                # one probe at a time
                if self._probe_in_flight:
                    return False
                self._probe_in_flight = True
            return True

    def release(self) -> None:
        """Free the half-open probe slot without recording an outcome."""
        self._probe_in_flight = False

    async def after_success(self) -> None:
        async with self._lock:
            self._probe_in_flight = False
            self._failure_count = 0
            self._state = "closed"

    async def after_failure(self) -> None:
        async with self._lock:
            self._probe_in_flight = False
            self._failure_count += 1
            if self._state == "half-open" or self._failure_count >= self._failure_threshold:
                self._state = "open"
                self._opened_at = self._clock()
                logger.warning("Circuit breaker opened")


# ---------------------------------------------------------------------------
# Router
# ---------------------------------------------------------------------------


class CapabilityRouter:
    """Active-first, then registration-order provider selection."""

    def __init__(self, registry: ProviderRegistry) -> None:
        self._registry = registry

    @property
    def registry(self) -> ProviderRegistry:
        return self._registry

    def capable_providers(self, capability: Capability) -> List[str]:
        tag = capability_tag(capability)
        return [p.provider_id for p in self._registry.providers() if tag in p.capabilities]

    def select_provider(self, capability: Capability) -> Optional[str]:
        active = self._registry.active_provider()
        if active is not None and active.supports(capability):
            return active.provider_id

        candidates = self.capable_providers(capability)
        if not candidates:
            return None
        if active is not None:
            logger.info(
                f"Active provider doesn't support {capability_tag(capability)}, "
                f"switching to {candidates[0]}"
            )
        return candidates[0]
