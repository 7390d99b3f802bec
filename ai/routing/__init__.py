"""Capability-based routing of AI requests to interchangeable providers.

Providers register with a ``ProviderRegistry``; the ``RequestOrchestrator``
picks one per request, caches successful responses in a ``ResponseCache``
and reports every outcome as a ``Response`` value.
"""

from __future__ import annotations

from .cache import ResponseCache
from .cancellation import CancellationToken
from .fallback import FallbackDispatcher
from .orchestrator import RequestOrchestrator
from .performance import MetricsRouter, PerformanceTracker, SelectionPolicy
from .providers import BaseProvider, FunctionProvider
from .registry import ProviderRegistry
from .router import CapabilityRouter, CircuitBreaker
from .types import CacheConfig, CacheEntry, CacheStats, Request, Response, TaskType

__all__ = [
    "BaseProvider",
    "CacheConfig",
    "CacheEntry",
    "CacheStats",
    "CancellationToken",
    "CapabilityRouter",
    "CircuitBreaker",
    "FallbackDispatcher",
    "FunctionProvider",
    "MetricsRouter",
    "PerformanceTracker",
    "ProviderRegistry",
    "Request",
    "RequestOrchestrator",
    "Response",
    "ResponseCache",
    "SelectionPolicy",
    "TaskType",
]
