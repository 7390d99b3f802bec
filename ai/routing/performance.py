"""Per-provider latency and success tracking, plus a router that uses it."""
import threading
import time
from dataclasses import dataclass, replace
from enum import Enum
from typing import Dict, List, Optional, Sequence

from ai.routing.registry import ProviderRegistry
from ai.routing.router import CapabilityRouter
from ai.routing.types import Capability
from core.logging import logger


@dataclass(frozen=True)
class ProviderMetrics:
    """Aggregated request metrics for a provider."""
    provider_id: str
    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    average_response_time_ms: float = 0.0
    total_cost: float = 0.0
    first_request_time: Optional[float] = None
    last_request_time: Optional[float] = None

    @property
    def success_rate(self) -> float:
        if not self.total_requests:
            return 1.0
        return self.successful_requests / self.total_requests

    @property
    def average_cost_per_request(self) -> float:
        if not self.total_requests:
            return 0.0
        return self.total_cost / self.total_requests


class PerformanceTracker:
    """Records provider calls and ranks providers by them."""

    def __init__(self) -> None:
        self._metrics: Dict[str, ProviderMetrics] = {}
        self._lock = threading.Lock()

    def record_request(
        self,
        provider_id: str,
        response_time_ms: float,
        success: bool,
        cost: float = 0.0,
    ) -> None:
        now = time.time()
        with self._lock:
            m = self._metrics.get(provider_id) or ProviderMetrics(provider_id, first_request_time=now)
            total = m.total_requests + 1
            self._metrics[provider_id] = replace(
                m,
                total_requests=total,
                successful_requests=m.successful_requests + (1 if success else 0),
                failed_requests=m.failed_requests + (0 if success else 1),
                # running mean
                average_response_time_ms=m.average_response_time_ms
                + (response_time_ms - m.average_response_time_ms) / total,
                total_cost=m.total_cost + cost,
                last_request_time=now,
            )

    def get_provider_metrics(self, provider_id: str) -> ProviderMetrics:
        with self._lock:
            return self._metrics.get(provider_id) or ProviderMetrics(provider_id)

    def get_all_provider_metrics(self) -> Dict[str, ProviderMetrics]:
        with self._lock:
            return dict(self._metrics)

    def get_fastest_provider(self, provider_ids: Sequence[str]) -> Optional[str]:
        measured = self._measured(provider_ids)
        if not measured:
            return None
        return min(measured, key=lambda m: m.average_response_time_ms).provider_id

    def get_most_reliable_provider(self, provider_ids: Sequence[str]) -> Optional[str]:
        measured = self._measured(provider_ids)
        if not measured:
            return None
        # ties broken by latency
        return max(measured, key=lambda m: (m.success_rate, -m.average_response_time_ms)).provider_id

    def get_cheapest_provider(self, provider_ids: Sequence[str]) -> Optional[str]:
        measured = self._measured(provider_ids)
        if not measured:
            return None
        return min(measured, key=lambda m: m.average_cost_per_request).provider_id

    def reset_metrics(self) -> None:
        with self._lock:
            self._metrics.clear()

    def _measured(self, provider_ids: Sequence[str]) -> List[ProviderMetrics]:
        with self._lock:
            return [self._metrics[pid] for pid in provider_ids if pid in self._metrics]


class SelectionPolicy(str, Enum):
    RELIABILITY = "reliability"
    LATENCY = "latency"
    COST = "cost"


class MetricsRouter(CapabilityRouter):
    """
    Router that prefers the best-performing capable provider.

    Until every capable provider has ``min_samples`` recorded requests the
    plain capability policy applies, so a cold start routes exactly like
    ``CapabilityRouter``.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        tracker: PerformanceTracker,
        policy: SelectionPolicy = SelectionPolicy.RELIABILITY,
        min_samples: int = 5,
    ) -> None:
        super().__init__(registry)
        self._tracker = tracker
        self._policy = policy
        self._min_samples = min_samples

    def select_provider(self, capability: Capability) -> Optional[str]:
        candidates = self.capable_providers(capability)
        if len(candidates) < 2:
            return super().select_provider(capability)

        samples = [self._tracker.get_provider_metrics(pid).total_requests for pid in candidates]
        if min(samples) < self._min_samples:
            return super().select_provider(capability)

        if self._policy == SelectionPolicy.LATENCY:
            chosen = self._tracker.get_fastest_provider(candidates)
        elif self._policy == SelectionPolicy.COST:
            chosen = self._tracker.get_cheapest_provider(candidates)
        else:
            chosen = self._tracker.get_most_reliable_provider(candidates)
        logger.debug(f"Metrics router chose {chosen} by {self._policy.value}")
        return chosen
